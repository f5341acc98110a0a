"""Imports every mapped class so relationships resolve and metadata is complete"""
from .users import User
from .spirit import Spirit
from .video import Video
from .comment import Comment
from .stream import Stream, StreamLike, StreamReport

__all__ = ["User", "Spirit", "Video", "Comment", "Stream", "StreamLike", "StreamReport"]
