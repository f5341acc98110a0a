import uuid
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy.orm import relationship

from .database import Base
from .users import utcnow

VIDEO_STATUSES = ("uploading", "processing", "ready", "error", "needs_upload")
PLACEHOLDER_PREFIX = "placeholder-"
SAMPLE_PLAYBACK_MARKER = "sample-playback-id"


def is_placeholder_playback_id(playback_id) -> bool:
    if not playback_id:
        return False
    return playback_id.startswith(PLACEHOLDER_PREFIX) or SAMPLE_PLAYBACK_MARKER in playback_id


class Video(Base):
    """A recorded tasting tracked through the Mux asset lifecycle"""
    __tablename__ = "videos"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="uploading", index=True)
    mux_upload_id = Column(String, nullable=True, unique=True)
    mux_asset_id = Column(String, nullable=True, unique=True)
    mux_playback_id = Column(String, nullable=True)
    duration = Column(Float, nullable=True)
    aspect_ratio = Column(String, nullable=True)
    thumbnail_time = Column(Float, nullable=True, default=0)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    publicly_listed = Column(Boolean, nullable=False, default=True)
    views = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="videos")
    comments = relationship("Comment", back_populates="video", passive_deletes=True)

    @property
    def to_schema(self):
        user_data = None
        if self.user:
            user_data = {
                "id": self.user.id,
                "name": self.user.display_name,
                "image": self.user.image,
            }
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description or "",
            "status": self.status,
            "mux_upload_id": self.mux_upload_id,
            "mux_asset_id": self.mux_asset_id,
            "mux_playback_id": self.mux_playback_id,
            "duration": self.duration or 0,
            "aspect_ratio": self.aspect_ratio or "16:9",
            "thumbnail_time": self.thumbnail_time or 0,
            "user_id": self.user_id,
            "user": user_data,
            "publicly_listed": bool(self.publicly_listed),
            "views": self.views or 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
