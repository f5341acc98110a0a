import uuid
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy.orm import relationship

from .database import Base
from .users import utcnow


class Stream(Base):
    """A live tasting session"""
    __tablename__ = "streams"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    host_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    spirit_id = Column(GUID, ForeignKey("spirits.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_live = Column(Boolean, nullable=False, default=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    likes = relationship("StreamLike", back_populates="stream", cascade="all, delete-orphan")
    reports = relationship("StreamReport", back_populates="stream", cascade="all, delete-orphan")


class StreamLike(Base):
    __tablename__ = "stream_likes"
    __table_args__ = (UniqueConstraint("stream_id", "user_id", name="uq_stream_like_user"),)

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    stream_id = Column(GUID, ForeignKey("streams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    stream = relationship("Stream", back_populates="likes")


class StreamReport(Base):
    __tablename__ = "stream_reports"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    stream_id = Column(GUID, ForeignKey("streams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    stream = relationship("Stream", back_populates="reports")
