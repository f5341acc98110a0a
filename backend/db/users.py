from datetime import datetime, timezone

from fastapi import Depends
from fastapi_users.db import SQLAlchemyBaseUserTableUUID, SQLAlchemyUserDatabase
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import relationship

from .database import Base, get_async_session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    name = Column(String, nullable=True)
    username = Column(String, nullable=True, unique=True, index=True)
    image = Column(String, nullable=True)
    cover_photo = Column(String, nullable=True)
    provider_user_id = Column(String, nullable=True, unique=True, index=True)
    # Bumped on every profile change; the auth provider only ever receives newer versions
    profile_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    spirits = relationship("Spirit", back_populates="owner", cascade="all, delete-orphan")
    videos = relationship("Video", back_populates="user")

    @property
    def to_schema(self):
        """Convert User model to public profile dictionary"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "username": self.username,
            "image": self.image,
            "cover_photo": self.cover_photo,
        }

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.username:
            return self.username
        return (self.email or "").split("@")[0] or "Unknown User"


async def get_user_db(session: AsyncSession = Depends(get_async_session)):
    yield SQLAlchemyUserDatabase(session, User)
