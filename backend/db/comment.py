import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy.orm import relationship

from .database import Base
from .users import utcnow


class Comment(Base):
    __tablename__ = "comments"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    content = Column(Text, nullable=False)
    video_id = Column(GUID, ForeignKey("videos.id", ondelete="SET NULL"), nullable=True, index=True)
    review_id = Column(String, nullable=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    video = relationship("Video", back_populates="comments")
    user = relationship("User")

    @property
    def to_schema(self):
        user_data = None
        if self.user:
            user_data = {"name": self.user.display_name, "image": self.user.image}
        return {
            "id": self.id,
            "content": self.content,
            "video_id": self.video_id,
            "review_id": self.review_id,
            "user_id": self.user_id,
            "user": user_data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
