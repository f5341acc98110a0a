import uuid
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy.orm import relationship

from .database import Base
from .users import utcnow


def split_notes(value):
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Spirit(Base):
    """A bottle in a user's collection"""
    __tablename__ = "spirits"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    owner_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False, index=True)
    brand = Column(String(100), nullable=False)
    type = Column(String, nullable=False, default="")
    category = Column(String, nullable=False, default="whiskey")
    description = Column(Text, nullable=True)
    proof = Column(Float, nullable=True)
    price = Column(Float, nullable=True)
    rating = Column(Integer, nullable=True)  # 10-100 scale
    is_favorite = Column(Boolean, nullable=False, default=False)
    bottle_level = Column(Float, nullable=True, default=100)
    release_year = Column(Integer, nullable=True)
    distillery = Column(String, nullable=True)
    bottle_size = Column(String, nullable=True)
    date_acquired = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    web_image_url = Column(String, nullable=True)
    nose = Column(Text, nullable=True)
    palate = Column(Text, nullable=True)
    finish = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    owner = relationship("User", back_populates="spirits")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "brand": self.brand,
            "type": self.type,
            "category": self.category,
            "description": self.description,
            "proof": self.proof,
            "price": self.price,
            "rating": self.rating,
            "is_favorite": bool(self.is_favorite),
            "bottle_level": self.bottle_level,
            "release_year": self.release_year,
            "distillery": self.distillery,
            "bottle_size": self.bottle_size,
            "date_acquired": self.date_acquired,
            "image_url": self.image_url,
            "web_image_url": self.web_image_url,
            "nose": split_notes(self.nose),
            "palate": split_notes(self.palate),
            "finish": split_notes(self.finish),
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
