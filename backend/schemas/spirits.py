from datetime import date
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

MAX_RELEASE_YEAR_AHEAD = 5


def to_note_list(value: Union[str, List[str], None]) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


class SpiritValidators(BaseModel):
    """Field rules shared by create and update payloads"""

    @field_validator("rating", mode="before", check_fields=False)
    @classmethod
    def normalize_rating(cls, v):
        if v is None or v == "":
            return None
        v = float(v)
        if v < 1 or v > 100:
            raise ValueError("Rating must be between 1 and 100")
        # 1-10 ratings (7.8) are stored on the 10-100 scale
        if v <= 10:
            return round(v * 10)
        return round(v)

    @field_validator("image_url", check_fields=False)
    @classmethod
    def validate_image_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not (v.startswith("/") or v.startswith("http")):
            raise ValueError("Image URL must start with '/' or 'http'")
        return v

    @field_validator("release_year", check_fields=False)
    @classmethod
    def validate_release_year(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        if v < 1800:
            raise ValueError("Release year seems too old")
        if v > date.today().year + MAX_RELEASE_YEAR_AHEAD:
            raise ValueError("Release year seems too far in the future")
        return v

    @field_validator("nose", "palate", "finish", mode="before", check_fields=False)
    @classmethod
    def split_notes(cls, v):
        return to_note_list(v)


class SpiritCreate(SpiritValidators):
    name: str = Field(min_length=1, max_length=100)
    brand: str = Field(min_length=1, max_length=100)
    type: str = ""
    category: str = "whiskey"
    description: Optional[str] = Field(default=None, max_length=1000)
    release_year: Optional[int] = None
    proof: Optional[float] = Field(default=None, gt=0, le=200)
    price: Optional[float] = Field(default=None, ge=0)
    rating: Optional[int] = None
    is_favorite: bool = False
    date_acquired: Optional[str] = None
    bottle_size: Optional[str] = None
    distillery: Optional[str] = None
    bottle_level: Optional[float] = Field(default=100, ge=0, le=100)
    image_url: Optional[str] = None
    web_image_url: Optional[str] = None
    nose: Optional[List[str]] = None
    palate: Optional[List[str]] = None
    finish: Optional[List[str]] = None
    notes: Optional[str] = None


class SpiritUpdate(SpiritValidators):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    brand: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    release_year: Optional[int] = None
    proof: Optional[float] = Field(default=None, gt=0, le=200)
    price: Optional[float] = Field(default=None, ge=0)
    rating: Optional[int] = None
    is_favorite: Optional[bool] = None
    date_acquired: Optional[str] = None
    bottle_size: Optional[str] = None
    distillery: Optional[str] = None
    bottle_level: Optional[float] = Field(default=None, ge=0, le=100)
    image_url: Optional[str] = None
    web_image_url: Optional[str] = None
    nose: Optional[List[str]] = None
    palate: Optional[List[str]] = None
    finish: Optional[List[str]] = None
    notes: Optional[str] = None


class CollectionStats(BaseModel):
    totalSpirits: int = 0
    favorites: int = 0
    tastings: int = 0


class FeaturedSpirit(BaseModel):
    id: UUID
    name: str
    brand: str
    type: str
    image_url: Optional[str] = None
    rating: Optional[int] = None
    owner_name: Optional[str] = None
