from pydantic import BaseModel, ConfigDict, field_validator
from uuid import UUID
from fastapi_users import schemas
from typing import Optional


class UserRead(schemas.BaseUser[UUID]):
    name: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None


class UserCreate(schemas.BaseUserCreate):
    name: Optional[str] = None
    username: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    pass


class UserProfile(BaseModel):
    id: UUID
    email: str
    name: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None
    cover_photo: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserProfileUpdate(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None
    cover_photo: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("username cannot be empty")
        if len(v) > 50:
            raise ValueError("username must be at most 50 characters")
        return v


class PopularUser(BaseModel):
    id: UUID
    name: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None
    spirits_count: int


class ProviderSessionRequest(BaseModel):
    access_token: str


class ProviderSessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserProfile


class MetadataSyncResponse(BaseModel):
    user_id: UUID
    pushed: bool
    profile_version: int
    reason: Optional[str] = None
