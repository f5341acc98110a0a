from typing import Optional

from pydantic import BaseModel, Field


class VideoCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    mux_upload_id: Optional[str] = None
    mux_playback_id: Optional[str] = None
    publicly_listed: bool = True


class UploadRequest(BaseModel):
    title: str = Field(default="Untitled tasting", min_length=1, max_length=200)
    description: Optional[str] = None
    publicly_listed: bool = True
    playback_policy: str = Field(default="public", pattern="^(public|signed)$")


class UploadResponse(BaseModel):
    id: str
    url: Optional[str] = None
    video_id: str


class SetAssetRequest(BaseModel):
    mux_asset_id: str = Field(min_length=1)


class SignedUrlRequest(BaseModel):
    playback_id: str = Field(min_length=1)
    expiration_seconds: int = Field(default=3600, ge=60, le=7 * 24 * 3600)


class SignedUrlResponse(BaseModel):
    playback_id: str
    token: str
    url: str
    thumbnail_url: str
    expires_in: int
