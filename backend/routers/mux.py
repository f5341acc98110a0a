import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.config import settings
from core.mux_client import MuxClient, MuxError, MuxNotFoundError, get_mux_client
from core.mux_signing import (
    SigningError,
    WebhookSignatureError,
    create_signed_playback_token,
    create_signed_playback_url,
    create_signed_thumbnail_url,
    verify_webhook_signature,
)
from db.database import get_async_session
from db.users import User
from db.video import Video
from schemas.videos import SignedUrlRequest, SignedUrlResponse, UploadRequest, UploadResponse
from services.mux_webhooks import handle_mux_event

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


@router.post("/upload", response_model=UploadResponse)
async def create_upload(
    body: UploadRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    mux: MuxClient = Depends(get_mux_client),
):
    """
    Create a direct upload URL and the video row that tracks it.

    The video id travels to Mux as passthrough so webhooks can find the row
    even before the upload id is stored.
    """
    video = Video(
        title=body.title,
        description=body.description or "",
        status="uploading",
        user_id=user.id,
        publicly_listed=body.publicly_listed,
    )
    db.add(video)
    await db.flush()

    try:
        upload = await mux.create_upload(
            cors_origin=settings.mux_cors_origin,
            passthrough=str(video.id),
            playback_policy=body.playback_policy,
        )
    except MuxError as e:
        await db.rollback()
        logger.error(f"Failed to create Mux upload: {e.message}", extra={"user_id": str(user.id)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create upload")

    video.mux_upload_id = upload.id
    await db.commit()
    return UploadResponse(id=upload.id, url=upload.url, video_id=str(video.id))


@router.get("/asset/{asset_id}")
async def get_asset(
    asset_id: str,
    user: User = Depends(current_active_user),
    mux: MuxClient = Depends(get_mux_client),
):
    try:
        asset = await mux.get_asset(asset_id)
    except MuxNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Mux asset {asset_id} not found")
    except MuxError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return asset.model_dump()


@router.post("/signed-url", response_model=SignedUrlResponse)
async def signed_url(body: SignedUrlRequest, user: User = Depends(current_active_user)):
    """Short-lived playback token for assets with a signed playback policy"""
    if not settings.mux_signing_key_id or not settings.mux_signing_private_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Mux signing keys are not configured"
        )
    try:
        token = create_signed_playback_token(
            body.playback_id,
            settings.mux_signing_key_id,
            settings.mux_signing_private_key,
            expiration_seconds=body.expiration_seconds,
            algorithm=settings.mux_signing_algorithm,
        )
        thumbnail_token = create_signed_playback_token(
            body.playback_id,
            settings.mux_signing_key_id,
            settings.mux_signing_private_key,
            expiration_seconds=body.expiration_seconds,
            audience="t",
            algorithm=settings.mux_signing_algorithm,
        )
    except SigningError as e:
        logger.error(f"Failed to sign playback token: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to sign playback token")

    return SignedUrlResponse(
        playback_id=body.playback_id,
        token=token,
        url=create_signed_playback_url(body.playback_id, token),
        thumbnail_url=create_signed_thumbnail_url(body.playback_id, thumbnail_token),
        expires_in=body.expiration_seconds,
    )


@webhook_router.post("/mux")
async def mux_webhook(
    request: Request,
    mux_signature: str = Header(None),
    db: AsyncSession = Depends(get_async_session),
):
    body = await request.body()

    if settings.mux_webhook_signing_secret:
        try:
            verify_webhook_signature(body, mux_signature, settings.mux_webhook_signing_secret)
        except WebhookSignatureError as e:
            logger.warning(f"Rejected Mux webhook: {e}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    elif settings.environment != "development":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook signing secret is not configured"
        )

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid event payload")

    return await handle_mux_event(db, event)
