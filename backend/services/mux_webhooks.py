"""Apply Mux webhook events to video rows"""
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.video import Video

logger = logging.getLogger(__name__)

UPLOAD_ASSET_CREATED = "video.upload.asset_created"
ASSET_READY = "video.asset.ready"
ASSET_ERRORED = "video.asset.errored"


def _passthrough_id(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


async def find_video(
    db: AsyncSession,
    asset_id: Optional[str] = None,
    upload_id: Optional[str] = None,
    passthrough: Optional[str] = None,
) -> Optional[Video]:
    """Asset id first, then upload id, then the video id we sent as passthrough"""
    if asset_id:
        video = (await db.execute(select(Video).where(Video.mux_asset_id == asset_id))).scalar_one_or_none()
        if video:
            return video
    if upload_id:
        video = (await db.execute(select(Video).where(Video.mux_upload_id == upload_id))).scalar_one_or_none()
        if video:
            return video
    video_id = _passthrough_id(passthrough)
    if video_id:
        return await db.get(Video, video_id)
    return None


async def handle_mux_event(db: AsyncSession, event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = event.get("type") or ""
    data = event.get("data") or {}

    if event_type == UPLOAD_ASSET_CREATED:
        passthrough = (data.get("new_asset_settings") or {}).get("passthrough")
        video = await find_video(db, upload_id=data.get("id"), passthrough=passthrough)
        if video is None:
            return _unmatched(event_type, data)
        video.mux_upload_id = video.mux_upload_id or data.get("id")
        video.mux_asset_id = data.get("asset_id")
        video.status = "processing"

    elif event_type == ASSET_READY:
        video = await find_video(db, asset_id=data.get("id"), upload_id=data.get("upload_id"), passthrough=data.get("passthrough"))
        if video is None:
            return _unmatched(event_type, data)
        video.mux_asset_id = data.get("id")
        video.status = "ready"
        playback_ids = data.get("playback_ids") or []
        if playback_ids:
            video.mux_playback_id = playback_ids[0].get("id")
        if data.get("duration") is not None:
            video.duration = data["duration"]
        if data.get("aspect_ratio"):
            video.aspect_ratio = data["aspect_ratio"]

    elif event_type == ASSET_ERRORED:
        video = await find_video(db, asset_id=data.get("id"), upload_id=data.get("upload_id"), passthrough=data.get("passthrough"))
        if video is None:
            return _unmatched(event_type, data)
        video.mux_asset_id = video.mux_asset_id or data.get("id")
        video.status = "error"
        errors = (data.get("errors") or {}).get("messages")
        logger.error(
            f"Mux asset errored: {errors}",
            extra={"video_id": str(video.id), "asset_id": data.get("id"), "event_type": event_type},
        )

    else:
        logger.info(f"Ignoring Mux event {event_type}", extra={"event_type": event_type})
        return {"received": True, "type": event_type, "handled": False}

    video_key = str(video.id)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # Another video already holds this asset; acknowledge so Mux stops retrying
        logger.warning(
            f"Mux event {event_type} conflicts with an existing asset link",
            extra={"video_id": video_key, "asset_id": data.get("asset_id") or data.get("id"), "event_type": event_type},
        )
        return {"received": True, "type": event_type, "handled": False, "conflict": True, "video_id": video_key}
    logger.info(
        f"Applied Mux event {event_type}",
        extra={"video_id": str(video.id), "asset_id": video.mux_asset_id, "event_type": event_type, "status": video.status},
    )
    return {"received": True, "type": event_type, "handled": True, "video_id": video_key}


def _unmatched(event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    # Still a 2xx: the delivery must not be retried
    logger.warning(
        f"No video matches Mux event {event_type}",
        extra={"event_type": event_type, "asset_id": data.get("asset_id") or data.get("id")},
    )
    return {"received": True, "type": event_type, "handled": False}
