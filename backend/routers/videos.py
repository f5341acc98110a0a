import hmac
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import current_active_user, current_optional_user
from core.config import settings
from core.mux_client import MuxClient, MuxError, MuxNotFoundError, get_mux_client
from db.comment import Comment
from db.database import get_async_session
from db.users import User
from db.video import Video, is_placeholder_playback_id
from schemas.videos import SetAssetRequest, VideoCreate
from services.video_sync import MUX_STATUS_MAP, sync_video_statuses

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_LIST_LIMIT = 50


async def get_video_or_404(video_id: UUID, db: AsyncSession) -> Video:
    result = await db.execute(
        select(Video)
        .options(selectinload(Video.user))
        .where(Video.id == video_id)
        .execution_options(populate_existing=True)
    )
    video = result.scalar_one_or_none()
    if not video:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Video with id {video_id} not found"
        )
    return video


def ensure_owner(video: Video, user: User) -> None:
    if video.user_id != user.id and not user.is_superuser:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to modify this video"
        )


def has_cron_secret(x_cron_secret: Optional[str], authorization: Optional[str]) -> bool:
    if not settings.cron_secret:
        return False
    candidates = [x_cron_secret or ""]
    if authorization and authorization.lower().startswith("bearer "):
        candidates.append(authorization[7:])
    return any(hmac.compare_digest(c, settings.cron_secret) for c in candidates if c)


@router.get("")
async def list_videos(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1),
    include_all: bool = Query(False, alias="includeAll"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    db: AsyncSession = Depends(get_async_session),
):
    """Past tastings, newest first"""
    query = (
        select(Video)
        .options(selectinload(Video.user))
        .order_by(Video.created_at.desc())
        .limit(min(limit, MAX_LIST_LIMIT))
    )
    if status_filter:
        query = query.where(Video.status == status_filter)
    elif not include_all:
        query = query.where(Video.status.in_(("ready", "processing")))
    if user_id:
        query = query.where(Video.user_id == user_id)
    if not include_all:
        query = query.where(Video.publicly_listed.is_(True))

    result = await db.execute(query)
    return {"videos": [v.to_schema for v in result.scalars().all()]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_video(
    video_in: VideoCreate,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    if video_in.mux_playback_id and is_placeholder_playback_id(video_in.mux_playback_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Placeholder playback ids are not accepted"
        )
    try:
        video = Video(
            title=video_in.title,
            description=video_in.description or "",
            mux_upload_id=video_in.mux_upload_id,
            mux_playback_id=video_in.mux_playback_id,
            status="ready" if video_in.mux_playback_id else "uploading",
            user_id=user.id,
            publicly_listed=video_in.publicly_listed,
            views=0,
        )
        db.add(video)
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error creating video: {str(e)}"
        )
    video = await get_video_or_404(video.id, db)
    return {"video": video.to_schema}


@router.api_route("/sync-status", methods=["GET", "POST"])
async def sync_status(
    video_id: Optional[str] = Query(None, alias="videoId"),
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    user: Optional[User] = Depends(current_optional_user),
    db: AsyncSession = Depends(get_async_session),
    mux: MuxClient = Depends(get_mux_client),
):
    """
    Reconcile stuck or placeholder videos with Mux.

    Open when CRON_SECRET is unset; otherwise callable by the scheduler with
    the secret or by any signed-in user.
    """
    if settings.cron_secret and user is None and not has_cron_secret(x_cron_secret, authorization):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    target = None
    if video_id:
        try:
            target = UUID(video_id)
        except ValueError:
            return {
                "message": "Invalid video id",
                "error": f"Invalid video id: {video_id}",
                "checked": 0,
                "updated": 0,
                "results": [{"id": video_id, "status": "error", "message": "Invalid video id"}],
            }
    return await sync_video_statuses(db, mux, video_id=target)


@router.get("/{video_id}")
async def get_video(video_id: UUID, db: AsyncSession = Depends(get_async_session)):
    video = await get_video_or_404(video_id, db)
    return video.to_schema


@router.delete("/{video_id}")
async def delete_video(
    video_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    mux: MuxClient = Depends(get_mux_client),
):
    video = await get_video_or_404(video_id, db)
    ensure_owner(video, user)

    if video.mux_asset_id:
        try:
            await mux.delete_asset(video.mux_asset_id)
        except MuxNotFoundError:
            pass
        except MuxError as e:
            logger.warning(
                f"Could not delete Mux asset: {e.message}",
                extra={"video_id": str(video.id), "asset_id": video.mux_asset_id},
            )

    try:
        # Comments outlive the video
        await db.execute(update(Comment).where(Comment.video_id == video.id).values(video_id=None))
        await db.delete(video)
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error deleting video: {str(e)}"
        )
    return {"success": True}


@router.post("/{video_id}/view")
async def record_view(video_id: UUID, db: AsyncSession = Depends(get_async_session)):
    result = await db.execute(
        update(Video)
        .where(Video.id == video_id)
        .values(views=Video.views + 1)
        .returning(Video.views)
    )
    views = result.scalar_one_or_none()
    if views is None:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Video with id {video_id} not found"
        )
    await db.commit()
    return {"views": views}


@router.post("/{video_id}/set-asset")
async def set_asset(
    video_id: UUID,
    body: SetAssetRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    mux: MuxClient = Depends(get_mux_client),
):
    """Attach a Mux asset to a video and make sure it has a playable id"""
    video = await get_video_or_404(video_id, db)
    ensure_owner(video, user)

    try:
        asset = await mux.get_asset(body.mux_asset_id)
        if asset.playback_ids:
            playback_id = asset.playback_ids[0].id
        else:
            playback_id = (await mux.create_playback_id(asset.id, policy="public")).id
    except MuxNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Mux asset {body.mux_asset_id} not found"
        )
    except MuxError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    video.mux_asset_id = asset.id
    video.mux_playback_id = playback_id
    video.status = MUX_STATUS_MAP.get(asset.status, asset.status)
    if asset.duration is not None:
        video.duration = asset.duration
    if asset.aspect_ratio:
        video.aspect_ratio = asset.aspect_ratio
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Mux asset already attached to another video",
            extra={"video_id": str(video_id), "asset_id": asset.id},
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Mux asset {asset.id} is already attached to another video"
        )

    video = await get_video_or_404(video_id, db)
    return {
        "success": True,
        "video": video.to_schema,
        "asset_id": asset.id,
        "playback_id": playback_id,
    }


@router.post("/{video_id}/update-status")
async def update_status(
    video_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    mux: MuxClient = Depends(get_mux_client),
):
    """Reconcile a single video with its Mux asset"""
    video = await get_video_or_404(video_id, db)
    if not video.mux_asset_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Video does not have a Mux asset ID",
                "status": video.status,
                "upload_id": video.mux_upload_id,
            },
        )

    outcome = await sync_video_statuses(db, mux, video_id=video_id)
    entry = outcome["results"][0] if outcome["results"] else {}
    if entry.get("status") == "error":
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=entry.get("message") or "Failed to reach Mux",
        )

    video = await get_video_or_404(video_id, db)
    return {"success": True, "result": entry.get("status"), "video": video.to_schema}
