"""
Reconcile local video rows with the state of their Mux assets.

Rows can drift when a webhook is missed: a video stays "processing" after Mux
finished, or was seeded with a placeholder playback id. ``sync_video_statuses``
selects a bounded batch of such rows, asks Mux about each asset concurrently
and applies whatever changed, one UPDATE per row.

Two overlapping runs are not coordinated; the later write wins.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.mux_client import MuxAsset, MuxClient
from db.video import PLACEHOLDER_PREFIX, SAMPLE_PLAYBACK_MARKER, Video, is_placeholder_playback_id

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
STALE_AFTER = timedelta(minutes=5)

NO_ASSET_ID = "no_asset_id"
STATUS_UPDATED = "status_updated"
PLAYBACK_ID_UPDATED = "playback_id_updated"
SKIPPED = "skipped"
ERROR = "error"

# Mux asset states mapped onto local video statuses
MUX_STATUS_MAP = {"preparing": "processing", "ready": "ready", "errored": "error"}


async def select_videos_to_sync(
    db: AsyncSession,
    video_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
    limit: int = BATCH_SIZE,
) -> List[Video]:
    if video_id is not None:
        result = await db.execute(select(Video).where(Video.id == video_id))
        return list(result.scalars().all())

    cutoff = (now or datetime.now(timezone.utc)) - STALE_AFTER
    result = await db.execute(
        select(Video)
        .where(
            or_(
                (Video.status == "processing") & (Video.updated_at < cutoff),
                Video.mux_playback_id.startswith(PLACEHOLDER_PREFIX),
                Video.mux_playback_id.contains(SAMPLE_PLAYBACK_MARKER),
            )
        )
        .order_by(Video.updated_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def plan_video_update(video: Video, mux: MuxClient) -> Dict[str, Any]:
    """
    Work out what should change for one video without touching the database.

    Returns a dict with ``result`` (one of the result codes above), the
    ``changes`` to apply and the ``asset_status`` Mux reported.
    """
    if not video.mux_asset_id:
        return {"result": NO_ASSET_ID, "changes": {}}

    asset: MuxAsset = await mux.get_asset(video.mux_asset_id)
    asset_status = MUX_STATUS_MAP.get(asset.status, asset.status)
    changes: Dict[str, Any] = {}
    result = SKIPPED

    if asset_status != video.status:
        changes["status"] = asset_status
        result = STATUS_UPDATED

    if asset.status == "ready":
        if not video.mux_playback_id or is_placeholder_playback_id(video.mux_playback_id):
            if asset.playback_ids:
                playback_id = asset.playback_ids[0].id
            else:
                playback_id = (await mux.create_playback_id(asset.id, policy="public")).id
            changes["mux_playback_id"] = playback_id
            result = PLAYBACK_ID_UPDATED

        if asset.duration is not None and asset.duration != video.duration:
            changes["duration"] = asset.duration
        if asset.aspect_ratio and asset.aspect_ratio != video.aspect_ratio:
            changes["aspect_ratio"] = asset.aspect_ratio

    return {"result": result if changes else SKIPPED, "changes": changes, "asset_status": asset_status}


async def sync_video_statuses(
    db: AsyncSession,
    mux: MuxClient,
    video_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Run one reconciliation pass; never raises"""
    try:
        videos = await select_videos_to_sync(db, video_id=video_id, now=now)
    except Exception as e:
        logger.exception("Failed to select videos for sync")
        await db.rollback()
        return {
            "message": "Failed to select videos for sync",
            "error": str(e),
            "checked": 0,
            "updated": 0,
            "results": [],
        }

    if not videos:
        return {"message": "No videos need syncing", "checked": 0, "updated": 0, "results": []}

    plans = await asyncio.gather(
        *(plan_video_update(v, mux) for v in videos),
        return_exceptions=True,
    )

    # Plain values only from here on: a rollback expires the ORM instances
    rows = [(v.id, v.title, v.mux_asset_id, v.status) for v in videos]

    results: List[Dict[str, Any]] = []
    updated = 0
    for (video_pk, title, asset_id, previous_status), plan in zip(rows, plans):
        entry: Dict[str, Any] = {
            "id": str(video_pk),
            "title": title,
            "asset_id": asset_id,
            "previous_status": previous_status,
        }
        if isinstance(plan, BaseException):
            logger.warning(
                f"Sync failed for video {video_pk}: {plan}",
                extra={"video_id": str(video_pk), "asset_id": asset_id},
            )
            entry.update({"status": ERROR, "message": str(plan)})
            results.append(entry)
            continue

        changes = plan["changes"]
        if changes:
            try:
                await db.execute(update(Video).where(Video.id == video_pk).values(**changes))
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.warning(
                    f"Failed to write sync result for video {video_pk}: {e}",
                    extra={"video_id": str(video_pk)},
                )
                entry.update({"status": ERROR, "message": str(e)})
                results.append(entry)
                continue
            updated += 1
            logger.info(
                f"Video {video_pk} reconciled: {plan['result']}",
                extra={"video_id": str(video_pk), "asset_id": asset_id, "status": changes.get("status")},
            )

        entry["status"] = plan["result"]
        if "asset_status" in plan:
            entry["asset_status"] = plan["asset_status"]
        if "mux_playback_id" in changes:
            entry["playback_id"] = changes["mux_playback_id"]
        results.append(entry)

    return {
        "message": f"Checked {len(videos)} videos, updated {updated}",
        "checked": len(videos),
        "updated": updated,
        "results": results,
    }
