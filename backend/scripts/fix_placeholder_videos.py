import argparse
import asyncio
import sys
from pathlib import Path

"""
One-off cleanup for tastings saved with a placeholder playback id.

- Rows that have a Mux asset go back to "processing" so the reconciler
  fetches the real playback id on its next run.
- Rows without an asset that claim to be ready (or carry a placeholder)
  are marked "needs_upload" and their playback id is cleared.

Run inside the api container:
  docker compose exec -T api uv run python scripts/fix_placeholder_videos.py --dry-run
  docker compose exec -T api uv run python scripts/fix_placeholder_videos.py
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

import db.models  # noqa: E402,F401
from db.database import async_session_maker, engine  # noqa: E402
from db.video import Video, is_placeholder_playback_id  # noqa: E402


async def fix_placeholder_videos(session: AsyncSession, dry_run: bool = False) -> dict:
    result = await session.execute(select(Video))
    requeued = 0
    needs_upload = 0

    for video in result.scalars().all():
        placeholder = is_placeholder_playback_id(video.mux_playback_id)
        if video.mux_asset_id:
            if placeholder:
                video.status = "processing"
                requeued += 1
        elif placeholder or video.status == "ready":
            video.status = "needs_upload"
            video.mux_playback_id = None
            needs_upload += 1

    if dry_run:
        await session.rollback()
    else:
        await session.commit()
    return {"requeued": requeued, "needs_upload": needs_upload}


async def main(dry_run: bool) -> None:
    try:
        async with async_session_maker() as session:
            counts = await fix_placeholder_videos(session, dry_run=dry_run)
    finally:
        await engine.dispose()

    prefix = "[dry-run] " if dry_run else ""
    print(f"{prefix}Requeued for processing: {counts['requeued']}")
    print(f"{prefix}Marked as needs_upload: {counts['needs_upload']}")


if __name__ == "__main__":
    p = argparse.ArgumentParser()
    p.add_argument("--dry-run", action="store_true", help="Do not commit, just print what would change")
    args = p.parse_args()

    asyncio.run(main(dry_run=args.dry_run))
