import argparse
import asyncio
import sys
from pathlib import Path
from uuid import UUID

"""
Reconcile stuck tastings with Mux by hand (same pass the cron endpoint runs).

Run inside the api container:
  docker compose exec -T api uv run python scripts/sync_mux_videos.py
  docker compose exec -T api uv run python scripts/sync_mux_videos.py --video-id <uuid>
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import db.models  # noqa: E402,F401
from core.mux_client import close_mux_client, get_mux_client  # noqa: E402
from db.database import async_session_maker, engine  # noqa: E402
from services.video_sync import sync_video_statuses  # noqa: E402


async def main(video_id: UUID | None = None) -> None:
    mux = get_mux_client()
    try:
        async with async_session_maker() as session:
            summary = await sync_video_statuses(session, mux, video_id=video_id)
    finally:
        await close_mux_client()
        await engine.dispose()

    print(summary["message"])
    for entry in summary["results"]:
        line = f"  {entry['id']} [{entry['previous_status']}] {entry['title']!r}: {entry['status']}"
        if entry.get("message"):
            line += f" ({entry['message']})"
        print(line)
    print(f"Checked {summary['checked']}, updated {summary['updated']}")


if __name__ == "__main__":
    p = argparse.ArgumentParser()
    p.add_argument("--video-id", type=UUID, default=None, help="Only reconcile this video")
    args = p.parse_args()

    asyncio.run(main(video_id=args.video_id))
