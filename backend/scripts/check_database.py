import asyncio
import sys
from pathlib import Path

"""
Check that the configured database is reachable and the schema is in place.

Run inside the api container:
  docker compose exec -T api uv run python scripts/check_database.py
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select  # noqa: E402

import db.models  # noqa: E402,F401
from core.retry import safe_query  # noqa: E402
from db.database import async_session_maker, engine  # noqa: E402
from db.spirit import Spirit  # noqa: E402
from db.users import User  # noqa: E402
from db.video import Video  # noqa: E402


async def count_rows() -> dict:
    async with async_session_maker() as session:
        counts = {}
        for label, model in (("users", User), ("spirits", Spirit), ("videos", Video)):
            counts[label] = await session.scalar(select(func.count()).select_from(model)) or 0
        return counts


async def main() -> int:
    print(f"Checking database: {engine.url.render_as_string(hide_password=True)}")
    try:
        counts = await safe_query(count_rows, engine=engine)
    except Exception as e:
        print(f"Database check failed: {e}")
        return 1
    finally:
        await engine.dispose()

    for label, count in counts.items():
        print(f"  {label}: {count}")
    print("Database OK")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
