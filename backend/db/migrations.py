"""
Idempotent column patches for databases created by older releases.

create_all() only creates missing tables, so columns added since a table was
first created are patched in here. Postgres only; tests build a fresh schema.
"""
import logging
from typing import Dict, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

# column -> (type, default); a default of None leaves the column nullable
ColumnSpec = Dict[str, Tuple[str, Optional[str]]]

USER_COLUMNS: ColumnSpec = {
    "is_superuser": ("BOOLEAN", "FALSE"),
    "is_verified": ("BOOLEAN", "FALSE"),
    "is_active": ("BOOLEAN", "TRUE"),
    "name": ("VARCHAR", None),
    "username": ("VARCHAR", None),
    "image": ("VARCHAR", None),
    "cover_photo": ("VARCHAR", None),
    "provider_user_id": ("VARCHAR", None),
    "profile_version": ("INTEGER", "1"),
    "created_at": ("TIMESTAMP WITH TIME ZONE", "NOW()"),
    "updated_at": ("TIMESTAMP WITH TIME ZONE", "NOW()"),
}

VIDEO_COLUMNS: ColumnSpec = {
    "aspect_ratio": ("VARCHAR", None),
    "thumbnail_time": ("DOUBLE PRECISION", None),
    "publicly_listed": ("BOOLEAN", "TRUE"),
    "views": ("INTEGER", "0"),
}

SPIRIT_COLUMNS: ColumnSpec = {
    "web_image_url": ("VARCHAR", None),
    "bottle_level": ("DOUBLE PRECISION", None),
    "deleted_at": ("TIMESTAMP WITH TIME ZONE", None),
}

COMMENT_COLUMNS: ColumnSpec = {
    "review_id": ("VARCHAR", None),
}

STREAM_REPORT_COLUMNS: ColumnSpec = {
    "status": ("VARCHAR", "'pending'"),
}


async def add_missing_columns(engine: AsyncEngine, table: str, columns: ColumnSpec) -> list[str]:
    """Add any of ``columns`` that ``table`` lacks; returns the names added"""
    added = []
    async with engine.begin() as conn:
        result = await conn.execute(
            text("""
                SELECT column_name
                FROM information_schema.columns
                WHERE table_name = :table
            """),
            {"table": table},
        )
        existing_columns = {row[0] for row in result.fetchall()}
        if not existing_columns:
            # Table not created yet; create_all() covers it
            return added

        for column_name, (column_type, default_value) in columns.items():
            if column_name in existing_columns:
                continue
            logger.info(f"Adding {column_name} column to {table} table")
            if default_value is None:
                await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column_name} {column_type}"))
            else:
                # Backfill through the default, then tighten
                await conn.execute(
                    text(f"ALTER TABLE {table} ADD COLUMN {column_name} {column_type} DEFAULT {default_value}")
                )
                await conn.execute(
                    text(f"UPDATE {table} SET {column_name} = {default_value} WHERE {column_name} IS NULL")
                )
                await conn.execute(text(f"ALTER TABLE {table} ALTER COLUMN {column_name} SET NOT NULL"))
            added.append(column_name)
    return added


async def relax_comment_video_fk(engine: AsyncEngine) -> None:
    """Older schemas cascade comment deletes with their video; comments now outlive it"""
    async with engine.begin() as conn:
        result = await conn.execute(
            text("""
                SELECT tc.constraint_name, rc.delete_rule
                FROM information_schema.table_constraints tc
                JOIN information_schema.key_column_usage kcu
                  ON tc.constraint_name = kcu.constraint_name
                JOIN information_schema.referential_constraints rc
                  ON tc.constraint_name = rc.constraint_name
                WHERE tc.table_name = 'comments'
                  AND tc.constraint_type = 'FOREIGN KEY'
                  AND kcu.column_name = 'video_id'
            """)
        )
        row = result.fetchone()
        if not row or row[1] == "SET NULL":
            return
        constraint_name = row[0]
        logger.info(f"Switching {constraint_name} to ON DELETE SET NULL")
        await conn.execute(text("ALTER TABLE comments ALTER COLUMN video_id DROP NOT NULL"))
        await conn.execute(text(f'ALTER TABLE comments DROP CONSTRAINT "{constraint_name}"'))
        await conn.execute(
            text(f"""
                ALTER TABLE comments
                ADD CONSTRAINT "{constraint_name}"
                FOREIGN KEY (video_id) REFERENCES videos(id) ON DELETE SET NULL
            """)
        )


async def run_migrations(engine: AsyncEngine) -> None:
    if engine.dialect.name != "postgresql":
        return
    await add_missing_columns(engine, "users", USER_COLUMNS)
    await add_missing_columns(engine, "videos", VIDEO_COLUMNS)
    await add_missing_columns(engine, "spirits", SPIRIT_COLUMNS)
    await add_missing_columns(engine, "comments", COMMENT_COLUMNS)
    await add_missing_columns(engine, "stream_reports", STREAM_REPORT_COLUMNS)
    await relax_comment_video_fk(engine)
