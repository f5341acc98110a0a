from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, current_optional_user
from db.database import get_async_session
from db.stream import Stream, StreamLike, StreamReport
from db.users import User
from schemas.comments import StreamReportCreate

router = APIRouter()


async def get_stream_or_404(stream_id: UUID, db: AsyncSession) -> Stream:
    stream = await db.get(Stream, stream_id)
    if not stream:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stream not found")
    return stream


async def count_likes(stream_id: UUID, db: AsyncSession) -> int:
    return await db.scalar(
        select(func.count()).select_from(StreamLike).where(StreamLike.stream_id == stream_id)
    ) or 0


async def find_like(stream_id: UUID, user_id: UUID, db: AsyncSession) -> Optional[StreamLike]:
    result = await db.execute(
        select(StreamLike).where(StreamLike.stream_id == stream_id, StreamLike.user_id == user_id)
    )
    return result.scalar_one_or_none()


@router.get("/{stream_id}/interactions")
async def stream_interactions(
    stream_id: UUID,
    user: Optional[User] = Depends(current_optional_user),
    db: AsyncSession = Depends(get_async_session),
):
    await get_stream_or_404(stream_id, db)
    likes = await count_likes(stream_id, db)
    is_liked = False
    if user is not None:
        is_liked = await find_like(stream_id, user.id, db) is not None
    return {"likes": likes, "isLiked": is_liked}


@router.post("/{stream_id}/like")
async def toggle_like(
    stream_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Like the stream, or take the like back if it was already liked"""
    await get_stream_or_404(stream_id, db)
    like = await find_like(stream_id, user.id, db)
    if like:
        await db.delete(like)
        await db.commit()
        liked = False
    else:
        db.add(StreamLike(stream_id=stream_id, user_id=user.id))
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request liked it first
            await db.rollback()
        liked = True
    return {"liked": liked, "likes": await count_likes(stream_id, db)}


@router.post("/{stream_id}/report")
async def report_stream(
    stream_id: UUID,
    report: StreamReportCreate,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    stream = await get_stream_or_404(stream_id, db)
    if stream.host_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot report your own stream")

    existing = await db.scalar(
        select(func.count()).select_from(StreamReport).where(
            StreamReport.stream_id == stream_id,
            StreamReport.user_id == user.id,
            StreamReport.status == "pending",
        )
    )
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You have already reported this stream")

    db.add(StreamReport(stream_id=stream_id, user_id=user.id, reason=report.reason.strip()))
    await db.commit()
    return {"message": "Stream reported successfully"}
