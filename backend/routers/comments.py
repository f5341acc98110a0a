from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import current_active_user
from db.comment import Comment
from db.database import get_async_session
from db.users import User
from db.video import Video
from schemas.comments import CommentCreate

router = APIRouter()


async def ensure_video_exists(video_id: UUID, db: AsyncSession) -> None:
    if await db.get(Video, video_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")


@router.get("")
async def list_comments(
    video_id: UUID = Query(..., alias="videoId"),
    db: AsyncSession = Depends(get_async_session),
):
    """Comments on a video, newest first"""
    await ensure_video_exists(video_id, db)
    result = await db.execute(
        select(Comment)
        .options(selectinload(Comment.user))
        .where(Comment.video_id == video_id)
        .order_by(Comment.created_at.desc())
    )
    return [c.to_schema for c in result.scalars().all()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_comment(
    comment_in: CommentCreate,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    await ensure_video_exists(comment_in.video_id, db)
    try:
        comment = Comment(
            content=comment_in.content,
            video_id=comment_in.video_id,
            review_id=comment_in.review_id,
            user_id=user.id,
        )
        db.add(comment)
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error creating comment: {str(e)}"
        )

    result = await db.execute(
        select(Comment).options(selectinload(Comment.user)).where(Comment.id == comment.id)
    )
    return result.scalar_one().to_schema


@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Comment with id {comment_id} not found"
        )
    if comment.user_id != user.id and not user.is_superuser:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to delete this comment"
        )
    await db.delete(comment)
    await db.commit()
    return {"success": True}
