import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, current_optional_user
from db.database import get_async_session
from db.spirit import Spirit
from db.users import User, utcnow
from db.video import Video
from schemas.spirits import CollectionStats, SpiritCreate, SpiritUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

NOTE_FIELDS = ("nose", "palate", "finish")


def validation_error(e: ValidationError) -> HTTPException:
    details = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "Validation error", "details": details},
    )


def to_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    """Tasting notes arrive as lists and are stored comma-joined"""
    values = dict(data)
    for field in NOTE_FIELDS:
        if field in values and values[field] is not None:
            values[field] = ",".join(values[field])
    return values


async def get_owned_spirit(spirit_id: UUID, user: User, db: AsyncSession) -> Spirit:
    result = await db.execute(
        select(Spirit).where(Spirit.id == spirit_id, Spirit.deleted_at.is_(None))
    )
    spirit = result.scalar_one_or_none()
    if not spirit:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Spirit with id {spirit_id} not found"
        )
    if spirit.owner_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to modify this spirit"
        )
    return spirit


@router.get("")
async def list_collection(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Every live spirit the current user owns, most recently touched first"""
    result = await db.execute(
        select(Spirit)
        .where(Spirit.owner_id == user.id, Spirit.deleted_at.is_(None))
        .order_by(Spirit.updated_at.desc())
    )
    return {"spirits": [s.to_schema for s in result.scalars().all()]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_spirit(
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    try:
        spirit_in = SpiritCreate.model_validate(payload)
    except ValidationError as e:
        raise validation_error(e)

    try:
        values = to_columns(spirit_in.model_dump())
        if values.get("bottle_level") is None:
            values["bottle_level"] = 100
        spirit = Spirit(owner_id=user.id, **values)
        db.add(spirit)
        await db.commit()
        await db.refresh(spirit)
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to add spirit")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error adding spirit: {str(e)}"
        )
    logger.info("Spirit added", extra={"user_id": str(user.id)})
    return spirit.to_schema


@router.get("/stats", response_model=CollectionStats)
async def collection_stats(
    user: Optional[User] = Depends(current_optional_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Counts for the dashboard; anonymous callers get zeros"""
    if user is None:
        return CollectionStats()

    live = (Spirit.owner_id == user.id) & Spirit.deleted_at.is_(None)
    total = await db.scalar(select(func.count()).select_from(Spirit).where(live))
    favorites = await db.scalar(
        select(func.count()).select_from(Spirit).where(live, Spirit.is_favorite.is_(True))
    )
    tastings = await db.scalar(select(func.count()).select_from(Video).where(Video.user_id == user.id))
    return CollectionStats(totalSpirits=total or 0, favorites=favorites or 0, tastings=tastings or 0)


@router.get("/{spirit_id}")
async def get_spirit(
    spirit_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    result = await db.execute(
        select(Spirit).where(
            Spirit.id == spirit_id,
            Spirit.owner_id == user.id,
            Spirit.deleted_at.is_(None),
        )
    )
    spirit = result.scalar_one_or_none()
    if not spirit:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Spirit with id {spirit_id} not found"
        )
    return spirit.to_schema


@router.patch("/{spirit_id}")
async def update_spirit(
    spirit_id: UUID,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    try:
        changes = SpiritUpdate.model_validate(payload)
    except ValidationError as e:
        raise validation_error(e)

    spirit = await get_owned_spirit(spirit_id, user, db)
    values = to_columns(changes.model_dump(exclude_unset=True))
    try:
        for field, value in values.items():
            if field in ("name", "brand", "is_favorite") and value is None:
                continue
            setattr(spirit, field, value)
        await db.commit()
        await db.refresh(spirit)
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error updating spirit: {str(e)}"
        )
    return spirit.to_schema


@router.delete("/{spirit_id}")
async def delete_spirit(
    spirit_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Soft delete: the row stays with deleted_at set"""
    spirit = await get_owned_spirit(spirit_id, user, db)
    spirit.deleted_at = utcnow()
    await db.commit()
    return {"success": True, "message": "Spirit deleted"}
