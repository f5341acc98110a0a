import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, current_optional_user
from core.auth_provider import AuthProviderClient, AuthProviderError, get_auth_provider
from db.database import get_async_session
from db.spirit import Spirit
from db.users import User
from db.video import Video
from schemas.users import PopularUser, UserProfile, UserProfileUpdate
from services.metadata_sync import apply_profile_changes, push_profile_to_provider

logger = logging.getLogger(__name__)

# Custom user endpoints; the fastapi-users routers are mounted in main.py
router = APIRouter()

POPULAR_LIMIT = 12


@router.get("/user/profile", response_model=UserProfile)
async def get_profile(user: User = Depends(current_active_user)):
    return user


@router.patch("/user/profile")
async def update_profile(
    changes: UserProfileUpdate,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    provider: AuthProviderClient = Depends(get_auth_provider),
):
    """
    Update the profile in the database, then mirror it to the auth provider.

    The database write is what counts; a provider failure is logged and
    reported in the response so the client can retry /api/auth/sync-metadata.
    """
    data = changes.model_dump(exclude_unset=True)
    if data.get("username") and data["username"] != user.username:
        taken = await db.scalar(
            select(func.count()).select_from(User).where(
                func.lower(User.username) == data["username"].lower(),
                User.id != user.id,
            )
        )
        if taken:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Username is already taken"
            )

    if not apply_profile_changes(user, data):
        return {"user": UserProfile.model_validate(user), "metadata_synced": False}

    try:
        await db.commit()
        await db.refresh(user)
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error updating profile: {str(e)}"
        )

    synced = False
    if user.provider_user_id:
        try:
            outcome = await push_profile_to_provider(user, provider)
            synced = outcome["pushed"] or outcome["reason"] == "up_to_date"
        except AuthProviderError as e:
            logger.warning(f"Profile saved but provider sync failed: {e.message}", extra={"user_id": str(user.id)})

    return {"user": UserProfile.model_validate(user), "metadata_synced": synced}


@router.get("/users/popular")
async def popular_users(
    limit: int = Query(POPULAR_LIMIT, ge=1, le=50),
    user: Optional[User] = Depends(current_optional_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Collectors with the most bottles"""
    spirits_count = func.count(Spirit.id).label("spirits_count")
    query = (
        select(User, spirits_count)
        .join(Spirit, (Spirit.owner_id == User.id) & Spirit.deleted_at.is_(None))
        .where(User.is_active.is_(True))
        .group_by(User.id)
        .order_by(spirits_count.desc())
        .limit(limit)
    )
    if user is not None:
        query = query.where(User.id != user.id)

    result = await db.execute(query)
    users = [
        PopularUser(
            id=row.User.id,
            name=row.User.display_name,
            username=row.User.username,
            image=row.User.image,
            spirits_count=row.spirits_count,
        )
        for row in result.all()
    ]
    return {"users": users}


@router.get("/users/{user_id}")
async def public_profile(user_id: UUID, db: AsyncSession = Depends(get_async_session)):
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with id {user_id} not found"
        )

    spirits = await db.scalar(
        select(func.count()).select_from(Spirit).where(Spirit.owner_id == user.id, Spirit.deleted_at.is_(None))
    )
    videos = await db.scalar(
        select(func.count()).select_from(Video).where(Video.user_id == user.id, Video.publicly_listed.is_(True))
    )
    return {
        "id": user.id,
        "name": user.display_name,
        "username": user.username,
        "image": user.image,
        "cover_photo": user.cover_photo,
        "spirits_count": spirits or 0,
        "videos_count": videos or 0,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
