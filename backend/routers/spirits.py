from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import current_active_user, current_optional_user
from db.database import get_async_session
from db.spirit import Spirit
from db.users import User

router = APIRouter()

FEATURED_MAX = 50
SEARCH_MAX = 20

SUGGESTED_TYPES = (
    ("bourbon", "Bourbon"),
    ("rye", "Rye"),
    ("scotch", "Scotch"),
    ("irish", "Irish Whiskey"),
    ("japanese", "Japanese Whisky"),
    ("tequila", "Tequila"),
    ("mezcal", "Tequila"),
)


@router.get("/featured")
async def featured_spirits(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    limit: int = Query(24, ge=1),
    user: Optional[User] = Depends(current_optional_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Well rated or illustrated bottles from other collectors"""
    query = (
        select(Spirit)
        .options(selectinload(Spirit.owner))
        .where(
            Spirit.deleted_at.is_(None),
            or_(Spirit.rating >= 3, Spirit.image_url.is_not(None)),
        )
    )
    if user is not None:
        query = query.where(Spirit.owner_id != user.id)
    if category:
        query = query.where(Spirit.category == category)
    if subcategory:
        query = query.where(Spirit.type == subcategory)
    query = query.order_by(Spirit.rating.desc().nulls_last(), Spirit.created_at.desc()).limit(min(limit, FEATURED_MAX))

    result = await db.execute(query)
    spirits = []
    for spirit in result.scalars().all():
        spirits.append({
            "id": spirit.id,
            "name": spirit.name,
            "brand": spirit.brand,
            "type": spirit.type,
            "category": spirit.category,
            "image_url": spirit.image_url,
            "rating": spirit.rating,
            "owner_id": spirit.owner_id,
            "owner": {"name": spirit.owner.display_name, "image": spirit.owner.image} if spirit.owner else None,
            "created_at": spirit.created_at.isoformat() if spirit.created_at else None,
        })
    return {"spirits": spirits}


def rank(spirit: Spirit, needle: str) -> int:
    score = 0
    name = (spirit.name or "").lower()
    distillery = (spirit.distillery or spirit.brand or "").lower()
    if needle in name:
        score += 10
        if name.startswith(needle):
            score += 5
    if needle in distillery:
        score += 5
        if distillery.startswith(needle):
            score += 3
    if needle in (spirit.type or "").lower():
        score += 2
    return score


@router.get("/search")
async def search_spirits(
    query: str = Query(..., alias="query"),
    db: AsyncSession = Depends(get_async_session),
):
    """Search every collection for bottles matching a name, brand, distillery or type"""
    needle = query.strip().lower()
    if len(needle) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Search query must be at least 2 characters"
        )

    pattern = f"%{needle}%"
    result = await db.execute(
        select(Spirit)
        .where(
            Spirit.deleted_at.is_(None),
            or_(
                Spirit.name.ilike(pattern),
                Spirit.brand.ilike(pattern),
                Spirit.distillery.ilike(pattern),
                Spirit.type.ilike(pattern),
            ),
        )
        .limit(200)
    )

    # One entry per bottle, however many collections hold it
    seen = set()
    matches = []
    for spirit in sorted(result.scalars().all(), key=lambda s: rank(s, needle), reverse=True):
        key = (spirit.name.lower(), spirit.brand.lower())
        if key in seen:
            continue
        seen.add(key)
        matches.append({
            "name": spirit.name,
            "brand": spirit.brand,
            "distillery": spirit.distillery or spirit.brand,
            "type": spirit.type,
            "proof": spirit.proof,
            "price": spirit.price,
            "release_year": spirit.release_year,
            "description": spirit.description,
            "image_url": spirit.image_url or spirit.web_image_url,
        })
        if len(matches) >= SEARCH_MAX:
            break

    if matches:
        return {"results": matches}

    suggested = next((label for marker, label in SUGGESTED_TYPES if marker in needle), None)
    if suggested:
        return {
            "results": [],
            "suggestedType": suggested,
            "message": f'No exact matches found for "{query}". Try browsing {suggested} instead.',
        }
    return {
        "results": [],
        "message": f'No matches found for "{query}". Try searching for a specific brand name, distillery, or type.',
    }


@router.get("/{spirit_id}")
async def get_spirit(
    spirit_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """A single bottle with its owner, from any collection"""
    result = await db.execute(
        select(Spirit)
        .options(selectinload(Spirit.owner))
        .where(Spirit.id == spirit_id, Spirit.deleted_at.is_(None))
    )
    spirit = result.scalar_one_or_none()
    if not spirit:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Spirit not found")

    owner = spirit.owner
    return {
        "spirit": {
            **spirit.to_schema,
            "owner": {"id": owner.id, "name": owner.display_name, "image": owner.image} if owner else None,
        },
        "isOwner": spirit.owner_id == user.id,
    }
