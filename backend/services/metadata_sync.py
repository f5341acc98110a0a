"""
Keep the hosted auth provider's user metadata in step with the users table.

The users table is authoritative. Provider metadata only seeds a row the
first time a provider user signs in; after that profile fields flow one way,
from the database to the provider, tagged with ``profile_version`` so an
older profile never overwrites a newer one.
"""
import logging
import secrets
from typing import Any, Dict, Optional

from fastapi_users.password import PasswordHelper
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth_provider import AuthProviderClient, ProviderUser
from db.users import User

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "username", "image", "cover_photo")

password_helper = PasswordHelper()


class IdentityConflictError(ValueError):
    """A provider identity claims an email already owned by an unlinked local account"""


def profile_metadata(user: User) -> Dict[str, Any]:
    """The slice of a user row mirrored into provider metadata"""
    return {
        "name": user.name,
        "username": user.username,
        "avatar_url": user.image,
        "cover_photo": user.cover_photo,
        "profile_version": user.profile_version or 1,
    }


def apply_profile_changes(user: User, changes: Dict[str, Any]) -> bool:
    """Set changed profile fields and bump the version; returns whether anything changed"""
    changed = False
    for field in PROFILE_FIELDS:
        if field in changes and getattr(user, field) != changes[field]:
            setattr(user, field, changes[field])
            changed = True
    if changed:
        user.profile_version = (user.profile_version or 1) + 1
    return changed


async def _username_available(db: AsyncSession, username: str) -> bool:
    result = await db.execute(
        select(func.count()).select_from(User).where(func.lower(User.username) == username.lower())
    )
    return result.scalar_one() == 0


async def bootstrap_user_from_provider(db: AsyncSession, provider_user: ProviderUser) -> User:
    """
    Find or create the local user for a provider identity.

    Lookup order is provider id, then email. A new row is seeded from the
    provider's metadata; an existing row keeps its own profile and is only
    linked, and only when the provider has confirmed the address.
    """
    result = await db.execute(select(User).where(User.provider_user_id == provider_user.id))
    user = result.scalar_one_or_none()
    if user:
        return user

    if provider_user.email:
        result = await db.execute(
            select(User).where(func.lower(User.email) == provider_user.email.lower())
        )
        user = result.scalar_one_or_none()
        if user:
            if not provider_user.email_confirmed_at:
                logger.warning(
                    "Refused to link provider identity with unconfirmed email",
                    extra={"user_id": str(user.id)},
                )
                raise IdentityConflictError("Email is already registered; confirm it with the provider to link accounts")
            user.provider_user_id = provider_user.id
            await db.commit()
            logger.info("Linked existing user to provider identity", extra={"user_id": str(user.id)})
            return user

    if not provider_user.email:
        raise ValueError("Provider user has no email address")

    metadata = provider_user.user_metadata or {}
    username = metadata.get("username") or metadata.get("user_name")
    if username and not await _username_available(db, username):
        username = None

    user = User(
        email=provider_user.email,
        # Password sign-in stays disabled until the user sets one through reset-password
        hashed_password=password_helper.hash(secrets.token_urlsafe(32)),
        is_active=True,
        is_verified=bool(
            provider_user.email_confirmed_at or provider_user.user_metadata.get("email_verified", False)
        ),
        name=metadata.get("name") or metadata.get("full_name"),
        username=username,
        image=metadata.get("avatar_url") or metadata.get("picture"),
        cover_photo=metadata.get("cover_photo"),
        provider_user_id=provider_user.id,
        profile_version=1,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("Created user from provider identity", extra={"user_id": str(user.id)})
    return user


async def push_profile_to_provider(
    user: User,
    provider: AuthProviderClient,
    current: Optional[ProviderUser] = None,
) -> Dict[str, Any]:
    """
    Write the user's profile into provider metadata unless the provider
    already holds this version or a newer one.
    """
    version = user.profile_version or 1
    if not user.provider_user_id:
        return {"user_id": user.id, "pushed": False, "profile_version": version, "reason": "not_linked"}

    if current is None:
        current = await provider.get_user_by_id(user.provider_user_id)

    remote_version = current.user_metadata.get("profile_version")
    try:
        remote_version = int(remote_version) if remote_version is not None else 0
    except (TypeError, ValueError):
        remote_version = 0

    if remote_version >= version:
        return {"user_id": user.id, "pushed": False, "profile_version": version, "reason": "up_to_date"}

    metadata = {**current.user_metadata, **profile_metadata(user)}
    await provider.update_user_metadata(user.provider_user_id, metadata)
    logger.info(
        f"Pushed profile version {version} to auth provider",
        extra={"user_id": str(user.id)},
    )
    return {"user_id": user.id, "pushed": True, "profile_version": version, "reason": None}
