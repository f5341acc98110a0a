import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, get_jwt_strategy
from core.auth_provider import AuthProviderClient, AuthProviderError, get_auth_provider
from db.database import get_async_session
from db.users import User
from schemas.users import (
    MetadataSyncResponse,
    ProviderSessionRequest,
    ProviderSessionResponse,
    UserProfile,
)
from services.metadata_sync import (
    IdentityConflictError,
    bootstrap_user_from_provider,
    push_profile_to_provider,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def provider_http_error(e: AuthProviderError) -> HTTPException:
    if e.status_code == 401:
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    if e.status_code == 503:
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)


@router.post("/provider/session", response_model=ProviderSessionResponse)
async def exchange_provider_session(
    body: ProviderSessionRequest,
    db: AsyncSession = Depends(get_async_session),
    provider: AuthProviderClient = Depends(get_auth_provider),
):
    """Trade a hosted-provider access token for a local API token"""
    try:
        provider_user = await provider.get_user(body.access_token)
    except AuthProviderError as e:
        raise provider_http_error(e)

    try:
        user = await bootstrap_user_from_provider(db, provider_user)
    except IdentityConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")

    token = await get_jwt_strategy().write_token(user)
    return ProviderSessionResponse(access_token=token, user=UserProfile.model_validate(user))


@router.api_route("/sync-metadata", methods=["GET", "POST"], response_model=MetadataSyncResponse)
async def sync_metadata(
    user: User = Depends(current_active_user),
    provider: AuthProviderClient = Depends(get_auth_provider),
):
    """Push the stored profile to the provider if the provider holds an older version"""
    try:
        outcome = await push_profile_to_provider(user, provider)
    except AuthProviderError as e:
        logger.warning(f"Metadata sync failed: {e.message}", extra={"user_id": str(user.id)})
        raise provider_http_error(e)
    return MetadataSyncResponse(**outcome)
