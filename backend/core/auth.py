import logging
import uuid
from typing import Optional

from fastapi import Depends, Request
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin
from fastapi_users.authentication import (
    AuthenticationBackend,
    BearerTransport,
    CookieTransport,
    JWTStrategy,
)

from core.auth_provider import AuthProviderClient, AuthProviderError, get_auth_provider
from core.config import settings
from db.users import User, get_user_db

logger = logging.getLogger(__name__)


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = settings.auth_secret
    verification_token_secret = settings.auth_secret

    def __init__(self, user_db, auth_provider: Optional[AuthProviderClient] = None):
        super().__init__(user_db)
        self.auth_provider = auth_provider

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("User registered", extra={"user_id": str(user.id)})

    async def on_after_forgot_password(self, user: User, token: str, request: Optional[Request] = None):
        # The mailed link comes from the provider's recovery flow, not this token
        logger.info("Password reset requested", extra={"user_id": str(user.id)})
        if self.auth_provider is None:
            logger.warning("No auth provider configured; reset mail not sent", extra={"user_id": str(user.id)})
            return
        try:
            await self.auth_provider.send_password_recovery(user.email)
        except AuthProviderError as e:
            logger.error(f"Reset mail delivery failed: {e.message}", extra={"user_id": str(user.id)})

    async def on_after_request_verify(self, user: User, token: str, request: Optional[Request] = None):
        logger.info("Verification requested", extra={"user_id": str(user.id)})


async def get_user_manager(user_db=Depends(get_user_db), auth_provider=Depends(get_auth_provider)):
    yield UserManager(user_db, auth_provider)


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=settings.auth_secret, lifetime_seconds=settings.auth_token_lifetime_seconds)


bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")
cookie_transport = CookieTransport(
    cookie_name="bb_session",
    cookie_max_age=settings.auth_token_lifetime_seconds,
    cookie_secure=settings.auth_cookie_secure,
)

auth_backend = AuthenticationBackend(name="jwt", transport=bearer_transport, get_strategy=get_jwt_strategy)
cookie_auth_backend = AuthenticationBackend(name="cookie", transport=cookie_transport, get_strategy=get_jwt_strategy)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend, cookie_auth_backend])

current_active_user = fastapi_users.current_user(active=True)
current_optional_user = fastapi_users.current_user(active=True, optional=True)
current_active_superuser = fastapi_users.current_user(active=True, superuser=True)
