"""
Client for the hosted auth provider (Supabase GoTrue).

Only the calls the identity glue needs: resolve an access token to a user,
read a user as admin, replace a user's metadata blob and send the
password recovery mail.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from core.config import settings

logger = logging.getLogger(__name__)


class AuthProviderError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ProviderUser(BaseModel):
    id: str
    email: Optional[str] = None
    email_confirmed_at: Optional[str] = None
    user_metadata: Dict[str, Any] = {}


class AuthProviderClient:
    def __init__(self, base_url: str, anon_key: str, service_role_key: str, transport=None):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.service_role_key = service_role_key
        self.client = httpx.AsyncClient(timeout=10.0, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _admin_headers(self) -> Dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
        }

    async def _call(self, method: str, path: str, headers: Dict[str, str], json: Any = None) -> Dict[str, Any]:
        if not self.base_url:
            raise AuthProviderError("Auth provider is not configured", status_code=503)
        try:
            response = await self.client.request(method, f"{self.base_url}{path}", headers=headers, json=json)
        except httpx.RequestError as e:
            raise AuthProviderError(f"Auth provider unreachable: {e}")
        if response.status_code in (401, 403):
            raise AuthProviderError("Invalid or expired provider session", status_code=401)
        if response.status_code == 404:
            raise AuthProviderError("Provider user not found", status_code=404)
        if response.status_code >= 400:
            raise AuthProviderError(
                f"Auth provider error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_user(self, access_token: str) -> ProviderUser:
        """Resolve a provider access token to the user it belongs to"""
        data = await self._call("GET", "/auth/v1/user", {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token}",
        })
        return ProviderUser(**data)

    async def get_user_by_id(self, provider_user_id: str) -> ProviderUser:
        data = await self._call("GET", f"/auth/v1/admin/users/{provider_user_id}", self._admin_headers())
        return ProviderUser(**data)

    async def update_user_metadata(self, provider_user_id: str, metadata: Dict[str, Any]) -> ProviderUser:
        data = await self._call(
            "PUT",
            f"/auth/v1/admin/users/{provider_user_id}",
            self._admin_headers(),
            json={"user_metadata": metadata},
        )
        return ProviderUser(**data)

    async def send_password_recovery(self, email: str) -> None:
        """Ask the provider to mail its password recovery link"""
        await self._call("POST", "/auth/v1/recover", {"apikey": self.anon_key}, json={"email": email})


_auth_provider: Optional[AuthProviderClient] = None


def get_auth_provider() -> AuthProviderClient:
    global _auth_provider
    if _auth_provider is None:
        _auth_provider = AuthProviderClient(
            settings.supabase_url,
            settings.supabase_anon_key,
            settings.supabase_service_role_key,
        )
    return _auth_provider


async def close_auth_provider() -> None:
    global _auth_provider
    if _auth_provider is not None:
        await _auth_provider.aclose()
        _auth_provider = None
