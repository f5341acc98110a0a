import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception, stop_after_attempt

from core.config import settings
from core.retry import backoff

logger = logging.getLogger(__name__)

MUX_API_BASE_URL = "https://api.mux.com/video/v1"


class MuxError(Exception):
    """Mux API call failed"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class MuxNotFoundError(MuxError):
    pass


class MuxPlaybackId(BaseModel):
    id: str
    policy: str = "public"


class MuxAsset(BaseModel):
    id: str
    status: str
    playback_ids: List[MuxPlaybackId] = []
    duration: Optional[float] = None
    aspect_ratio: Optional[str] = None
    passthrough: Optional[str] = None


class MuxUpload(BaseModel):
    id: str
    url: Optional[str] = None
    status: Optional[str] = None
    asset_id: Optional[str] = None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return False


class MuxClient:
    """Thin async wrapper over the Mux Video REST API"""

    def __init__(self, token_id: str, token_secret: str, base_url: str = MUX_API_BASE_URL, transport=None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            auth=(token_id, token_secret),
            timeout=10.0,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=backoff(0.5, 5, 0.2),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    async def _send(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        response = await self.client.request(method, f"{self.base_url}/{path.lstrip('/')}", json=json)
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Mux HTTP {response.status_code} on {method} {path}: retrying")
        response.raise_for_status()
        return response

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._send(method, path, json)
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 404:
                raise MuxNotFoundError(f"Mux resource not found: {path}", status_code=404)
            raise MuxError(f"Mux API error {code} on {method} {path}", status_code=code)
        except httpx.RequestError as e:
            raise MuxError(f"Mux request failed: {e}")
        if response.status_code == 204 or not response.content:
            return {}
        return response.json().get("data") or {}

    async def create_upload(
        self,
        cors_origin: str = "*",
        passthrough: Optional[str] = None,
        playback_policy: str = "public",
    ) -> MuxUpload:
        new_asset_settings: Dict[str, Any] = {"playback_policy": [playback_policy]}
        if passthrough:
            new_asset_settings["passthrough"] = passthrough
        data = await self._request("POST", "uploads", {
            "cors_origin": cors_origin,
            "new_asset_settings": new_asset_settings,
        })
        return MuxUpload(**data)

    async def get_upload(self, upload_id: str) -> MuxUpload:
        return MuxUpload(**await self._request("GET", f"uploads/{upload_id}"))

    async def get_asset(self, asset_id: str) -> MuxAsset:
        return MuxAsset(**await self._request("GET", f"assets/{asset_id}"))

    async def create_playback_id(self, asset_id: str, policy: str = "public") -> MuxPlaybackId:
        data = await self._request("POST", f"assets/{asset_id}/playback-ids", {"policy": policy})
        return MuxPlaybackId(**data)

    async def delete_asset(self, asset_id: str) -> None:
        await self._request("DELETE", f"assets/{asset_id}")


_mux_client: Optional[MuxClient] = None


def get_mux_client() -> MuxClient:
    """Return the process-wide Mux client"""
    global _mux_client
    if _mux_client is None:
        _mux_client = MuxClient(settings.mux_token_id, settings.mux_token_secret)
    return _mux_client


async def close_mux_client() -> None:
    global _mux_client
    if _mux_client is not None:
        await _mux_client.aclose()
        _mux_client = None
