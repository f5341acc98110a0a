import json
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from core.config import settings

logger = logging.getLogger(__name__)

TUNNEL_TIMEOUT_SECONDS = 10.0


class TunnelError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class SentryTarget:
    host: str
    project_id: str
    public_key: str

    @property
    def envelope_url(self) -> str:
        return f"https://{self.host}/api/{self.project_id}/envelope/"


def parse_dsn(dsn: str) -> Optional[SentryTarget]:
    """https://<key>@<host>/<project id> -> SentryTarget"""
    if not dsn:
        return None
    parsed = urlparse(dsn)
    project_id = parsed.path.strip("/").split("/")[-1]
    if not parsed.hostname or not parsed.username or not project_id:
        return None
    return SentryTarget(host=parsed.hostname, project_id=project_id, public_key=parsed.username)


def init_sentry() -> bool:
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.app_version,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )
    logger.info("Sentry initialised")
    return True


def envelope_target(envelope: bytes, expected: SentryTarget) -> SentryTarget:
    """
    Read the DSN from an envelope header and check it points at our project.

    The tunnel must not become an open relay to arbitrary Sentry projects.
    """
    header_line = envelope.split(b"\n", 1)[0]
    try:
        header = json.loads(header_line)
    except ValueError:
        raise TunnelError("Malformed envelope header")
    dsn = header.get("dsn") if isinstance(header, dict) else None
    if not dsn:
        # Envelopes without a DSN go to the configured project
        return expected
    target = parse_dsn(dsn)
    if target is None or target.host != expected.host or target.project_id != expected.project_id:
        raise TunnelError("Envelope DSN does not match this project", status_code=403)
    return target


async def forward_envelope(envelope: bytes, transport=None) -> httpx.Response:
    expected = parse_dsn(settings.sentry_dsn)
    if expected is None:
        raise TunnelError("Sentry is not configured", status_code=503)
    if not envelope:
        raise TunnelError("Empty request body")

    target = envelope_target(envelope, expected)
    async with httpx.AsyncClient(timeout=TUNNEL_TIMEOUT_SECONDS, transport=transport) as client:
        try:
            return await client.post(
                target.envelope_url,
                content=envelope,
                headers={
                    "Content-Type": "application/x-sentry-envelope",
                    "X-Sentry-Auth": f"Sentry sentry_version=7, sentry_key={target.public_key}, sentry_client=bourbonbuddy-tunnel/1.0",
                },
            )
        except httpx.RequestError as e:
            raise TunnelError(f"Failed to forward to Sentry: {e}", status_code=502)
