import hashlib
import hmac
import time
from typing import Optional

import jwt

STREAM_BASE_URL = "https://stream.mux.com"
WEBHOOK_TOLERANCE_SECONDS = 300


class SigningError(Exception):
    pass


class WebhookSignatureError(Exception):
    pass


def create_signed_playback_token(
    playback_id: str,
    signing_key_id: str,
    private_key: str,
    expiration_seconds: int = 3600,
    audience: str = "v",
    algorithm: str = "RS256",
    now: Optional[int] = None,
) -> str:
    """
    Create a signed JWT for a playback id with a "signed" policy.

    audience is "v" for video, "t" for thumbnails, "s" for storyboards.
    """
    if not playback_id or not signing_key_id or not private_key:
        raise SigningError("playback_id, signing_key_id and private_key are required")
    issued = int(now if now is not None else time.time())
    claims = {
        "sub": playback_id,
        "aud": audience,
        "exp": issued + expiration_seconds,
        "kid": signing_key_id,
    }
    try:
        return jwt.encode(claims, private_key, algorithm=algorithm, headers={"kid": signing_key_id})
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise SigningError(f"Failed to sign playback token: {e}")


def create_signed_playback_url(playback_id: str, token: str) -> str:
    return f"{STREAM_BASE_URL}/{playback_id}.m3u8?token={token}"


def create_signed_thumbnail_url(playback_id: str, token: str) -> str:
    return f"https://image.mux.com/{playback_id}/thumbnail.jpg?token={token}"


def parse_signature_header(header: str) -> tuple[str, str]:
    """Split "t=<timestamp>,v1=<signature>" into its parts"""
    parts = {}
    for item in (header or "").split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        parts[key.strip()] = value.strip()
    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature:
        raise WebhookSignatureError("Malformed webhook signature header")
    return timestamp, signature


def verify_webhook_signature(
    body: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> None:
    """Raise WebhookSignatureError unless the payload was signed with ``secret`` recently"""
    if not header:
        raise WebhookSignatureError("Missing webhook signature")
    timestamp, signature = parse_signature_header(header)
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Invalid webhook timestamp")

    current = int(now if now is not None else time.time())
    if abs(current - sent_at) > tolerance:
        raise WebhookSignatureError("Webhook timestamp out of range")

    signed_payload = timestamp.encode() + b"." + body
    expected = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise WebhookSignatureError("Invalid webhook signature")
