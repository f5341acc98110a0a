import hashlib
import hmac
import json
import time

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy import select

from core.config import settings
from core.mux_client import MuxClient, MuxError, MuxNotFoundError
from core.mux_signing import (
    SigningError,
    WebhookSignatureError,
    create_signed_playback_token,
    create_signed_playback_url,
    parse_signature_header,
    verify_webhook_signature,
)
from db.video import Video


@pytest.fixture(scope="module")
def rsa_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


def sign(body: bytes, secret: str = "whsec_test", timestamp: int | None = None) -> str:
    timestamp = timestamp if timestamp is not None else int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_playback_token_claims(rsa_keys):
    private_pem, public_pem = rsa_keys
    token = create_signed_playback_token("pb-1", "key-1", private_pem, expiration_seconds=600, now=1_700_000_000)

    assert jwt.get_unverified_header(token)["kid"] == "key-1"
    claims = jwt.decode(token, public_pem, algorithms=["RS256"], audience="v", options={"verify_exp": False})
    assert claims["sub"] == "pb-1"
    assert claims["exp"] == 1_700_000_600
    assert create_signed_playback_url("pb-1", token) == f"https://stream.mux.com/pb-1.m3u8?token={token}"


def test_playback_token_needs_key():
    with pytest.raises(SigningError):
        create_signed_playback_token("pb-1", "key-1", "")
    with pytest.raises(SigningError):
        create_signed_playback_token("pb-1", "key-1", "not a pem")


def test_webhook_signature_accepts_fresh_payload():
    body = b'{"type": "video.asset.ready"}'
    verify_webhook_signature(body, sign(body, timestamp=1000), "whsec_test", now=1100)


@pytest.mark.parametrize(
    "header, now",
    [
        (None, 1000),
        ("garbage", 1000),
        ("t=abc,v1=deadbeef", 1000),
        (sign(b"{}", timestamp=1000), 1000 + 301),
        (sign(b"{}", secret="other", timestamp=1000), 1000),
        (sign(b'{"tampered": true}', timestamp=1000), 1000),
    ],
)
def test_webhook_signature_rejects_stale_or_forged(header, now):
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(b"{}", header, "whsec_test", now=now)


def test_parse_signature_header_tolerates_spaces():
    assert parse_signature_header("t=1, v1=abc") == ("1", "abc")


async def test_mux_client_maps_errors_and_unwraps_data():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/assets/missing"):
            return httpx.Response(404, json={"error": {"messages": ["not found"]}})
        if request.url.path.endswith("/assets/bad"):
            return httpx.Response(400, json={"error": {"messages": ["bad"]}})
        return httpx.Response(200, json={
            "data": {"id": "a1", "status": "ready", "playback_ids": [{"id": "pb-1", "policy": "public"}]}
        })

    client = MuxClient("id", "secret", transport=httpx.MockTransport(handler))
    try:
        asset = await client.get_asset("a1")
        assert asset.playback_ids[0].id == "pb-1"
        with pytest.raises(MuxNotFoundError):
            await client.get_asset("missing")
        with pytest.raises(MuxError) as exc:
            await client.get_asset("bad")
        assert exc.value.status_code == 400
    finally:
        await client.aclose()


async def test_mux_client_retries_server_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"data": {"id": "a1", "status": "preparing"}})

    client = MuxClient("id", "secret", transport=httpx.MockTransport(handler))
    try:
        asset = await client.get_asset("a1")
    finally:
        await client.aclose()
    assert asset.status == "preparing"
    assert len(calls) == 2


async def test_upload_creates_tracking_row(client, alice, db_session, fake_mux):
    response = await client.post(
        "/api/mux/upload",
        json={"title": "Friday pour", "playback_policy": "signed"},
        headers=alice["headers"],
    )
    assert response.status_code == 200
    body = response.json()
    assert body["url"] == "https://storage.mux.example/upload"

    video = (await db_session.execute(select(Video))).scalar_one()
    assert str(video.id) == body["video_id"]
    assert video.status == "uploading"
    assert video.mux_upload_id == body["id"]
    assert fake_mux.uploads[0]["passthrough"] == body["video_id"]
    assert fake_mux.uploads[0]["playback_policy"] == "signed"


async def test_upload_requires_auth(client):
    assert (await client.post("/api/mux/upload", json={"title": "x"})).status_code == 401


async def test_signed_url_endpoint(client, alice, rsa_keys, monkeypatch):
    response = await client.post("/api/mux/signed-url", json={"playback_id": "pb-1"}, headers=alice["headers"])
    assert response.status_code == 503

    monkeypatch.setattr(settings, "mux_signing_key_id", "key-1")
    monkeypatch.setattr(settings, "mux_signing_private_key", rsa_keys[0])
    response = await client.post(
        "/api/mux/signed-url",
        json={"playback_id": "pb-1", "expiration_seconds": 120},
        headers=alice["headers"],
    )
    assert response.status_code == 200
    body = response.json()
    assert body["expires_in"] == 120
    assert body["url"].startswith("https://stream.mux.com/pb-1.m3u8?token=")
    claims = jwt.decode(body["token"], rsa_keys[1], algorithms=["RS256"], audience="v")
    assert claims["sub"] == "pb-1"


async def test_asset_lookup_endpoint(client, alice, fake_mux):
    fake_mux.add_asset("a1", "ready", ["pb-1"])
    response = await client.get("/api/mux/asset/a1", headers=alice["headers"])
    assert response.status_code == 200
    assert response.json()["playback_ids"][0]["id"] == "pb-1"
    assert (await client.get("/api/mux/asset/nope", headers=alice["headers"])).status_code == 404


async def post_event(client, event, header=None):
    body = json.dumps(event).encode()
    headers = {"content-type": "application/json", "mux-signature": header or sign(body)}
    return await client.post("/api/webhooks/mux", content=body, headers=headers)


async def test_webhook_rejects_bad_signature(client):
    body = json.dumps({"type": "video.asset.ready", "data": {}}).encode()
    response = await client.post(
        "/api/webhooks/mux",
        content=body,
        headers={"mux-signature": sign(body, secret="forged")},
    )
    assert response.status_code == 401


async def test_webhook_requires_secret_outside_development(client, monkeypatch):
    monkeypatch.setattr(settings, "mux_webhook_signing_secret", "")
    response = await client.post("/api/webhooks/mux", json={"type": "video.asset.ready", "data": {}})
    assert response.status_code == 503


async def test_webhook_lifecycle(client, db_session, session_maker):
    video = Video(title="Tasting", status="uploading", mux_upload_id="up-1")
    db_session.add(video)
    await db_session.commit()

    response = await post_event(client, {
        "type": "video.upload.asset_created",
        "data": {"id": "up-1", "asset_id": "asset-1", "new_asset_settings": {"passthrough": str(video.id)}},
    })
    assert response.json() == {
        "received": True, "type": "video.upload.asset_created", "handled": True, "video_id": str(video.id)
    }

    response = await post_event(client, {
        "type": "video.asset.ready",
        "data": {"id": "asset-1", "playback_ids": [{"id": "pb-1"}], "duration": 42.0, "aspect_ratio": "16:9"},
    })
    assert response.json()["handled"] is True

    async with session_maker() as session:
        row = await session.get(Video, video.id)
    assert (row.status, row.mux_asset_id, row.mux_playback_id, row.duration) == ("ready", "asset-1", "pb-1", 42.0)


async def test_webhook_matches_by_passthrough_and_marks_errors(client, db_session, session_maker):
    video = Video(title="Tasting", status="processing")
    db_session.add(video)
    await db_session.commit()

    response = await post_event(client, {
        "type": "video.asset.errored",
        "data": {"id": "asset-9", "passthrough": str(video.id), "errors": {"messages": ["bad input"]}},
    })
    assert response.json()["handled"] is True

    async with session_maker() as session:
        row = await session.get(Video, video.id)
    assert (row.status, row.mux_asset_id) == ("error", "asset-9")


async def test_webhook_acknowledges_unmatched_and_unknown_events(client):
    response = await post_event(client, {"type": "video.asset.ready", "data": {"id": "who-knows"}})
    assert response.status_code == 200
    assert response.json()["handled"] is False

    response = await post_event(client, {"type": "video.asset.track.ready", "data": {}})
    assert response.status_code == 200
    assert response.json()["handled"] is False


async def test_webhook_acknowledges_asset_already_linked_elsewhere(client, db_session, session_maker):
    owner = Video(title="First", status="ready", mux_asset_id="asset-7")
    late = Video(title="Second", status="uploading", mux_upload_id="up-7")
    db_session.add_all([owner, late])
    await db_session.commit()

    response = await post_event(client, {
        "type": "video.upload.asset_created",
        "data": {"id": "up-7", "asset_id": "asset-7"},
    })
    assert response.status_code == 200
    body = response.json()
    assert (body["handled"], body["conflict"], body["video_id"]) == (False, True, str(late.id))

    async with session_maker() as session:
        row = await session.get(Video, late.id)
    assert (row.status, row.mux_asset_id) == ("uploading", None)


async def test_webhook_rejects_invalid_json(client):
    body = b"not json"
    response = await client.post("/api/webhooks/mux", content=body, headers={"mux-signature": sign(body)})
    assert response.status_code == 400
