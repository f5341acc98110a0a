import os

# Settings are read at import time; point them at test values first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["AUTH_COOKIE_SECURE"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["MUX_WEBHOOK_SIGNING_SECRET"] = "whsec_test"
os.environ["SENTRY_DSN"] = ""
os.environ["SERPAPI_KEY"] = ""
os.environ["CRON_SECRET"] = ""

from typing import Any, Dict  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.auth_provider import AuthProviderError, ProviderUser, get_auth_provider  # noqa: E402
from core.mux_client import MuxAsset, MuxNotFoundError, MuxPlaybackId, MuxUpload, get_mux_client  # noqa: E402
from db.database import Base, get_async_session  # noqa: E402
from main import app  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeMux:
    """In-memory stand-in for MuxClient"""

    def __init__(self):
        self.assets: Dict[str, MuxAsset] = {}
        self.errors: Dict[str, Exception] = {}
        self.uploads = []
        self.created_playback_ids = []
        self.deleted_assets = []

    def add_asset(self, asset_id, status="ready", playback_ids=None, **fields):
        asset = MuxAsset(
            id=asset_id,
            status=status,
            playback_ids=[MuxPlaybackId(id=p) for p in (playback_ids or [])],
            **fields,
        )
        self.assets[asset_id] = asset
        return asset

    async def get_asset(self, asset_id):
        if asset_id in self.errors:
            raise self.errors[asset_id]
        if asset_id not in self.assets:
            raise MuxNotFoundError(f"Mux resource not found: assets/{asset_id}", status_code=404)
        return self.assets[asset_id]

    async def create_playback_id(self, asset_id, policy="public"):
        playback_id = MuxPlaybackId(id=f"created-{asset_id}", policy=policy)
        self.created_playback_ids.append(playback_id.id)
        return playback_id

    async def create_upload(self, cors_origin="*", passthrough=None, playback_policy="public"):
        upload = MuxUpload(
            id=f"upload-{len(self.uploads) + 1}",
            url="https://storage.mux.example/upload",
            status="waiting",
        )
        self.uploads.append({"id": upload.id, "passthrough": passthrough, "playback_policy": playback_policy})
        return upload

    async def delete_asset(self, asset_id):
        self.deleted_assets.append(asset_id)


class FakeAuthProvider:
    """In-memory stand-in for AuthProviderClient"""

    def __init__(self):
        self.sessions: Dict[str, str] = {}
        self.users: Dict[str, ProviderUser] = {}
        self.updates = []
        self.recoveries = []
        self.fail_with: AuthProviderError | None = None

    def add_user(self, user_id, email, token=None, confirmed=True, **metadata) -> ProviderUser:
        user = ProviderUser(
            id=user_id,
            email=email,
            email_confirmed_at="2024-01-01T00:00:00Z" if confirmed else None,
            user_metadata=metadata,
        )
        self.users[user_id] = user
        if token:
            self.sessions[token] = user_id
        return user

    async def get_user(self, access_token):
        if access_token not in self.sessions:
            raise AuthProviderError("Invalid or expired provider session", status_code=401)
        return self.users[self.sessions[access_token]]

    async def get_user_by_id(self, provider_user_id):
        if self.fail_with:
            raise self.fail_with
        if provider_user_id not in self.users:
            raise AuthProviderError("Provider user not found", status_code=404)
        return self.users[provider_user_id]

    async def update_user_metadata(self, provider_user_id, metadata: Dict[str, Any]):
        if self.fail_with:
            raise self.fail_with
        self.updates.append((provider_user_id, metadata))
        user = self.users[provider_user_id]
        self.users[provider_user_id] = user.model_copy(update={"user_metadata": metadata})
        return self.users[provider_user_id]

    async def send_password_recovery(self, email):
        if self.fail_with:
            raise self.fail_with
        self.recoveries.append(email)


@pytest.fixture()
async def engine():
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture()
def fake_mux():
    return FakeMux()


@pytest.fixture()
def fake_provider():
    return FakeAuthProvider()


@pytest.fixture()
async def client(session_maker, fake_mux, fake_provider):
    async def override_get_async_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_mux_client] = lambda: fake_mux
    app.dependency_overrides[get_auth_provider] = lambda: fake_provider
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def register_user(client: AsyncClient, email: str, password: str = "correct-horse-battery", **fields) -> Dict[str, Any]:
    """Register through fastapi-users and return {"id", "headers"} for the new account"""
    response = await client.post("/auth/register", json={"email": email, "password": password, **fields})
    assert response.status_code == 201, response.text
    login = await client.post("/auth/jwt/login", data={"username": email, "password": password})
    assert login.status_code == 200, login.text
    token = login.json()["access_token"]
    return {"id": response.json()["id"], "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture()
async def alice(client):
    return await register_user(client, "alice@example.com", name="Alice", username="alice")


@pytest.fixture()
async def bob(client):
    return await register_user(client, "bob@example.com", name="Bob", username="bob")
