from datetime import datetime, timedelta, timezone

from core.config import settings
from core.mux_client import MuxError
from db.video import Video
from services.video_sync import (
    ERROR,
    NO_ASSET_ID,
    PLAYBACK_ID_UPDATED,
    SKIPPED,
    STATUS_UPDATED,
    select_videos_to_sync,
    sync_video_statuses,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
STALE = NOW - timedelta(minutes=10)
FRESH = NOW - timedelta(minutes=1)


async def add_video(db, title, status="processing", updated_at=STALE, **fields):
    video = Video(title=title, status=status, created_at=updated_at, updated_at=updated_at, **fields)
    db.add(video)
    await db.commit()
    return video


async def load(session_maker, video_id):
    async with session_maker() as session:
        return await session.get(Video, video_id)


async def test_selection_picks_stale_and_placeholder_rows(db_session):
    stale = await add_video(db_session, "stale", mux_asset_id="a-stale")
    await add_video(db_session, "fresh", updated_at=FRESH, mux_asset_id="a-fresh")
    placeholder = await add_video(
        db_session, "placeholder", status="ready", updated_at=FRESH, mux_playback_id="placeholder-123"
    )
    sample = await add_video(
        db_session, "sample", status="ready", updated_at=FRESH, mux_playback_id="x-sample-playback-id"
    )
    await add_video(db_session, "ready", status="ready", mux_asset_id="a-ready", mux_playback_id="pb-real")

    selected = await select_videos_to_sync(db_session, now=NOW)
    assert {v.id for v in selected} == {stale.id, placeholder.id, sample.id}


async def test_selection_is_bounded(db_session):
    for i in range(25):
        await add_video(db_session, f"stale {i}", mux_asset_id=f"a-{i}")
    assert len(await select_videos_to_sync(db_session, now=NOW)) == 20


async def test_sync_applies_each_outcome(db_session, session_maker, fake_mux):
    ready = await add_video(db_session, "ready now", mux_asset_id="a1")
    fake_mux.add_asset("a1", "ready", ["pb-1"], duration=61.5, aspect_ratio="9:16")

    preparing = await add_video(db_session, "still preparing", mux_asset_id="a2")
    fake_mux.add_asset("a2", "preparing")

    needs_id = await add_video(
        db_session, "needs playback id", status="ready", mux_asset_id="a3", mux_playback_id="placeholder-a3"
    )
    fake_mux.add_asset("a3", "ready")

    no_asset = await add_video(db_session, "never uploaded", status="ready", mux_playback_id="placeholder-x")

    errored = await add_video(db_session, "broken", mux_asset_id="a5")
    fake_mux.add_asset("a5", "errored")

    unreachable = await add_video(db_session, "unreachable", mux_asset_id="a6")
    fake_mux.errors["a6"] = MuxError("Mux API error 500 on GET assets/a6", status_code=500)

    untouched = await add_video(db_session, "fresh", updated_at=FRESH, mux_asset_id="a7")
    fake_mux.add_asset("a7", "ready", ["pb-7"])

    summary = await sync_video_statuses(db_session, fake_mux, now=NOW)

    assert summary["checked"] == 6
    assert summary["updated"] == 3
    by_id = {entry["id"]: entry for entry in summary["results"]}
    assert by_id[str(ready.id)]["status"] == PLAYBACK_ID_UPDATED
    assert by_id[str(ready.id)]["playback_id"] == "pb-1"
    assert by_id[str(preparing.id)]["status"] == SKIPPED
    assert by_id[str(needs_id.id)]["status"] == PLAYBACK_ID_UPDATED
    assert by_id[str(no_asset.id)]["status"] == NO_ASSET_ID
    assert by_id[str(errored.id)]["status"] == STATUS_UPDATED
    assert by_id[str(unreachable.id)]["status"] == ERROR
    assert "500" in by_id[str(unreachable.id)]["message"]
    assert str(untouched.id) not in by_id

    row = await load(session_maker, ready.id)
    assert (row.status, row.mux_playback_id, row.duration, row.aspect_ratio) == ("ready", "pb-1", 61.5, "9:16")

    row = await load(session_maker, needs_id.id)
    assert row.mux_playback_id == "created-a3"
    assert fake_mux.created_playback_ids == ["created-a3"]

    assert (await load(session_maker, preparing.id)).status == "processing"
    assert (await load(session_maker, errored.id)).status == "error"
    assert (await load(session_maker, unreachable.id)).status == "processing"
    assert (await load(session_maker, no_asset.id)).mux_playback_id == "placeholder-x"

    row = await load(session_maker, untouched.id)
    assert (row.status, row.mux_playback_id) == ("processing", None)


async def test_sync_single_video_ignores_staleness(db_session, session_maker, fake_mux):
    target = await add_video(db_session, "target", updated_at=FRESH, mux_asset_id="a1")
    other = await add_video(db_session, "other", mux_asset_id="a2")
    fake_mux.add_asset("a1", "ready", ["pb-1"])
    fake_mux.add_asset("a2", "ready", ["pb-2"])

    summary = await sync_video_statuses(db_session, fake_mux, video_id=target.id, now=NOW)

    assert [entry["id"] for entry in summary["results"]] == [str(target.id)]
    assert (await load(session_maker, target.id)).status == "ready"
    assert (await load(session_maker, other.id)).status == "processing"


async def test_nothing_to_sync(db_session, fake_mux):
    summary = await sync_video_statuses(db_session, fake_mux, now=NOW)
    assert summary == {"message": "No videos need syncing", "checked": 0, "updated": 0, "results": []}


class BrokenSession:
    def __init__(self):
        self.rolled_back = False

    async def execute(self, *args, **kwargs):
        raise RuntimeError("database is down")

    async def rollback(self):
        self.rolled_back = True


async def test_selection_failure_is_reported_not_raised(fake_mux):
    session = BrokenSession()
    summary = await sync_video_statuses(session, fake_mux, now=NOW)

    assert summary["error"] == "database is down"
    assert summary["results"] == []
    assert session.rolled_back


async def test_sync_endpoint_is_open_without_cron_secret(client, db_session, fake_mux):
    await add_video(db_session, "stale", mux_asset_id="a1", updated_at=datetime.now(timezone.utc) - timedelta(hours=1))
    fake_mux.add_asset("a1", "ready", ["pb-1"])

    response = await client.get("/api/videos/sync-status")
    assert response.status_code == 200
    assert response.json()["updated"] == 1


async def test_sync_endpoint_requires_secret_or_user(client, alice, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "cron-123")

    assert (await client.post("/api/videos/sync-status")).status_code == 401
    assert (await client.post("/api/videos/sync-status", headers={"x-cron-secret": "wrong"})).status_code == 401
    assert (await client.post("/api/videos/sync-status", headers={"x-cron-secret": "cron-123"})).status_code == 200
    assert (
        await client.get("/api/videos/sync-status", headers={"Authorization": "Bearer cron-123"})
    ).status_code == 200
    assert (await client.get("/api/videos/sync-status", headers=alice["headers"])).status_code == 200



async def test_sync_endpoint_reports_malformed_video_id(client):
    response = await client.get("/api/videos/sync-status", params={"videoId": "not-a-uuid"})
    assert response.status_code == 200
    body = response.json()
    assert (body["checked"], body["updated"]) == (0, 0)
    assert body["results"] == [{"id": "not-a-uuid", "status": "error", "message": "Invalid video id"}]
