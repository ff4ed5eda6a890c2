import logging
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from api.app import create_app
from core.entities import ContentType, Track
from events.base import NullPublisher
from playback.buffer import PlaybackBuffer
from scheduling.rotation import seed_default_rotation
from scheduling.scheduler import ContentScheduler
from services.clock import utcnow
from services.config import ProductionConfig, parse_config
from workflows.factory import Station
from workflows.orchestrator import ProductionOrchestrator


class EmptyFeed:
    async def fetch_once(self):
        return []

    async def load(self):
        return None


class UnusedCollaborator:
    async def aclose(self):
        return None


@pytest_asyncio.fixture
async def station(store, tmp_path) -> Station:
    buffer = PlaybackBuffer()
    feed = EmptyFeed()
    orchestrator = ProductionOrchestrator(
        feed=feed,
        synthesizer=UnusedCollaborator(),
        renderer=UnusedCollaborator(),
        speech=UnusedCollaborator(),
        buffer=buffer,
        settings=ProductionConfig(),
        media_dir=str(tmp_path),
    )
    scheduler = ContentScheduler(store)
    await seed_default_rotation(store)
    await scheduler.initialize()
    return Station(
        config=parse_config({}),
        store=store,
        feed=feed,
        buffer=buffer,
        orchestrator=orchestrator,
        scheduler=scheduler,
        publisher=NullPublisher(),
    )


@pytest.fixture
def client(station):
    return create_app(station).test_client()


@pytest.mark.asyncio
async def test_engine_status(client):
    resp = await client.get("/api/v1/engine/status")
    data = await resp.get_json()

    assert resp.status_code == 200
    assert data["running"] is False
    assert data["cycle_phase"] == "idle"
    assert set(data["totals"]) == {"songs", "speech_blocks", "cycles", "render_failures"}


@pytest.mark.asyncio
async def test_manual_cycle_returns_counts(client):
    resp = await client.post("/api/v1/engine/cycle")
    data = await resp.get_json()

    assert data == {
        "items_scraped": 0,
        "stories_synthesized": 0,
        "scripts_generated": 0,
        "tracks_rendered": 0,
        "errors": [],
    }


@pytest.mark.asyncio
async def test_start_then_stop(client, station):
    resp = await client.post("/api/v1/engine/start")
    assert (await resp.get_json())["engine"]["running"] is True

    resp = await client.post("/api/v1/engine/stop")
    assert (await resp.get_json())["engine"]["running"] is False
    await station.shutdown()


@pytest.mark.asyncio
async def test_buffer_listing(client, station):
    station.buffer.enqueue(Track(
        id="t1", kind=ContentType.SONG, title="Song", file_path="/m/t1.mp3",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    ))

    data = await (await client.get("/api/v1/buffer")).get_json()

    assert data["size"] == 1
    assert data["tracks"][0]["id"] == "t1"
    assert data["tracks"][0]["kind"] == "song"


@pytest.mark.asyncio
async def test_override_lifecycle(client, add_ready):
    await add_ready("song-1")

    resp = await client.post("/api/v1/queue/override", json={
        "content_id": "song-1", "title": "Requested", "content_type": "song", "urgent": True,
    })
    assert resp.status_code == 201
    created = await resp.get_json()

    listed = await (await client.get("/api/v1/queue/override")).get_json()
    assert [o["id"] for o in listed["overrides"]] == [created["id"]]

    resp = await client.post("/api/v1/queue/next")
    item = await resp.get_json()
    assert item["content_id"] == "song-1"
    assert item["source"] == "override"

    history = await (await client.get("/api/v1/history?limit=5")).get_json()
    assert history["history"][0]["source"] == "override"


@pytest.mark.asyncio
async def test_override_validation_and_delete(client):
    resp = await client.post("/api/v1/queue/override", json={"content_id": "x", "content_type": "polka"})
    assert resp.status_code == 400

    resp = await client.delete("/api/v1/queue/override/unknown")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_next_with_nothing_available(client):
    resp = await client.post("/api/v1/queue/next")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_rotation_get_and_replace(client):
    data = await (await client.get("/api/v1/rotation")).get_json()
    assert len(data["steps"]) == 7

    resp = await client.put("/api/v1/rotation", json={"steps": [
        {"content_type": "song", "selection_strategy": "random"},
        {"content_type": "news_block"},
    ]})
    data = await resp.get_json()

    assert resp.status_code == 200
    assert [s["content_type"] for s in data["steps"]] == ["song", "news_block"]
    assert data["steps"][1]["selection_strategy"] == "least_recently_played"
    assert data["cursor"] == 0

    resp = await client.put("/api/v1/rotation", json={"steps": []})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_history_rejects_bad_limit(client):
    resp = await client.get("/api/v1/history?limit=lots")
    assert resp.status_code == 400


async def register(client, **overrides):
    body = {"content_type": "ad", "title": "Sponsor spot", "file_path": "/media/ads/spot.mp3"}
    body.update(overrides)
    resp = await client.post("/api/v1/content", json=body)
    assert resp.status_code == 201
    return await resp.get_json()


@pytest.mark.asyncio
async def test_content_register_list_status_and_delete(client):
    created = await register(client, duration_seconds=30)
    assert created["status"] == "ready"
    assert created["duration_seconds"] == 30

    listed = await (await client.get("/api/v1/content?type=ad")).get_json()
    assert [i["id"] for i in listed["items"]] == [created["id"]]

    resp = await client.put(f"/api/v1/content/{created['id']}/status", json={"status": "disabled"})
    assert (await resp.get_json())["status"] == "disabled"
    # Only disabled content left, so nothing can play
    assert (await client.post("/api/v1/queue/next")).status_code == 404

    resp = await client.put("/api/v1/content/missing/status", json={"status": "ready"})
    assert resp.status_code == 404

    assert (await client.delete(f"/api/v1/content/{created['id']}")).status_code == 200
    assert (await client.get(f"/api/v1/content/{created['id']}")).status_code == 404
    assert (await client.delete(f"/api/v1/content/{created['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_content_validation(client):
    resp = await client.post("/api/v1/content", json={"content_type": "ad", "title": "No file"})
    assert resp.status_code == 400

    resp = await client.get("/api/v1/content?type=polka")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_scheduled_slot_plays_before_rotation(client, add_ready):
    await add_ready("song-1")
    ad = await register(client)
    start = utcnow() + timedelta(seconds=10)

    resp = await client.post("/api/v1/schedule", json={
        "content_type": "ad", "start_time": start.isoformat(), "label": "Top of hour",
    })
    assert resp.status_code == 201
    slot = await resp.get_json()
    assert slot["content_type"] == "ad"

    listed = await (await client.get("/api/v1/schedule")).get_json()
    assert [s["id"] for s in listed["slots"]] == [slot["id"]]

    item = await (await client.post("/api/v1/queue/next")).get_json()
    assert item["source"] == "scheduled"
    assert item["content_id"] == ad["id"]

    # One-off slots are consumed when they play
    listed = await (await client.get("/api/v1/schedule")).get_json()
    assert listed["slots"] == []


@pytest.mark.asyncio
async def test_pinned_slot_takes_content_duration(client):
    ad = await register(client, duration_seconds=30)
    start = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)

    resp = await client.post("/api/v1/schedule", json={"content_id": ad["id"], "start_time": start.isoformat()})
    slot = await resp.get_json()

    assert slot["end_time"] == (start + timedelta(seconds=30)).isoformat()

    resp = await client.post("/api/v1/schedule", json={"content_id": "missing", "start_time": start.isoformat()})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_schedule_filters_preview_and_delete(client):
    now = utcnow()
    soon = await (await client.post("/api/v1/schedule", json={
        "content_type": "news_block", "start_time": (now + timedelta(hours=1)).isoformat(),
    })).get_json()
    later = await (await client.post("/api/v1/schedule", json={
        "content_type": "song", "start_time": (now + timedelta(hours=30)).isoformat(),
    })).get_json()

    preview = await (await client.get("/api/v1/schedule/preview")).get_json()
    assert [s["id"] for s in preview["slots"]] == [soon["id"]]

    bounded = (now + timedelta(hours=2)).isoformat()
    data = await (await client.get("/api/v1/schedule", query_string={"from": bounded})).get_json()
    assert [s["id"] for s in data["slots"]] == [later["id"]]

    assert (await client.get("/api/v1/schedule?from=yesterday")).status_code == 400

    assert (await client.delete(f"/api/v1/schedule/{soon['id']}")).status_code == 200
    assert (await client.delete(f"/api/v1/schedule/{soon['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_slot_needs_content_or_type(client):
    resp = await client.post("/api/v1/schedule", json={"start_time": utcnow().isoformat()})
    assert resp.status_code == 400


class FakeLLM:
    base_url = "http://ollama.test"
    model = "llama3"

    def __init__(self, healthy: bool):
        self.healthy = healthy
        self.checks = 0

    async def health_check(self) -> bool:
        self.checks += 1
        return self.healthy


@pytest.mark.asyncio
async def test_initialize_warns_when_llm_unreachable(station, caplog):
    station.llm = FakeLLM(healthy=False)

    with caplog.at_level(logging.WARNING):
        await station.initialize()

    assert station.llm.checks == 1
    assert "Ollama is not reachable" in caplog.text


@pytest.mark.asyncio
async def test_health_route_reports_llm(station):
    station.llm = FakeLLM(healthy=True)
    client = create_app(station).test_client()

    data = await (await client.get("/api/v1/health")).get_json()

    assert data == {"status": "ok", "llm_reachable": True, "engine_running": False}
