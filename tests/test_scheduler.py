from datetime import timedelta

import pytest

from core.entities import (
    ContentType,
    PlaybackSource,
    RotationStep,
    ScheduledSlot,
    SelectionStrategy,
)
from core.errors import PersistenceError
from scheduling.rotation import DEFAULT_ROTATION, seed_default_rotation
from scheduling.scheduler import CURSOR_SETTING, ContentScheduler


class RecordingPublisher:
    name = "recording"

    def __init__(self):
        self.events = []

    async def publish(self, event, payload):
        self.events.append((event, payload))


async def make_scheduler(store, t0, **kwargs) -> ContentScheduler:
    scheduler = ContentScheduler(store, clock=lambda: t0, **kwargs)
    await scheduler.initialize()
    return scheduler


@pytest.mark.asyncio
async def test_cursor_survives_restart(store, add_ready, t0):
    await seed_default_rotation(store)
    await add_ready("song-1")

    scheduler = await make_scheduler(store, t0)
    assert scheduler.rotation_cursor == 0

    item = await scheduler.get_next_item()
    assert item.source == PlaybackSource.ROTATION
    assert scheduler.rotation_cursor == 1
    assert await store.get_setting(CURSOR_SETTING) == 1

    restarted = await make_scheduler(store, t0)
    assert restarted.rotation_cursor == 1
    await restarted.get_next_item()
    assert restarted.rotation_cursor == 2


@pytest.mark.asyncio
async def test_rotation_skips_steps_without_content(store, add_ready, t0):
    await seed_default_rotation(store)
    await add_ready("ad-1", content_type=ContentType.AD)

    scheduler = await make_scheduler(store, t0)
    item = await scheduler.get_next_item()

    assert item.content_id == "ad-1"
    # The ad is the last of seven steps, so the cursor wraps to the start.
    assert scheduler.rotation_cursor == 0


@pytest.mark.asyncio
async def test_pinned_rotation_step(store, add_ready, t0):
    await add_ready("jingle-a", content_type=ContentType.JINGLE)
    await add_ready("jingle-b", content_type=ContentType.JINGLE, minutes=1)
    await store.replace_rotation_steps("default", [
        RotationStep(position=0, content_type=ContentType.JINGLE, content_id="jingle-b"),
    ])

    scheduler = await make_scheduler(store, t0)
    assert (await scheduler.get_next_item()).content_id == "jingle-b"


@pytest.mark.asyncio
async def test_override_beats_rotation(store, add_ready, t0):
    await seed_default_rotation(store)
    await add_ready("song-1")
    await add_ready("requested", minutes=1)

    publisher = RecordingPublisher()
    scheduler = await make_scheduler(store, t0, publisher=publisher)
    await scheduler.add_override("requested", "Requested", ContentType.SONG)

    item = await scheduler.get_next_item()
    assert item.content_id == "requested"
    assert item.source == PlaybackSource.OVERRIDE
    assert scheduler.rotation_cursor == 0
    assert [e for e, _ in publisher.events] == ["queue:updated", "queue:updated"]


@pytest.mark.asyncio
async def test_unresolvable_overrides_are_skipped(store, add_ready, t0):
    await add_ready("good")
    scheduler = await make_scheduler(store, t0)
    await scheduler.add_override("missing", "Missing", ContentType.SONG)
    await scheduler.add_override("good", "Good", ContentType.SONG)

    item = await scheduler.get_next_item()
    assert item.content_id == "good"
    assert scheduler.override_queue() == []


@pytest.mark.asyncio
async def test_remove_override(store, t0):
    scheduler = await make_scheduler(store, t0)
    item = await scheduler.add_override("x", "X", ContentType.SONG)

    assert await scheduler.remove_override(item.id) is True
    assert await scheduler.remove_override(item.id) is False


@pytest.mark.asyncio
async def test_scheduled_slot_priority_and_consumption(store, add_ready, t0):
    await add_ready("pinned")
    await add_ready("ad-1", content_type=ContentType.AD)
    await store.add_slot(ScheduledSlot(
        id="low", start_time=t0 + timedelta(seconds=10), content_id="pinned", priority=1,
    ))
    await store.add_slot(ScheduledSlot(
        id="high", start_time=t0 + timedelta(seconds=40), content_type=ContentType.AD, priority=9,
    ))

    scheduler = await make_scheduler(store, t0)

    first = await scheduler.get_next_item()
    assert first.content_id == "ad-1"
    assert first.source == PlaybackSource.SCHEDULED

    second = await scheduler.get_next_item()
    assert second.content_id == "pinned"
    assert await store.list_scheduled_slots(t0, t0 + timedelta(minutes=5)) == []


@pytest.mark.asyncio
async def test_recurring_slot_is_kept(store, add_ready, t0):
    await add_ready("theme", content_type=ContentType.JINGLE)
    await store.add_slot(ScheduledSlot(
        id="hourly", start_time=t0 + timedelta(seconds=5), content_id="theme", recurring=True,
    ))

    scheduler = await make_scheduler(store, t0)
    await scheduler.get_next_item()

    slots = await store.list_scheduled_slots(t0, t0 + timedelta(minutes=1))
    assert [s.id for s in slots] == ["hourly"]


@pytest.mark.asyncio
async def test_slot_outside_lookahead_is_ignored(store, add_ready, t0):
    await add_ready("later")
    await store.add_slot(ScheduledSlot(
        id="later", start_time=t0 + timedelta(minutes=5), content_id="later",
    ))

    scheduler = await make_scheduler(store, t0)
    assert await scheduler.get_next_item() is None


@pytest.mark.asyncio
async def test_starvation_returns_none(store, t0):
    await seed_default_rotation(store)
    scheduler = await make_scheduler(store, t0)

    assert await scheduler.get_next_item() is None
    assert scheduler.rotation_cursor == 0


@pytest.mark.asyncio
async def test_cursor_write_failure_propagates(store, add_ready, t0, monkeypatch):
    await seed_default_rotation(store)
    await add_ready("song-1")
    scheduler = await make_scheduler(store, t0)

    async def broken(key, value):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "set_setting", broken)

    with pytest.raises(PersistenceError):
        await scheduler.get_next_item()
    assert scheduler.rotation_cursor == 0


@pytest.mark.asyncio
async def test_replace_rotation_resets_cursor(store, add_ready, t0):
    await seed_default_rotation(store)
    await add_ready("song-1")
    publisher = RecordingPublisher()
    scheduler = await make_scheduler(store, t0, publisher=publisher)
    await scheduler.get_next_item()

    saved = await scheduler.replace_rotation([
        RotationStep(position=9, content_type=ContentType.SONG, selection_strategy=SelectionStrategy.RANDOM),
        RotationStep(position=3, content_type=ContentType.AD),
    ])

    assert [s.position for s in saved] == [0, 1]
    assert scheduler.rotation_cursor == 0
    assert await store.get_setting(CURSOR_SETTING) == 0
    assert publisher.events[-1][0] == "rotation:updated"


@pytest.mark.asyncio
async def test_seed_only_when_empty(store):
    assert await seed_default_rotation(store) is True
    assert await seed_default_rotation(store) is False
    steps = await store.list_rotation_steps("default")
    assert [s.content_type for s in steps] == [s.content_type for s in DEFAULT_ROTATION]


@pytest.mark.asyncio
async def test_log_playback_feeds_history(store, add_ready, t0):
    await add_ready("song-1", duration_seconds=200)
    await seed_default_rotation(store)
    scheduler = await make_scheduler(store, t0)

    item = await scheduler.get_next_item()
    assert item.duration_seconds == 200
    await scheduler.log_playback(item)

    history = await scheduler.recent_history(5)
    assert len(history) == 1
    assert history[0].content_id == "song-1"
    assert history[0].source == PlaybackSource.ROTATION
    assert await store.last_played_at("song-1") == t0


@pytest.mark.asyncio
async def test_override_survives_storage_failure(store, add_ready, t0, monkeypatch):
    await add_ready("song-1")
    scheduler = await make_scheduler(store, t0)
    await scheduler.add_override("song-1", "Requested", ContentType.SONG, override_id="o1")

    async def broken(content_id):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "get_ready_content", broken)
    with pytest.raises(PersistenceError):
        await scheduler.get_next_item()
    assert [o.id for o in scheduler.override_queue()] == ["o1"]

    monkeypatch.undo()
    item = await scheduler.get_next_item()
    assert item.content_id == "song-1"
    assert item.source == PlaybackSource.OVERRIDE


@pytest.mark.asyncio
async def test_slot_without_target_resolves_nothing(store, add_ready, t0):
    await seed_default_rotation(store)
    await add_ready("song-1")
    await store.add_slot(ScheduledSlot(id="empty", start_time=t0 + timedelta(seconds=5)))

    scheduler = await make_scheduler(store, t0)
    item = await scheduler.get_next_item()

    assert item.source == PlaybackSource.ROTATION
    assert [s.id for s in await store.list_slots()] == ["empty"]
