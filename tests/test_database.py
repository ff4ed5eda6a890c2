from datetime import timedelta

import pytest

from core.entities import ContentType, ScheduledSlot
from core.errors import PersistenceError
from services.database import Database


@pytest.mark.asyncio
async def test_settings_roundtrip(store):
    assert await store.get_setting("missing", default=7) == 7

    await store.set_setting("rotation_cursor", 3)
    await store.set_setting("rotation_cursor", 4)
    await store.set_setting("voices", {"news": "en-GB"})

    assert await store.get_setting("rotation_cursor") == 4
    assert await store.get_setting("voices") == {"news": "en-GB"}


@pytest.mark.asyncio
async def test_ready_content_ordering_and_lookup(store, add_ready):
    await add_ready("b", minutes=2)
    await add_ready("a", minutes=1)
    await add_ready("draft", minutes=0, status="pending")

    refs = await store.list_ready_content(ContentType.SONG)
    assert [r.id for r in refs] == ["a", "b"]

    assert (await store.get_ready_content("a")).type == ContentType.SONG
    assert await store.get_ready_content("draft") is None

    await store.set_content_status("draft", "ready")
    assert await store.get_ready_content("draft") is not None


@pytest.mark.asyncio
async def test_slots_ordered_by_priority_then_start(store, t0):
    for slot_id, offset, priority in [("s1", 30, 5), ("s2", 10, 5), ("s3", 50, 8)]:
        await store.add_slot(ScheduledSlot(
            id=slot_id,
            start_time=t0 + timedelta(seconds=offset),
            content_type=ContentType.AD,
            priority=priority,
        ))

    slots = await store.list_scheduled_slots(t0, t0 + timedelta(seconds=60))
    assert [s.id for s in slots] == ["s3", "s2", "s1"]

    await store.delete_slot("s3")
    slots = await store.list_scheduled_slots(t0, t0 + timedelta(seconds=20))
    assert [s.id for s in slots] == ["s2"]


@pytest.mark.asyncio
async def test_seen_ids_pruned_to_capacity(store):
    await store.save_seen_ids(["a", "b", "c"], capacity=10)
    await store.save_seen_ids(["c", "d", "e"], capacity=4)

    assert await store.load_seen_ids(10) == ["b", "c", "d", "e"]
    assert await store.load_seen_ids(2) == ["d", "e"]


@pytest.mark.asyncio
async def test_sqlite_errors_become_persistence_errors(tmp_path):
    db = Database(str(tmp_path / "empty.db"))  # tables never created

    with pytest.raises(PersistenceError):
        await db.get_setting("anything")


@pytest.mark.asyncio
async def test_content_records_status_and_delete(store, add_ready):
    await add_ready("jingle", content_type=ContentType.AD, minutes=1, duration_seconds=15)
    await add_ready("song", minutes=2, status="pending")

    assert [r["id"] for r in await store.list_content()] == ["song", "jingle"]
    assert [r["id"] for r in await store.list_content(content_type=ContentType.AD)] == ["jingle"]
    assert [r["id"] for r in await store.list_content(status="pending")] == ["song"]

    record = await store.get_content("jingle")
    assert record["type"] == "ad"
    assert record["duration_seconds"] == 15
    assert record["status"] == "ready"

    assert await store.set_content_status("song", "ready") is True
    assert await store.set_content_status("missing", "ready") is False

    assert await store.delete_content("jingle") is True
    assert await store.delete_content("jingle") is False
    assert await store.get_content("jingle") is None


@pytest.mark.asyncio
async def test_slot_listing_and_delete(store, add_ready, t0):
    await add_ready("promo", content_type=ContentType.AD)
    await store.add_slot(ScheduledSlot(id="late", start_time=t0 + timedelta(hours=2), content_type=ContentType.AD))
    await store.add_slot(ScheduledSlot(id="early", start_time=t0, content_id="promo", recurring=True))

    assert [s.id for s in await store.list_slots()] == ["early", "late"]
    assert [s.id for s in await store.list_slots(start=t0 + timedelta(hours=1))] == ["late"]
    assert [s.id for s in await store.list_slots(end=t0 + timedelta(hours=1))] == ["early"]

    early = await store.get_slot("early")
    assert early.content_id == "promo" and early.recurring

    assert await store.delete_slot("early") is True
    assert await store.delete_slot("early") is False
    assert await store.get_slot("early") is None


@pytest.mark.asyncio
async def test_deleting_content_drops_its_slots(store, add_ready, t0):
    await add_ready("promo", content_type=ContentType.AD)
    await store.add_slot(ScheduledSlot(id="s1", start_time=t0, content_id="promo"))

    await store.delete_content("promo")

    assert await store.list_slots() == []
