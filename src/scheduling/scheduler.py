"""
Content scheduler: decides what plays next.

Resolution order:
1. Override queue (manual "play next")
2. Scheduled slots starting within the lookahead window
3. The persisted rotation pattern
4. None (nothing available)
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from core.entities import (
    ContentRef,
    ContentType,
    OverrideItem,
    PlaybackLogEntry,
    PlaybackSource,
    RotationStep,
    ScheduledItem,
    ScheduledSlot,
)
from core.errors import PersistenceError
from events.base import EventPublisher, NullPublisher, publish_safely
from scheduling.override_queue import OverrideQueue
from scheduling.picker import ContentPicker
from services.clock import utcnow
from services.database import Database

logger = logging.getLogger(__name__)

CURSOR_SETTING = "rotation_cursor"
DEFAULT_DURATION_SECONDS = 180


def _to_item(ref: ContentRef, source: PlaybackSource) -> ScheduledItem:
    return ScheduledItem(
        content_id=ref.id,
        title=ref.title,
        content_type=ref.type,
        file_path=ref.file_path,
        duration_seconds=ref.duration_seconds or DEFAULT_DURATION_SECONDS,
        source=source,
    )


class ContentScheduler:
    def __init__(
        self,
        store: Database,
        publisher: Optional[EventPublisher] = None,
        pattern_id: str = "default",
        picker: Optional[ContentPicker] = None,
        lookahead_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher or NullPublisher()
        self.pattern_id = pattern_id
        self.picker = picker or ContentPicker(store)
        self.lookahead = timedelta(seconds=lookahead_seconds)
        self.clock = clock

        self._overrides = OverrideQueue()
        self._cursor = 0

    async def initialize(self) -> None:
        """Restore the rotation cursor from storage."""
        saved = await self.store.get_setting(CURSOR_SETTING)
        self._cursor = int(saved) if saved is not None else 0
        logger.info(f"Scheduler initialized (rotation cursor={self._cursor})")

    @property
    def rotation_cursor(self) -> int:
        return self._cursor

    # ----------------------------
    # Override queue
    # ----------------------------

    async def add_override(
        self,
        content_id: str,
        title: str,
        content_type: ContentType,
        urgent: bool = False,
        override_id: Optional[str] = None,
    ) -> OverrideItem:
        item = OverrideItem(
            id=override_id or uuid.uuid4().hex,
            content_id=content_id,
            title=title,
            content_type=ContentType(content_type),
            urgent=urgent,
        )
        self._overrides.add(item)
        logger.info("Override added to queue", extra={"title": title, "urgent": urgent})
        await self._publish_queue()
        return item

    async def remove_override(self, override_id: str) -> bool:
        removed = self._overrides.remove(override_id)
        if removed:
            await self._publish_queue()
        return removed

    def override_queue(self) -> List[OverrideItem]:
        return self._overrides.snapshot()

    async def _publish_queue(self) -> None:
        await publish_safely(self.publisher, "queue:updated", {
            "overrides": [
                {"id": o.id, "content_id": o.content_id, "title": o.title,
                 "content_type": o.content_type.value, "urgent": o.urgent}
                for o in self._overrides.snapshot()
            ],
        })

    # ----------------------------
    # Resolution
    # ----------------------------

    async def get_next_item(self) -> Optional[ScheduledItem]:
        item = await self._from_overrides()
        if item:
            return item

        item = await self._from_scheduled_slots()
        if item:
            return item

        item = await self._from_rotation()
        if item:
            return item

        logger.warning("No content available from any source")
        return None

    async def _from_overrides(self) -> Optional[ScheduledItem]:
        consumed = False
        try:
            while True:
                override = self._overrides.pop()
                if override is None:
                    return None
                consumed = True

                try:
                    ref = await self.store.get_ready_content(override.content_id)
                except PersistenceError:
                    self._overrides.push_front(override)
                    raise
                if ref is None:
                    logger.warning(
                        "Override content not found or not ready",
                        extra={"content_id": override.content_id},
                    )
                    continue

                logger.debug(f"Resolved from override: {ref.title}")
                return _to_item(ref, PlaybackSource.OVERRIDE)
        finally:
            if consumed:
                await self._publish_queue()

    async def _from_scheduled_slots(self) -> Optional[ScheduledItem]:
        now = self.clock()
        slots = await self.store.list_scheduled_slots(now, now + self.lookahead)
        if not slots:
            return None

        slot = slots[0]
        ref = await self._resolve_slot(slot)
        if ref is None:
            return None

        if not slot.recurring:
            await self.store.delete_slot(slot.id)

        logger.debug(f"Resolved from scheduled slot {slot.id}: {ref.title}")
        return _to_item(ref, PlaybackSource.SCHEDULED)

    async def _resolve_slot(self, slot: ScheduledSlot) -> Optional[ContentRef]:
        if slot.content_id:
            ref = await self.store.get_ready_content(slot.content_id)
            if ref is not None:
                return ref

        if slot.content_type is not None:
            return await self.picker.pick(slot.content_type)

        return None

    async def _from_rotation(self) -> Optional[ScheduledItem]:
        steps = await self.store.list_rotation_steps(self.pattern_id)
        if not steps:
            return None

        for offset in range(len(steps)):
            step = steps[(self._cursor + offset) % len(steps)]
            ref = await self._resolve_step(step)
            if ref is None:
                continue

            new_cursor = (self._cursor + offset + 1) % len(steps)
            # Persist before committing in memory; a failed write leaves the cursor untouched.
            await self.store.set_setting(CURSOR_SETTING, new_cursor)
            self._cursor = new_cursor

            logger.debug(f"Resolved from rotation step {step.position}: {ref.title}")
            return _to_item(ref, PlaybackSource.ROTATION)

        return None

    async def _resolve_step(self, step: RotationStep) -> Optional[ContentRef]:
        if step.content_id:
            ref = await self.store.get_ready_content(step.content_id)
            if ref is not None:
                return ref

        return await self.picker.pick(step.content_type, step.selection_strategy)

    # ----------------------------
    # Rotation pattern & history
    # ----------------------------

    async def rotation(self) -> List[RotationStep]:
        return await self.store.list_rotation_steps(self.pattern_id)

    async def replace_rotation(self, steps: Sequence[RotationStep]) -> List[RotationStep]:
        """Replace the active pattern and restart it from the first step."""
        saved = await self.store.replace_rotation_steps(self.pattern_id, steps)
        await self.store.set_setting(CURSOR_SETTING, 0)
        self._cursor = 0

        logger.info(f"Rotation pattern replaced ({len(saved)} steps)")
        await publish_safely(self.publisher, "rotation:updated", {
            "pattern_id": self.pattern_id,
            "steps": [
                {"position": s.position, "content_type": s.content_type.value,
                 "selection_strategy": s.selection_strategy.value, "content_id": s.content_id}
                for s in saved
            ],
        })
        return saved

    async def log_playback(self, item: ScheduledItem, started_at: Optional[datetime] = None) -> None:
        """Record that playback of a resolved item actually started."""
        await self.store.append_playback_log(PlaybackLogEntry(
            content_id=item.content_id,
            content_type=item.content_type,
            title=item.title,
            started_at=started_at or self.clock(),
            source=item.source,
        ))

    async def recent_history(self, limit: int = 20) -> List[PlaybackLogEntry]:
        return await self.store.recent_playback(limit)
