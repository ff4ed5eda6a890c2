import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from functools import wraps
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence

import aiosqlite

from core.entities import (
    ContentRef,
    ContentType,
    PlaybackLogEntry,
    PlaybackSource,
    RotationStep,
    ScheduledSlot,
    SelectionStrategy,
)
from core.errors import PersistenceError
from services.clock import utcnow

logger = logging.getLogger(__name__)


def _persistent(method):
    """Surface sqlite failures as PersistenceError."""
    @wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except aiosqlite.Error as e:
            logger.error(f"Storage operation {method.__name__} failed: {e}")
            raise PersistenceError(f"{method.__name__} failed: {e}") from e
    return wrapper


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> None:
        async with self.connect() as conn:
            await conn.execute(query, params)
            await conn.commit()

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Initialize tables for the content library, scheduling and playback history."""
        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS content (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    artist TEXT,
                    duration INTEGER,
                    file_path TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    metadata TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_content_type_status ON content(type, status)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS schedule_slots (
                    id TEXT PRIMARY KEY,
                    content_id TEXT REFERENCES content(id) ON DELETE CASCADE,
                    content_type TEXT,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    priority INTEGER NOT NULL DEFAULT 5,
                    label TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_schedule_slots_start ON schedule_slots(start_time)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rotation_pattern (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    pattern_id TEXT NOT NULL DEFAULT 'default',
                    position INTEGER NOT NULL,
                    content_type TEXT NOT NULL,
                    content_id TEXT,
                    selection_strategy TEXT NOT NULL DEFAULT 'least_recently_played'
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS playback_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content_id TEXT,
                    content_type TEXT NOT NULL,
                    title TEXT,
                    started_at TEXT NOT NULL,
                    source TEXT NOT NULL
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_playback_log_content ON playback_log(content_id, started_at)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS seen_items (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id TEXT NOT NULL UNIQUE,
                    seen_at TEXT NOT NULL
                )
            """)
            await conn.commit()
            logger.info("Database tables initialized")

    # ----------------------------
    # Content library
    # ----------------------------

    @staticmethod
    def _content_ref(row) -> ContentRef:
        return ContentRef(
            id=row[0],
            type=ContentType(row[1]),
            title=row[2],
            file_path=row[3],
            created_at=_parse_ts(row[4]),
            duration_seconds=row[5],
        )

    @_persistent
    async def add_content(
        self,
        *,
        content_type: ContentType,
        title: str,
        file_path: Optional[str],
        status: str = "ready",
        duration_seconds: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        content_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        """Register a content record and return its id."""
        content_id = content_id or uuid.uuid4().hex
        created = created_at or utcnow()
        await self.execute(
            """
            INSERT INTO content
            (id, type, title, duration, file_path, status, metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                content_id,
                ContentType(content_type).value,
                title,
                duration_seconds,
                file_path,
                status,
                json.dumps(metadata or {}, default=str),
                _ts(created),
                _ts(created),
            ),
        )
        return content_id

    @_persistent
    async def set_content_status(self, content_id: str, status: str) -> bool:
        """Returns False when no such content exists."""
        async with self.connect() as conn:
            cursor = await conn.execute(
                "UPDATE content SET status = ?, updated_at = ? WHERE id = ?",
                (status, _ts(utcnow()), content_id),
            )
            await conn.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _content_record(row) -> Dict[str, Any]:
        return {
            "id": row[0],
            "type": row[1],
            "title": row[2],
            "file_path": row[3],
            "duration_seconds": row[4],
            "status": row[5],
            "metadata": json.loads(row[6]) if row[6] else {},
            "created_at": row[7],
            "updated_at": row[8],
        }

    @_persistent
    async def get_content(self, content_id: str) -> Optional[Dict[str, Any]]:
        row = await self.fetchone(
            """SELECT id, type, title, file_path, duration, status, metadata, created_at, updated_at
               FROM content WHERE id = ?""",
            (content_id,),
        )
        return self._content_record(row) if row else None

    @_persistent
    async def list_content(
        self,
        content_type: Optional[ContentType] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Content records of any status, newest first."""
        conditions = []
        params: List[Any] = []
        if content_type is not None:
            conditions.append("type = ?")
            params.append(ContentType(content_type).value)
        if status is not None:
            conditions.append("status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.fetchall(
            f"""SELECT id, type, title, file_path, duration, status, metadata, created_at, updated_at
                FROM content {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?""",
            (*params, limit),
        )
        return [self._content_record(row) for row in rows]

    @_persistent
    async def delete_content(self, content_id: str) -> bool:
        """Delete a content record; its scheduled slots go with it."""
        async with self.connect() as conn:
            cursor = await conn.execute("DELETE FROM content WHERE id = ?", (content_id,))
            await conn.commit()
            return cursor.rowcount > 0

    @_persistent
    async def list_ready_content(self, content_type: ContentType) -> List[ContentRef]:
        """Ready content of one type, oldest first."""
        rows = await self.fetchall(
            """SELECT id, type, title, file_path, created_at, duration
               FROM content
               WHERE type = ? AND status = 'ready'
                 AND file_path IS NOT NULL AND file_path != ''
               ORDER BY created_at ASC, rowid ASC""",
            (ContentType(content_type).value,),
        )
        return [self._content_ref(row) for row in rows]

    @_persistent
    async def get_ready_content(self, content_id: str) -> Optional[ContentRef]:
        row = await self.fetchone(
            """SELECT id, type, title, file_path, created_at, duration
               FROM content
               WHERE id = ? AND status = 'ready'
                 AND file_path IS NOT NULL AND file_path != ''""",
            (content_id,),
        )
        return self._content_ref(row) if row else None

    # ----------------------------
    # Playback log
    # ----------------------------

    @_persistent
    async def last_played_at(self, content_id: str) -> Optional[datetime]:
        row = await self.fetchone(
            "SELECT MAX(started_at) FROM playback_log WHERE content_id = ?",
            (content_id,),
        )
        return _parse_ts(row[0]) if row else None

    @_persistent
    async def append_playback_log(self, entry: PlaybackLogEntry) -> None:
        await self.execute(
            """INSERT INTO playback_log (content_id, content_type, title, started_at, source)
               VALUES (?, ?, ?, ?, ?)""",
            (
                entry.content_id,
                entry.content_type.value,
                entry.title,
                _ts(entry.started_at),
                entry.source.value,
            ),
        )

    @_persistent
    async def recent_playback(self, limit: int = 20) -> List[PlaybackLogEntry]:
        rows = await self.fetchall(
            """SELECT content_id, content_type, title, started_at, source
               FROM playback_log
               ORDER BY started_at DESC, id DESC
               LIMIT ?""",
            (limit,),
        )
        return [
            PlaybackLogEntry(
                content_id=row[0],
                content_type=ContentType(row[1]),
                title=row[2],
                started_at=_parse_ts(row[3]),
                source=PlaybackSource(row[4]),
            )
            for row in rows
        ]

    # ----------------------------
    # Settings
    # ----------------------------

    @_persistent
    async def get_setting(self, key: str, default: Any = None) -> Any:
        row = await self.fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        if row is None:
            return default
        return json.loads(row[0])

    @_persistent
    async def set_setting(self, key: str, value: Any) -> None:
        await self.execute(
            """INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, json.dumps(value), _ts(utcnow())),
        )

    # ----------------------------
    # Scheduled slots
    # ----------------------------

    @staticmethod
    def _slot(row) -> ScheduledSlot:
        content_type = row[3]
        return ScheduledSlot(
            id=row[0],
            start_time=_parse_ts(row[1]),
            content_id=row[2],
            content_type=ContentType(content_type) if content_type and content_type != "any" else None,
            end_time=_parse_ts(row[4]),
            recurring=bool(row[5]),
            priority=row[6],
            label=row[7],
        )

    @_persistent
    async def add_slot(self, slot: ScheduledSlot) -> str:
        await self.execute(
            """INSERT INTO schedule_slots
               (id, content_id, content_type, start_time, end_time, is_recurring, priority, label, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                slot.id,
                slot.content_id,
                slot.content_type.value if slot.content_type else None,
                _ts(slot.start_time),
                _ts(slot.end_time),
                1 if slot.recurring else 0,
                slot.priority,
                slot.label,
                _ts(utcnow()),
            ),
        )
        return slot.id

    @_persistent
    async def get_slot(self, slot_id: str) -> Optional[ScheduledSlot]:
        row = await self.fetchone(
            """SELECT id, start_time, content_id, content_type, end_time, is_recurring, priority, label
               FROM schedule_slots WHERE id = ?""",
            (slot_id,),
        )
        return self._slot(row) if row else None

    @_persistent
    async def list_scheduled_slots(self, start: datetime, end: datetime) -> List[ScheduledSlot]:
        """Slots starting within [start, end], highest priority first then earliest."""
        rows = await self.fetchall(
            """SELECT id, start_time, content_id, content_type, end_time, is_recurring, priority, label
               FROM schedule_slots
               WHERE start_time >= ? AND start_time <= ?
               ORDER BY priority DESC, start_time ASC""",
            (_ts(start), _ts(end)),
        )
        return [self._slot(row) for row in rows]

    @_persistent
    async def list_slots(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ScheduledSlot]:
        """Slots in start-time order, optionally bounded on either side."""
        conditions = []
        params: List[Any] = []
        if start is not None:
            conditions.append("start_time >= ?")
            params.append(_ts(start))
        if end is not None:
            conditions.append("start_time <= ?")
            params.append(_ts(end))

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.fetchall(
            f"""SELECT id, start_time, content_id, content_type, end_time, is_recurring, priority, label
                FROM schedule_slots {where}
                ORDER BY start_time ASC""",
            tuple(params),
        )
        return [self._slot(row) for row in rows]

    @_persistent
    async def delete_slot(self, slot_id: str) -> bool:
        async with self.connect() as conn:
            cursor = await conn.execute("DELETE FROM schedule_slots WHERE id = ?", (slot_id,))
            await conn.commit()
            return cursor.rowcount > 0

    # ----------------------------
    # Rotation pattern
    # ----------------------------

    @_persistent
    async def list_rotation_steps(self, pattern_id: str = "default") -> List[RotationStep]:
        rows = await self.fetchall(
            """SELECT position, content_type, selection_strategy, content_id, pattern_id
               FROM rotation_pattern
               WHERE pattern_id = ?
               ORDER BY position ASC""",
            (pattern_id,),
        )
        return [
            RotationStep(
                position=row[0],
                content_type=ContentType(row[1]),
                selection_strategy=SelectionStrategy(row[2]),
                content_id=row[3],
                pattern_id=row[4],
            )
            for row in rows
        ]

    @_persistent
    async def replace_rotation_steps(
        self,
        pattern_id: str,
        steps: Sequence[RotationStep],
    ) -> List[RotationStep]:
        """Replace a whole pattern in one transaction, renumbering positions from 0."""
        async with self.connect() as conn:
            await conn.execute("DELETE FROM rotation_pattern WHERE pattern_id = ?", (pattern_id,))
            for position, step in enumerate(steps):
                await conn.execute(
                    """INSERT INTO rotation_pattern
                       (pattern_id, position, content_type, content_id, selection_strategy)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        pattern_id,
                        position,
                        step.content_type.value,
                        step.content_id,
                        step.selection_strategy.value,
                    ),
                )
            await conn.commit()
        return await self.list_rotation_steps(pattern_id)

    # ----------------------------
    # Identity set persistence
    # ----------------------------

    @_persistent
    async def load_seen_ids(self, limit: int) -> List[str]:
        """Most recent `limit` seen ids, oldest first."""
        rows = await self.fetchall(
            "SELECT item_id FROM seen_items ORDER BY seq DESC LIMIT ?",
            (limit,),
        )
        return [row[0] for row in reversed(rows)]

    @_persistent
    async def save_seen_ids(self, ids: Iterable[str], capacity: int) -> None:
        now = _ts(utcnow())
        async with self.connect() as conn:
            await conn.executemany(
                "INSERT OR IGNORE INTO seen_items (item_id, seen_at) VALUES (?, ?)",
                [(item_id, now) for item_id in ids],
            )
            await conn.execute(
                """DELETE FROM seen_items
                   WHERE seq NOT IN (SELECT seq FROM seen_items ORDER BY seq DESC LIMIT ?)""",
                (capacity,),
            )
            await conn.commit()
