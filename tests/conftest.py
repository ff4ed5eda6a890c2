from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from core.entities import ContentType
from services.database import Database

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def no_sleep():
    async def _sleep(_delay: float) -> None:
        return None
    return _sleep


@pytest_asyncio.fixture
async def store(tmp_path) -> Database:
    db = Database(str(tmp_path / "station.db"))
    await db.init_tables()
    return db


@pytest.fixture
def add_ready(store):
    """Register ready content created `minutes` after T0."""
    async def _add(content_id: str, content_type=ContentType.SONG, minutes: int = 0, **kwargs) -> str:
        return await store.add_content(
            content_id=content_id,
            content_type=content_type,
            title=kwargs.pop("title", content_id),
            file_path=kwargs.pop("file_path", f"/media/{content_id}.mp3"),
            created_at=T0 + timedelta(minutes=minutes),
            **kwargs,
        )
    return _add
