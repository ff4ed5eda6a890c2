import logging
from typing import List

from core.entities import ContentType, RotationStep, SelectionStrategy
from services.database import Database

logger = logging.getLogger(__name__)

_LRP = SelectionStrategy.LEAST_RECENTLY_PLAYED

# Song x3 -> News -> Song x2 -> Ad
DEFAULT_ROTATION: List[RotationStep] = [
    RotationStep(position=0, content_type=ContentType.SONG, selection_strategy=_LRP),
    RotationStep(position=1, content_type=ContentType.SONG, selection_strategy=_LRP),
    RotationStep(position=2, content_type=ContentType.SONG, selection_strategy=_LRP),
    RotationStep(position=3, content_type=ContentType.NEWS_BLOCK, selection_strategy=SelectionStrategy.SEQUENTIAL),
    RotationStep(position=4, content_type=ContentType.SONG, selection_strategy=_LRP),
    RotationStep(position=5, content_type=ContentType.SONG, selection_strategy=_LRP),
    RotationStep(position=6, content_type=ContentType.AD, selection_strategy=SelectionStrategy.RANDOM),
]


async def seed_default_rotation(store: Database, pattern_id: str = "default") -> bool:
    """Seed the default pattern if none exists. Returns True when seeded."""
    if await store.list_rotation_steps(pattern_id):
        return False

    await store.replace_rotation_steps(pattern_id, DEFAULT_ROTATION)
    logger.info("Default rotation pattern seeded: Song x3 -> News -> Song x2 -> Ad")
    return True
