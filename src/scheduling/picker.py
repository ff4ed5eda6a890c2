"""
By-type content picker.
"""
import logging
import random
from datetime import datetime
from typing import Optional

from core.entities import ContentRef, ContentType, SelectionStrategy
from services.database import Database

logger = logging.getLogger(__name__)


class ContentPicker:
    def __init__(self, store: Database, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    async def pick(
        self,
        content_type: ContentType,
        strategy: SelectionStrategy = SelectionStrategy.LEAST_RECENTLY_PLAYED,
    ) -> Optional[ContentRef]:
        candidates = await self.store.list_ready_content(content_type)
        if not candidates:
            return None

        if strategy == SelectionStrategy.RANDOM:
            return self.rng.choice(candidates)

        if strategy == SelectionStrategy.SEQUENTIAL:
            # Storage returns oldest-created first
            return candidates[0]

        return await self._least_recently_played(candidates)

    async def _least_recently_played(self, candidates) -> ContentRef:
        # Never-played content ranks before anything played; ties keep storage order.
        best: Optional[ContentRef] = None
        best_time: Optional[datetime] = None

        for candidate in candidates:
            played_at = await self.store.last_played_at(candidate.id)
            if played_at is None:
                return candidate
            if best is None or played_at < best_time:
                best, best_time = candidate, played_at

        return best
