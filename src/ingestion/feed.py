"""
Deduplicating ingestion feed: fetch every enabled source, keep relevant and
never-seen items.
"""
import asyncio
import hashlib
import logging
from typing import List, Optional, Sequence

from core.entities import SourceItem
from core.errors import SourceFetchError
from ingestion.base import IngestedItem, SourceAdapter
from processing.deduplicator import BoundedIdentitySet
from processing.prefilter import passes_prefilter
from services.clock import utcnow
from services.database import Database
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)


def item_id(link: str) -> str:
    """Stable identity of an item: truncated sha256 of its canonical link."""
    return hashlib.sha256(link.strip().encode("utf-8")).hexdigest()[:16]


class IngestionFeed:
    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        *,
        keywords: Sequence[str] = (),
        capacity: int = 5000,
        retry_policy: Optional[RetryPolicy] = None,
        store: Optional[Database] = None,
    ):
        self.adapters = list(adapters)
        self.keywords = list(keywords)
        self.seen = BoundedIdentitySet(capacity)
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=2.0)
        self.store = store

    async def load(self) -> None:
        """Restore the identity set from storage."""
        if self.store is None:
            return
        ids = await self.store.load_seen_ids(self.seen.capacity)
        for seen_id in ids:
            self.seen.add(seen_id)
        logger.info(f"Restored {len(ids)} seen item ids")

    def set_sources(self, adapters: Sequence[SourceAdapter]) -> None:
        self.adapters = list(adapters)
        logger.info(f"Ingestion sources updated: {len(self.adapters)} adapters")

    def set_keywords(self, keywords: Sequence[str]) -> None:
        self.keywords = list(keywords)
        logger.info(f"Ingestion keywords updated: {len(self.keywords)} keywords")

    async def _fetch_source(self, adapter: SourceAdapter) -> List[IngestedItem]:
        return await self.retry_policy.run(
            adapter.fetch_items,
            label=f"source:{adapter.name}",
            retry_on=(SourceFetchError,),
        )

    async def fetch_once(self) -> List[SourceItem]:
        """
        Fetch all sources and return only relevant, newly seen items.
        Never raises: failing sources are skipped for this call.
        """
        fetched_at = utcnow()
        results = await asyncio.gather(
            *(self._fetch_source(adapter) for adapter in self.adapters),
            return_exceptions=True,
        )

        accepted: List[SourceItem] = []
        for adapter, result in zip(self.adapters, results):
            if isinstance(result, BaseException):
                logger.error(f"Source {adapter.name} skipped: {result}")
                continue

            new_for_source = 0
            for raw in result:
                source_item = self._accept(raw, fetched_at)
                if source_item is not None:
                    accepted.append(source_item)
                    new_for_source += 1

            logger.debug(f"Source {adapter.name}: {len(result)} entries, {new_for_source} new")

        if accepted and self.store is not None:
            try:
                await self.store.save_seen_ids([i.id for i in accepted], self.seen.capacity)
            except Exception as e:
                logger.error(f"Failed to persist seen ids: {e}")

        logger.info(
            f"Ingestion fetch complete: {len(accepted)} new items",
            extra={"new_items": len(accepted), "seen_total": len(self.seen)},
        )
        return accepted

    def _accept(self, raw: IngestedItem, fetched_at) -> Optional[SourceItem]:
        if not raw.url:
            return None
        if not passes_prefilter(raw, keywords=self.keywords):
            return None

        identity = item_id(raw.url)
        if not self.seen.add(identity):
            return None

        return SourceItem(
            id=identity,
            origin=raw.source,
            title=raw.title.strip(),
            body=raw.content.strip(),
            link=raw.url,
            published_at=raw.published_at or fetched_at,
            fetched_at=fetched_at,
        )
