"""
Ingestion from RSS sources
"""

from datetime import datetime, timezone
from typing import List, Optional
import feedparser
import httpx

from core.errors import SourceFetchError
from ingestion.base import SourceAdapter, IngestedItem

HEADERS = {
    "User-Agent": "headline-radio/1.0",
    "Accept": "application/rss+xml, application/xml, text/xml",
}


def _entry_published(entry) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc)


class RSSAdapter(SourceAdapter):
    def __init__(
        self,
        feed_url: str,
        source_name: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.feed_url = feed_url
        self.name = source_name
        self.timeout = timeout
        self.transport = transport

    async def fetch_items(self) -> List[IngestedItem]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=HEADERS,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                resp = await client.get(self.feed_url)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceFetchError(self.name, f"request failed: {e}") from e

        feed = feedparser.parse(resp.content)
        if feed.bozo and not feed.entries:
            raise SourceFetchError(self.name, f"unparseable feed: {feed.get('bozo_exception')}")

        items: List[IngestedItem] = []
        for entry in feed.entries:
            link = entry.get("link") or entry.get("id") or ""
            if not link:
                continue

            items.append(
                IngestedItem(
                    source=self.name,
                    title=entry.get("title", "").strip(),
                    content=(entry.get("summary") or entry.get("description") or "").strip(),
                    url=link,
                    published_at=_entry_published(entry),
                )
            )

        return items
