import httpx
from datetime import datetime, timezone
from typing import List, Optional

from core.errors import SourceFetchError
from ingestion.base import SourceAdapter, IngestedItem


class RedditAdapter(SourceAdapter):
    def __init__(
        self,
        subreddit: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.subreddit = subreddit
        self.name = f"reddit/{subreddit}"
        self.timeout = timeout
        self.transport = transport

    async def fetch_items(self) -> List[IngestedItem]:
        headers = {"User-Agent": "headline-radio/1.0"}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=headers, transport=self.transport
            ) as client:
                resp = await client.get(
                    f"https://www.reddit.com/r/{self.subreddit}/new.json?limit=50"
                )
                resp.raise_for_status()
                posts = resp.json()["data"]["children"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise SourceFetchError(self.name, str(e)) from e

        items: List[IngestedItem] = []
        for post in posts:
            data = post.get("data", {})
            permalink = data.get("permalink")
            if not permalink:
                continue

            items.append(
                IngestedItem(
                    source=self.name,
                    title=data.get("title", ""),
                    content=data.get("selftext", ""),
                    url=f"https://reddit.com{permalink}",
                    published_at=datetime.fromtimestamp(data.get("created_utc", 0), tz=timezone.utc),
                )
            )

        return items
