"""
Source Factory - Creates ingestion adapters from configuration.
"""
import logging
from typing import List

from ingestion.base import SourceAdapter
from ingestion.reddit import RedditAdapter
from ingestion.rss import RSSAdapter
from services.config import SourceConfig, IngestionConfig, get_enabled_sources

logger = logging.getLogger(__name__)


def create_source_adapters(source_config: SourceConfig, timeout: float = 15.0) -> List[SourceAdapter]:
    """
    Create the adapters for one configured source.
    An RSS source yields one adapter per feed URL so each feed fails and retries on its own.

    Raises:
        ValueError: If source type is unknown or required fields are missing
    """
    source_type = source_config.type.lower()

    if source_type == "rss":
        if not source_config.feeds:
            raise ValueError("RSS source requires 'feeds' field")
        name = source_config.name or "rss"
        return [
            RSSAdapter(feed_url=url, source_name=name, timeout=timeout)
            for url in source_config.feeds
        ]

    elif source_type == "reddit":
        if not source_config.subreddit:
            raise ValueError("Reddit source requires 'subreddit' field")
        return [RedditAdapter(source_config.subreddit, timeout=timeout)]

    else:
        raise ValueError(f"Unknown source type: {source_type}")


def create_adapters_from_config(ingestion_config: IngestionConfig) -> List[SourceAdapter]:
    """
    Create all enabled source adapters from ingestion configuration.
    """
    adapters = []

    for source_config in get_enabled_sources(ingestion_config):
        try:
            created = create_source_adapters(source_config, timeout=ingestion_config.timeout)
            adapters.extend(created)
            logger.info(f"Created {len(created)} {source_config.type} adapter(s): {source_config.subreddit or source_config.name or 'default'}")
        except Exception as e:
            logger.error(f"Failed to create adapter for {source_config.type}: {e}")

    return adapters
