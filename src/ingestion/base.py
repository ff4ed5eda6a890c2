"""
Base classes for Ingestion
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class IngestedItem(BaseModel):
    """
    Raw entry as returned by a source, before relevance and identity filtering
    """
    source: str
    title: str
    content: str
    url: str
    published_at: Optional[datetime]


class SourceAdapter(ABC):
    """
    Base interface for all ingestion sources.
    """

    name: str

    @abstractmethod
    async def fetch_items(self) -> List[IngestedItem]:
        """
        Fetch the current entries of this source.
        Raises SourceFetchError on network or parse failure so the feed can retry.
        """
        raise NotImplementedError
