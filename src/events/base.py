"""
Module to contain base class for outbound event publishers
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    """
    Base interface for all event publishers.
    """

    name: str

    @abstractmethod
    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        """
        Publish one event.
        May raise on failure; callers go through publish_safely.
        """
        raise NotImplementedError


class NullPublisher(EventPublisher):
    name = "null"

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        return None


async def publish_safely(
    publisher: Optional[EventPublisher],
    event: str,
    payload: Dict[str, Any],
) -> None:
    """Publish without letting a subscriber failure reach the caller."""
    if publisher is None:
        return
    try:
        await publisher.publish(event, payload)
    except Exception as e:
        logger.error(f"Event publish failed: event={event}, publisher={publisher.name}, error={e}")
