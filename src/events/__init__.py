"""
Events module - One-way outbound notifications of station state changes.
"""
from events.base import EventPublisher, NullPublisher, publish_safely
from events.file_publisher import FilePublisher

__all__ = [
    "EventPublisher",
    "NullPublisher",
    "FilePublisher",
    "publish_safely",
]
