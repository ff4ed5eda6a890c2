"""
File event publisher
"""
import json
from pathlib import Path
from typing import Any, Dict

from events.base import EventPublisher
from services.clock import utcnow


class FilePublisher(EventPublisher):
    """Appends every event as one JSON line."""

    name = "file"

    def __init__(self, path: str = "data/events.jsonl"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        line = json.dumps(
            {
                "event": event,
                "at": utcnow().isoformat(),
                "payload": payload,
            },
            default=str,
        )
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
