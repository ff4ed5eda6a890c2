from datetime import datetime
from typing import Sequence

from core.entities import SourceItem


def build_bulletin(
    items: Sequence[SourceItem],
    *,
    station_name: str,
    headline_count: int = 5,
    now: datetime,
) -> str:
    """Spoken headline bulletin read between songs."""
    headlines = " ".join(
        f"{i}. {item.title}. From {item.origin}."
        for i, item in enumerate(items[:headline_count], start=1)
    )
    return (
        f"{station_name} News Update. {now.strftime('%H:%M')}. "
        f"Here are today's headlines. {headlines} "
        f"That's the latest from {station_name}."
    )
