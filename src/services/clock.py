from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_run_time(interval_seconds: float, now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now + timedelta(seconds=interval_seconds)
