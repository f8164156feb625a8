"""UTC time utilities shared by the scheduler and the win check."""

import datetime
from typing import Optional


def utcnow() -> datetime.datetime:
    """Get the current timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def after_minutes(start: datetime.datetime, minutes: float) -> datetime.datetime:
    return start + datetime.timedelta(minutes=minutes)


def seconds_until(deadline: datetime.datetime) -> float:
    """Seconds until the deadline, never negative."""
    delta = ensure_utc(deadline) - utcnow()
    return max(0.0, delta.total_seconds())
