"""PULSE: UTC time helpers.

SQLite hands datetimes back without tzinfo; everything that compares
timestamps goes through as_utc() first.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")
