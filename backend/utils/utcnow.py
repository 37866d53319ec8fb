"""Naive-UTC time helpers.

Timestamps in the database are stored as naive UTC datetimes. Values that
arrive timezone-aware (API payloads, ``datetime.now(timezone.utc)``) are
converted with :func:`to_naive_utc` before they are compared or persisted.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo after converting an aware datetime to UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
