"""Timestamp and identifier helpers.

All persisted timestamps are UTC ISO-8601 strings with a fixed microsecond
precision so that lexical order in SQL matches chronological order.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def to_iso(dt: datetime | None) -> str | None:
    """Convert datetime to a sortable ISO 8601 string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 string to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt
