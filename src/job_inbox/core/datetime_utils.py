"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import cast

__all__ = [
    "ensure_utc",
    "from_epoch_millis",
    "parse_datetime",
    "serialize_datetime",
    "utcnow",
]


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` in UTC, treating naive values as already UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to an ISO 8601 string in UTC."""
    if value is None:
        return None
    return cast(datetime, ensure_utc(value)).isoformat()


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string into a UTC ``datetime`` instance."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def from_epoch_millis(value: str | int | None) -> datetime | None:
    """Convert a provider ``internalDate`` (epoch milliseconds) to UTC."""
    if value is None or value == "":
        return None
    try:
        millis = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(millis / 1000, tz=UTC)
