"""Timestamp helpers for wire events."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return the current time as an ISO 8601 UTC string."""
    return utc_now().isoformat()


def isoformat_utc(value: datetime) -> str:
    """Format a stored (naive UTC) datetime as an ISO 8601 UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
