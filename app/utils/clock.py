# app/utils/clock.py
"""
Time helpers. All timestamps in this app are naive UTC datetimes.
Services take a `clock` callable so tests can pin the current time.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (matches how columns are stored)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_wire(ts: datetime) -> str:
    """Format a naive UTC datetime as ISO-8601 with a Z suffix, second precision."""
    return ts.replace(microsecond=0).isoformat() + "Z"


def from_wire(value: str) -> datetime:
    """Parse an ISO-8601 timestamp back into a naive UTC datetime."""
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts
