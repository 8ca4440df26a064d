"""
Datetime utilities for consistent timezone handling across the application.

All persisted and compared timestamps are timezone-aware UTC. The ABDM
gateway expects ISO-8601 timestamps in its TIMESTAMP header.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Get the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware UTC.

    Naive datetimes (e.g. read back from SQLite) are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_timestamp(ts: float) -> datetime:
    """Convert a POSIX timestamp to a UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def isoformat_utc(dt: datetime) -> str:
    """Format a datetime as ISO-8601 with millisecond precision and Z suffix."""
    utc = ensure_utc(dt)
    assert utc is not None
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into a UTC datetime.

    Accepts a trailing 'Z' as produced by JavaScript clients.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = ensure_utc(datetime.fromisoformat(value))
    assert parsed is not None
    return parsed
