"""
Time helpers.

Every pipeline component takes ``now`` as an argument; ``utcnow()`` is only
called at the outermost layer (the CLI) to supply it.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into aware UTC."""
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def isoformat_z(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from ``earlier`` to ``later`` (floored, may be negative)."""
    seconds = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    return math.floor(seconds / 86400)

