"""
User-facing freshness stamps.

A ``FreshnessStamp`` turns "when was this last confirmed" into a short
label and an urgency level:

  level     | age                                  | label
  ----------|--------------------------------------|-------------------------------
  fresh     | < fresh_hours (24 h)                 | Verified against CO: 4 hours ago
  aging     | < stale_after_days (7)               | Verified: 3 days ago
  stale     | < critical_after_days (30)           | Last verified: 12 days ago
  critical  | otherwise                            | STALE: Last verified 45 days ago

The verification method is recorded for audit. A timestamp in the future
(clock skew between hosts) is treated as "just now".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from regwatch.config import FreshnessConfig
from regwatch.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


class FreshnessLevel(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"
    CRITICAL = "critical"


class VerificationMethod(str, Enum):
    CRAWL = "crawl"
    MANUAL = "manual"
    API = "api"
    LKG_FALLBACK = "lkg_fallback"


@dataclass(frozen=True)
class FreshnessStamp:
    source_id: str
    field: str
    verified_at: datetime
    method: VerificationMethod
    source_url: str
    label: str
    is_stale: bool
    level: FreshnessLevel

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "field": self.field,
            "verified_at": self.verified_at.isoformat(),
            "method": self.method.value,
            "source_url": self.source_url,
            "label": self.label,
            "is_stale": self.is_stale,
            "level": self.level.value,
        }


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} ago"


def _fresh_label(seconds: float) -> str:
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return _plural(int(seconds // 60), "minute")
    return _plural(int(seconds // 3600), "hour")


def compute_freshness_stamp(
    source_id: str,
    field: str,
    verified_at: datetime,
    source_url: str,
    method: VerificationMethod,
    now: datetime,
    policy: FreshnessConfig = FreshnessConfig(),
) -> FreshnessStamp:
    """Classify the age of ``verified_at`` relative to ``now``."""
    age_seconds = (ensure_utc(now) - ensure_utc(verified_at)).total_seconds()
    if age_seconds < 0:
        logger.warning(
            "verified_at %s is after now %s for %s.%s; treating as just verified",
            verified_at.isoformat(),
            now.isoformat(),
            source_id,
            field,
        )
        age_seconds = 0.0

    days = int(age_seconds // 86400)

    if age_seconds < policy.fresh_hours * 3600:
        level = FreshnessLevel.FRESH
        label = f"Verified against {source_id}: {_fresh_label(age_seconds)}"
    elif days < policy.stale_after_days:
        level = FreshnessLevel.AGING
        label = f"Verified: {_plural(days, 'day')}"
    elif days < policy.critical_after_days:
        level = FreshnessLevel.STALE
        label = f"Last verified: {_plural(days, 'day')}"
    else:
        level = FreshnessLevel.CRITICAL
        label = f"STALE: Last verified {_plural(days, 'day')}"

    return FreshnessStamp(
        source_id=source_id,
        field=field,
        verified_at=verified_at,
        method=method,
        source_url=source_url,
        label=label,
        is_stale=level in (FreshnessLevel.STALE, FreshnessLevel.CRITICAL),
        level=level,
    )
