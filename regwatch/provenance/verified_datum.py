"""
Confidence tiers and verified-datum wrappers for published facts.

Every value shown to a user travels inside a ``VerifiedDatum`` that says
where it came from, when it was last confirmed, and how much to trust it.

Tier order (lowest trust first)::

    stale < user_reported < estimated < verified

A composite value computed from several data can never claim more trust
than its weakest ingredient: ``derive_confidence`` returns the lowest tier
present, and a stale ingredient always makes the composite stale.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from regwatch.config import StalenessConfig
from regwatch.utils.time_utils import whole_days_between

T = TypeVar("T")


class ConfidenceTier(str, Enum):
    """Ranked trust classification of a fact."""

    STALE = "stale"
    USER_REPORTED = "user_reported"
    ESTIMATED = "estimated"
    VERIFIED = "verified"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    def __ge__(self, other: "ConfidenceTier") -> bool:
        return self.rank >= other.rank

    def __gt__(self, other: "ConfidenceTier") -> bool:
        return self.rank > other.rank

    def __le__(self, other: "ConfidenceTier") -> bool:
        return self.rank <= other.rank

    def __lt__(self, other: "ConfidenceTier") -> bool:
        return self.rank < other.rank


_TIER_RANKS: dict[ConfidenceTier, int] = {
    ConfidenceTier.STALE: 0,
    ConfidenceTier.USER_REPORTED: 1,
    ConfidenceTier.ESTIMATED: 2,
    ConfidenceTier.VERIFIED: 3,
}


@dataclass(frozen=True)
class DatumSource:
    url: Optional[str]
    verified_at: Optional[datetime]
    label: str


@dataclass(frozen=True)
class VerifiedDatum(Generic[T]):
    """A value plus its provenance and trust level.

    Attributes:
        value:      The fact itself.
        source:     Where and when it was confirmed.
        confidence: Tier assigned at construction.
        stale_days: Whole days since ``source.verified_at``; ``None`` when
                    there is no confirmation time (estimates).
        is_stale:   Age exceeds the category's staleness threshold.
    """

    value: T
    source: DatumSource
    confidence: ConfidenceTier
    stale_days: Optional[int]
    is_stale: bool

    @property
    def effective_confidence(self) -> ConfidenceTier:
        """``stale`` once the datum has aged out, otherwise its own tier."""
        return ConfidenceTier.STALE if self.is_stale else self.confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "source": {
                "url": self.source.url,
                "verified_at": (
                    self.source.verified_at.isoformat() if self.source.verified_at else None
                ),
                "label": self.source.label,
            },
            "confidence": self.confidence.value,
            "stale_days": self.stale_days,
            "is_stale": self.is_stale,
        }


# ── Constructors ──────────────────────────────────────────────────────────────


def verified(
    value: T,
    url: str,
    verified_at: datetime,
    label: str,
    now: datetime,
    category: Optional[str] = None,
    thresholds: StalenessConfig = StalenessConfig(),
) -> VerifiedDatum[T]:
    """Wrap a value confirmed against an authoritative source."""
    days = whole_days_between(verified_at, now)
    return VerifiedDatum(
        value=value,
        source=DatumSource(url=url, verified_at=verified_at, label=label),
        confidence=ConfidenceTier.VERIFIED,
        stale_days=days,
        is_stale=days > thresholds.threshold_for(category),
    )


def estimated(value: T, basis: str) -> VerifiedDatum[T]:
    """Wrap a derived or modelled value; ``basis`` explains the derivation."""
    return VerifiedDatum(
        value=value,
        source=DatumSource(url=None, verified_at=None, label=basis),
        confidence=ConfidenceTier.ESTIMATED,
        stale_days=None,
        is_stale=False,
    )


def user_reported(value: T, reported_at: datetime, now: datetime) -> VerifiedDatum[T]:
    """Wrap a community-submitted value."""
    return VerifiedDatum(
        value=value,
        source=DatumSource(url=None, verified_at=reported_at, label="User reported"),
        confidence=ConfidenceTier.USER_REPORTED,
        stale_days=whole_days_between(reported_at, now),
        is_stale=False,
    )


def stale(
    value: T,
    url: str,
    verified_at: datetime,
    label: str,
    now: datetime,
) -> VerifiedDatum[T]:
    """Wrap a value served from a last-known-good fallback."""
    return VerifiedDatum(
        value=value,
        source=DatumSource(url=url, verified_at=verified_at, label=label),
        confidence=ConfidenceTier.STALE,
        stale_days=whole_days_between(verified_at, now),
        is_stale=True,
    )


def verify_batch(
    items: dict[str, T],
    url: str,
    verified_at: datetime,
    label: str,
    now: datetime,
    category: Optional[str] = None,
    thresholds: StalenessConfig = StalenessConfig(),
) -> dict[str, VerifiedDatum[T]]:
    """``verified()`` applied to every value of ``items``, keys preserved."""
    return {
        key: verified(value, url, verified_at, label, now, category, thresholds)
        for key, value in items.items()
    }


# ── Composition ───────────────────────────────────────────────────────────────


def derive_confidence(*data: VerifiedDatum[Any]) -> ConfidenceTier:
    """Lowest effective tier among ``data``; ``verified`` when empty."""
    if not data:
        return ConfidenceTier.VERIFIED
    return min((d.effective_confidence for d in data), key=lambda tier: tier.rank)


def needs_outdated_indicator(datum: VerifiedDatum[Any]) -> bool:
    """Whether a presentation layer must flag this datum as outdated or unconfirmed."""
    return datum.is_stale or datum.confidence < ConfidenceTier.VERIFIED
