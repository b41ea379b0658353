"""
Exponential failure backoff for unreachable or broken sources.

For ``n`` consecutive failures::

    delay = min(base * 2 ** (n - 1), cap)      # 5 min, 10, 20, 40 ... 24 h

At ``pause_after_failures`` (default 10) automatic retries stop and the
source waits for manual investigation. The counter itself lives in a
``BackoffStore`` (see ``regwatch.pipeline.stores``); this module is pure and
derives the state from the count and the time of the latest failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from regwatch.config import BackoffConfig
from regwatch.models.source import DataCategory


@dataclass(frozen=True)
class Retrying:
    next_retry_at: datetime


@dataclass(frozen=True)
class Paused:
    reason: str


BackoffStatus = Union[Retrying, Paused]


@dataclass(frozen=True)
class BackoffState:
    """Backoff position of one source (optionally one category of it).

    ``delay`` is ``None`` exactly when ``status`` is ``Paused``.
    """

    source_id: str
    failure_count: int
    delay: Optional[timedelta]
    status: BackoffStatus
    reason: str
    category: Optional[DataCategory] = None

    @property
    def paused(self) -> bool:
        return isinstance(self.status, Paused)

    @property
    def next_retry_at(self) -> Optional[datetime]:
        if isinstance(self.status, Retrying):
            return self.status.next_retry_at
        return None

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "category": self.category.value if self.category else None,
            "failure_count": self.failure_count,
            "delay_minutes": (
                self.delay.total_seconds() / 60 if self.delay is not None else None
            ),
            "paused": self.paused,
            "next_retry_at": (
                self.next_retry_at.isoformat() if self.next_retry_at else None
            ),
            "reason": self.reason,
        }


def backoff_delay(failure_count: int, config: BackoffConfig = BackoffConfig()) -> timedelta:
    """Capped exponential delay for ``failure_count >= 1``."""
    if failure_count < 1:
        return timedelta(0)
    base = timedelta(minutes=config.base_minutes)
    cap = timedelta(hours=config.max_hours)
    # Cap the exponent so huge counts cannot overflow timedelta.
    exponent = min(failure_count - 1, 32)
    return min(base * (2 ** exponent), cap)


def compute_backoff(
    source_id: str,
    failure_count: int,
    now: datetime,
    config: BackoffConfig = BackoffConfig(),
    category: Optional[DataCategory] = None,
) -> BackoffState:
    """Return the backoff state after ``failure_count`` consecutive failures.

    Args:
        source_id: Source the failures belong to.
        failure_count: Consecutive failures so far (0 = healthy).
        now: Time of the latest failure; the retry is scheduled from here.
        config: Base delay, cap, and pause threshold.
        category: Optional category, carried through for reporting.

    Raises:
        ValueError: If ``failure_count`` is negative.
    """
    if failure_count < 0:
        raise ValueError(f"failure_count must be >= 0, got {failure_count}.")

    if failure_count == 0:
        return BackoffState(
            source_id=source_id,
            failure_count=0,
            delay=timedelta(0),
            status=Retrying(next_retry_at=now),
            reason="Healthy: no consecutive failures",
            category=category,
        )

    if failure_count >= config.pause_after_failures:
        reason = (
            f"Paused after {failure_count} consecutive failures; "
            "manual investigation required before crawling resumes"
        )
        return BackoffState(
            source_id=source_id,
            failure_count=failure_count,
            delay=None,
            status=Paused(reason=reason),
            reason=reason,
            category=category,
        )

    delay = backoff_delay(failure_count, config)
    minutes = delay.total_seconds() / 60
    return BackoffState(
        source_id=source_id,
        failure_count=failure_count,
        delay=delay,
        status=Retrying(next_retry_at=now + delay),
        reason=f"Failure #{failure_count}: retrying in {minutes:g} minutes",
        category=category,
    )


def is_retry_due(state: BackoffState, now: datetime) -> bool:
    """``True`` when an automatic retry may run at ``now``."""
    if isinstance(state.status, Paused):
        return False
    return now >= state.status.next_retry_at
