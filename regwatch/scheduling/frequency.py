"""
Adaptive crawl frequency policy and schedule builder.

The re-check cadence of a fact follows how fast that kind of fact actually
changes, sharpened by how close the source's nearest application deadline is:

  Category     | Rule                                   | Frequency  | Priority
  -------------|----------------------------------------|------------|---------
  deadlines    | no deadline data                       | weekly     | 4
  deadlines    | deadline passed                        | weekly     | 5
  deadlines    | <= 2 days                              | 6_hours    | 1
  deadlines    | <= 7 days                              | twice_week | 2
  deadlines    | <= 30 days                             | daily      | 2
  deadlines    | > 30 days, window closed               | weekly     | 5
  deadlines    | > 30 days, window open                 | weekly     | 4
  fees/regs    | 0 <= days <= 30                        | daily      | 2
  fees/regs    | otherwise                              | weekly     | 4
  draw_odds    | always (event-driven)                  | on_trigger | 5

Priority 1 is most urgent. ``on_trigger`` has no time-based due date.
All functions are pure; ``now`` is always supplied by the caller.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Sequence

from regwatch.models.source import DataCategory, SourceContext
from regwatch.utils.time_utils import parse_iso_datetime

logger = logging.getLogger(__name__)


class CrawlFrequency(str, Enum):
    SIX_HOURS = "6_hours"
    TWICE_WEEK = "twice_week"
    DAILY = "daily"
    WEEKLY = "weekly"
    ON_TRIGGER = "on_trigger"

    @property
    def interval_ms(self) -> float:
        """Fixed re-check interval in milliseconds (``math.inf`` for on_trigger)."""
        return FREQUENCY_INTERVAL_MS[self]

    @property
    def interval(self) -> Optional[timedelta]:
        if self == CrawlFrequency.ON_TRIGGER:
            return None
        return timedelta(milliseconds=self.interval_ms)


_HOUR_MS = 60 * 60 * 1000
_DAY_MS = 24 * _HOUR_MS

FREQUENCY_INTERVAL_MS: dict[CrawlFrequency, float] = {
    CrawlFrequency.SIX_HOURS: 6 * _HOUR_MS,
    CrawlFrequency.TWICE_WEEK: 3.5 * _DAY_MS,
    CrawlFrequency.DAILY: _DAY_MS,
    CrawlFrequency.WEEKLY: 7 * _DAY_MS,
    CrawlFrequency.ON_TRIGGER: math.inf,
}


@dataclass(frozen=True)
class FrequencyDecision:
    frequency: CrawlFrequency
    priority: int
    reason: str


@dataclass(frozen=True)
class CrawlTask:
    """One scheduled re-check of one (source, category) pair."""

    task_id: str
    source_id: str
    category: DataCategory
    frequency: CrawlFrequency
    priority: int
    reason: str
    next_due_at: Optional[datetime]
    target_url: Optional[str]

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "source_id": self.source_id,
            "category": self.category.value,
            "frequency": self.frequency.value,
            "priority": self.priority,
            "reason": self.reason,
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
            "target_url": self.target_url,
        }


@dataclass(frozen=True)
class CrawlSchedule:
    tasks: list[CrawlTask]
    generated_at: datetime
    priority_histogram: dict[int, int]
    frequency_distribution: dict[CrawlFrequency, int]
    earliest_due_at: Optional[datetime]

    def task_for(self, source_id: str, category: DataCategory) -> Optional[CrawlTask]:
        for task in self.tasks:
            if task.source_id == source_id and task.category == category:
                return task
        return None

    @classmethod
    def from_dict(cls, payload: dict) -> "CrawlSchedule":
        """Rebuild a schedule written by ``to_dict()``; histograms are recomputed."""
        tasks = [
            CrawlTask(
                task_id=t["task_id"],
                source_id=t["source_id"],
                category=DataCategory(t["category"]),
                frequency=CrawlFrequency(t["frequency"]),
                priority=int(t["priority"]),
                reason=t.get("reason", ""),
                next_due_at=(
                    parse_iso_datetime(t["next_due_at"]) if t.get("next_due_at") else None
                ),
                target_url=t.get("target_url"),
            )
            for t in payload.get("tasks", [])
        ]
        return _assemble(tasks, parse_iso_datetime(payload["generated_at"]))

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at.isoformat(),
            "total_tasks": len(self.tasks),
            "priority_histogram": {str(k): v for k, v in self.priority_histogram.items()},
            "frequency_distribution": {
                k.value: v for k, v in self.frequency_distribution.items()
            },
            "earliest_due_at": (
                self.earliest_due_at.isoformat() if self.earliest_due_at else None
            ),
            "tasks": [t.to_dict() for t in self.tasks],
        }


@dataclass(frozen=True)
class FrequencyChange:
    source_id: str
    category: DataCategory
    old_frequency: CrawlFrequency
    new_frequency: CrawlFrequency
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "category": self.category.value,
            "old_frequency": self.old_frequency.value,
            "new_frequency": self.new_frequency.value,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "FrequencyChange":
        return cls(
            source_id=payload["source_id"],
            category=DataCategory(payload["category"]),
            old_frequency=CrawlFrequency(payload["old_frequency"]),
            new_frequency=CrawlFrequency(payload["new_frequency"]),
            reason=payload.get("reason", ""),
        )


# ── Policy ────────────────────────────────────────────────────────────────────


def compute_optimal_frequency(
    context: SourceContext,
    category: DataCategory,
) -> FrequencyDecision:
    """Decide how often ``category`` of ``context`` should be re-checked.

    Total over every category and every combination of missing or present
    deadline data; never raises for a well-formed context.
    """
    days = context.days_until_deadline

    if category == DataCategory.DRAW_ODDS:
        return FrequencyDecision(
            CrawlFrequency.ON_TRIGGER,
            5,
            "Draw odds change once per year when official results publish; "
            "re-check on trigger",
        )

    if category in (DataCategory.FEES, DataCategory.REGULATIONS):
        if days is not None and 0 <= days <= 30:
            return FrequencyDecision(
                CrawlFrequency.DAILY,
                2,
                f"Elevated from weekly: application deadline in {days} days",
            )
        return FrequencyDecision(
            CrawlFrequency.WEEKLY,
            4,
            f"Standard weekly check for {category.value} (legislative change cadence)",
        )

    # deadlines
    if days is None or context.nearest_deadline is None:
        return FrequencyDecision(
            CrawlFrequency.WEEKLY, 4, "No deadline data available; weekly discovery check"
        )
    if days < 0:
        return FrequencyDecision(
            CrawlFrequency.WEEKLY,
            5,
            f"Application window closed; deadline passed {abs(days)} days ago",
        )
    if days <= 2:
        return FrequencyDecision(
            CrawlFrequency.SIX_HOURS,
            1,
            f"CRITICAL: deadline in {days} days; server load expected on deadline day",
        )
    if days <= 7:
        return FrequencyDecision(
            CrawlFrequency.TWICE_WEEK, 2, f"Deadline approaching in {days} days"
        )
    if days <= 30:
        return FrequencyDecision(
            CrawlFrequency.DAILY, 2, f"Deadline within 30 days ({days} days out)"
        )
    if not context.window_open:
        return FrequencyDecision(
            CrawlFrequency.WEEKLY,
            5,
            f"Application window closed; next deadline {days} days out",
        )
    return FrequencyDecision(
        CrawlFrequency.WEEKLY, 4, f"Window open; deadline {days} days out"
    )


def build_crawl_schedule(
    contexts: Iterable[SourceContext],
    now: datetime,
    categories: Optional[Sequence[DataCategory]] = None,
) -> CrawlSchedule:
    """Produce one task per (source, category) pair, most urgent first.

    Args:
        contexts: Source contexts to schedule.
        now: Reference time; ``next_due_at = now + interval``.
        categories: Categories to schedule for every source. ``None`` uses
            each context's ``tracked_categories``.
    """
    tasks: list[CrawlTask] = []
    for ctx in contexts:
        for category in categories if categories is not None else ctx.tracked_categories:
            decision = compute_optimal_frequency(ctx, category)
            interval = decision.frequency.interval
            tasks.append(
                CrawlTask(
                    task_id=f"crawl-{ctx.source_id}-{category.value}",
                    source_id=ctx.source_id,
                    category=category,
                    frequency=decision.frequency,
                    priority=decision.priority,
                    reason=decision.reason,
                    next_due_at=now + interval if interval is not None else None,
                    target_url=ctx.url_for(category),
                )
            )

    schedule = _assemble(tasks, now)
    logger.debug(
        "Built crawl schedule: %d tasks, %d critical",
        len(schedule.tasks),
        schedule.priority_histogram[1],
    )
    return schedule


def _assemble(tasks: list[CrawlTask], generated_at: datetime) -> CrawlSchedule:
    """Sort tasks most urgent first and compute the schedule summaries."""
    ordered = sorted(
        tasks,
        key=lambda t: (t.priority, t.frequency.interval_ms, t.source_id, t.category.value),
    )
    histogram = {p: 0 for p in range(1, 6)}
    for task in ordered:
        histogram[task.priority] += 1
    due = [t.next_due_at for t in ordered if t.next_due_at is not None]
    return CrawlSchedule(
        tasks=ordered,
        generated_at=generated_at,
        priority_histogram=histogram,
        frequency_distribution=dict(Counter(t.frequency for t in ordered)),
        earliest_due_at=min(due) if due else None,
    )


def diff_schedules(
    previous: CrawlSchedule,
    current: CrawlSchedule,
) -> list[FrequencyChange]:
    """Frequency changes for pairs present in both schedules."""
    before = {(t.source_id, t.category): t for t in previous.tasks}
    changes: list[FrequencyChange] = []
    for task in current.tasks:
        old = before.get((task.source_id, task.category))
        if old is not None and old.frequency != task.frequency:
            changes.append(
                FrequencyChange(
                    source_id=task.source_id,
                    category=task.category,
                    old_frequency=old.frequency,
                    new_frequency=task.frequency,
                    reason=task.reason,
                )
            )
    return changes
