"""
Weekly health digest.

Summarizes one week of pipeline outcomes for operators:

  successful_updates     facts verified by a crawl this week
  quarantined_anomalies  values awaiting human approval
  frequency_changes      crawl cadence changes between schedules
  crawler_failures       crawlers backing off, paused, or recovered
  self_healed_blocks     automatic extraction repairs awaiting approval

Health score
------------
  100 - paused_penalty (15)          x paused crawlers
      - pending_anomaly_penalty (10) x anomalies awaiting approval
      - backing_off_penalty (0)      x crawlers still backing off
      - self_healed_penalty (0)      x self-healed blocks
  clamped to [0, 100].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Sequence

from regwatch.config import DigestConfig
from regwatch.models.outcomes import QuarantinedItem
from regwatch.models.source import DataCategory
from regwatch.scheduling.frequency import FrequencyChange

logger = logging.getLogger(__name__)

DIGEST_PERIOD = timedelta(days=7)


class FailureStatus(str, Enum):
    BACKING_OFF = "backing_off"
    PAUSED = "paused"
    RECOVERED = "recovered"


class HealMethod(str, Enum):
    LLM_VISION = "llm_vision"
    PATTERN_MATCH = "pattern_match"


@dataclass(frozen=True)
class SuccessfulUpdate:
    source_id: str
    field: str
    verified_at: datetime
    summary: str


@dataclass(frozen=True)
class CrawlerFailure:
    source_id: str
    failure_count: int
    last_error: Optional[str]
    status: FailureStatus
    category: Optional[DataCategory] = None


@dataclass(frozen=True)
class SelfHealedBlock:
    source_id: str
    field: str
    method: HealMethod
    confidence: float
    awaiting_approval: bool = True


@dataclass(frozen=True)
class WeeklyDigest:
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    successful_updates: list[SuccessfulUpdate] = field(default_factory=list)
    quarantined_anomalies: list[QuarantinedItem] = field(default_factory=list)
    frequency_changes: list[FrequencyChange] = field(default_factory=list)
    crawler_failures: list[CrawlerFailure] = field(default_factory=list)
    self_healed_blocks: list[SelfHealedBlock] = field(default_factory=list)
    health_score: int = 100
    summary_line: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "health_score": self.health_score,
            "summary_line": self.summary_line,
            "successful_updates": [
                {
                    "source_id": u.source_id,
                    "field": u.field,
                    "verified_at": u.verified_at.isoformat(),
                    "summary": u.summary,
                }
                for u in self.successful_updates
            ],
            "quarantined_anomalies": [
                a.model_dump(mode="json") for a in self.quarantined_anomalies
            ],
            "frequency_changes": [c.to_dict() for c in self.frequency_changes],
            "crawler_failures": [
                {
                    "source_id": f.source_id,
                    "category": f.category.value if f.category else None,
                    "failure_count": f.failure_count,
                    "last_error": f.last_error,
                    "status": f.status.value,
                }
                for f in self.crawler_failures
            ],
            "self_healed_blocks": [
                {
                    "source_id": b.source_id,
                    "field": b.field,
                    "method": b.method.value,
                    "confidence": b.confidence,
                    "awaiting_approval": b.awaiting_approval,
                }
                for b in self.self_healed_blocks
            ],
        }


def compute_health_score(
    anomalies: Sequence[QuarantinedItem],
    failures: Sequence[CrawlerFailure],
    self_healed: Sequence[SelfHealedBlock],
    config: DigestConfig = DigestConfig(),
) -> int:
    paused = sum(1 for f in failures if f.status == FailureStatus.PAUSED)
    backing_off = sum(1 for f in failures if f.status == FailureStatus.BACKING_OFF)
    pending = sum(1 for a in anomalies if a.awaiting_approval)
    score = (
        100
        - config.paused_penalty * paused
        - config.pending_anomaly_penalty * pending
        - config.backing_off_penalty * backing_off
        - config.self_healed_penalty * len(self_healed)
    )
    return max(0, min(100, score))


def compile_weekly_digest(
    successful_updates: Sequence[SuccessfulUpdate],
    quarantined_anomalies: Sequence[QuarantinedItem],
    frequency_changes: Sequence[FrequencyChange],
    crawler_failures: Sequence[CrawlerFailure],
    self_healed_blocks: Sequence[SelfHealedBlock],
    now: datetime,
    config: DigestConfig = DigestConfig(),
) -> WeeklyDigest:
    """Bundle a week of outcomes with a health score and a one-line summary."""
    score = compute_health_score(
        quarantined_anomalies, crawler_failures, self_healed_blocks, config
    )
    parts = [
        f"{len(successful_updates)} verified updates",
        f"{len(quarantined_anomalies)} quarantined",
        f"{len(self_healed_blocks)} self-healed",
    ]
    paused = sum(1 for f in crawler_failures if f.status == FailureStatus.PAUSED)
    if paused:
        parts.append(f"{paused} crawler(s) paused")
    parts.append(f"Health: {score}/100")

    digest = WeeklyDigest(
        period_start=now - DIGEST_PERIOD,
        period_end=now,
        generated_at=now,
        successful_updates=list(successful_updates),
        quarantined_anomalies=list(quarantined_anomalies),
        frequency_changes=list(frequency_changes),
        crawler_failures=list(crawler_failures),
        self_healed_blocks=list(self_healed_blocks),
        health_score=score,
        summary_line=" | ".join(parts),
    )
    logger.info("Weekly digest: %s", digest.summary_line)
    return digest
