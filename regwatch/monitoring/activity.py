"""
Collect one digest period of pipeline activity from the stores.

  successful updates  ← run log, ``success`` runs inside the period
  anomalies           ← quarantine store, everything still pending
  crawler failures    ← backoff store: non-zero counters are backing off
                        or paused; counters cleared inside the period are
                        reported as recovered
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from regwatch.config import BackoffConfig
from regwatch.models.outcomes import PipelineStatus, QuarantinedItem
from regwatch.monitoring.digest import (
    DIGEST_PERIOD,
    CrawlerFailure,
    FailureStatus,
    SuccessfulUpdate,
)
from regwatch.pipeline.stores import PipelineStores


@dataclass(frozen=True)
class WeeklyActivity:
    successful_updates: list[SuccessfulUpdate] = field(default_factory=list)
    quarantined_anomalies: list[QuarantinedItem] = field(default_factory=list)
    crawler_failures: list[CrawlerFailure] = field(default_factory=list)


def collect_weekly_activity(
    stores: PipelineStores,
    now: datetime,
    backoff: BackoffConfig = BackoffConfig(),
) -> WeeklyActivity:
    period_start = now - DIGEST_PERIOD

    updates = [
        SuccessfulUpdate(
            source_id=run.source_id,
            field=run.category.value,
            verified_at=run.attempted_at,
            summary=run.summary,
        )
        for run in stores.runs.list_runs(since=period_start, status=PipelineStatus.SUCCESS)
        if run.attempted_at <= now
    ]

    failures: list[CrawlerFailure] = []
    for counter in stores.backoff.list_counters():
        if counter.failure_count > 0:
            status = (
                FailureStatus.PAUSED
                if counter.failure_count >= backoff.pause_after_failures
                else FailureStatus.BACKING_OFF
            )
        elif counter.recovered_at is not None and period_start <= counter.recovered_at <= now:
            status = FailureStatus.RECOVERED
        else:
            continue
        failures.append(
            CrawlerFailure(
                source_id=counter.source_id,
                failure_count=counter.failure_count,
                last_error=counter.last_error,
                status=status,
                category=counter.category,
            )
        )

    return WeeklyActivity(
        successful_updates=updates,
        quarantined_anomalies=stores.quarantine.pending(),
        crawler_failures=failures,
    )
