"""
Crawl runner: the entry point that runs one source's crawl pipeline.

Wraps ``run_crawl_pipeline`` with the bookkeeping around it:

  1. Holds the (source, category) lock, so overlapping attempts are
     rejected (or serialized with ``wait_for_lock=True``).
  2. Refuses pairs whose backoff is paused (``CrawlPausedError``); only an
     operator ``resume()`` clears the pause, never a later crawl.
  3. Runs the orchestrator against the configured stores and schema.
  4. Updates the backoff counter: success resets it, fallback/rejection
     increments it. Reaching the pause threshold raises one P1
     ``BACKOFF_EXHAUSTED`` alert.
  5. Records the run in the run log for the weekly digest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from regwatch.config import AppConfig
from regwatch.models.extraction import CrawlAttempt, ExtractionSchema
from regwatch.models.outcomes import (
    Alert,
    AlertSeverity,
    CrawlRunRecord,
    ErrorCode,
    PipelineStatus,
)
from regwatch.models.source import DataCategory
from regwatch.pipeline.locks import CrawlLock, CrawlLockRegistry
from regwatch.pipeline.orchestrator import PipelineContext, PipelineResult, run_crawl_pipeline
from regwatch.pipeline.stores import BackoffCounter, PipelineStores
from regwatch.resilience.backoff import BackoffState, compute_backoff, is_retry_due

logger = logging.getLogger(__name__)


class CrawlPausedError(RuntimeError):
    """Raised when a crawl is attempted for a pair whose backoff is paused."""

    def __init__(self, source_id: str, category: DataCategory, reason: str) -> None:
        self.source_id = source_id
        self.category = category
        super().__init__(
            f"Crawling of {source_id}/{category.value} is paused: {reason}. "
            "Run `regwatch resume-crawler` once the cause is fixed."
        )


@dataclass(frozen=True)
class CrawlOutcome:
    result: PipelineResult
    backoff: BackoffState
    backoff_alert: Optional[Alert] = None

    @property
    def alerts(self) -> list[Alert]:
        extra = [self.backoff_alert] if self.backoff_alert else []
        return [*self.result.alerts, *extra]


class CrawlRunner:
    """Runs crawl attempts against one set of stores.

    Args:
        stores:  Explicit store bundle (in-memory or SQLite).
        config:  Application config; sanity, anomaly and backoff sections are used.
        schemas: source_id -> ExtractionSchema. Sources without a schema skip
            the structural check.
        locks:   Shared lock; pass the same registry to every runner that may
            crawl the same sources concurrently, or a ``SqliteLeaseLock``
            when runners live in separate processes.
        wait_for_lock: Serialize overlapping attempts instead of rejecting them.
    """

    def __init__(
        self,
        stores: PipelineStores,
        config: Optional[AppConfig] = None,
        schemas: Optional[Mapping[str, ExtractionSchema]] = None,
        locks: Optional[CrawlLock] = None,
        wait_for_lock: bool = False,
    ) -> None:
        self.stores = stores
        self.config = config or AppConfig()
        self.schemas = dict(schemas or {})
        self.locks = locks or CrawlLockRegistry()
        self.wait_for_lock = wait_for_lock

    def backoff_state(
        self,
        source_id: str,
        category: DataCategory,
        now: datetime,
    ) -> BackoffState:
        """Current backoff position, anchored at the latest failure."""
        counter = self.stores.backoff.get(source_id, category)
        anchor = counter.last_failure_at or now
        return compute_backoff(
            source_id, counter.failure_count, anchor, self.config.backoff, category
        )

    def should_attempt(self, source_id: str, category: DataCategory, now: datetime) -> bool:
        """Whether an automatic crawl of this pair may run at ``now``."""
        return is_retry_due(self.backoff_state(source_id, category, now), now)

    def run(
        self,
        attempt: CrawlAttempt,
        now: datetime,
        residency: Optional[str] = None,
    ) -> CrawlOutcome:
        """Run one attempt through the pipeline and update backoff state.

        Raises:
            CrawlInProgressError: If the same source/category is already running
                and ``wait_for_lock`` is false.
            CrawlPausedError: If the pair reached the pause threshold and has
                not been resumed by an operator.
        """
        source_id, category = attempt.source_id, attempt.category

        with self.locks.hold(source_id, category, wait=self.wait_for_lock):
            current = self.backoff_state(source_id, category, now)
            if current.paused:
                logger.warning(
                    "%s/%s is paused; attempt refused",
                    source_id,
                    category.value,
                    extra={"source_id": source_id, "category": category.value},
                )
                raise CrawlPausedError(source_id, category, current.reason)
            if not is_retry_due(current, now):
                logger.warning(
                    "%s/%s attempted before its retry time; processing anyway",
                    source_id,
                    category.value,
                )

            context = PipelineContext(
                stores=self.stores,
                now=now,
                schema=self.schemas.get(source_id),
                residency=residency,
                sanity=self.config.sanity,
                anomaly=self.config.anomaly,
            )
            result = run_crawl_pipeline(attempt, context)

            backoff_alert: Optional[Alert] = None
            if result.status == PipelineStatus.SUCCESS:
                self.stores.backoff.reset(source_id, category, now)
                state = compute_backoff(source_id, 0, now, self.config.backoff, category)
            else:
                counter = self.stores.backoff.record_failure(
                    source_id, category, result.summary, now
                )
                state = compute_backoff(
                    source_id, counter.failure_count, now, self.config.backoff, category
                )
                if counter.failure_count == self.config.backoff.pause_after_failures:
                    backoff_alert = Alert(
                        alert_id=(
                            f"backoff_exhausted-{source_id}-{category.value}-"
                            f"{now.strftime('%Y%m%dT%H%M%S')}"
                        ),
                        severity=AlertSeverity.P1,
                        code=ErrorCode.BACKOFF_EXHAUSTED,
                        title=f"{source_id} {category.value}: automatic crawling paused",
                        description=state.reason,
                        source_id=source_id,
                        category=category,
                        fired_at=now,
                    )
                    self.stores.alerts.append(backoff_alert)
                    logger.error(
                        "%s/%s: %s",
                        source_id,
                        category.value,
                        state.reason,
                        extra={
                            "source_id": source_id,
                            "category": category.value,
                            "code": ErrorCode.BACKOFF_EXHAUSTED.value,
                        },
                    )

            self.stores.runs.record(
                CrawlRunRecord(
                    source_id=source_id,
                    category=category,
                    status=result.status,
                    attempted_at=attempt.attempted_at,
                    url=attempt.url,
                    summary=result.summary,
                    error=attempt.error,
                )
            )

        return CrawlOutcome(result=result, backoff=state, backoff_alert=backoff_alert)

    def resume(self, source_id: str, category: DataCategory, now: datetime) -> BackoffCounter:
        """Operator reset of a paused (or backing-off) pair's failure counter."""
        with self.locks.hold(source_id, category, wait=self.wait_for_lock):
            counter = self.stores.backoff.reset(source_id, category, now)
        logger.info("%s/%s resumed by operator", source_id, category.value)
        return counter
