"""
Tests for pipeline/runner.py: CrawlRunner.
"""

from datetime import datetime, timedelta, timezone

import pytest

from regwatch.models.outcomes import ErrorCode, PipelineStatus
from regwatch.models.source import DataCategory
from regwatch.pipeline.locks import CrawlInProgressError, CrawlLockRegistry
from regwatch.pipeline.runner import CrawlPausedError, CrawlRunner

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def failing(make_attempt):
    """Factory for a timed-out fetch."""

    def _make(**overrides):
        return make_attempt(
            fetch_succeeded=False, error="connection timed out", data=None, **overrides
        )

    return _make


@pytest.fixture
def paused_runner(stores, failing):
    """A runner whose CO/fees pair has just reached the pause threshold."""
    runner = CrawlRunner(stores)
    for i in range(10):
        runner.run(failing(), NOW + timedelta(hours=i))
    return runner


class TestBackoffBookkeeping:
    def test_success_keeps_counter_at_zero(self, stores, make_attempt):
        outcome = CrawlRunner(stores).run(make_attempt(), NOW)
        assert outcome.result.status == PipelineStatus.SUCCESS
        assert outcome.backoff.failure_count == 0
        assert stores.backoff.get("CO", DataCategory.FEES).failure_count == 0

    def test_failures_increment_and_back_off(self, stores, failing):
        runner = CrawlRunner(stores)
        for i in range(3):
            outcome = runner.run(failing(), NOW + timedelta(minutes=i))
        assert outcome.backoff.failure_count == 3
        assert outcome.backoff.delay == timedelta(minutes=20)
        counter = stores.backoff.get("CO", DataCategory.FEES)
        assert counter.failure_count == 3
        assert "connection timed out" in counter.last_error

    def test_backoff_state_anchored_at_last_failure(self, stores, failing):
        runner = CrawlRunner(stores)
        for _ in range(3):
            runner.run(failing(), NOW)
        state = runner.backoff_state("CO", DataCategory.FEES, NOW + timedelta(minutes=5))
        assert state.next_retry_at == NOW + timedelta(minutes=20)
        assert not runner.should_attempt("CO", DataCategory.FEES, NOW + timedelta(minutes=19))
        assert runner.should_attempt("CO", DataCategory.FEES, NOW + timedelta(minutes=20))

    def test_pause_raises_one_alert(self, stores, failing):
        runner = CrawlRunner(stores)
        outcomes = [runner.run(failing(), NOW + timedelta(hours=i)) for i in range(10)]

        assert outcomes[9].backoff.paused
        assert outcomes[9].backoff_alert is not None
        assert outcomes[9].backoff_alert.code == ErrorCode.BACKOFF_EXHAUSTED
        assert all(o.backoff_alert is None for o in outcomes[:9])

        exhausted = [a for a in stores.alerts.list_alerts()
                     if a.code == ErrorCode.BACKOFF_EXHAUSTED]
        assert len(exhausted) == 1
        assert not runner.should_attempt("CO", DataCategory.FEES, NOW + timedelta(days=30))

    def test_success_after_failures_records_recovery(self, stores, make_attempt, failing):
        runner = CrawlRunner(stores)
        runner.run(failing(), NOW)
        runner.run(failing(), NOW + timedelta(minutes=5))
        outcome = runner.run(make_attempt(), NOW + timedelta(minutes=20))
        assert outcome.backoff.failure_count == 0
        counter = stores.backoff.get("CO", DataCategory.FEES)
        assert counter.failure_count == 0
        assert counter.recovered_at == NOW + timedelta(minutes=20)

    def test_categories_back_off_independently(self, stores, failing):
        runner = CrawlRunner(stores)
        runner.run(failing(category=DataCategory.DEADLINES), NOW)
        assert stores.backoff.get("CO", DataCategory.DEADLINES).failure_count == 1
        assert stores.backoff.get("CO", DataCategory.FEES).failure_count == 0

class TestPausedCrawler:
    def test_paused_pair_is_not_processed(self, stores, paused_runner, make_attempt):
        later = NOW + timedelta(days=30)
        with pytest.raises(CrawlPausedError) as exc_info:
            paused_runner.run(make_attempt(attempted_at=later), later)

        assert exc_info.value.source_id == "CO"
        assert exc_info.value.category == DataCategory.FEES
        assert "resume-crawler" in str(exc_info.value)
        assert stores.backoff.get("CO", DataCategory.FEES).failure_count == 10
        assert len(stores.runs.list_runs()) == 10
        assert stores.lkg.get("CO") is None

    def test_other_categories_still_run(self, stores, paused_runner, make_attempt):
        outcome = paused_runner.run(make_attempt(category=DataCategory.DEADLINES), NOW)
        assert outcome.result.status == PipelineStatus.SUCCESS

    def test_resume_clears_pause_then_success_runs(self, stores, paused_runner, make_attempt):
        later = NOW + timedelta(days=2)
        counter = paused_runner.resume("CO", DataCategory.FEES, later)
        assert counter.failure_count == 0
        assert counter.recovered_at == later
        assert paused_runner.should_attempt("CO", DataCategory.FEES, later)

        outcome = paused_runner.run(make_attempt(attempted_at=later), later)
        assert outcome.result.status == PipelineStatus.SUCCESS
        assert outcome.backoff.failure_count == 0
        assert stores.lkg.get("CO") is not None

    def test_resume_respects_running_crawl(self, stores):
        locks = CrawlLockRegistry()
        runner = CrawlRunner(stores, locks=locks)
        with locks.hold("CO", DataCategory.FEES):
            with pytest.raises(CrawlInProgressError):
                runner.resume("CO", DataCategory.FEES, NOW)


class TestRunLogAndAlerts:
    def test_every_run_recorded(self, stores, make_attempt, failing):
        runner = CrawlRunner(stores)
        runner.run(make_attempt(), NOW)
        runner.run(failing(), NOW + timedelta(hours=1))
        statuses = [r.status for r in stores.runs.list_runs()]
        assert statuses == [PipelineStatus.SUCCESS, PipelineStatus.FALLBACK]

    def test_outcome_alerts_include_backoff_alert(self, stores, failing):
        runner = CrawlRunner(stores)
        for i in range(10):
            outcome = runner.run(failing(), NOW + timedelta(hours=i))
        codes = [a.code for a in outcome.alerts]
        assert codes == [ErrorCode.MANUAL_CAPTURE_REQUIRED, ErrorCode.BACKOFF_EXHAUSTED]


class TestSchemasAndLocks:
    def test_schema_applied_per_source(self, stores, co_schema, make_attempt, valid_page):
        runner = CrawlRunner(stores, schemas={"CO": co_schema})
        outcome = runner.run(make_attempt(content="<html></html>"), NOW)
        assert outcome.result.status == PipelineStatus.REJECTED
        assert ErrorCode.MANUAL_CAPTURE_REQUIRED in [a.code for a in outcome.alerts]

        ok = runner.run(make_attempt(content=valid_page), NOW + timedelta(hours=1))
        assert ok.result.status == PipelineStatus.SUCCESS

    def test_overlapping_run_rejected(self, stores, make_attempt):
        locks = CrawlLockRegistry()
        runner = CrawlRunner(stores, locks=locks)
        with locks.hold("CO", DataCategory.FEES):
            with pytest.raises(CrawlInProgressError):
                runner.run(make_attempt(), NOW)
        assert stores.runs.list_runs() == []
