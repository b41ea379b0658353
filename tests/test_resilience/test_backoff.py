"""
Tests for resilience/backoff.py: compute_backoff, is_retry_due.
"""

from datetime import datetime, timedelta, timezone

import pytest

from regwatch.config import BackoffConfig
from regwatch.resilience.backoff import (
    Paused,
    Retrying,
    backoff_delay,
    compute_backoff,
    is_retry_due,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestComputeBackoff:
    def test_third_failure_waits_twenty_minutes(self):
        state = compute_backoff("CO", 3, NOW)
        assert state.delay == timedelta(minutes=20)
        assert state.next_retry_at == datetime(2026, 3, 1, 12, 20, 0, tzinfo=timezone.utc)
        assert not state.paused
        assert isinstance(state.status, Retrying)
        assert "#3" in state.reason

    @pytest.mark.parametrize("n", range(1, 10))
    def test_delay_formula_below_pause(self, n):
        state = compute_backoff("CO", n, NOW)
        expected = min(timedelta(minutes=5) * 2 ** (n - 1), timedelta(hours=24))
        assert state.delay == expected
        assert state.next_retry_at == NOW + expected
        assert not state.paused

    def test_delay_capped_at_24_hours(self):
        assert backoff_delay(9) == timedelta(hours=21, minutes=20)
        cfg = BackoffConfig(pause_after_failures=50)
        assert compute_backoff("CO", 12, NOW, cfg).delay == timedelta(hours=24)
        assert compute_backoff("CO", 49, NOW, cfg).delay == timedelta(hours=24)

    @pytest.mark.parametrize("n", [10, 11, 250])
    def test_paused_at_ten(self, n):
        state = compute_backoff("CO", n, NOW)
        assert state.paused
        assert state.delay is None
        assert state.next_retry_at is None
        assert isinstance(state.status, Paused)
        assert "manual investigation" in state.status.reason

    def test_zero_failures_is_healthy(self):
        state = compute_backoff("CO", 0, NOW)
        assert state.delay == timedelta(0)
        assert state.next_retry_at == NOW
        assert not state.paused

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            compute_backoff("CO", -1, NOW)

    def test_custom_config(self):
        cfg = BackoffConfig(base_minutes=1, max_hours=1, pause_after_failures=3)
        assert compute_backoff("CO", 2, NOW, cfg).delay == timedelta(minutes=2)
        assert compute_backoff("CO", 3, NOW, cfg).paused


class TestIsRetryDue:
    def test_not_due_before_next_retry(self):
        state = compute_backoff("CO", 2, NOW)
        assert not is_retry_due(state, NOW + timedelta(minutes=9))
        assert is_retry_due(state, NOW + timedelta(minutes=10))

    def test_never_due_when_paused(self):
        state = compute_backoff("CO", 10, NOW)
        assert not is_retry_due(state, NOW + timedelta(days=365))
