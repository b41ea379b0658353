"""
Tests for provenance/freshness.py: compute_freshness_stamp.
"""

from datetime import datetime, timedelta, timezone

import pytest

from regwatch.config import FreshnessConfig
from regwatch.provenance.freshness import (
    FreshnessLevel,
    VerificationMethod,
    compute_freshness_stamp,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
URL = "https://cpw.state.co.us/fees"


def _stamp(age: timedelta, policy: FreshnessConfig = FreshnessConfig()):
    return compute_freshness_stamp(
        "CO", "fees", NOW - age, URL, VerificationMethod.CRAWL, NOW, policy
    )


class TestLevels:
    @pytest.mark.parametrize(
        "age, level, label",
        [
            (timedelta(seconds=20), FreshnessLevel.FRESH, "Verified against CO: just now"),
            (timedelta(minutes=1), FreshnessLevel.FRESH, "Verified against CO: 1 minute ago"),
            (timedelta(minutes=45), FreshnessLevel.FRESH, "Verified against CO: 45 minutes ago"),
            (timedelta(hours=4), FreshnessLevel.FRESH, "Verified against CO: 4 hours ago"),
            (timedelta(hours=24), FreshnessLevel.AGING, "Verified: 1 day ago"),
            (timedelta(days=3), FreshnessLevel.AGING, "Verified: 3 days ago"),
            (timedelta(days=7), FreshnessLevel.STALE, "Last verified: 7 days ago"),
            (timedelta(days=12), FreshnessLevel.STALE, "Last verified: 12 days ago"),
            (timedelta(days=30), FreshnessLevel.CRITICAL, "STALE: Last verified 30 days ago"),
            (timedelta(days=45), FreshnessLevel.CRITICAL, "STALE: Last verified 45 days ago"),
        ],
    )
    def test_level_and_label(self, age, level, label):
        stamp = _stamp(age)
        assert stamp.level == level
        assert stamp.label == label

    @pytest.mark.parametrize(
        "age, expected",
        [(timedelta(hours=1), False), (timedelta(days=6), False),
         (timedelta(days=8), True), (timedelta(days=60), True)],
    )
    def test_is_stale(self, age, expected):
        assert _stamp(age).is_stale is expected


class TestEdgeCases:
    def test_future_timestamp_is_just_now(self):
        stamp = _stamp(-timedelta(minutes=10))
        assert stamp.level == FreshnessLevel.FRESH
        assert stamp.label.endswith("just now")

    def test_custom_policy(self):
        policy = FreshnessConfig(fresh_hours=1, stale_after_days=2, critical_after_days=5)
        assert _stamp(timedelta(hours=2), policy).level == FreshnessLevel.AGING
        assert _stamp(timedelta(days=3), policy).level == FreshnessLevel.STALE
        assert _stamp(timedelta(days=5), policy).level == FreshnessLevel.CRITICAL

    def test_method_and_dict(self):
        stamp = compute_freshness_stamp(
            "CO", "fees", NOW, URL, VerificationMethod.LKG_FALLBACK, NOW
        )
        payload = stamp.to_dict()
        assert payload["method"] == "lkg_fallback"
        assert payload["level"] == "fresh"
        assert payload["source_url"] == URL
