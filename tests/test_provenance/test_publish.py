"""
Tests for provenance/publish.py: wrapping pipeline output for users.
"""

from datetime import datetime, timedelta, timezone

from regwatch.models.outcomes import LKGEntry, PipelineStatus
from regwatch.pipeline.orchestrator import PipelineContext, run_crawl_pipeline
from regwatch.provenance.freshness import FreshnessLevel, VerificationMethod
from regwatch.provenance.publish import stamp_result, wrap_published
from regwatch.provenance.verified_datum import ConfidenceTier

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
HELD = "point_requirements.unit-1"


def _run(stores, attempt, now=NOW):
    return run_crawl_pipeline(attempt, PipelineContext(stores=stores, now=now))


class TestWrapPublished:
    def test_success_values_are_verified(self, stores, make_attempt):
        result = _run(stores, make_attempt())
        wrapped = wrap_published(result, NOW)
        assert wrapped["fees.elk"].value == 828.0
        assert wrapped["fees.elk"].confidence == ConfidenceTier.VERIFIED
        assert wrapped["license_fees.app_fee"].source.url == "https://cpw.state.co.us/fees"
        assert "point_requirements.unit-1" not in wrapped

    def test_fallback_values_are_stale(self, stores, make_attempt, make_data):
        stores.lkg.replace(
            LKGEntry.capture("CO", make_data(), NOW - timedelta(days=2), "https://lkg")
        )
        result = _run(stores, make_attempt(data=make_data(fees={"elk": 0})))
        assert result.status == PipelineStatus.FALLBACK
        wrapped = wrap_published(result, NOW, fields=("fees",))
        datum = wrapped["fees.elk"]
        assert datum.value == 828.0
        assert datum.confidence == ConfidenceTier.STALE
        assert datum.is_stale
        assert datum.stale_days == 2
        assert datum.source.label.endswith("(last-known-good)")

    def test_rejected_publishes_nothing(self, stores, make_attempt, make_data):
        result = _run(stores, make_attempt(data=make_data(fees={"elk": 0})))
        assert result.status == PipelineStatus.REJECTED
        assert wrap_published(result, NOW) == {}

    def test_later_publication_ages(self, stores, make_attempt):
        result = _run(stores, make_attempt())
        wrapped = wrap_published(result, NOW + timedelta(days=15))
        assert wrapped["fees.elk"].is_stale


class TestStampResult:
    def test_crawl_stamp(self, stores, make_attempt):
        result = _run(stores, make_attempt())
        stamp = stamp_result(result, "fees", NOW + timedelta(hours=3))
        assert stamp.method == VerificationMethod.CRAWL
        assert stamp.label == "Verified against CO: 3 hours ago"

    def test_fallback_stamp(self, stores, make_attempt, make_data):
        stores.lkg.replace(LKGEntry.capture("CO", make_data(), NOW - timedelta(days=12)))
        result = _run(stores, make_attempt(fetch_succeeded=False, data=None))
        stamp = stamp_result(result, "fees", NOW)
        assert stamp.method == VerificationMethod.LKG_FALLBACK
        assert stamp.level == FreshnessLevel.STALE

    def test_rejected_has_no_stamp(self, stores, make_attempt):
        result = _run(stores, make_attempt(fetch_succeeded=False, data=None))
        assert stamp_result(result, "fees", NOW) is None


class TestHeldValues:
    @staticmethod
    def _held_crawl(stores, make_attempt, make_data, at=NOW):
        new = make_data(point_requirements={"unit-1": 3.0, "unit-2": 4.0})
        return _run(stores, make_attempt(data=new, attempted_at=at), now=at)

    def test_held_value_is_stale_with_original_capture_time(
        self, stores, make_attempt, make_data
    ):
        stores.lkg.replace(
            LKGEntry.capture("CO", make_data(), NOW - timedelta(days=2), "https://lkg")
        )
        result = self._held_crawl(stores, make_attempt, make_data)
        assert result.status == PipelineStatus.SUCCESS

        wrapped = wrap_published(result, NOW, fields=("point_requirements",))
        held = wrapped[HELD]
        assert held.value == 8.0
        assert held.confidence == ConfidenceTier.STALE
        assert held.stale_days == 2
        assert held.source.verified_at == NOW - timedelta(days=2)
        assert "change under review" in held.source.label

        fresh = wrapped["point_requirements.unit-2"]
        assert fresh.confidence == ConfidenceTier.VERIFIED
        assert fresh.stale_days == 0

    def test_repeat_crawl_does_not_refresh_held_value(self, stores, make_attempt, make_data):
        stores.lkg.replace(LKGEntry.capture("CO", make_data(), NOW - timedelta(days=2)))
        self._held_crawl(stores, make_attempt, make_data)
        later = NOW + timedelta(days=1)
        result = self._held_crawl(stores, make_attempt, make_data, at=later)

        held = wrap_published(result, later, fields=("point_requirements",))[HELD]
        assert held.confidence == ConfidenceTier.STALE
        assert held.stale_days == 3
        assert stores.lkg.get("CO").captured_at == later

    def test_field_with_held_value_is_stamped_as_fallback(
        self, stores, make_attempt, make_data
    ):
        stores.lkg.replace(LKGEntry.capture("CO", make_data(), NOW - timedelta(days=12)))
        result = self._held_crawl(stores, make_attempt, make_data)

        stamp = stamp_result(result, "point_requirements", NOW)
        assert stamp.method == VerificationMethod.LKG_FALLBACK
        assert stamp.level == FreshnessLevel.STALE
        assert stamp_result(result, "fees", NOW).method == VerificationMethod.CRAWL
