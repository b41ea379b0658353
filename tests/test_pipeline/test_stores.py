"""
Contract tests run against both store implementations.

Every behaviour here must hold for the in-memory stores and for the SQLite
repositories alike; the pipeline only ever talks to the contracts.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from regwatch.db.repositories import sqlite_stores
from regwatch.db.schema import apply_schema
from regwatch.models.outcomes import (
    Alert,
    AlertSeverity,
    CrawlRunRecord,
    ErrorCode,
    LKGEntry,
    PipelineStatus,
    QuarantinedItem,
)
from regwatch.models.source import DataCategory
from regwatch.pipeline.stores import PipelineStores

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def any_stores(request):
    if request.param == "memory":
        yield PipelineStores.in_memory()
        return
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    apply_schema(conn)
    yield sqlite_stores(conn)
    conn.close()


def _alert(source_id: str = "CO", fired_at=NOW, code=ErrorCode.FETCH_FAILED) -> Alert:
    return Alert(
        alert_id=f"{code.value.lower()}-{source_id}-{fired_at:%Y%m%dT%H%M%S}",
        severity=AlertSeverity.P1,
        code=code,
        title="t",
        description="d",
        source_id=source_id,
        category=DataCategory.FEES,
        fired_at=fired_at,
        affected_fields=["fees.elk"],
    )


class TestLKGContract:
    def test_empty(self, any_stores):
        assert any_stores.lkg.get("CO") is None
        assert any_stores.lkg.list_entries() == []

    def test_replace_and_get(self, any_stores, make_data):
        entry = LKGEntry.capture("CO", make_data(), NOW, "https://cpw.state.co.us/fees")
        assert any_stores.lkg.replace(entry)
        got = any_stores.lkg.get("CO")
        assert got.data == entry.data
        assert got.captured_at == NOW
        assert got.content_hash == entry.content_hash

    def test_newer_capture_replaces(self, any_stores, make_data):
        any_stores.lkg.replace(LKGEntry.capture("CO", make_data(), NOW))
        newer = make_data(fees={"elk": 850.0, "deer": 508.0})
        assert any_stores.lkg.replace(LKGEntry.capture("CO", newer, NOW + timedelta(hours=1)))
        assert any_stores.lkg.get("CO").data.fees["elk"] == 850.0

    def test_older_capture_never_replaces(self, any_stores, make_data):
        any_stores.lkg.replace(LKGEntry.capture("CO", make_data(), NOW))
        older = make_data(fees={"elk": 700.0, "deer": 508.0})
        assert not any_stores.lkg.replace(
            LKGEntry.capture("CO", older, NOW - timedelta(hours=1))
        )
        assert any_stores.lkg.get("CO").data.fees["elk"] == 828.0

    def test_list_sorted(self, any_stores, make_data):
        for sid in ("WY", "CO"):
            any_stores.lkg.replace(LKGEntry.capture(sid, make_data(), NOW))
        assert [e.source_id for e in any_stores.lkg.list_entries()] == ["CO", "WY"]


class TestAlertContract:
    def test_filters(self, any_stores):
        any_stores.alerts.append(_alert("CO", NOW - timedelta(days=10)))
        any_stores.alerts.append(_alert("CO", NOW))
        any_stores.alerts.append(_alert("WY", NOW))
        assert len(any_stores.alerts.list_alerts()) == 3
        assert len(any_stores.alerts.list_alerts(source_id="CO")) == 2
        recent = any_stores.alerts.list_alerts(since=NOW - timedelta(days=7))
        assert {a.source_id for a in recent} == {"CO", "WY"}
        assert len(recent) == 2

    def test_alert_fields_preserved(self, any_stores):
        any_stores.alerts.append(_alert())
        (alert,) = any_stores.alerts.list_alerts()
        assert alert == _alert()


class TestQuarantineContract:
    def test_pending_by_source(self, any_stores):
        for sid in ("CO", "WY"):
            any_stores.quarantine.add(
                QuarantinedItem(
                    source_id=sid, field="point_requirements", item_id="unit-1",
                    old_value=8, new_value=3, delta=-5, reason="r", detected_at=NOW,
                )
            )
        assert len(any_stores.quarantine.pending()) == 2
        (item,) = any_stores.quarantine.pending("CO")
        assert item.delta == -5
        assert item.awaiting_approval

    def test_repeat_of_pending_change_not_added(self, any_stores):
        first = QuarantinedItem(
            source_id="CO", field="point_requirements", item_id="unit-1",
            old_value=8, new_value=3, delta=-5, reason="r", detected_at=NOW,
        )
        repeat = first.model_copy(update={"detected_at": NOW + timedelta(hours=6)})
        other = first.model_copy(update={"new_value": 2, "delta": -6})
        assert any_stores.quarantine.add(first) is True
        assert any_stores.quarantine.add(repeat) is False
        assert any_stores.quarantine.add(other) is True
        assert sorted(i.new_value for i in any_stores.quarantine.pending()) == [2, 3]


class TestBackoffContract:
    def test_default_counter(self, any_stores):
        counter = any_stores.backoff.get("CO", DataCategory.FEES)
        assert counter.failure_count == 0
        assert counter.last_failure_at is None

    def test_failures_accumulate_per_pair(self, any_stores):
        backoff = any_stores.backoff
        backoff.record_failure("CO", DataCategory.FEES, "timeout", NOW)
        counter = backoff.record_failure("CO", DataCategory.FEES, "HTTP 503", NOW + timedelta(minutes=5))
        assert counter.failure_count == 2
        assert counter.last_error == "HTTP 503"
        assert counter.last_failure_at == NOW + timedelta(minutes=5)
        assert backoff.get("CO", DataCategory.DEADLINES).failure_count == 0

    def test_reset_marks_recovery(self, any_stores):
        backoff = any_stores.backoff
        backoff.record_failure("CO", DataCategory.FEES, "timeout", NOW)
        counter = backoff.reset("CO", DataCategory.FEES, NOW + timedelta(hours=1))
        assert counter.failure_count == 0
        assert counter.recovered_at == NOW + timedelta(hours=1)

    def test_reset_of_healthy_counter_is_not_recovery(self, any_stores):
        counter = any_stores.backoff.reset("CO", DataCategory.FEES, NOW)
        assert counter.failure_count == 0
        assert counter.recovered_at is None

    def test_list_counters(self, any_stores):
        any_stores.backoff.record_failure("WY", DataCategory.FEES, "x", NOW)
        any_stores.backoff.record_failure("CO", DataCategory.FEES, "x", NOW)
        assert [c.source_id for c in any_stores.backoff.list_counters()] == ["CO", "WY"]


class TestRunLogContract:
    def test_filters(self, any_stores):
        for offset, status in ((10, PipelineStatus.SUCCESS), (1, PipelineStatus.SUCCESS),
                               (1, PipelineStatus.FALLBACK)):
            any_stores.runs.record(
                CrawlRunRecord(
                    source_id="CO",
                    category=DataCategory.FEES,
                    status=status,
                    attempted_at=NOW - timedelta(days=offset),
                )
            )
        since = NOW - timedelta(days=7)
        assert len(any_stores.runs.list_runs()) == 3
        assert len(any_stores.runs.list_runs(since=since)) == 2
        assert len(any_stores.runs.list_runs(since=since, status=PipelineStatus.SUCCESS)) == 1
