"""
SQLite-specific repository behaviour not covered by the shared store contract.
"""

from datetime import datetime, timedelta, timezone

from regwatch.db.repositories import (
    BackoffRepository,
    LeaseRepository,
    LKGRepository,
    QuarantineRepository,
    sqlite_stores,
)
from regwatch.models.extraction import DeadlineWindow
from regwatch.models.outcomes import LKGEntry, QuarantinedItem
from regwatch.models.source import DataCategory
from regwatch.pipeline.stores import BackoffStore, LKGStore

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _held(new_value: float, **overrides) -> QuarantinedItem:
    fields = dict(
        source_id="CO",
        field="point_requirements",
        item_id="unit-1",
        old_value=8.0,
        new_value=new_value,
        delta=new_value - 8.0,
        reason="jumped",
        detected_at=NOW,
    )
    fields.update(overrides)
    return QuarantinedItem(**fields)


class TestSqliteStores:
    def test_bundle_implements_contracts(self, in_memory_db):
        stores = sqlite_stores(in_memory_db)
        assert isinstance(stores.lkg, LKGStore)
        assert isinstance(stores.backoff, BackoffStore)


class TestLKGRepository:
    def test_nested_data_round_trips(self, in_memory_db, make_data):
        repo = LKGRepository(in_memory_db)
        data = make_data(deadlines={"elk": DeadlineWindow(open="2026-03-01", close="2026-04-07")})
        repo.replace(LKGEntry.capture("CO", data, NOW, "https://cpw.state.co.us/fees"))
        entry = repo.get("CO")
        assert entry.data.deadlines["elk"].close == "2026-04-07"
        assert entry.source_url == "https://cpw.state.co.us/fees"
        assert entry.content_hash == data.content_hash()

    def test_single_row_per_source(self, in_memory_db, make_data):
        repo = LKGRepository(in_memory_db)
        for hours in range(3):
            repo.replace(LKGEntry.capture("CO", make_data(), NOW + timedelta(hours=hours)))
        count = in_memory_db.execute("SELECT COUNT(*) FROM lkg_entries;").fetchone()[0]
        assert count == 1
        assert repo.get("CO").captured_at == NOW + timedelta(hours=2)

    def test_equal_timestamp_replaces(self, in_memory_db, make_data):
        repo = LKGRepository(in_memory_db)
        repo.replace(LKGEntry.capture("CO", make_data(), NOW))
        assert repo.replace(
            LKGEntry.capture("CO", make_data(fees={"elk": 900.0}), NOW)
        )

    def test_held_since_round_trips(self, in_memory_db, make_data):
        repo = LKGRepository(in_memory_db)
        earlier = NOW - timedelta(days=2)
        repo.replace(
            LKGEntry.capture(
                "CO", make_data(), NOW, held_since={"point_requirements.unit-1": earlier}
            )
        )
        entry = repo.get("CO")
        assert entry.held_since == {"point_requirements.unit-1": earlier}
        assert entry.value_captured_at("point_requirements.unit-1") == earlier
        assert entry.value_captured_at("fees.elk") == NOW


class TestBackoffRepository:
    def test_increment_is_persisted(self, in_memory_db):
        repo = BackoffRepository(in_memory_db)
        for _ in range(4):
            repo.record_failure("WY", DataCategory.DEADLINES, "timeout", NOW)
        row = in_memory_db.execute(
            "SELECT failure_count FROM backoff_counters WHERE source_id = 'WY';"
        ).fetchone()
        assert row[0] == 4


class TestQuarantineRepository:
    def test_repeat_of_pending_change_is_ignored(self, in_memory_db):
        repo = QuarantineRepository(in_memory_db)
        assert repo.add(_held(3.0))
        assert not repo.add(_held(3.0, detected_at=NOW + timedelta(hours=6)))
        (item,) = repo.pending("CO")
        assert item.detected_at == NOW

    def test_different_proposed_value_is_kept(self, in_memory_db):
        repo = QuarantineRepository(in_memory_db)
        assert repo.add(_held(3.0))
        assert repo.add(_held(2.0))
        assert sorted(i.new_value for i in repo.pending()) == [2.0, 3.0]

    def test_resolved_item_does_not_block_a_new_one(self, in_memory_db):
        repo = QuarantineRepository(in_memory_db)
        repo.add(_held(3.0, awaiting_approval=False))
        assert repo.add(_held(3.0))
        assert len(repo.pending()) == 1


class TestLeaseRepository:
    def test_second_holder_refused_until_expiry(self, in_memory_db):
        repo = LeaseRepository(in_memory_db)
        expires = NOW + timedelta(minutes=30)
        assert repo.try_acquire("CO", DataCategory.FEES, "a", NOW, expires)
        assert not repo.try_acquire(
            "CO", DataCategory.FEES, "b", NOW + timedelta(minutes=5), expires
        )
        assert repo.holder_of("CO", DataCategory.FEES) == "a"

        later = NOW + timedelta(minutes=31)
        assert repo.try_acquire(
            "CO", DataCategory.FEES, "b", later, later + timedelta(minutes=30)
        )
        assert repo.holder_of("CO", DataCategory.FEES) == "b"

    def test_keys_are_independent(self, in_memory_db):
        repo = LeaseRepository(in_memory_db)
        expires = NOW + timedelta(minutes=30)
        assert repo.try_acquire("CO", DataCategory.FEES, "a", NOW, expires)
        assert repo.try_acquire("CO", DataCategory.DEADLINES, "b", NOW, expires)
        assert repo.try_acquire("WY", DataCategory.FEES, "c", NOW, expires)

    def test_release_only_by_holder(self, in_memory_db):
        repo = LeaseRepository(in_memory_db)
        repo.try_acquire("CO", DataCategory.FEES, "a", NOW, NOW + timedelta(minutes=30))
        repo.release("CO", DataCategory.FEES, "b")
        assert repo.holder_of("CO", DataCategory.FEES) == "a"
        repo.release("CO", DataCategory.FEES, "a")
        assert repo.holder_of("CO", DataCategory.FEES) is None
