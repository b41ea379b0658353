"""
Repository for per-(source, category) consecutive-failure counters.

``record_failure()`` increments in a single upsert so two processes
reporting failures at once cannot lose an increment.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime

from regwatch.db.repositories.base import BaseRepository, from_db_time, to_db_time
from regwatch.models.source import DataCategory
from regwatch.pipeline.stores import BackoffCounter, BackoffStore


class BackoffRepository(BaseRepository, BackoffStore):
    """Read/write access to the ``backoff_counters`` table."""

    def get(self, source_id: str, category: DataCategory) -> BackoffCounter:
        row = self.fetchone(
            "SELECT * FROM backoff_counters WHERE source_id = ? AND category = ?;",
            (source_id, category.value),
        )
        return _row_to_counter(row) if row else BackoffCounter(source_id, category)

    def record_failure(
        self,
        source_id: str,
        category: DataCategory,
        error: str,
        failed_at: datetime,
    ) -> BackoffCounter:
        self.execute(
            """
            INSERT INTO backoff_counters (
                source_id, category, failure_count, last_failure_at, last_error
            ) VALUES (?, ?, 1, ?, ?)
            ON CONFLICT (source_id, category) DO UPDATE SET
                failure_count   = backoff_counters.failure_count + 1,
                last_failure_at = excluded.last_failure_at,
                last_error      = excluded.last_error;
            """,
            (source_id, category.value, to_db_time(failed_at), error),
        )
        return self.get(source_id, category)

    def reset(
        self,
        source_id: str,
        category: DataCategory,
        recovered_at: datetime,
    ) -> BackoffCounter:
        self.execute(
            """
            UPDATE backoff_counters
            SET failure_count = 0, recovered_at = ?
            WHERE source_id = ? AND category = ? AND failure_count > 0;
            """,
            (to_db_time(recovered_at), source_id, category.value),
        )
        return self.get(source_id, category)

    def list_counters(self) -> list[BackoffCounter]:
        rows = self.fetchall(
            "SELECT * FROM backoff_counters ORDER BY source_id, category;"
        )
        return [_row_to_counter(r) for r in rows]


def _row_to_counter(row: sqlite3.Row) -> BackoffCounter:
    return BackoffCounter(
        source_id=row["source_id"],
        category=DataCategory(row["category"]),
        failure_count=row["failure_count"],
        last_failure_at=from_db_time(row["last_failure_at"]),
        last_error=row["last_error"],
        recovered_at=from_db_time(row["recovered_at"]),
    )
