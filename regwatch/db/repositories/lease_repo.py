"""
Repository for cross-process crawl leases.

One row per (source, category) while a crawl runs. ``try_acquire()`` is a
single conditional upsert: it claims a free key, or takes over a lease
whose ``expires_at`` has passed (a crashed holder), and otherwise leaves
the row alone.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from regwatch.db.repositories.base import BaseRepository, to_db_time
from regwatch.models.source import DataCategory


class LeaseRepository(BaseRepository):
    """Read/write access to the ``crawl_leases`` table."""

    def try_acquire(
        self,
        source_id: str,
        category: DataCategory,
        holder: str,
        acquired_at: datetime,
        expires_at: datetime,
    ) -> bool:
        cursor = self.execute(
            """
            INSERT INTO crawl_leases (
                source_id, category, holder, acquired_at, expires_at
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (source_id, category) DO UPDATE SET
                holder      = excluded.holder,
                acquired_at = excluded.acquired_at,
                expires_at  = excluded.expires_at
            WHERE crawl_leases.expires_at <= excluded.acquired_at;
            """,
            (
                source_id,
                category.value,
                holder,
                to_db_time(acquired_at),
                to_db_time(expires_at),
            ),
        )
        return cursor.rowcount > 0

    def release(self, source_id: str, category: DataCategory, holder: str) -> None:
        self.execute(
            "DELETE FROM crawl_leases WHERE source_id = ? AND category = ? AND holder = ?;",
            (source_id, category.value, holder),
        )

    def holder_of(self, source_id: str, category: DataCategory) -> Optional[str]:
        row = self.fetchone(
            "SELECT holder FROM crawl_leases WHERE source_id = ? AND category = ?;",
            (source_id, category.value),
        )
        return row["holder"] if row else None
