"""
Repository for quarantined values awaiting human approval.

A partial unique index keeps one pending row per (source, field, item,
proposed value); ``add()`` ignores repeats of a change still under review.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from regwatch.db.repositories.base import BaseRepository, from_db_time, to_db_time
from regwatch.models.outcomes import QuarantinedItem
from regwatch.pipeline.stores import QuarantineStore


class QuarantineRepository(BaseRepository, QuarantineStore):
    """Read/write access to the ``quarantined_items`` table."""

    def add(self, item: QuarantinedItem) -> bool:
        cursor = self.execute(
            """
            INSERT OR IGNORE INTO quarantined_items (
                source_id, field, item_id, old_value, new_value,
                delta, reason, detected_at, awaiting_approval
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                item.source_id,
                item.field,
                item.item_id,
                item.old_value,
                item.new_value,
                item.delta,
                item.reason,
                to_db_time(item.detected_at),
                int(item.awaiting_approval),
            ),
        )
        return cursor.rowcount > 0

    def pending(self, source_id: Optional[str] = None) -> list[QuarantinedItem]:
        if source_id is None:
            rows = self.fetchall(
                "SELECT * FROM quarantined_items WHERE awaiting_approval = 1 "
                "ORDER BY detected_at, quarantine_id;"
            )
        else:
            rows = self.fetchall(
                "SELECT * FROM quarantined_items WHERE awaiting_approval = 1 "
                "AND source_id = ? ORDER BY detected_at, quarantine_id;",
                (source_id,),
            )
        return [_row_to_item(r) for r in rows]


def _row_to_item(row: sqlite3.Row) -> QuarantinedItem:
    return QuarantinedItem(
        source_id=row["source_id"],
        field=row["field"],
        item_id=row["item_id"],
        old_value=row["old_value"],
        new_value=row["new_value"],
        delta=row["delta"],
        reason=row["reason"],
        detected_at=from_db_time(row["detected_at"]),
        awaiting_approval=bool(row["awaiting_approval"]),
    )
