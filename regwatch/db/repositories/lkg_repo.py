"""
Repository for last-known-good snapshots.

One row per source. ``replace()`` is a single conditional upsert, so a
slower concurrent crawl can never overwrite a newer snapshot with an older
one: the row is only updated when the incoming ``captured_at`` is not
earlier than the stored one.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from regwatch.db.repositories.base import BaseRepository, from_db_time, to_db_time
from regwatch.models.extraction import ExtractedData
from regwatch.models.outcomes import LKGEntry
from regwatch.pipeline.stores import LKGStore

logger = logging.getLogger(__name__)


class LKGRepository(BaseRepository, LKGStore):
    """Read/write access to the ``lkg_entries`` table."""

    def get(self, source_id: str) -> Optional[LKGEntry]:
        row = self.fetchone(
            "SELECT * FROM lkg_entries WHERE source_id = ?;", (source_id,)
        )
        return _row_to_entry(row) if row else None

    def replace(self, entry: LKGEntry) -> bool:
        cursor = self.execute(
            """
            INSERT INTO lkg_entries (
                source_id, data_json, captured_at, source_url, content_hash,
                held_since_json
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (source_id) DO UPDATE SET
                data_json       = excluded.data_json,
                captured_at     = excluded.captured_at,
                source_url      = excluded.source_url,
                content_hash    = excluded.content_hash,
                held_since_json = excluded.held_since_json
            WHERE excluded.captured_at >= lkg_entries.captured_at;
            """,
            (
                entry.source_id,
                entry.data.model_dump_json(),
                to_db_time(entry.captured_at),
                entry.source_url,
                entry.content_hash,
                json.dumps(
                    {key: to_db_time(ts) for key, ts in entry.held_since.items()},
                    sort_keys=True,
                ),
            ),
        )
        replaced = cursor.rowcount > 0
        if not replaced:
            logger.warning(
                "Refusing to replace LKG for %s with older capture %s",
                entry.source_id,
                entry.captured_at.isoformat(),
            )
        return replaced

    def list_entries(self) -> list[LKGEntry]:
        rows = self.fetchall("SELECT * FROM lkg_entries ORDER BY source_id;")
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: sqlite3.Row) -> LKGEntry:
    return LKGEntry(
        source_id=row["source_id"],
        data=ExtractedData.model_validate_json(row["data_json"]),
        captured_at=from_db_time(row["captured_at"]),
        source_url=row["source_url"],
        content_hash=row["content_hash"],
        held_since={
            key: from_db_time(ts) for key, ts in json.loads(row["held_since_json"]).items()
        },
    )
