"""Repository for the crawl run audit trail."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Optional

from regwatch.db.repositories.base import BaseRepository, from_db_time, to_db_time
from regwatch.models.outcomes import CrawlRunRecord, PipelineStatus
from regwatch.pipeline.stores import RunLog


class CrawlRunRepository(BaseRepository, RunLog):
    """Read/write access to the ``crawl_runs`` table."""

    def record(self, run: CrawlRunRecord) -> None:
        self.execute(
            """
            INSERT INTO crawl_runs (
                source_id, category, status, attempted_at, url, summary, error
            ) VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.source_id,
                run.category.value,
                run.status.value,
                to_db_time(run.attempted_at),
                run.url,
                run.summary,
                run.error,
            ),
        )

    def list_runs(
        self,
        since: Optional[datetime] = None,
        status: Optional[PipelineStatus] = None,
    ) -> list[CrawlRunRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("attempted_at >= ?")
            params.append(to_db_time(since))
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.fetchall(
            f"SELECT * FROM crawl_runs {where} ORDER BY attempted_at, run_id;",
            tuple(params),
        )
        return [_row_to_run(r) for r in rows]


def _row_to_run(row: sqlite3.Row) -> CrawlRunRecord:
    return CrawlRunRecord(
        source_id=row["source_id"],
        category=row["category"],
        status=row["status"],
        attempted_at=from_db_time(row["attempted_at"]),
        url=row["url"],
        summary=row["summary"],
        error=row["error"],
    )
