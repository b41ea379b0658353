"""Repository for the append-only alert log."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Optional

from regwatch.db.repositories.base import BaseRepository, from_db_time, to_db_time
from regwatch.models.outcomes import Alert
from regwatch.pipeline.stores import AlertLog


class AlertRepository(BaseRepository, AlertLog):
    """Read/write access to the ``alerts`` table."""

    def append(self, alert: Alert) -> None:
        self.execute(
            """
            INSERT INTO alerts (
                alert_id, severity, code, title, description,
                source_id, category, fired_at, affected_fields
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                alert.alert_id,
                alert.severity.value,
                alert.code.value,
                alert.title,
                alert.description,
                alert.source_id,
                alert.category.value if alert.category else None,
                to_db_time(alert.fired_at),
                json.dumps(alert.affected_fields),
            ),
        )

    def list_alerts(
        self,
        source_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[Alert]:
        clauses: list[str] = []
        params: list[Any] = []
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        if since is not None:
            clauses.append("fired_at >= ?")
            params.append(to_db_time(since))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.fetchall(
            f"SELECT * FROM alerts {where} ORDER BY fired_at, alert_rowid;", tuple(params)
        )
        return [_row_to_alert(r) for r in rows]


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        alert_id=row["alert_id"],
        severity=row["severity"],
        code=row["code"],
        title=row["title"],
        description=row["description"],
        source_id=row["source_id"],
        category=row["category"],
        fired_at=from_db_time(row["fired_at"]),
        affected_fields=json.loads(row["affected_fields"]),
    )
