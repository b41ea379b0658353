"""
Shared plumbing for the SQLite store repositories.

Each repository wraps one caller-owned ``sqlite3.Connection`` (see
``get_connection()``) and implements one of the store contracts from
``regwatch.pipeline.stores``. SQL is written out in the repository methods.

Timestamps cross the boundary only through ``to_db_time`` and
``from_db_time``: aware UTC ISO-8601 text in the database, aware UTC
``datetime`` in Python. Range filters on ``fired_at`` / ``attempted_at``
rely on every stored value having the same offset.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Optional

from regwatch.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value is not None else None


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


class BaseRepository:
    """Holds the connection and runs statements with debug logging."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        logger.debug("SQL: %s | params: %s", " ".join(sql.split()), params)
        return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()
