"""
SQLite schema DDL for the pipeline stores.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables:
  1. lkg_entries        one row per source (primary key ``source_id``)
  2. alerts             append-only alert log
  3. quarantined_items  values awaiting approval (one pending row per
                        source, field, item and proposed value)
  4. backoff_counters   one row per (source, category)
  5. crawl_runs         audit trail of runner invocations
  6. crawl_leases       cross-process crawl locks per (source, category)

Timestamps are stored as ISO-8601 UTC strings, which sort lexically.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_DDL_LKG_ENTRIES = """
CREATE TABLE IF NOT EXISTS lkg_entries (
    source_id       TEXT    PRIMARY KEY,
    data_json       TEXT    NOT NULL,
    captured_at     TEXT    NOT NULL,
    source_url      TEXT    NOT NULL DEFAULT '',
    content_hash    TEXT    NOT NULL,
    held_since_json TEXT    NOT NULL DEFAULT '{}'
);
"""

_DDL_ALERTS = """
CREATE TABLE IF NOT EXISTS alerts (
    alert_rowid     INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_id        TEXT    NOT NULL,
    severity        TEXT    NOT NULL CHECK (severity IN ('P1', 'P2')),
    code            TEXT    NOT NULL,
    title           TEXT    NOT NULL,
    description     TEXT    NOT NULL,
    source_id       TEXT    NOT NULL,
    category        TEXT,
    fired_at        TEXT    NOT NULL,
    affected_fields TEXT    NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_alerts_source_time ON alerts (source_id, fired_at);
"""

_DDL_QUARANTINED_ITEMS = """
CREATE TABLE IF NOT EXISTS quarantined_items (
    quarantine_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id         TEXT    NOT NULL,
    field             TEXT    NOT NULL,
    item_id           TEXT    NOT NULL,
    old_value         REAL    NOT NULL,
    new_value         REAL    NOT NULL,
    delta             REAL    NOT NULL,
    reason            TEXT    NOT NULL,
    detected_at       TEXT    NOT NULL,
    awaiting_approval INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_quarantine_pending ON quarantined_items (awaiting_approval, source_id);
CREATE UNIQUE INDEX IF NOT EXISTS uq_quarantine_pending_value
    ON quarantined_items (source_id, field, item_id, new_value)
    WHERE awaiting_approval = 1;
"""

_DDL_BACKOFF_COUNTERS = """
CREATE TABLE IF NOT EXISTS backoff_counters (
    source_id       TEXT    NOT NULL,
    category        TEXT    NOT NULL,
    failure_count   INTEGER NOT NULL DEFAULT 0 CHECK (failure_count >= 0),
    last_failure_at TEXT,
    last_error      TEXT,
    recovered_at    TEXT,
    PRIMARY KEY (source_id, category)
);
"""

_DDL_CRAWL_RUNS = """
CREATE TABLE IF NOT EXISTS crawl_runs (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id       TEXT    NOT NULL,
    category        TEXT    NOT NULL,
    status          TEXT    NOT NULL CHECK (status IN ('success', 'fallback', 'rejected')),
    attempted_at    TEXT    NOT NULL,
    url             TEXT    NOT NULL DEFAULT '',
    summary         TEXT    NOT NULL DEFAULT '',
    error           TEXT
);
CREATE INDEX IF NOT EXISTS idx_crawl_runs_time ON crawl_runs (attempted_at);
"""

_DDL_CRAWL_LEASES = """
CREATE TABLE IF NOT EXISTS crawl_leases (
    source_id       TEXT    NOT NULL,
    category        TEXT    NOT NULL,
    holder          TEXT    NOT NULL,
    acquired_at     TEXT    NOT NULL,
    expires_at      TEXT    NOT NULL,
    PRIMARY KEY (source_id, category)
);
"""

_ALL_DDL: list[str] = [
    _DDL_LKG_ENTRIES,
    _DDL_ALERTS,
    _DDL_QUARANTINED_ITEMS,
    _DDL_BACKOFF_COUNTERS,
    _DDL_CRAWL_RUNS,
    _DDL_CRAWL_LEASES,
]

ALL_TABLE_NAMES: list[str] = [
    "lkg_entries",
    "alerts",
    "quarantined_items",
    "backoff_counters",
    "crawl_runs",
    "crawl_leases",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``. Idempotent."""
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            if statement.strip():
                conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]
