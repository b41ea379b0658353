"""
SQLite connections for the pipeline stores.

``get_connection()`` opens one database file for the duration of a ``with``
block: foreign keys on, ``sqlite3.Row`` rows, a busy timeout so two crawl
runners writing at once wait for each other instead of failing, and WAL so
``compile-digest`` can read while a crawl writes. The block commits on exit
and rolls back if it raises.

``open_database()`` is the CLI entry: it takes the ``[database]`` config
section and applies the schema before yielding.

Usage::

    from regwatch.db.connection import open_database

    with open_database(config.database) as conn:
        stores = sqlite_stores(conn)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from regwatch.config import DatabaseConfig
from regwatch.db.schema import apply_schema

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Yield a configured connection to ``db_path``.

    Parent directories of a file database are created on first use.
    WAL is never requested for ``":memory:"``, which does not support it.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened, or stays
            locked longer than ``busy_timeout_ms``.
    """
    in_memory = db_path == MEMORY_DB
    if not in_memory:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
        if wal_mode and not in_memory:
            conn.execute("PRAGMA journal_mode = WAL;")

        yield conn
        conn.commit()

    except Exception:
        logger.warning("Rolling back uncommitted store writes to %s", db_path)
        conn.rollback()
        raise

    finally:
        conn.close()


@contextmanager
def open_database(
    config: DatabaseConfig,
    db_path: Optional[str] = None,
) -> Generator[sqlite3.Connection, None, None]:
    """Connection to the configured database with every table in place.

    Args:
        config: ``[database]`` section; supplies path, WAL and busy timeout.
        db_path: Overrides ``config.db_path`` (CLI ``--db-path``).
    """
    with get_connection(
        db_path or config.db_path,
        wal_mode=config.wal_mode,
        busy_timeout_ms=config.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        yield conn
