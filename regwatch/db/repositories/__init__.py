"""SQLite-backed implementations of the pipeline store contracts."""

from __future__ import annotations

import sqlite3

from regwatch.db.repositories.alert_repo import AlertRepository
from regwatch.db.repositories.backoff_repo import BackoffRepository
from regwatch.db.repositories.lease_repo import LeaseRepository
from regwatch.db.repositories.lkg_repo import LKGRepository
from regwatch.db.repositories.quarantine_repo import QuarantineRepository
from regwatch.db.repositories.run_repo import CrawlRunRepository
from regwatch.pipeline.stores import PipelineStores


def sqlite_stores(conn: sqlite3.Connection) -> PipelineStores:
    """Bundle every repository over one connection."""
    return PipelineStores(
        lkg=LKGRepository(conn),
        alerts=AlertRepository(conn),
        quarantine=QuarantineRepository(conn),
        backoff=BackoffRepository(conn),
        runs=CrawlRunRepository(conn),
    )


__all__ = [
    "AlertRepository",
    "BackoffRepository",
    "CrawlRunRepository",
    "LKGRepository",
    "LeaseRepository",
    "QuarantineRepository",
    "sqlite_stores",
]
