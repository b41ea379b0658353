"""
Per-(source, category) crawl serialization.

Two overlapping crawls of the same source and category would race on the
LKG entry and the backoff counter. ``hold()`` makes the second one either
wait for the first or fail fast with ``CrawlInProgressError``. Crawls of
different keys never block each other.

  CrawlLockRegistry  threads of one process (tests, embedded schedulers)
  SqliteLeaseLock    separate processes sharing one database file: each
                     ``regwatch run-crawl`` invocation claims a lease row
                     in ``crawl_leases`` for the duration of its run
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import ContextManager, Generator, Optional

from regwatch.db.repositories.lease_repo import LeaseRepository
from regwatch.models.source import DataCategory

logger = logging.getLogger(__name__)


class CrawlInProgressError(RuntimeError):
    """Raised when a crawl for the same source and category is already running."""

    def __init__(self, source_id: str, category: DataCategory) -> None:
        self.source_id = source_id
        self.category = category
        super().__init__(
            f"A crawl for {source_id}/{category.value} is already in progress; "
            "overlapping attempt rejected."
        )


class CrawlLock(ABC):
    @abstractmethod
    def hold(
        self,
        source_id: str,
        category: DataCategory,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> ContextManager[None]:
        """Hold the lock for ``(source_id, category)`` for the ``with`` body.

        Args:
            wait: Block until the running crawl finishes instead of failing.
            timeout: Maximum seconds to wait when ``wait`` is true.

        Raises:
            CrawlInProgressError: If the lock could not be acquired.
        """


class CrawlLockRegistry(CrawlLock):
    def __init__(self) -> None:
        self._locks: dict[tuple[str, DataCategory], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, source_id: str, category: DataCategory) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault((source_id, category), threading.Lock())

    @contextmanager
    def hold(
        self,
        source_id: str,
        category: DataCategory,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> Generator[None, None, None]:
        lock = self._lock_for(source_id, category)
        if wait:
            acquired = lock.acquire(timeout=timeout if timeout is not None else -1)
        else:
            acquired = lock.acquire(blocking=False)
        if not acquired:
            logger.warning("Crawl already in progress for %s/%s", source_id, category.value)
            raise CrawlInProgressError(source_id, category)
        try:
            yield
        finally:
            lock.release()


class SqliteLeaseLock(CrawlLock):
    """Lease rows in ``crawl_leases`` on the connection the stores write through.

    The lease is committed as soon as it is claimed, so other processes see
    it. Releasing it commits the run's store writes together with the lease
    removal; if the ``with`` body raises, the run's writes are rolled back
    first. A lease left behind by a crashed process can be taken over once
    ``now`` passes its expiry.

    Args:
        conn: Connection shared with ``sqlite_stores(conn)``; must be a file
            database, since leases are invisible across ``:memory:`` handles.
        now: Reference time of the run; leases expire at ``now + lease``.
        lease: Lease duration.
        poll_seconds: Retry interval while waiting for a held lease.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        now: datetime,
        lease: timedelta = timedelta(minutes=30),
        poll_seconds: float = 0.5,
    ) -> None:
        self.conn = conn
        self.repo = LeaseRepository(conn)
        self.now = now
        self.lease = lease
        self.poll_seconds = poll_seconds
        self.holder = f"{os.getpid()}-{uuid.uuid4().hex[:12]}"

    def _try_acquire(self, source_id: str, category: DataCategory) -> bool:
        try:
            acquired = self.repo.try_acquire(
                source_id, category, self.holder, self.now, self.now + self.lease
            )
        except sqlite3.OperationalError as exc:
            # Another process is mid-commit; treated as contention.
            if "locked" not in str(exc):
                raise
            acquired = False
        if acquired:
            self.conn.commit()
        else:
            self.conn.rollback()
        return acquired

    @contextmanager
    def hold(
        self,
        source_id: str,
        category: DataCategory,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> Generator[None, None, None]:
        acquired = self._try_acquire(source_id, category)
        if not acquired and wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            while not acquired and (deadline is None or time.monotonic() < deadline):
                time.sleep(self.poll_seconds)
                acquired = self._try_acquire(source_id, category)
        if not acquired:
            logger.warning(
                "Crawl lease for %s/%s held by %s",
                source_id,
                category.value,
                self.repo.holder_of(source_id, category),
            )
            raise CrawlInProgressError(source_id, category)

        logger.debug("Lease %s acquired for %s/%s", self.holder, source_id, category.value)
        try:
            yield
        except BaseException:
            self.conn.rollback()
            raise
        finally:
            self.repo.release(source_id, category, self.holder)
            self.conn.commit()
