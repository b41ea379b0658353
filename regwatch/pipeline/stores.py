"""
Store contracts shared by the crawl pipeline, plus in-memory implementations.

Five pieces of shared mutable state survive between crawls:

  LKGStore         one last-known-good snapshot per source
  AlertLog         append-only operator alerts
  QuarantineStore  implausible values awaiting human approval
  BackoffStore     consecutive-failure counters per (source, category)
  RunLog           audit trail of every crawl runner invocation

They are never module globals: callers build a ``PipelineStores`` bundle
and pass it in. ``PipelineStores.in_memory()`` is used by tests and dry
runs; ``regwatch.db.repositories.sqlite_stores(conn)`` returns the
persistent equivalent.

Contract shared by every ``LKGStore``:
  - ``replace()`` is atomic and refuses to overwrite an entry with a newer
    ``captured_at``; it returns ``True`` only when the entry was written.

Contract shared by every ``QuarantineStore``:
  - ``add()`` keeps one pending item per (source, field, item, new value);
    it returns ``False`` when the same change is already awaiting approval.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace as dc_replace
from datetime import datetime
from typing import Optional

from regwatch.models.outcomes import (
    Alert,
    CrawlRunRecord,
    LKGEntry,
    PipelineStatus,
    QuarantinedItem,
)
from regwatch.models.source import DataCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffCounter:
    """Persisted failure counter of one (source, category) crawler.

    Attributes:
        failure_count: Consecutive failures since the last success.
        last_failure_at: Time of the latest failure, if any.
        last_error: Latest failure description.
        recovered_at: Time of the success that last cleared a non-zero count.
    """

    source_id: str
    category: DataCategory
    failure_count: int = 0
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    recovered_at: Optional[datetime] = None


# ── Contracts ─────────────────────────────────────────────────────────────────


class LKGStore(ABC):
    @abstractmethod
    def get(self, source_id: str) -> Optional[LKGEntry]: ...

    @abstractmethod
    def replace(self, entry: LKGEntry) -> bool: ...

    @abstractmethod
    def list_entries(self) -> list[LKGEntry]: ...


class AlertLog(ABC):
    @abstractmethod
    def append(self, alert: Alert) -> None: ...

    @abstractmethod
    def list_alerts(
        self,
        source_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[Alert]: ...


class QuarantineStore(ABC):
    @abstractmethod
    def add(self, item: QuarantinedItem) -> bool: ...

    @abstractmethod
    def pending(self, source_id: Optional[str] = None) -> list[QuarantinedItem]: ...


class BackoffStore(ABC):
    @abstractmethod
    def get(self, source_id: str, category: DataCategory) -> BackoffCounter: ...

    @abstractmethod
    def record_failure(
        self,
        source_id: str,
        category: DataCategory,
        error: str,
        failed_at: datetime,
    ) -> BackoffCounter: ...

    @abstractmethod
    def reset(
        self,
        source_id: str,
        category: DataCategory,
        recovered_at: datetime,
    ) -> BackoffCounter: ...

    @abstractmethod
    def list_counters(self) -> list[BackoffCounter]: ...


class RunLog(ABC):
    @abstractmethod
    def record(self, run: CrawlRunRecord) -> None: ...

    @abstractmethod
    def list_runs(
        self,
        since: Optional[datetime] = None,
        status: Optional[PipelineStatus] = None,
    ) -> list[CrawlRunRecord]: ...


# ── In-memory implementations ─────────────────────────────────────────────────


def _same_change(a: QuarantinedItem, b: QuarantinedItem) -> bool:
    return (a.source_id, a.field, a.item_id, a.new_value) == (
        b.source_id, b.field, b.item_id, b.new_value
    )


class InMemoryLKGStore(LKGStore):
    def __init__(self) -> None:
        self._entries: dict[str, LKGEntry] = {}
        self._lock = threading.Lock()

    def get(self, source_id: str) -> Optional[LKGEntry]:
        with self._lock:
            return self._entries.get(source_id)

    def replace(self, entry: LKGEntry) -> bool:
        with self._lock:
            current = self._entries.get(entry.source_id)
            if current is not None and current.captured_at > entry.captured_at:
                logger.warning(
                    "Refusing to replace LKG for %s: captured_at %s is older than %s",
                    entry.source_id,
                    entry.captured_at.isoformat(),
                    current.captured_at.isoformat(),
                )
                return False
            self._entries[entry.source_id] = entry
            return True

    def list_entries(self) -> list[LKGEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.source_id)


class InMemoryAlertLog(AlertLog):
    def __init__(self) -> None:
        self._alerts: list[Alert] = []
        self._lock = threading.Lock()

    def append(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def list_alerts(
        self,
        source_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[Alert]:
        with self._lock:
            return [
                a
                for a in self._alerts
                if (source_id is None or a.source_id == source_id)
                and (since is None or a.fired_at >= since)
            ]


class InMemoryQuarantineStore(QuarantineStore):
    def __init__(self) -> None:
        self._items: list[QuarantinedItem] = []
        self._lock = threading.Lock()

    def add(self, item: QuarantinedItem) -> bool:
        with self._lock:
            if any(
                i.awaiting_approval and _same_change(i, item) for i in self._items
            ):
                return False
            self._items.append(item)
            return True

    def pending(self, source_id: Optional[str] = None) -> list[QuarantinedItem]:
        with self._lock:
            return [
                i
                for i in self._items
                if i.awaiting_approval and (source_id is None or i.source_id == source_id)
            ]


class InMemoryBackoffStore(BackoffStore):
    def __init__(self) -> None:
        self._counters: dict[tuple[str, DataCategory], BackoffCounter] = {}
        self._lock = threading.Lock()

    def get(self, source_id: str, category: DataCategory) -> BackoffCounter:
        with self._lock:
            return self._counters.get(
                (source_id, category), BackoffCounter(source_id, category)
            )

    def record_failure(
        self,
        source_id: str,
        category: DataCategory,
        error: str,
        failed_at: datetime,
    ) -> BackoffCounter:
        with self._lock:
            current = self._counters.get(
                (source_id, category), BackoffCounter(source_id, category)
            )
            updated = dc_replace(
                current,
                failure_count=current.failure_count + 1,
                last_failure_at=failed_at,
                last_error=error,
            )
            self._counters[(source_id, category)] = updated
            return updated

    def reset(
        self,
        source_id: str,
        category: DataCategory,
        recovered_at: datetime,
    ) -> BackoffCounter:
        with self._lock:
            current = self._counters.get((source_id, category))
            if current is None or current.failure_count == 0:
                return current or BackoffCounter(source_id, category)
            updated = dc_replace(current, failure_count=0, recovered_at=recovered_at)
            self._counters[(source_id, category)] = updated
            return updated

    def list_counters(self) -> list[BackoffCounter]:
        with self._lock:
            return sorted(
                self._counters.values(), key=lambda c: (c.source_id, c.category.value)
            )


class InMemoryRunLog(RunLog):
    def __init__(self) -> None:
        self._runs: list[CrawlRunRecord] = []
        self._lock = threading.Lock()

    def record(self, run: CrawlRunRecord) -> None:
        with self._lock:
            self._runs.append(run)

    def list_runs(
        self,
        since: Optional[datetime] = None,
        status: Optional[PipelineStatus] = None,
    ) -> list[CrawlRunRecord]:
        with self._lock:
            return [
                r
                for r in self._runs
                if (since is None or r.attempted_at >= since)
                and (status is None or r.status == status)
            ]


@dataclass
class PipelineStores:
    """Bundle of the stores a crawl pipeline reads and writes."""

    lkg: LKGStore
    alerts: AlertLog
    quarantine: QuarantineStore
    backoff: BackoffStore
    runs: RunLog

    @classmethod
    def in_memory(cls) -> "PipelineStores":
        return cls(
            lkg=InMemoryLKGStore(),
            alerts=InMemoryAlertLog(),
            quarantine=InMemoryQuarantineStore(),
            backoff=InMemoryBackoffStore(),
            runs=InMemoryRunLog(),
        )
