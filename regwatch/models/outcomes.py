"""
Pipeline outcome models: violations, alerts, LKG snapshots and run records.

Error codes
-----------
Every violation and alert carries one ``ErrorCode``. The codes are stable
strings that appear in the alert log, the SQLite tables and the weekly
digest, so they must never be renamed once released.

  DOM_SELECTOR_MISSING        required/field marker absent from the page
  ROW_COUNT_TOO_LOW           fewer data rows than the schema expects
  SANITY_*                    value-level violations (see ``ViolationKind``)
  FETCH_FAILED                network/fetch error or empty extraction
  ANOMALY_QUARANTINED         implausible change held for review (P2)
  BACKOFF_EXHAUSTED           automatic retries paused (P1)
  MANUAL_CAPTURE_REQUIRED     nothing valid to publish and no LKG (P1)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from regwatch.models.extraction import ExtractedData
from regwatch.models.source import DataCategory
from regwatch.utils.time_utils import ensure_utc


class ErrorCode(str, Enum):
    DOM_SELECTOR_MISSING = "DOM_SELECTOR_MISSING"
    ROW_COUNT_TOO_LOW = "ROW_COUNT_TOO_LOW"
    SANITY_BELOW_MIN = "SANITY_BELOW_MIN"
    SANITY_ABOVE_MAX = "SANITY_ABOVE_MAX"
    SANITY_NEGATIVE = "SANITY_NEGATIVE"
    SANITY_NAN = "SANITY_NAN"
    SANITY_WRONG_TYPE = "SANITY_WRONG_TYPE"
    SANITY_INVALID_DATE = "SANITY_INVALID_DATE"
    SANITY_EMPTY_REQUIRED_LIST = "SANITY_EMPTY_REQUIRED_LIST"
    FETCH_FAILED = "FETCH_FAILED"
    ANOMALY_QUARANTINED = "ANOMALY_QUARANTINED"
    BACKOFF_EXHAUSTED = "BACKOFF_EXHAUSTED"
    MANUAL_CAPTURE_REQUIRED = "MANUAL_CAPTURE_REQUIRED"


class ViolationKind(str, Enum):
    """What exactly was wrong with one value or one page."""

    BELOW_MIN = "below_min"
    ABOVE_MAX = "above_max"
    NEGATIVE = "negative"
    NAN = "nan"
    WRONG_TYPE = "wrong_type"
    INVALID_DATE = "invalid_date"
    EMPTY_REQUIRED_LIST = "empty_required_list"
    SELECTOR_MISSING = "selector_missing"
    ROW_COUNT_TOO_LOW = "row_count_too_low"

    @property
    def code(self) -> ErrorCode:
        return _KIND_CODES[self]

    @property
    def is_structural(self) -> bool:
        return self in (ViolationKind.SELECTOR_MISSING, ViolationKind.ROW_COUNT_TOO_LOW)


_KIND_CODES: dict[ViolationKind, ErrorCode] = {
    ViolationKind.BELOW_MIN: ErrorCode.SANITY_BELOW_MIN,
    ViolationKind.ABOVE_MAX: ErrorCode.SANITY_ABOVE_MAX,
    ViolationKind.NEGATIVE: ErrorCode.SANITY_NEGATIVE,
    ViolationKind.NAN: ErrorCode.SANITY_NAN,
    ViolationKind.WRONG_TYPE: ErrorCode.SANITY_WRONG_TYPE,
    ViolationKind.INVALID_DATE: ErrorCode.SANITY_INVALID_DATE,
    ViolationKind.EMPTY_REQUIRED_LIST: ErrorCode.SANITY_EMPTY_REQUIRED_LIST,
    ViolationKind.SELECTOR_MISSING: ErrorCode.DOM_SELECTOR_MISSING,
    ViolationKind.ROW_COUNT_TOO_LOW: ErrorCode.ROW_COUNT_TOO_LOW,
}


@dataclass(frozen=True)
class ValidationViolation:
    """One rejected value or missing structural element.

    Attributes:
        field_path: Dotted path, e.g. ``"fees.elk"`` or ``"deadlines.elk.close"``.
            Structural violations use ``"dom"`` or the field a marker feeds.
        kind: Violation classification.
        observed: The offending value (or row count / ``None``).
        expected: The bound, selector, or format that was required.
        message: Human-readable explanation.
    """

    field_path: str
    kind: ViolationKind
    observed: Any
    expected: Any
    message: str

    @property
    def code(self) -> ErrorCode:
        return self.kind.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_path": self.field_path,
            "kind": self.kind.value,
            "code": self.code.value,
            "observed": self.observed,
            "expected": self.expected,
            "message": self.message,
        }


class AlertSeverity(str, Enum):
    P1 = "P1"
    P2 = "P2"


class Alert(BaseModel):
    """Operator-facing alert raised by the pipeline."""

    model_config = ConfigDict(frozen=True)

    alert_id: str
    severity: AlertSeverity
    code: ErrorCode
    title: str
    description: str
    source_id: str
    category: Optional[DataCategory] = None
    fired_at: datetime
    affected_fields: list[str] = []

    @field_validator("fired_at")
    @classmethod
    def validate_fired_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class LKGEntry(BaseModel):
    """Last-known-good snapshot: the most recent validated data of a source.

    ``held_since`` maps ``"<field>.<item>"`` to the capture time of values
    that a later crawl could not confirm (quarantined changes kept at their
    previous value). Those values are only as fresh as the time listed
    there, not ``captured_at``.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    data: ExtractedData
    captured_at: datetime
    source_url: str = ""
    content_hash: str
    held_since: dict[str, datetime] = {}

    @field_validator("captured_at")
    @classmethod
    def validate_captured_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("held_since")
    @classmethod
    def validate_held_since(cls, v: dict[str, datetime]) -> dict[str, datetime]:
        return {key: ensure_utc(ts) for key, ts in v.items()}

    def value_captured_at(self, key: str) -> datetime:
        """Capture time of one ``"<field>.<item>"`` value of the snapshot."""
        return self.held_since.get(key, self.captured_at)

    @classmethod
    def capture(
        cls,
        source_id: str,
        data: ExtractedData,
        captured_at: datetime,
        source_url: str = "",
        held_since: Optional[dict[str, datetime]] = None,
    ) -> "LKGEntry":
        return cls(
            source_id=source_id,
            data=data,
            captured_at=captured_at,
            source_url=source_url,
            content_hash=data.content_hash(),
            held_since=held_since or {},
        )


class QuarantinedItem(BaseModel):
    """An implausible new value held back pending human approval."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    field: str
    item_id: str
    old_value: float
    new_value: float
    delta: float
    reason: str
    detected_at: datetime
    awaiting_approval: bool = True

    @field_validator("detected_at")
    @classmethod
    def validate_detected_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class PipelineStatus(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    REJECTED = "rejected"


class CrawlRunRecord(BaseModel):
    """Audit row for one crawl runner invocation."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    category: DataCategory
    status: PipelineStatus
    attempted_at: datetime
    url: str = ""
    summary: str = ""
    error: Optional[str] = None

    @field_validator("attempted_at")
    @classmethod
    def validate_attempted_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)
