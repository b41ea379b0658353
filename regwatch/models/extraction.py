"""
Extraction models: raw crawler output and the schema a page must satisfy.

``ExtractedData`` is typed ``Any`` at the value level. It holds
whatever the extractor produced, including ``None``, strings, NaN and
negative numbers, and nothing in it is trusted until the validators in
``regwatch.validation`` have passed it.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Optional

import soupsieve
from pydantic import BaseModel, ConfigDict, Field, field_validator

from regwatch.models.source import DataCategory
from regwatch.utils.time_utils import ensure_utc


class DeadlineWindow(BaseModel):
    """Open/close dates exactly as extracted (expected ``YYYY-MM-DD``)."""

    model_config = ConfigDict(frozen=True)

    open: Any = None
    close: Any = None


class ExtractedData(BaseModel):
    """Untrusted structured data pulled from one source page."""

    model_config = ConfigDict(frozen=True)

    fees: dict[str, Any] = {}
    point_costs: dict[str, Any] = {}
    deadlines: dict[str, DeadlineWindow] = {}
    license_fees: dict[str, Any] = {}
    draw_odds: dict[str, Any] = {}
    point_requirements: dict[str, Any] = {}
    species: Optional[list[Any]] = None

    def numeric_map(self, field: str) -> dict[str, Any]:
        """Return the item→value map for a numeric field name."""
        value = getattr(self, field, None)
        if not isinstance(value, dict):
            raise ValueError(f"'{field}' is not a numeric map field of ExtractedData.")
        return value

    def with_values(self, field: str, overrides: dict[str, Any]) -> "ExtractedData":
        """Copy with selected items of ``field`` replaced."""
        merged = {**self.numeric_map(field), **overrides}
        return self.model_copy(update={field: merged})

    def content_hash(self) -> str:
        """SHA-256 of the canonical JSON form (sorted keys)."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _compile_selector(selector: str) -> None:
    try:
        soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as exc:
        raise ValueError(f"Invalid CSS selector {selector!r}: {exc}") from exc


class ExtractionSchema(BaseModel):
    """Structural expectations for one source's pages.

    All selectors are CSS selectors; they are compiled at construction time
    so a typo in ``config/schemas.toml`` fails on load rather than on the
    first crawl.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    display_name: str = ""
    required_markers: list[str] = []
    field_markers: dict[str, str] = {}
    row_marker: str = "tr"
    min_expected_rows: int = 0

    @field_validator("required_markers")
    @classmethod
    def validate_required_markers(cls, v: list[str]) -> list[str]:
        for selector in v:
            _compile_selector(selector)
        return v

    @field_validator("field_markers")
    @classmethod
    def validate_field_markers(cls, v: dict[str, str]) -> dict[str, str]:
        for selector in v.values():
            _compile_selector(selector)
        return v

    @field_validator("row_marker")
    @classmethod
    def validate_row_marker(cls, v: str) -> str:
        _compile_selector(v)
        return v

    @field_validator("min_expected_rows")
    @classmethod
    def validate_min_rows(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"min_expected_rows must be >= 0, got {v}.")
        return v


class CrawlAttempt(BaseModel):
    """One fetch+extract attempt for one source and category.

    Attributes:
        fetch_succeeded: ``False`` when the fetch errored or timed out.
        error: Fetch error text, if any.
        content: Raw page markup, used for structural validation.
        data: Extractor output, or ``None`` when extraction produced nothing.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    category: DataCategory
    url: str = ""
    attempted_at: datetime
    duration_ms: int = Field(default=0, ge=0)
    fetch_succeeded: bool = True
    error: Optional[str] = None
    content: Optional[str] = None
    data: Optional[ExtractedData] = None

    @field_validator("attempted_at")
    @classmethod
    def validate_attempted_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)
