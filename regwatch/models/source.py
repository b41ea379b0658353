"""
Source context models.

``SourceContext`` is the per-agency calendar snapshot the frequency policy
reads: which data categories are tracked, how close the nearest application
deadline is, and whether the application window is currently open. It is
supplied by the caller each scheduling cycle and never persisted here.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class DataCategory(str, Enum):
    """Kinds of regulatory fact a source publishes."""

    DEADLINES = "deadlines"
    FEES = "fees"
    REGULATIONS = "regulations"
    DRAW_ODDS = "draw_odds"


ALL_CATEGORIES: tuple[DataCategory, ...] = tuple(DataCategory)


class SourceContext(BaseModel):
    """Calendar and URL context for one external publisher.

    Attributes:
        source_id: Stable agency identifier, e.g. ``"CO"``.
        tracked_categories: Categories crawled for this source.
        nearest_deadline: Next application deadline, if known.
        window_open: Whether the application window is currently open.
        days_until_deadline: Signed day count to ``nearest_deadline``;
            negative once the deadline has passed.
        source_urls: Pages crawled for this source; the first is primary.
        regulatory_url: Regulations brochure page, used for the
            ``regulations`` category when present.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    tracked_categories: list[DataCategory] = list(ALL_CATEGORIES)
    nearest_deadline: Optional[date] = None
    window_open: bool = False
    days_until_deadline: Optional[int] = None
    source_urls: list[str] = []
    regulatory_url: Optional[str] = None

    @field_validator("source_id")
    @classmethod
    def validate_source_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("source_id must be a non-empty string.")
        return v.strip()

    @property
    def primary_url(self) -> Optional[str]:
        return self.source_urls[0] if self.source_urls else None

    def url_for(self, category: DataCategory) -> Optional[str]:
        """Target URL for crawling ``category`` of this source."""
        if category == DataCategory.REGULATIONS and self.regulatory_url:
            return self.regulatory_url
        return self.primary_url
