"""
Shared pytest fixtures for the regwatch test suite.

Provides:
  - ``in_memory_db``: a fresh in-memory SQLite connection with the full
    schema applied.
  - ``stores``: an in-memory ``PipelineStores`` bundle.
  - ``make_data`` / ``make_attempt``: factories for valid Colorado crawl
    output, with keyword overrides.
  - ``valid_page`` and ``co_schema``: a fee page and the schema it satisfies.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Generator

import pytest

from regwatch.db.schema import apply_schema
from regwatch.models.extraction import CrawlAttempt, DeadlineWindow, ExtractedData, ExtractionSchema
from regwatch.models.source import DataCategory
from regwatch.pipeline.stores import PipelineStores

VALID_PAGE = """
<html><body>
  <div id="big-game-brochure">
    <table class="fee-table">
      <tr><th>Species</th><th>NR fee</th></tr>
      <tr><td>Elk</td><td class="nr-fee">828</td></tr>
      <tr><td>Deer</td><td class="nr-fee">508</td></tr>
      <tr><td>Pronghorn</td><td class="nr-fee">508</td></tr>
      <tr><td>Moose</td><td class="nr-fee">2758</td></tr>
    </table>
    <p id="application-deadline">April 7, 2026</p>
  </div>
</body></html>
"""


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def stores() -> PipelineStores:
    return PipelineStores.in_memory()


# ── Sample domain object factories ────────────────────────────────────────────

@pytest.fixture
def valid_page() -> str:
    """A Colorado fee page that satisfies ``co_schema``."""
    return VALID_PAGE


@pytest.fixture
def make_data() -> Callable[..., ExtractedData]:
    """Factory for a valid Colorado-style extraction; override any field."""

    def _make(**overrides: Any) -> ExtractedData:
        fields = dict(
            fees={"elk": 828.0, "deer": 508.0},
            point_costs={"elk": 100.0},
            deadlines={"elk": DeadlineWindow(open="2026-03-01", close="2026-04-07")},
            license_fees={"qualifying_license": 101.0, "app_fee": 10.0},
            draw_odds={"E-E-001-O1-R": 0.25},
            point_requirements={"unit-1": 8.0, "unit-2": 4.0},
            species=["elk", "deer"],
        )
        fields.update(overrides)
        return ExtractedData(**fields)

    return _make


@pytest.fixture
def make_attempt(make_data) -> Callable[..., CrawlAttempt]:
    """Factory for a successful Colorado fee crawl at 2026-03-01T12:00Z."""

    def _make(**overrides: Any) -> CrawlAttempt:
        fields = dict(
            source_id="CO",
            category=DataCategory.FEES,
            url="https://cpw.state.co.us/fees",
            attempted_at=datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc),
            duration_ms=850,
            fetch_succeeded=True,
            content=VALID_PAGE,
            data=make_data(),
        )
        fields.update(overrides)
        return CrawlAttempt(**fields)

    return _make


@pytest.fixture
def co_schema() -> ExtractionSchema:
    return ExtractionSchema(
        source_id="CO",
        display_name="Colorado Parks & Wildlife",
        required_markers=["table.fee-table", "#big-game-brochure"],
        field_markers={
            "fees": "table.fee-table td.nr-fee",
            "deadlines": "#application-deadline",
        },
        min_expected_rows=5,
    )
