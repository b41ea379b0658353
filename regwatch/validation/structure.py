"""
Structural validation of a fetched page against its ``ExtractionSchema``.

Agencies redesign their sites without notice. When that happens the
extractor usually still "works" but reads the wrong cells, so the page
itself is checked first: every required marker and every per-field marker
must be present, and the data table must have at least the expected number
of rows. Each missing marker is reported separately with the exact selector
that was expected, so an operator can see at a glance what moved.

No repair is attempted here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from regwatch.models.extraction import ExtractionSchema
from regwatch.models.outcomes import ValidationViolation, ViolationKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StructureCheckResult:
    valid: bool
    violations: list[ValidationViolation] = field(default_factory=list)
    row_count: int = 0


def validate_dom_structure(content: str, schema: ExtractionSchema) -> StructureCheckResult:
    """Check ``content`` for every marker and the minimum row count in ``schema``."""
    soup = BeautifulSoup(content or "", "html.parser")
    violations: list[ValidationViolation] = []

    for selector in schema.required_markers:
        if soup.select_one(selector) is None:
            violations.append(
                ValidationViolation(
                    field_path="dom",
                    kind=ViolationKind.SELECTOR_MISSING,
                    observed=None,
                    expected=selector,
                    message=f"Required element '{selector}' not found on page",
                )
            )

    for field_name, selector in schema.field_markers.items():
        if soup.select_one(selector) is None:
            violations.append(
                ValidationViolation(
                    field_path=field_name,
                    kind=ViolationKind.SELECTOR_MISSING,
                    observed=None,
                    expected=selector,
                    message=f"Marker '{selector}' for field '{field_name}' not found on page",
                )
            )

    row_count = len(soup.select(schema.row_marker))
    if row_count < schema.min_expected_rows:
        violations.append(
            ValidationViolation(
                field_path="dom",
                kind=ViolationKind.ROW_COUNT_TOO_LOW,
                observed=row_count,
                expected=schema.min_expected_rows,
                message=(
                    f"Expected at least {schema.min_expected_rows} rows matching "
                    f"'{schema.row_marker}', found {row_count}; page may be truncated"
                ),
            )
        )

    if violations:
        logger.warning(
            "Structure check failed for %s: %d violation(s)",
            schema.source_id,
            len(violations),
        )

    return StructureCheckResult(
        valid=not violations, violations=violations, row_count=row_count
    )
