"""
Value-level sanity validation of extracted data.

Structurally valid pages can still yield nonsense: a $0 tag fee, a negative
point cost, ``NaN`` from a failed number parse, ``"TBD"`` in a price cell,
an impossible deadline date, or an empty species list. A zero or missing fee
is always a defect, never a real price, so it is rejected rather than
published.

Checks applied:

  numeric fields (``SanityConfig.numeric_fields``)
    - ``None``, strings, booleans, containers  → wrong_type
    - NaN / ±inf                               → nan
    - < 0                                      → negative
    - below any matching bound floor           → below_min
    - above any matching bound ceiling         → above_max
  deadlines
    - ``open`` / ``close`` not a valid ``YYYY-MM-DD`` calendar date → invalid_date
  required lists (``SanityConfig.required_lists``)
    - missing or empty                         → empty_required_list

Every violation is collected; validation never stops at the first one.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from numbers import Real
from typing import Any, Optional

from regwatch.config import SanityBound, SanityConfig
from regwatch.models.extraction import ExtractedData
from regwatch.models.outcomes import ValidationViolation, ViolationKind

logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class SanityCheckResult:
    valid: bool
    violations: list[ValidationViolation] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _check_number(
    path: str,
    value: Any,
    bounds: list[SanityBound],
) -> list[ValidationViolation]:
    if not _is_number(value):
        return [
            ValidationViolation(
                field_path=path,
                kind=ViolationKind.WRONG_TYPE,
                observed=value,
                expected="number",
                message=f"{path}: expected a number, got {type(value).__name__} {value!r}",
            )
        ]

    number = float(value)
    if math.isnan(number) or math.isinf(number):
        return [
            ValidationViolation(
                field_path=path,
                kind=ViolationKind.NAN,
                observed=value,
                expected="finite number",
                message=f"{path}: non-finite value {value!r}",
            )
        ]

    if number < 0:
        return [
            ValidationViolation(
                field_path=path,
                kind=ViolationKind.NEGATIVE,
                observed=value,
                expected=">= 0",
                message=f"{path}: negative value {value!r}",
            )
        ]

    violations: list[ValidationViolation] = []
    for bound in bounds:
        if bound.min_value is not None and number < bound.min_value:
            violations.append(
                ValidationViolation(
                    field_path=path,
                    kind=ViolationKind.BELOW_MIN,
                    observed=value,
                    expected=bound.min_value,
                    message=(
                        f"{path}: {value!r} below minimum {bound.min_value:g}"
                        + (f" ({bound.description})" if bound.description else "")
                    ),
                )
            )
        if bound.max_value is not None and number > bound.max_value:
            violations.append(
                ValidationViolation(
                    field_path=path,
                    kind=ViolationKind.ABOVE_MAX,
                    observed=value,
                    expected=bound.max_value,
                    message=(
                        f"{path}: {value!r} above maximum {bound.max_value:g}"
                        + (f" ({bound.description})" if bound.description else "")
                    ),
                )
            )
    return violations


def _is_calendar_date(value: Any) -> bool:
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _check_deadlines(data: ExtractedData) -> list[ValidationViolation]:
    violations: list[ValidationViolation] = []
    for item, window in data.deadlines.items():
        for edge in ("open", "close"):
            value = getattr(window, edge)
            if not _is_calendar_date(value):
                path = f"deadlines.{item}.{edge}"
                violations.append(
                    ValidationViolation(
                        field_path=path,
                        kind=ViolationKind.INVALID_DATE,
                        observed=value,
                        expected="YYYY-MM-DD",
                        message=f"{path}: {value!r} is not a valid calendar date",
                    )
                )
    return violations


def _check_required_lists(
    data: ExtractedData,
    required: list[str],
) -> list[ValidationViolation]:
    violations: list[ValidationViolation] = []
    for name in required:
        value = getattr(data, name, None)
        if not isinstance(value, list) or len(value) == 0:
            violations.append(
                ValidationViolation(
                    field_path=name,
                    kind=ViolationKind.EMPTY_REQUIRED_LIST,
                    observed=value,
                    expected="non-empty list",
                    message=f"{name}: empty or missing; total extraction failure",
                )
            )
    return violations


def validate_sanity_constraints(
    source_id: str,
    data: ExtractedData,
    residency: Optional[str] = None,
    config: SanityConfig = SanityConfig(),
) -> SanityCheckResult:
    """Validate every value of ``data`` against ``config``.

    Args:
        source_id: Source the data came from; selects source-specific bounds.
        data: Untrusted extractor output.
        residency: ``"NR"`` or ``"R"``; defaults to ``config.default_residency``.
        config: Bounds table, numeric fields, and required lists.
    """
    residency = residency or config.default_residency
    violations: list[ValidationViolation] = []

    for field_name in config.numeric_fields:
        for item, value in data.numeric_map(field_name).items():
            bounds = [
                b for b in config.bounds if b.matches(field_name, source_id, item, residency)
            ]
            violations.extend(_check_number(f"{field_name}.{item}", value, bounds))

    violations.extend(_check_deadlines(data))
    violations.extend(_check_required_lists(data, config.required_lists))

    if violations:
        logger.warning(
            "Sanity check failed for %s (%s): %s",
            source_id,
            residency,
            ", ".join(v.field_path for v in violations),
        )

    return SanityCheckResult(valid=not violations, violations=violations)
