"""
Variance-based anomaly detection between consecutive snapshots.

Some values pass every sanity bound and are still almost certainly wrong:
a unit whose preference points required jumps from 8 to 3 in one year, or
a $508 tag that a crawler suddenly reads as $5. Such a change is quarantined
for human review.

Two comparisons are available, both symmetric:

  check_anomalous_variance  ``|new - old| > threshold``        (absolute)
  check_relative_variance   ``|new - old| / |old| > max_ratio`` (relative)

Items present in only one series, or with a non-numeric value on either
side, are skipped by both.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 3.0


@dataclass(frozen=True)
class AnomalyResult:
    item_id: str
    old_value: float
    new_value: float
    delta: float
    quarantined: bool
    reason: str


def _finite(value: Any) -> bool:
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(float(value))
    )


def _compare(
    old_series: Mapping[str, Any],
    new_series: Mapping[str, Any],
    judge: Callable[[str, float, float], tuple[bool, str]],
) -> list[AnomalyResult]:
    results: list[AnomalyResult] = []
    for item_id, new_value in new_series.items():
        if item_id not in old_series:
            continue
        old_value = old_series[item_id]
        if not (_finite(old_value) and _finite(new_value)):
            continue

        old, new = float(old_value), float(new_value)
        quarantined, reason = judge(item_id, old, new)
        results.append(
            AnomalyResult(
                item_id=item_id,
                old_value=old,
                new_value=new,
                delta=new - old,
                quarantined=quarantined,
                reason=reason,
            )
        )

    flagged = sum(1 for r in results if r.quarantined)
    if flagged:
        logger.info("Variance check flagged %d of %d items", flagged, len(results))
    return results


def check_anomalous_variance(
    old_series: Mapping[str, Any],
    new_series: Mapping[str, Any],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[AnomalyResult]:
    """Flag items whose absolute change exceeds ``threshold``.

    Raises:
        ValueError: If ``threshold`` is negative.
    """
    if threshold < 0:
        raise ValueError(f"threshold must be >= 0, got {threshold}.")

    def judge(item_id: str, old: float, new: float) -> tuple[bool, str]:
        delta = new - old
        if abs(delta) > threshold:
            return True, (
                f"{item_id}: changed {old:g} -> {new:g} "
                f"(delta {delta:+g}) exceeds threshold {threshold:g}"
            )
        return False, f"{item_id}: change {delta:+g} within threshold {threshold:g}"

    return _compare(old_series, new_series, judge)


def check_relative_variance(
    old_series: Mapping[str, Any],
    new_series: Mapping[str, Any],
    max_ratio: float,
) -> list[AnomalyResult]:
    """Flag items whose change exceeds ``max_ratio`` of the previous value.

    A previous value of zero has no meaningful ratio, so any move away from
    it is flagged.

    Raises:
        ValueError: If ``max_ratio`` is negative.
    """
    if max_ratio < 0:
        raise ValueError(f"max_ratio must be >= 0, got {max_ratio}.")

    def judge(item_id: str, old: float, new: float) -> tuple[bool, str]:
        delta = new - old
        if old == 0:
            if delta == 0:
                return False, f"{item_id}: unchanged at 0"
            return True, f"{item_id}: changed 0 -> {new:g}; no previous scale to compare"
        ratio = abs(delta) / abs(old)
        if ratio > max_ratio:
            return True, (
                f"{item_id}: changed {old:g} -> {new:g} "
                f"({delta / old:+.0%}) exceeds {max_ratio:.0%} of previous value"
            )
        return False, f"{item_id}: change {delta / old:+.0%} within {max_ratio:.0%}"

    return _compare(old_series, new_series, judge)


def quarantined_items(results: list[AnomalyResult]) -> list[AnomalyResult]:
    return [r for r in results if r.quarantined]
