"""
Wrap pipeline output as user-facing verified facts.

Data the latest crawl did not confirm is never presented as freshly
confirmed:

  - every value published on a ``fallback`` verdict carries the ``stale``
    tier and an ``lkg_fallback`` freshness stamp;
  - on ``success``, a value held back by quarantine is the previous value,
    so it is wrapped as ``stale`` with its original capture time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence

from regwatch.config import FreshnessConfig, StalenessConfig
from regwatch.models.outcomes import PipelineStatus
from regwatch.pipeline.orchestrator import PipelineResult
from regwatch.provenance.freshness import (
    FreshnessStamp,
    VerificationMethod,
    compute_freshness_stamp,
)
from regwatch.provenance.verified_datum import VerifiedDatum, stale, verified

DEFAULT_PUBLISHED_FIELDS: tuple[str, ...] = ("fees", "point_costs", "license_fees")


def wrap_published(
    result: PipelineResult,
    now: datetime,
    fields: Sequence[str] = DEFAULT_PUBLISHED_FIELDS,
    category: Optional[str] = None,
    thresholds: StalenessConfig = StalenessConfig(),
) -> dict[str, VerifiedDatum[Any]]:
    """Map ``"<field>.<item>"`` to a wrapped value for everything published.

    Rejected results publish nothing and yield an empty dict.
    """
    if result.status == PipelineStatus.REJECTED or result.clean_data is None:
        return {}

    captured_at = result.data_captured_at or now
    label = f"{result.source_id} official source"
    wrapped: dict[str, VerifiedDatum[Any]] = {}
    for field_name in fields:
        for item, value in result.clean_data.numeric_map(field_name).items():
            key = f"{field_name}.{item}"
            if result.status == PipelineStatus.FALLBACK:
                wrapped[key] = stale(
                    value, result.source_url, result.held_since.get(key, captured_at),
                    f"{label} (last-known-good)", now,
                )
            elif key in result.held_since:
                wrapped[key] = stale(
                    value, result.source_url, result.held_since[key],
                    f"{label} (previous value; change under review)", now,
                )
            else:
                wrapped[key] = verified(
                    value, result.source_url, captured_at, label, now,
                    category, thresholds,
                )
    return wrapped


def stamp_result(
    result: PipelineResult,
    field: str,
    now: datetime,
    policy: FreshnessConfig = FreshnessConfig(),
) -> Optional[FreshnessStamp]:
    """Freshness stamp for one field of a published result.

    A field is only as fresh as its oldest value, and a field with any held
    value is stamped ``lkg_fallback``.
    """
    if result.status == PipelineStatus.REJECTED or result.data_captured_at is None:
        return None

    held = [ts for key, ts in result.held_since.items() if key.startswith(f"{field}.")]
    if result.status == PipelineStatus.FALLBACK or held:
        method = VerificationMethod.LKG_FALLBACK
    else:
        method = VerificationMethod.CRAWL
    return compute_freshness_stamp(
        result.source_id,
        field,
        min([result.data_captured_at, *held]),
        result.source_url,
        method,
        now,
        policy,
    )
