"""
Crawl pipeline orchestration: the gate between raw extraction and publication.

``run_crawl_pipeline(attempt, context)`` decides what, if anything, from one
crawl attempt may be published:

  Step 1 — Fetch gate:     fetch error or empty extraction → failure.
  Step 2 — Validation:     structural check of the page (when a schema is
                           supplied), then value sanity check of the data.
                           Any violation → failure.
  Step 3 — Failure path:   LKG on file → ``fallback`` (publish the LKG, one
                           P1 alert). No LKG → ``rejected`` (publish nothing,
                           one P1 alert demanding manual capture).
  Step 4 — Anomaly gate:   compare against the LKG per configured field;
                           implausible items keep their LKG value (and its
                           capture time), go to the quarantine store, and
                           raise one P2 alert. A change already awaiting
                           approval is not queued or alerted again.
  Step 5 — Publish guard:  re-validate what is about to be published; only
                           then replace the LKG (atomic, never older).

Stale-but-correct beats fresh-but-wrong: nothing that fails the value
validator is ever returned as publishable data, whatever the path.

The function holds no state of its own. Stores come in through
``PipelineContext`` and ``now`` is always supplied by the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Callable, Iterator, Optional

from regwatch.config import AnomalyConfig, SanityConfig
from regwatch.models.extraction import CrawlAttempt, ExtractedData, ExtractionSchema
from regwatch.models.outcomes import (
    Alert,
    AlertSeverity,
    ErrorCode,
    LKGEntry,
    PipelineStatus,
    QuarantinedItem,
    ValidationViolation,
)
from regwatch.pipeline.stores import PipelineStores
from regwatch.validation.anomaly import (
    AnomalyResult,
    check_anomalous_variance,
    check_relative_variance,
    quarantined_items,
)
from regwatch.validation.sanity import validate_sanity_constraints
from regwatch.validation.structure import validate_dom_structure

logger = logging.getLogger(__name__)

_MAX_DETAIL_VIOLATIONS = 5


# ── Context and result types ──────────────────────────────────────────────────


@dataclass(frozen=True)
class PipelineContext:
    """Everything ``run_crawl_pipeline`` needs besides the attempt itself.

    Attributes:
        stores:    LKG registry, alert log and quarantine store are used.
        now:       Reference time for alerts and quarantine records.
        schema:    Structural expectations; ``None`` skips the DOM check.
        residency: Residency class for fee bounds (``"NR"`` / ``"R"``).
        sanity:    Value-validator policy.
        anomaly:   Per-field variance thresholds.
    """

    stores: PipelineStores
    now: datetime
    schema: Optional[ExtractionSchema] = None
    residency: Optional[str] = None
    sanity: SanityConfig = field(default_factory=SanityConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)


@dataclass(frozen=True)
class PipelineResult:
    """Verdict on one crawl attempt.

    ``clean_data`` is what may be published: the new data on ``success``,
    the LKG snapshot on ``fallback``, ``None`` on ``rejected``.
    ``data_captured_at`` is when ``clean_data`` was originally captured;
    ``held_since`` overrides it for ``"<field>.<item>"`` values kept from an
    earlier capture (quarantined changes). ``quarantined`` lists every change
    held back by this attempt, including ones already awaiting approval.
    """

    status: PipelineStatus
    source_id: str
    clean_data: Optional[ExtractedData]
    alerts: list[Alert] = field(default_factory=list)
    violations: list[ValidationViolation] = field(default_factory=list)
    quarantined: list[QuarantinedItem] = field(default_factory=list)
    lkg_replaced: bool = False
    data_captured_at: Optional[datetime] = None
    held_since: dict[str, datetime] = field(default_factory=dict)
    source_url: str = ""
    detail: str = ""

    @property
    def summary(self) -> str:
        if self.status == PipelineStatus.SUCCESS:
            text = "Validated and published"
            if self.quarantined:
                text += f"; {len(self.quarantined)} item(s) quarantined"
            return text
        return self.detail


# ── Helpers ───────────────────────────────────────────────────────────────────


def _make_alert(
    attempt: CrawlAttempt,
    now: datetime,
    severity: AlertSeverity,
    code: ErrorCode,
    title: str,
    description: str,
    affected_fields: list[str],
) -> Alert:
    return Alert(
        alert_id=(
            f"{code.value.lower()}-{attempt.source_id}-{attempt.category.value}-"
            f"{now.strftime('%Y%m%dT%H%M%S')}"
        ),
        severity=severity,
        code=code,
        title=title,
        description=description,
        source_id=attempt.source_id,
        category=attempt.category,
        fired_at=now,
        affected_fields=affected_fields,
    )


def _log_fields(attempt: CrawlAttempt, code: ErrorCode) -> dict[str, str]:
    return {
        "source_id": attempt.source_id,
        "category": attempt.category.value,
        "code": code.value,
    }


def _describe(violations: list[ValidationViolation]) -> str:
    shown = "; ".join(v.message for v in violations[:_MAX_DETAIL_VIOLATIONS])
    hidden = len(violations) - _MAX_DETAIL_VIOLATIONS
    if hidden > 0:
        shown += f"; and {hidden} more"
    return shown


def _publishable(source_id: str, data: ExtractedData, context: PipelineContext) -> bool:
    return validate_sanity_constraints(
        source_id, data, context.residency, context.sanity
    ).valid


def _fail(
    attempt: CrawlAttempt,
    context: PipelineContext,
    code: ErrorCode,
    detail: str,
    violations: list[ValidationViolation],
) -> PipelineResult:
    """Fall back to the LKG, or reject when there is none worth serving."""
    stores = context.stores
    affected = sorted({v.field_path for v in violations})
    lkg = stores.lkg.get(attempt.source_id)

    if lkg is not None and _publishable(attempt.source_id, lkg.data, context):
        description = (
            f"{code.value}: {detail}. Serving last-known-good data captured "
            f"{lkg.captured_at.isoformat()}."
        )
        alert = _make_alert(
            attempt,
            context.now,
            AlertSeverity.P1,
            code,
            f"{attempt.source_id} {attempt.category.value}: crawl rejected, serving LKG",
            description,
            affected,
        )
        stores.alerts.append(alert)
        logger.warning(
            "%s/%s fallback to LKG: %s",
            attempt.source_id,
            attempt.category.value,
            detail,
            extra=_log_fields(attempt, code),
        )
        return PipelineResult(
            status=PipelineStatus.FALLBACK,
            source_id=attempt.source_id,
            clean_data=lkg.data,
            alerts=[alert],
            violations=violations,
            data_captured_at=lkg.captured_at,
            held_since=dict(lkg.held_since),
            source_url=lkg.source_url,
            detail=description,
        )

    if lkg is not None:
        lkg_note = "last-known-good snapshot on file also fails validation"
        logger.error("LKG for %s fails validation; refusing to serve it", attempt.source_id)
    else:
        lkg_note = "no last-known-good snapshot on file"
    description = (
        f"{code.value}: {detail}. Nothing published ({lkg_note}); "
        "manual data capture required."
    )
    alert = _make_alert(
        attempt,
        context.now,
        AlertSeverity.P1,
        ErrorCode.MANUAL_CAPTURE_REQUIRED,
        f"{attempt.source_id} {attempt.category.value}: manual capture required",
        description,
        affected,
    )
    stores.alerts.append(alert)
    logger.error(
        "%s/%s rejected: %s",
        attempt.source_id,
        attempt.category.value,
        detail,
        extra=_log_fields(attempt, code),
    )
    return PipelineResult(
        status=PipelineStatus.REJECTED,
        source_id=attempt.source_id,
        clean_data=None,
        alerts=[alert],
        violations=violations,
        detail=description,
    )


def _variance_checks(
    config: AnomalyConfig,
) -> Iterator[tuple[str, Callable[..., list[AnomalyResult]]]]:
    for field_name, threshold in config.thresholds.items():
        yield field_name, partial(check_anomalous_variance, threshold=threshold)
    for field_name, ratio in config.relative_thresholds.items():
        yield field_name, partial(check_relative_variance, max_ratio=ratio)


def _quarantine_anomalies(
    attempt: CrawlAttempt,
    data: ExtractedData,
    lkg: LKGEntry,
    context: PipelineContext,
) -> tuple[ExtractedData, list[QuarantinedItem], dict[str, datetime]]:
    """Hold back implausible changes; the published copy keeps LKG values.

    Also returns, per held ``"<field>.<item>"``, the capture time of the
    value kept in its place. A value held on consecutive crawls keeps its
    original capture time.
    """
    held: list[QuarantinedItem] = []
    held_since: dict[str, datetime] = {}
    for field_name, check in _variance_checks(context.anomaly):
        old_series = lkg.data.numeric_map(field_name)
        flagged = [
            r
            for r in quarantined_items(check(old_series, data.numeric_map(field_name)))
            if f"{field_name}.{r.item_id}" not in held_since
        ]
        if not flagged:
            continue
        data = data.with_values(field_name, {r.item_id: old_series[r.item_id] for r in flagged})
        for r in flagged:
            key = f"{field_name}.{r.item_id}"
            held_since[key] = lkg.value_captured_at(key)
            held.append(
                QuarantinedItem(
                    source_id=attempt.source_id,
                    field=field_name,
                    item_id=r.item_id,
                    old_value=r.old_value,
                    new_value=r.new_value,
                    delta=r.delta,
                    reason=r.reason,
                    detected_at=context.now,
                )
            )
    return data, held, held_since


# ── Pipeline ──────────────────────────────────────────────────────────────────


def run_crawl_pipeline(attempt: CrawlAttempt, context: PipelineContext) -> PipelineResult:
    """Gate one crawl attempt into success, LKG fallback, or rejection."""
    source_id = attempt.source_id
    stores = context.stores

    # Step 1: fetch gate
    if not attempt.fetch_succeeded or attempt.data is None:
        detail = attempt.error or "extraction produced no data"
        return _fail(attempt, context, ErrorCode.FETCH_FAILED, detail, [])

    # Step 2: structural then value validation
    violations: list[ValidationViolation] = []
    if context.schema is not None:
        violations.extend(
            validate_dom_structure(attempt.content or "", context.schema).violations
        )
    violations.extend(
        validate_sanity_constraints(
            source_id, attempt.data, context.residency, context.sanity
        ).violations
    )
    if violations:
        return _fail(attempt, context, violations[0].code, _describe(violations), violations)

    # Step 4: anomaly gate
    published = attempt.data
    held: list[QuarantinedItem] = []
    held_since: dict[str, datetime] = {}
    lkg = stores.lkg.get(source_id)
    if lkg is not None:
        published, held, held_since = _quarantine_anomalies(attempt, published, lkg, context)

    # Step 5: publish guard
    guard = validate_sanity_constraints(source_id, published, context.residency, context.sanity)
    if not guard.valid:
        return _fail(
            attempt,
            context,
            guard.violations[0].code,
            "published copy failed re-validation: " + _describe(guard.violations),
            guard.violations,
        )

    alerts: list[Alert] = []
    newly_held = [item for item in held if stores.quarantine.add(item)]
    if newly_held:
        alert = _make_alert(
            attempt,
            context.now,
            AlertSeverity.P2,
            ErrorCode.ANOMALY_QUARANTINED,
            f"{source_id}: {len(newly_held)} value(s) quarantined for review",
            "; ".join(i.reason for i in newly_held),
            sorted(f"{i.field}.{i.item_id}" for i in newly_held),
        )
        stores.alerts.append(alert)
        alerts.append(alert)

    replaced = stores.lkg.replace(
        LKGEntry.capture(
            source_id, published, attempt.attempted_at, attempt.url, held_since
        )
    )
    logger.info(
        "%s/%s validated; LKG %s, %d held (%d new)",
        source_id,
        attempt.category.value,
        "replaced" if replaced else "kept (newer on file)",
        len(held),
        len(newly_held),
    )
    return PipelineResult(
        status=PipelineStatus.SUCCESS,
        source_id=source_id,
        clean_data=published,
        alerts=alerts,
        quarantined=held,
        lkg_replaced=replaced,
        data_captured_at=attempt.attempted_at,
        held_since=held_since,
        source_url=attempt.url,
    )
