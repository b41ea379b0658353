"""
Report writers and ASCII formatters for CLI output.

File layout::

    data/outputs/
        schedule_{date}.json
        digest_{date}.json

Each file is a self-contained JSON document. Old files are not deleted;
they serve as an audit trail. Dates come from the report's own timestamp,
never from the wall clock.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path

from regwatch.monitoring.digest import FailureStatus, WeeklyDigest
from regwatch.resilience.backoff import BackoffState
from regwatch.scheduling.frequency import CrawlSchedule, FrequencyChange

logger = logging.getLogger(__name__)


def write_digest_report(digest: WeeklyDigest, output_dir: Path) -> Path:
    """Serialise a WeeklyDigest to ``digest_{period_end date}.json``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"digest_{digest.period_end.date().isoformat()}.json"
    _write_json(path, digest.to_dict())
    return path


def write_schedule_report(schedule: CrawlSchedule, output_dir: Path) -> Path:
    """Serialise a CrawlSchedule to ``schedule_{generated date}.json``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"schedule_{schedule.generated_at.date().isoformat()}.json"
    _write_json(path, schedule.to_dict())
    return path


def write_frequency_changes(
    changes: list[FrequencyChange],
    output_dir: Path,
    as_of: date,
) -> Path:
    """Serialise schedule frequency changes to ``frequency_changes_{date}.json``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"frequency_changes_{as_of.isoformat()}.json"
    _write_json(path, {"changes": [c.to_dict() for c in changes]})
    return path


def _write_json(path: Path, payload: dict) -> None:
    """Write a JSON payload to path, logging success or failure."""
    try:
        path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        logger.info("Wrote report: %s", path)
    except OSError as exc:
        logger.error("Failed to write report %s: %s", path, exc)


# ── ASCII formatters ──────────────────────────────────────────────────────────


def _failure_badge(status: FailureStatus) -> str:
    badges = {
        FailureStatus.BACKING_OFF: "[BACKOFF]  ",
        FailureStatus.PAUSED: "[PAUSED]   ",
        FailureStatus.RECOVERED: "[RECOVERED]",
    }
    return badges.get(status, "[?]        ")


def format_schedule_table(schedule: CrawlSchedule) -> str:
    """Columns: Pri | Source | Category | Frequency | Next due | Reason."""
    if not schedule.tasks:
        return "  (no crawl tasks)\n"

    header = (
        f"  {'Pri':<4} {'Source':<10} {'Category':<12} {'Frequency':<11} "
        f"{'Next due':<22} Reason"
    )
    lines = [header, "  " + "-" * (len(header) - 2)]
    for t in schedule.tasks:
        due = t.next_due_at.strftime("%Y-%m-%d %H:%M UTC") if t.next_due_at else "on trigger"
        lines.append(
            f"  {t.priority:<4} {t.source_id:<10} {t.category.value:<12} "
            f"{t.frequency.value:<11} {due:<22} {t.reason}"
        )
    hist = ", ".join(f"P{p}={n}" for p, n in schedule.priority_histogram.items())
    lines.append("")
    lines.append(f"  {len(schedule.tasks)} tasks ({hist})")
    return "\n".join(lines) + "\n"


def format_backoff_table(states: list[BackoffState]) -> str:
    if not states:
        return "  (no failing crawlers)\n"
    header = f"  {'Source':<10} {'Category':<12} {'Failures':<9} {'Next retry':<22} Reason"
    lines = [header, "  " + "-" * (len(header) - 2)]
    for s in states:
        retry = (
            s.next_retry_at.strftime("%Y-%m-%d %H:%M UTC") if s.next_retry_at else "PAUSED"
        )
        category = s.category.value if s.category else "-"
        lines.append(
            f"  {s.source_id:<10} {category:<12} {s.failure_count:<9} {retry:<22} {s.reason}"
        )
    return "\n".join(lines) + "\n"


def format_digest(digest: WeeklyDigest) -> str:
    lines = [
        f"  Weekly digest {digest.period_start.date()} .. {digest.period_end.date()}",
        f"  {digest.summary_line}",
        "",
        f"  Verified updates:      {len(digest.successful_updates)}",
        f"  Quarantined anomalies: {len(digest.quarantined_anomalies)}",
        f"  Frequency changes:     {len(digest.frequency_changes)}",
        f"  Self-healed blocks:    {len(digest.self_healed_blocks)}",
    ]
    for item in digest.quarantined_anomalies:
        lines.append(f"    [QUARANTINE] {item.source_id} {item.field}.{item.item_id}: {item.reason}")
    for change in digest.frequency_changes:
        lines.append(
            f"    [FREQ] {change.source_id} {change.category.value}: "
            f"{change.old_frequency.value} -> {change.new_frequency.value}"
        )
    if digest.crawler_failures:
        lines.append("")
        lines.append("  Crawler failures:")
        for f in digest.crawler_failures:
            lines.append(
                f"    {_failure_badge(f.status)} {f.source_id:<8} "
                f"failures={f.failure_count} {f.last_error or ''}".rstrip()
            )
    return "\n".join(lines) + "\n"
