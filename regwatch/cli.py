"""
regwatch — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, schedule build, crawl verdict, digest).
  5. Report result to stdout.

Only this module reads the wall clock, and only when ``--now`` is omitted.

Install and run::

    pip install -e .
    regwatch --help
    regwatch init-db
    regwatch validate-config
    regwatch list-schemas
    regwatch build-schedule --contexts contexts.json
    regwatch run-crawl --attempt attempt.json
    regwatch show-backoff
    regwatch resume-crawler --source CO --category fees
    regwatch compile-digest --frequency-changes changes.json
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import typer

app = typer.Typer(
    name="regwatch",
    help="Regulatory fact freshness and crawl resilience pipeline.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from regwatch.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from regwatch.utils.logging import configure_logging
    configure_logging(config.logging)


def _resolve_now(now: Optional[str]) -> datetime:
    from regwatch.utils.time_utils import parse_iso_datetime, utcnow

    if not now:
        return utcnow()
    try:
        return parse_iso_datetime(now)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid --now timestamp: {exc}", err=True)
        raise typer.Exit(code=1)


def _read_json_or_exit(path: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        typer.echo(f"[ERROR] File not found: {file_path}", err=True)
        raise typer.Exit(code=1)
    try:
        return json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        typer.echo(f"[ERROR] Invalid JSON in {file_path}: {exc}", err=True)
        raise typer.Exit(code=1)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Initialize the SQLite database. Safe to run multiple times."""
    from regwatch.db.connection import open_database
    from regwatch.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with open_database(config.database, target_path) as conn:
        present = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';")
        }

    typer.echo(f"  Tables: {len(present & set(ALL_TABLE_NAMES))}/{len(ALL_TABLE_NAMES)} verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml)."
    ),
    show_full: bool = typer.Option(
        False, "--full", help="Print full config including all fields."
    ),
) -> None:
    """Validate the configuration file and print parsed values."""
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:      {config.database.db_path}")
    typer.echo(f"  Schemas file:       {config.governance.schemas_path}")
    typer.echo(
        f"  Backoff:            {config.backoff.base_minutes:g} min base, "
        f"{config.backoff.max_hours:g} h cap, pause at {config.backoff.pause_after_failures}"
    )
    typer.echo(f"  Sanity bounds:      {len(config.sanity.bounds)}")
    typer.echo(f"  Anomaly thresholds: {config.anomaly.thresholds}")
    typer.echo(
        f"  Freshness:          stale after {config.freshness.stale_after_days} d, "
        f"critical after {config.freshness.critical_after_days} d"
    )
    typer.echo(f"  Log level:          {config.logging.level}")
    typer.echo(f"  Debug mode:         {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("list-schemas")
def list_schemas_cmd(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List the extraction schemas registered per source."""
    from regwatch.governance.registry import list_schemas

    config = _load_config_or_exit(config_path)
    try:
        schemas = list_schemas(config.governance.schemas_path)
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    for schema in schemas:
        typer.echo(
            f"  {schema.source_id:<8} {schema.display_name:<36} "
            f"markers={len(schema.required_markers)} "
            f"fields={len(schema.field_markers)} min_rows={schema.min_expected_rows}"
        )
    typer.echo(f"[OK] {len(schemas)} schema(s).")


@app.command("build-schedule")
def build_schedule(
    contexts_file: str = typer.Option(
        ..., "--contexts", help="JSON list of source contexts."
    ),
    previous_file: Optional[str] = typer.Option(
        None, "--previous", help="Previous schedule JSON; prints frequency changes."
    ),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601)."),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", help="Report directory."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Compute the adaptive crawl schedule for every source and category."""
    from pydantic import ValidationError

    from regwatch.models.source import SourceContext
    from regwatch.monitoring.reporter import (
        format_schedule_table,
        write_frequency_changes,
        write_schedule_report,
    )
    from regwatch.scheduling.frequency import CrawlSchedule, build_crawl_schedule, diff_schedules

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    reference = _resolve_now(now)

    raw = _read_json_or_exit(contexts_file)
    try:
        contexts = [SourceContext(**entry) for entry in raw]
    except (TypeError, ValidationError) as exc:
        typer.echo(f"[ERROR] Invalid source context: {exc}", err=True)
        raise typer.Exit(code=1)

    schedule = build_crawl_schedule(contexts, reference)
    typer.echo(format_schedule_table(schedule))

    out_dir = Path(output_dir or config.output.output_dir)
    path = write_schedule_report(schedule, out_dir)
    typer.echo(f"  Schedule written to {path}")

    if previous_file:
        previous = CrawlSchedule.from_dict(_read_json_or_exit(previous_file))
        changes = diff_schedules(previous, schedule)
        for change in changes:
            typer.echo(
                f"  [FREQ] {change.source_id} {change.category.value}: "
                f"{change.old_frequency.value} -> {change.new_frequency.value}"
            )
        changes_path = write_frequency_changes(changes, out_dir, reference.date())
        typer.echo(f"  {len(changes)} frequency change(s) written to {changes_path}")

    typer.echo("[OK] Schedule built.")


@app.command("run-crawl")
def run_crawl(
    attempt_file: str = typer.Option(..., "--attempt", help="Crawl attempt JSON."),
    residency: Optional[str] = typer.Option(
        None, "--residency", help="Residency class for fee bounds (NR or R)."
    ),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run one source's crawl attempt through validation and publication gating.

    Exits with code 1 when the attempt is rejected with nothing to publish.
    """
    from pydantic import ValidationError

    from regwatch.db.connection import open_database
    from regwatch.db.repositories import sqlite_stores
    from regwatch.governance.registry import get_registry
    from regwatch.models.extraction import CrawlAttempt
    from regwatch.models.outcomes import PipelineStatus
    from regwatch.pipeline.locks import CrawlInProgressError, SqliteLeaseLock
    from regwatch.pipeline.runner import CrawlPausedError, CrawlRunner

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    reference = _resolve_now(now)

    try:
        attempt = CrawlAttempt(**_read_json_or_exit(attempt_file))
    except (TypeError, ValidationError) as exc:
        typer.echo(f"[ERROR] Invalid crawl attempt: {exc}", err=True)
        raise typer.Exit(code=1)

    try:
        schemas = get_registry(config.governance.schemas_path)
    except FileNotFoundError as exc:
        typer.echo(f"  [WARN] {exc}\n  Structural checks skipped.")
        schemas = {}
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid extraction schema: {exc}", err=True)
        raise typer.Exit(code=1)

    with open_database(config.database, db_path) as conn:
        lease = SqliteLeaseLock(
            conn, reference, timedelta(minutes=config.database.lease_minutes)
        )
        runner = CrawlRunner(
            sqlite_stores(conn), config=config, schemas=schemas, locks=lease
        )
        try:
            outcome = runner.run(attempt, reference, residency=residency)
        except (CrawlInProgressError, CrawlPausedError) as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    result = outcome.result
    typer.echo(f"  Source:   {attempt.source_id} / {attempt.category.value}")
    typer.echo(f"  Verdict:  {result.status.value}")
    for violation in result.violations:
        typer.echo(f"    [{violation.code.value}] {violation.message}")
    for item in result.quarantined:
        typer.echo(f"    [QUARANTINE] {item.reason}")
    for alert in outcome.alerts:
        typer.echo(f"  [{alert.severity.value}] {alert.title}")
    typer.echo(f"  Backoff:  {outcome.backoff.reason}")

    if result.status == PipelineStatus.REJECTED:
        typer.echo("[ERROR] Nothing published; manual capture required.", err=True)
        raise typer.Exit(code=1)
    if result.status == PipelineStatus.FALLBACK:
        typer.echo("[OK] Serving last-known-good data.")
    else:
        typer.echo(f"[OK] {result.summary}")


@app.command("show-backoff")
def show_backoff(
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List crawlers with consecutive failures and their next retry time."""
    from regwatch.db.connection import open_database
    from regwatch.db.repositories import BackoffRepository
    from regwatch.monitoring.reporter import format_backoff_table
    from regwatch.resilience.backoff import compute_backoff

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    reference = _resolve_now(now)

    with open_database(config.database, db_path) as conn:
        counters = BackoffRepository(conn).list_counters()

    states = [
        compute_backoff(
            c.source_id,
            c.failure_count,
            c.last_failure_at or reference,
            config.backoff,
            c.category,
        )
        for c in counters
        if c.failure_count > 0
    ]
    typer.echo(format_backoff_table(states))
    typer.echo(f"[OK] {len(states)} failing crawler(s).")


@app.command("resume-crawler")
def resume_crawler(
    source_id: str = typer.Option(..., "--source", help="Source id, e.g. CO."),
    category: str = typer.Option(..., "--category", help="Data category, e.g. fees."),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Clear a crawler's failure counter after the cause has been fixed."""
    from regwatch.db.connection import open_database
    from regwatch.db.repositories import sqlite_stores
    from regwatch.models.source import DataCategory
    from regwatch.pipeline.locks import CrawlInProgressError, SqliteLeaseLock
    from regwatch.pipeline.runner import CrawlRunner

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    reference = _resolve_now(now)

    try:
        data_category = DataCategory(category)
    except ValueError:
        valid = ", ".join(c.value for c in DataCategory)
        typer.echo(f"[ERROR] Unknown category '{category}'. Valid: {valid}", err=True)
        raise typer.Exit(code=1)

    with open_database(config.database, db_path) as conn:
        lease = SqliteLeaseLock(
            conn, reference, timedelta(minutes=config.database.lease_minutes)
        )
        runner = CrawlRunner(sqlite_stores(conn), config=config, locks=lease)
        before = runner.backoff_state(source_id, data_category, reference)
        try:
            runner.resume(source_id, data_category, reference)
        except CrawlInProgressError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"  {source_id} / {data_category.value}: was {before.reason}")
    typer.echo(f"[OK] {source_id} / {data_category.value} resumed; failure count cleared.")


@app.command("compile-digest")
def compile_digest(
    changes_file: Optional[str] = typer.Option(
        None, "--frequency-changes", help="Frequency changes JSON from build-schedule."
    ),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601)."),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", help="Report directory."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Compile the weekly health digest from the stores and write it as JSON."""
    from regwatch.db.connection import open_database
    from regwatch.db.repositories import sqlite_stores
    from regwatch.monitoring.activity import collect_weekly_activity
    from regwatch.monitoring.digest import compile_weekly_digest
    from regwatch.monitoring.reporter import format_digest, write_digest_report
    from regwatch.scheduling.frequency import FrequencyChange

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    reference = _resolve_now(now)

    changes: list[FrequencyChange] = []
    if changes_file:
        payload = _read_json_or_exit(changes_file)
        try:
            changes = [FrequencyChange.from_dict(c) for c in payload.get("changes", [])]
        except (KeyError, ValueError) as exc:
            typer.echo(f"[ERROR] Invalid frequency changes file: {exc}", err=True)
            raise typer.Exit(code=1)

    with open_database(config.database, db_path) as conn:
        activity = collect_weekly_activity(
            sqlite_stores(conn), reference, config.backoff
        )

    digest = compile_weekly_digest(
        activity.successful_updates,
        activity.quarantined_anomalies,
        changes,
        activity.crawler_failures,
        [],
        reference,
        config.digest,
    )
    typer.echo(format_digest(digest))
    path = write_digest_report(digest, Path(output_dir or config.output.output_dir))
    typer.echo(f"[OK] Digest written to {path}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
