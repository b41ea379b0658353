"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``REGWATCH_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Every pipeline component and CLI command receives either an ``AppConfig`` or
one of its frozen sub-configs. The policy tables that decide what counts as a
broken extraction (sanity bounds, anomaly thresholds, staleness thresholds)
live here rather than in code so that they can be tuned per deployment.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/regwatch.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    lease_minutes: int = 30

    @field_validator("lease_minutes")
    @classmethod
    def validate_lease(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"lease_minutes must be >= 1, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/regwatch.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class BackoffConfig(BaseModel):
    """Exponential retry backoff for unreachable or failing sources.

    ``delay = min(base_minutes * 2 ** (n - 1), max_hours)`` for ``n``
    consecutive failures; automatic retries stop at ``pause_after_failures``.
    """

    model_config = ConfigDict(frozen=True)

    base_minutes: float = 5.0
    max_hours: float = 24.0
    pause_after_failures: int = 10

    @field_validator("base_minutes", "max_hours")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Backoff durations must be > 0, got {v}.")
        return v

    @field_validator("pause_after_failures")
    @classmethod
    def validate_pause(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"pause_after_failures must be >= 1, got {v}.")
        return v


class SanityBound(BaseModel):
    """One row of the value-validator bounds table.

    A bound applies to a value when every populated selector matches:
    ``field`` always, ``source_id`` / ``item`` / ``residency`` only when set.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    source_id: Optional[str] = None
    item: Optional[str] = None
    residency: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    description: str = ""

    @model_validator(mode="after")
    def validate_range(self) -> "SanityBound":
        if self.min_value is None and self.max_value is None:
            raise ValueError(f"Bound for '{self.field}' needs min_value or max_value.")
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(
                f"Bound for '{self.field}': min_value ({self.min_value}) "
                f"> max_value ({self.max_value})."
            )
        return self

    def matches(self, field: str, source_id: str, item: str, residency: str) -> bool:
        if self.field != field:
            return False
        if self.source_id is not None and self.source_id != source_id:
            return False
        if self.item is not None and self.item != item:
            return False
        if self.residency is not None and self.residency != residency:
            return False
        return True


def _default_bounds() -> list[SanityBound]:
    return [
        SanityBound(field="fees", min_value=1.0,
                    description="No agency issues a $0 tag"),
        SanityBound(field="point_costs", min_value=0.0,
                    description="Point purchase fee may be zero"),
        SanityBound(field="license_fees", min_value=1.0,
                    description="No license or application fee is free"),
        SanityBound(field="license_fees", item="app_fee", max_value=200.0,
                    description="Application fee ceiling"),
        SanityBound(field="draw_odds", min_value=0.0, max_value=1.0,
                    description="Draw odds are probabilities"),
        SanityBound(field="point_requirements", min_value=0.0,
                    description="Preference points required"),
    ]


class SanityConfig(BaseModel):
    """Value-validator policy: per-field floors/ceilings and required lists."""

    model_config = ConfigDict(frozen=True)

    default_residency: str = "NR"
    numeric_fields: list[str] = [
        "fees", "point_costs", "license_fees", "draw_odds", "point_requirements",
    ]
    required_lists: list[str] = ["species"]
    bounds: list[SanityBound] = _default_bounds()

    @field_validator("default_residency")
    @classmethod
    def validate_residency(cls, v: str) -> str:
        if v not in ("NR", "R"):
            raise ValueError(f"Residency must be 'NR' or 'R', got '{v}'.")
        return v


class AnomalyConfig(BaseModel):
    """Per-field variance thresholds for quarantine.

    ``thresholds`` are absolute deltas (preference points move by whole
    points). ``relative_thresholds`` are fractions of the previous value,
    for prices and odds whose scale differs per item: ``0.5`` flags a fee
    that moves by more than half its previous value. Fields absent from both
    tables are not variance-checked.
    """

    model_config = ConfigDict(frozen=True)

    thresholds: dict[str, float] = {"point_requirements": 3.0}
    relative_thresholds: dict[str, float] = {"fees": 0.5, "draw_odds": 0.5}

    @field_validator("thresholds", "relative_thresholds")
    @classmethod
    def validate_thresholds(cls, v: dict[str, float]) -> dict[str, float]:
        for key, val in v.items():
            if val < 0:
                raise ValueError(f"Anomaly threshold for '{key}' must be >= 0, got {val}.")
        return v


class StalenessConfig(BaseModel):
    """Days after which a verified fact is considered stale, per category."""

    model_config = ConfigDict(frozen=True)

    default_days: int = 10
    overrides: dict[str, int] = {
        "flight_prices": 1,
        "macro_indices": 45,
        "deadlines": 30,
    }

    def threshold_for(self, category: Optional[str]) -> int:
        if category is None:
            return self.default_days
        return self.overrides.get(category, self.default_days)


class FreshnessConfig(BaseModel):
    """Boundaries of the user-facing freshness stamp levels."""

    model_config = ConfigDict(frozen=True)

    fresh_hours: int = 24
    stale_after_days: int = 7
    critical_after_days: int = 30

    @model_validator(mode="after")
    def validate_ordering(self) -> "FreshnessConfig":
        if self.fresh_hours <= 0:
            raise ValueError(f"fresh_hours must be > 0, got {self.fresh_hours}.")
        if self.stale_after_days * 24 < self.fresh_hours:
            raise ValueError("stale_after_days must not fall inside the fresh window.")
        if self.critical_after_days < self.stale_after_days:
            raise ValueError(
                f"critical_after_days ({self.critical_after_days}) must be >= "
                f"stale_after_days ({self.stale_after_days})."
            )
        return self


class DigestConfig(BaseModel):
    """Weekly health digest scoring weights."""

    model_config = ConfigDict(frozen=True)

    paused_penalty: int = 15
    pending_anomaly_penalty: int = 10
    backing_off_penalty: int = 0
    self_healed_penalty: int = 0


class GovernanceConfig(BaseModel):
    """Extraction schema registry location."""

    model_config = ConfigDict(frozen=True)

    schemas_path: str = "config/schemas.toml"


class OutputConfig(BaseModel):
    """Report output locations."""

    model_config = ConfigDict(frozen=True)

    output_dir: str = "data/outputs"


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    backoff: BackoffConfig = BackoffConfig()
    sanity: SanityConfig = SanityConfig()
    anomaly: AnomalyConfig = AnomalyConfig()
    staleness: StalenessConfig = StalenessConfig()
    freshness: FreshnessConfig = FreshnessConfig()
    digest: DigestConfig = DigestConfig()
    governance: GovernanceConfig = GovernanceConfig()
    output: OutputConfig = OutputConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply REGWATCH_* env vars to the raw config dict.

    Supported overrides:
      REGWATCH_DB_PATH    → raw["database"]["db_path"]
      REGWATCH_LOG_LEVEL  → raw["logging"]["level"]
      REGWATCH_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("REGWATCH_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("REGWATCH_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("REGWATCH_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    sanity_raw = dict(raw.get("sanity", {}))
    if "bounds" in sanity_raw:
        sanity_raw["bounds"] = [SanityBound(**b) for b in sanity_raw["bounds"]]

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        backoff=BackoffConfig(**raw.get("backoff", {})),
        sanity=SanityConfig(**sanity_raw),
        anomaly=AnomalyConfig(**raw.get("anomaly", {})),
        staleness=StalenessConfig(**raw.get("staleness", {})),
        freshness=FreshnessConfig(**raw.get("freshness", {})),
        digest=DigestConfig(**raw.get("digest", {})),
        governance=GovernanceConfig(**raw.get("governance", {})),
        output=OutputConfig(**raw.get("output", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
