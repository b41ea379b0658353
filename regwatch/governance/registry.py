"""
Extraction schema registry.

Loads ``ExtractionSchema`` objects from config/schemas.toml (or a
caller-supplied path) and provides lookup utilities.

Usage
-----
    from regwatch.governance.registry import get_schema, list_schemas

    schema = get_schema("CO")
    all_schemas = list_schemas()

The registry is loaded lazily on first access and then cached for the
lifetime of the process. To force a reload (e.g., in tests), pass an
explicit ``schemas_path`` argument or call ``clear_registry_cache()``.

TOML structure expected in schemas.toml
---------------------------------------
    [schemas.<source_id>]
    display_name      = "Colorado Parks & Wildlife"
    required_markers  = ["table.fee-table"]
    row_marker        = "tr"
    min_expected_rows = 5

    [schemas.<source_id>.field_markers]
    fees = "table.fee-table td.nr-fee"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Optional

from regwatch.models.extraction import ExtractionSchema

# ── Module-level cache ────────────────────────────────────────────────────────

_REGISTRY_CACHE: Optional[dict[str, ExtractionSchema]] = None
_CACHE_PATH: Optional[str] = None

_PROJECT_ROOT = Path(__file__).parent.parent.parent


def _default_schemas_path() -> Path:
    return _PROJECT_ROOT / "config" / "schemas.toml"


def _parse_schema(source_id: str, raw: dict) -> ExtractionSchema:
    """Parse one [schemas.<id>] block.

    Raises:
        pydantic.ValidationError: If a field (or a CSS selector) is invalid.
    """
    return ExtractionSchema(
        source_id=raw.get("source_id", source_id),
        display_name=raw.get("display_name", source_id),
        required_markers=raw.get("required_markers", []),
        field_markers=raw.get("field_markers", {}),
        row_marker=raw.get("row_marker", "tr"),
        min_expected_rows=raw.get("min_expected_rows", 0),
    )


def _load_registry(schemas_path: Path) -> dict[str, ExtractionSchema]:
    """Load and parse schemas.toml into source_id -> ExtractionSchema.

    Raises:
        FileNotFoundError: If schemas_path does not exist.
        tomllib.TOMLDecodeError: If the TOML is malformed.
        pydantic.ValidationError: If a schema fails validation.
    """
    if not schemas_path.exists():
        raise FileNotFoundError(
            f"Extraction schema file not found: {schemas_path}\n"
            "Expected at config/schemas.toml.  "
            "Set governance.schemas_path in default.toml to override."
        )

    with open(schemas_path, "rb") as f:
        raw = tomllib.load(f)

    registry: dict[str, ExtractionSchema] = {}
    for sid, block in raw.get("schemas", {}).items():
        schema = _parse_schema(sid, block)
        registry[schema.source_id] = schema

    return registry


def get_registry(schemas_path: Optional[str] = None) -> dict[str, ExtractionSchema]:
    """Return the full schema registry (cached after first load).

    A relative ``schemas_path`` is resolved against the project root, not
    the working directory.
    """
    global _REGISTRY_CACHE, _CACHE_PATH

    resolved = Path(schemas_path) if schemas_path else _default_schemas_path()
    if not resolved.is_absolute():
        resolved = _PROJECT_ROOT / resolved
    resolved_str = str(resolved)

    if _REGISTRY_CACHE is None or _CACHE_PATH != resolved_str:
        _REGISTRY_CACHE = _load_registry(resolved)
        _CACHE_PATH = resolved_str

    return _REGISTRY_CACHE


def get_schema(source_id: str, schemas_path: Optional[str] = None) -> ExtractionSchema:
    """Look up the extraction schema of one source.

    Raises:
        KeyError: If source_id has no schema in the registry.
    """
    registry = get_registry(schemas_path)
    if source_id not in registry:
        available = sorted(registry.keys())
        raise KeyError(
            f"No extraction schema for source '{source_id}'.  "
            f"Available: {available}"
        )
    return registry[source_id]


def list_schemas(schemas_path: Optional[str] = None) -> list[ExtractionSchema]:
    """Return all registered schemas sorted by source_id."""
    registry = get_registry(schemas_path)
    return sorted(registry.values(), key=lambda s: s.source_id)


def clear_registry_cache() -> None:
    """Clear the module-level registry cache."""
    global _REGISTRY_CACHE, _CACHE_PATH
    _REGISTRY_CACHE = None
    _CACHE_PATH = None
