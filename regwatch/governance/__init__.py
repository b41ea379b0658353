"""
Extraction governance for regwatch.

  governance/registry.py — ExtractionSchema registry loaded from config/schemas.toml.
"""

from regwatch.governance.registry import (
    clear_registry_cache,
    get_registry,
    get_schema,
    list_schemas,
)

__all__ = [
    "clear_registry_cache",
    "get_registry",
    "get_schema",
    "list_schemas",
]
