"""
Logging setup for regwatch.

``configure_logging(config)`` is called once by each CLI command before any
store is opened. Library modules only ever call
``logging.getLogger(__name__)``.

Both output formats stamp records in UTC, matching every timestamp the
pipeline stores and reports.

Text (default)::

    2026-03-01T12:00:00Z [WARNING] regwatch.pipeline.orchestrator: CO/fees fallback to LKG: ...

JSON lines (``json_format = true`` under ``[logging]``)::

    {"ts": "2026-03-01T12:00:00Z", "level": "WARNING", "logger": "...", "msg": "...",
     "source_id": "CO", "category": "fees"}

Anything passed through ``extra=`` (``source_id``, ``category``, ``code``, ...)
becomes a top-level JSON key.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from regwatch.utils.time_utils import isoformat_z

if TYPE_CHECKING:
    from regwatch.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class _UtcFormatter(logging.Formatter):
    converter = time.gmtime


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": isoformat_z(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, val in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = val
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return _UtcFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def configure_logging(config: "LoggingConfig") -> None:
    """Route the root logger to stdout and, when ``log_file`` is set, to a file.

    Replaces any handlers installed by a previous call.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter = _build_formatter(config.json_format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
