"""Structured logging for the gated deployments controller.

Controlled via GATED_LOG_FORMAT env var: "json" (default) or "text".

Call sites attach context through ``extra`` using ``gd_``-prefixed keys:
``gd_gated_deployment_id``, ``gd_watcher``, ``gd_resource_id``,
``gd_deployment`` and ``gd_decision``. Both formatters carry those keys
into the output; any other extra is dropped.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

FIELD_PREFIX = "gd_"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The ``gd_*`` extras attached to a record, in attachment order."""
    return {key: value for key, value in record.__dict__.items() if key.startswith(FIELD_PREFIX)}


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
        }

        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        log_entry.update(context_fields(record))
        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Plaintext lines with the ``gd_*`` context appended as key=value pairs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = context_fields(record)
        if not fields:
            return line

        context = " ".join(f"{key[len(FIELD_PREFIX):]}={value}" for key, value in fields.items())
        head, sep, rest = line.partition("\n")
        return f"{head} [{context}]{sep}{rest}"


def parse_level(name: str) -> int:
    """Map a LOG_LEVEL name to a logging level; unknown names fall back to INFO."""
    return _LEVELS.get(name.lower(), logging.INFO)


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    """Configure root logger with either JSON or plaintext format."""
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicate output
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    root.addHandler(handler)
