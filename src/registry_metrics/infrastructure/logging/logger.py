# src/registry_metrics/infrastructure/logging/logger.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Structured JSON logging for the registry metrics plugin.

Every log line is one JSON object. The plugin's own messages follow a fixed
contract so they can be filtered in a log pipeline:

    message   ``metrics: [<operation>] <text>``, e.g.
              ``metrics: [RequestMetricsMiddleware] request metrics collected``
    fields    passed as ``extra={"extra": {...}}`` and merged at top level,
              e.g. ``metricsType``, ``decodedPath``, ``authType``,
              ``userAgentString``, ``userAgentVersion`` and the counter labels.

The envelope keys ``ts``, ``level``, ``logger`` and ``message`` always win:
a structured field with one of those names is dropped rather than allowed to
overwrite the envelope. Exceptions add ``exc_type`` and ``exc_message``.

Typical usage:
    configure_root_logging()
    log = get_json_logger(__name__)
    log.info(
        "metrics: [install] metrics are enabled and exposed at '%s'",
        "/-/metrics",
        extra={"extra": {"requestMetrics": {"enabled": True}}},
    )
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any, Final

__all__ = [
    "ENVELOPE_KEYS",
    "JsonFormatter",
    "configure_root_logging",
    "get_json_logger",
]

ENVELOPE_KEYS: Final[frozenset[str]] = frozenset({"ts", "level", "logger", "message"})


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if exc_type is not None:
                payload["exc_type"] = exc_type.__name__
            if exc_value is not None:
                payload["exc_message"] = str(exc_value)

        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload.update(
                (key, value) for key, value in fields.items() if key not in ENVELOPE_KEYS
            )

        # Header-derived values (user agents, paths) may be arbitrary text.
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_root_logging(level: str | int | None = None) -> None:
    """Attach one JSON stream handler to the root logger.

    Calling it again only updates the level.

    Args:
        level: Level or level name. Defaults to env ``LOG_LEVEL``, then ``INFO``.
    """
    root = logging.getLogger()

    if level is None:
        level = os.getenv("LOG_LEVEL") or "INFO"
    root.setLevel(level.upper() if isinstance(level, str) else level)

    if any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)


def get_json_logger(name: str) -> logging.Logger:
    """Return a propagating module logger; formatting is left to the root handler."""
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger
