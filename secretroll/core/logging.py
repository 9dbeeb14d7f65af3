"""secretroll.core.logging

Logging setup for the CLI.

Modules log snake_case event names with context in `extra`. This module decides
how those records look on stderr: plain lines for humans, JSON lines for the
activation journal.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

from secretroll.core.config import LoggingConfig

# Attributes every LogRecord has; anything else came in through `extra`.
_RESERVED = frozenset(vars(logging.LogRecord("x", logging.INFO, "x", 0, "x", None, None))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}


class PlainFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = f"[secretroll] {record.levelname.lower()} {record.getMessage()}"
        extras = _extras(record)
        if extras:
            base += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


def configure_logging(cfg: LoggingConfig, *, stream: TextIO | None = None) -> logging.Logger:
    """Install a single handler on the `secretroll` logger. Safe to call repeatedly."""

    logger = logging.getLogger("secretroll")
    for h in list(logger.handlers):
        logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if cfg.json_output else PlainFormatter())
    logger.addHandler(handler)
    logger.setLevel(cfg.level.upper())
    logger.propagate = False
    return logger
