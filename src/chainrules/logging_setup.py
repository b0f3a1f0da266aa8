"""
Logging configuration.

Modules log through logging.getLogger(__name__); nothing is configured on
import. Applications (and the CLI) call configure_logging() once.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .config import get_settings

# Extra attributes copied into structured log entries when present
CONTEXT_FIELDS = ("subscription_id", "rule_id", "node_id", "reason", "reference", "position")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Logger:
    """
    Attach a single stderr handler to the "chainrules" logger.

    Args:
        level: Level name; defaults to the configured CHAINRULES_LOG_LEVEL
        fmt: "json" or "text"; defaults to CHAINRULES_LOG_FORMAT

    Returns:
        The package logger
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    fmt = fmt or settings.log_format

    logger = logging.getLogger("chainrules")
    logger.setLevel(level)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
