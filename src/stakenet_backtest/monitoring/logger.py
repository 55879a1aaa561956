"""Structured logging helpers.

Log records are emitted as one JSON object per line so backtest runs can be
shipped to a log store and filtered by epoch or validator.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PACKAGE_LOGGER = "stakenet_backtest"

_LOGGER_CACHE: Dict[str, logging.Logger] = {}
_LOGGING_CONFIGURED = False

_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())


class StructuredFormatter(logging.Formatter):
    """Formatter that emits structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_output: bool = True, force: bool = False) -> None:
    """
    Attach a stdout handler to the package logger.

    Args:
        level: Log level name
        json_output: Emit JSON lines instead of plain text
        force: Replace an existing configuration
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED and not force:
        return
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    _LOGGING_CONFIGURED = True


def configure_from_settings(settings: Optional[Any] = None) -> None:
    """Configure logging from a `LoggingSettings` section (or defaults)."""
    if settings is None:
        configure_logging()
        return
    configure_logging(level=settings.level, json_output=settings.json_output)


def get_logger(name: str) -> logging.Logger:
    if name not in _LOGGER_CACHE:
        _LOGGER_CACHE[name] = logging.getLogger(name)
    return _LOGGER_CACHE[name]
