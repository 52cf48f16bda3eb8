"""Structured logging helpers."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from .config import Config

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_REDACT_KEYS = {"authorization", "govee-api-key", "cookie"}

PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields inlined."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, ensure_ascii=False, default=str)


def redact_mapping(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy request headers with credentials masked."""

    return {
        key: "***REDACTED***" if key.lower() in _REDACT_KEYS else value
        for key, value in values.items()
    }


def configure_logging(config: Config) -> None:
    """Install the console handler on ``govee`` and set subsystem levels."""

    base_level = config.log_level.upper()
    subsystem_levels = {
        "govee.gateway": None,
        "govee.discovery": config.discovery_log_level,
        "govee.lan": config.lan_log_level,
        "govee.cloud": config.cloud_log_level,
        "govee.api": config.api_log_level,
    }
    if config.log_format == "json":
        formatter: Dict[str, Any] = {"()": JsonFormatter}
    else:
        formatter = {"format": PLAIN_FORMAT, "datefmt": "%Y-%m-%dT%H:%M:%S%z"}

    loggers: Dict[str, Dict[str, Any]] = {
        "govee": {"level": base_level, "handlers": ["console"], "propagate": False},
    }
    for name, level in subsystem_levels.items():
        # Set every level so a reconfigure drops earlier overrides.
        loggers[name] = {"level": (level or base_level).upper()}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": formatter},
            "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "default"}},
            "loggers": loggers,
            "root": {"level": base_level, "handlers": ["console"]},
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
