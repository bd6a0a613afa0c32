from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Any, Dict, Iterable, Sequence

from settings import get_settings

CONTEXT_KEYS = (
    "session_id",
    "observer_id",
    "sample_id",
    "alert_kind",
    "severity",
    "reason",
    "status",
    "elapsed_ms",
)

# Per-request chatter from libraries stays out of the telemetry log.
_LIBRARY_LEVELS = {
    "httpx": "WARNING",
    "uvicorn.access": "WARNING",
}

_configured = False


class ContextualFormatter(logging.Formatter):
    """Appends ``key=value`` pairs taken from a record's ``extra`` fields."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        pairs = [
            f"{key}={_render(value)}"
            for key in self._extra_keys
            if (value := getattr(record, key, None)) is not None
        ]
        return f"{message} | {' '.join(pairs)}" if pairs else message


def _render(value: Any) -> str:
    text = str(value)
    return repr(text) if any(char.isspace() for char in text) else text


def _logging_config(level: str | int) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "contextual": {
                "()": "logging_config.ContextualFormatter",
                "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
                "extra_keys": list(CONTEXT_KEYS),
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "contextual",
            }
        },
        "loggers": {name: {"level": lib_level} for name, lib_level in _LIBRARY_LEVELS.items()},
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(level: str | int | None = None) -> None:
    """Install the contextual console handler once per process."""
    global _configured
    if _configured:
        return
    dictConfig(_logging_config(level if level is not None else get_settings().log_level))
    _configured = True
