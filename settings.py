from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from services.errors import ConfigurationError


_DUST_THRESHOLD_ENV = "DUST_THRESHOLD"
_LOW_POWER_THRESHOLD_ENV = "LOW_POWER_THRESHOLD"
_DAYLIGHT_THRESHOLD_ENV = "DAYLIGHT_THRESHOLD"
_OVERHEAT_THRESHOLD_ENV = "OVERHEAT_THRESHOLD"
_EFFICIENCY_ABS_ENV = "EFFICIENCY_DROP_ABS_THRESHOLD"
_EFFICIENCY_PCT_ENV = "EFFICIENCY_DROP_PCT_THRESHOLD"
_CRITICAL_FACTOR_ENV = "ALERT_CRITICAL_FACTOR"
_COOLDOWN_WINDOW_ENV = "COOLDOWN_WINDOW"
_STORE_NAME_ENV = "TELEMETRY_STORE_NAME"
_STORE_PATH_ENV = "TELEMETRY_STORE_PATH"
_STORE_TIMEOUT_ENV = "STORE_TIMEOUT"
_SCORER_MODEL_ENV = "SCORER_MODEL_PATH"
_SCORER_TIMEOUT_ENV = "SCORER_TIMEOUT"
_HUMANIZER_URL_ENV = "HUMANIZER_URL"
_HUMANIZER_TIMEOUT_ENV = "HUMANIZER_TIMEOUT"
_OBSERVER_QUEUE_ENV = "OBSERVER_QUEUE_SIZE"
_OBSERVER_SEND_TIMEOUT_ENV = "OBSERVER_SEND_TIMEOUT"
_WORKER_COUNT_ENV = "PROCESSOR_WORKER_COUNT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_DURATION_PATTERN = re.compile(r"^(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h)?$")
_DURATION_UNITS = {None: 1.0, "ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


@dataclass(frozen=True)
class Settings:
    dust_threshold: float
    low_power_threshold: float
    daylight_threshold: float
    overheat_threshold: float
    efficiency_drop_abs_threshold: float
    efficiency_drop_pct_threshold: float
    critical_factor: float
    cooldown_window: float
    store_name: str
    store_path: Optional[str]
    store_timeout: float
    scorer_model_path: Optional[str]
    scorer_timeout: float
    humanizer_url: Optional[str]
    humanizer_timeout: float
    observer_queue_size: int
    observer_send_timeout: float
    processor_workers: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_float_env(name: str, default: float, minimum: float = 0.0) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be numeric, got {candidate!r}.") from exc
    if not math.isfinite(parsed) or parsed < minimum:
        raise ConfigurationError(f"{name} must be a finite number >= {minimum}, got {candidate!r}.")
    return parsed


def parse_duration(raw: str) -> float:
    """Parse ``"300"``, ``"30s"``, ``"5m"``, ``"1h"`` or ``"250ms"`` into seconds."""
    match = _DURATION_PATTERN.match(raw.strip().lower())
    if match is None:
        raise ValueError(f"Invalid duration {raw!r}.")
    return float(match.group("value")) * _DURATION_UNITS[match.group("unit")]


def _read_duration_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        return parse_duration(candidate)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a duration such as 30s or 5m, got {candidate!r}.") from exc


def _read_positive_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    critical_factor = _read_float_env(_CRITICAL_FACTOR_ENV, 1.5)
    if critical_factor <= 1.0:
        raise ConfigurationError(f"{_CRITICAL_FACTOR_ENV} must be greater than 1.")
    return Settings(
        dust_threshold=_read_float_env(_DUST_THRESHOLD_ENV, 100.0),
        low_power_threshold=_read_float_env(_LOW_POWER_THRESHOLD_ENV, 5.0),
        daylight_threshold=_read_float_env(_DAYLIGHT_THRESHOLD_ENV, 40.0),
        overheat_threshold=_read_float_env(_OVERHEAT_THRESHOLD_ENV, 60.0, minimum=-math.inf),
        efficiency_drop_abs_threshold=_read_float_env(_EFFICIENCY_ABS_ENV, 2.0),
        efficiency_drop_pct_threshold=_read_float_env(_EFFICIENCY_PCT_ENV, 25.0),
        critical_factor=critical_factor,
        cooldown_window=_read_duration_env(_COOLDOWN_WINDOW_ENV, 300.0),
        store_name=_read_str_env(_STORE_NAME_ENV, "solar_data"),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/telemetry.jsonl"),
        store_timeout=_read_duration_env(_STORE_TIMEOUT_ENV, 5.0),
        scorer_model_path=_read_optional_env(_SCORER_MODEL_ENV, None),
        scorer_timeout=_read_duration_env(_SCORER_TIMEOUT_ENV, 2.0),
        humanizer_url=_read_optional_env(_HUMANIZER_URL_ENV, None),
        humanizer_timeout=_read_duration_env(_HUMANIZER_TIMEOUT_ENV, 3.0),
        observer_queue_size=_read_positive_int_env(_OBSERVER_QUEUE_ENV, 100),
        observer_send_timeout=_read_duration_env(_OBSERVER_SEND_TIMEOUT_ENV, 5.0),
        processor_workers=_read_positive_int_env(_WORKER_COUNT_ENV, 4),
        log_level=_read_log_level("INFO"),
    )
