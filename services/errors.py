"""Error taxonomy for the telemetry pipeline."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for pipeline failures."""


class CodecError(TelemetryError):
    """Inbound device message could not be decoded into a reading."""

    def __init__(self, detail: str, reason: str = "malformed") -> None:
        super().__init__(detail)
        self.reason = reason


class PersistenceError(TelemetryError):
    """Telemetry store was unavailable or too slow to accept a sample."""


class ScoringError(TelemetryError):
    """The power scorer produced no usable prediction."""


class TransportError(TelemetryError):
    """The underlying connection was closed or failed."""


class ConfigurationError(TelemetryError):
    """Environment configuration is missing or invalid."""
