"""Decoding of raw device messages into telemetry readings."""

from __future__ import annotations

import json
import math
from typing import Any, Dict, Mapping, Optional, Union

from models.records import TelemetryReading
from services.errors import CodecError

# Device field name -> reading attribute.
DEVICE_FIELDS: Mapping[str, str] = {
    "t": "temperature",
    "h": "humidity",
    "dustV": "dust_voltage",
    "dust": "dust_density",
    "ldr": "light_raw",
    "ldrPct": "light_percent",
    "tilt": "tilt_angle",
    "v": "voltage",
    "i": "current",
    "p": "power",
}


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            parsed = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def decode(raw: Union[bytes, bytearray, str]) -> TelemetryReading:
    """Decode one device message.

    Absent or non-numeric fields stay ``None``. ``power`` is recomputed as
    ``voltage * current`` whenever both are numeric, and an out-of-range light
    percentage is treated as unknown.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CodecError("Payload is not valid UTF-8.") from exc
    else:
        text = raw

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CodecError(f"Payload is not valid JSON: {exc.msg}.") from exc
    except (ValueError, RecursionError) as exc:
        # Oversized integer literals and runaway nesting.
        raise CodecError(f"Payload could not be parsed: {type(exc).__name__}.") from exc

    if not isinstance(payload, dict):
        raise CodecError("Payload must be a JSON object.")

    recognized = DEVICE_FIELDS.keys() & payload.keys()
    if not recognized:
        raise CodecError("Payload carries no recognized telemetry fields.")

    values: Dict[str, Optional[float]] = {
        attribute: _as_number(payload.get(field)) for field, attribute in DEVICE_FIELDS.items()
    }

    voltage = values["voltage"]
    current = values["current"]
    if voltage is not None and current is not None:
        power = voltage * current
        values["power"] = power if math.isfinite(power) else None

    light_percent = values["light_percent"]
    if light_percent is not None and not 0.0 <= light_percent <= 100.0:
        values["light_percent"] = None

    return TelemetryReading(**values)
