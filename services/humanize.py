"""Human-readable alert text, optionally produced by a remote text generator."""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Union

import httpx

from app.schemas import AlertKind

logger = logging.getLogger(__name__)

ContextValue = Union[float, str]

_TEMPLATES = {
    AlertKind.DUST: "Dust density {dustDensity:.1f} exceeds {threshold:.1f}; the panel needs cleaning.",
    AlertKind.LOW_POWER: (
        "Power output {power:.2f} W is below {threshold:.2f} W "
        "while light is at {lightPercent:.0f}%."
    ),
    AlertKind.OVERHEAT: "Panel temperature {temperature:.1f}°C exceeds {threshold:.1f}°C.",
    AlertKind.EFFICIENCY_DROP: (
        "Power output {power:.2f} W is {dropPercent:.0f}% below "
        "the expected {predictedPower:.2f} W."
    ),
}


def fallback_message(kind: AlertKind, context: Mapping[str, ContextValue]) -> str:
    template = _TEMPLATES.get(kind)
    if template is not None:
        try:
            return template.format(**context)
        except (KeyError, ValueError):
            pass
    details = ", ".join(f"{key}={value}" for key, value in sorted(context.items()))
    return f"{kind.value} alert: {details}" if details else f"{kind.value} alert"


class FallbackHumanizer:
    """Deterministic template messages."""

    async def humanize(self, kind: AlertKind, context: Mapping[str, ContextValue]) -> str:
        return fallback_message(kind, context)

    async def aclose(self) -> None:
        return None


class RemoteHumanizer(FallbackHumanizer):
    """Asks a text-generation endpoint for the message, falling back on any failure."""

    def __init__(
        self,
        url: str,
        timeout: float = 3.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def humanize(self, kind: AlertKind, context: Mapping[str, ContextValue]) -> str:
        try:
            response = await self._client.post(
                self.url,
                json={"kind": kind.value, "context": dict(context)},
            )
            response.raise_for_status()
            message = response.json().get("message")
        except (
            httpx.HTTPError,
            httpx.InvalidURL,
            httpx.StreamError,
            ValueError,
            AttributeError,
        ) as exc:
            logger.warning(
                "Alert text generation failed; using fallback message",
                extra={"alert_kind": kind.value, "reason": type(exc).__name__},
            )
            return fallback_message(kind, context)

        if not isinstance(message, str) or not message.strip():
            return fallback_message(kind, context)
        return message.strip()

    async def aclose(self) -> None:
        await self._client.aclose()


def build_humanizer(url: Optional[str], timeout: float = 3.0) -> FallbackHumanizer:
    if not url:
        return FallbackHumanizer()
    return RemoteHumanizer(url, timeout=timeout)
