from __future__ import annotations

import asyncio
import json

import httpx

from app.schemas import AlertKind
from services.humanize import FallbackHumanizer, RemoteHumanizer, build_humanizer, fallback_message


def _remote(handler) -> RemoteHumanizer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteHumanizer("http://writer.test/alerts", client=client)


def test_fallback_message_is_deterministic() -> None:
    context = {"temperature": 55.0, "threshold": 50.0}

    assert fallback_message(AlertKind.OVERHEAT, context) == "Panel temperature 55.0°C exceeds 50.0°C."
    assert fallback_message(AlertKind.OVERHEAT, context) == asyncio.run(
        FallbackHumanizer().humanize(AlertKind.OVERHEAT, context)
    )


def test_fallback_message_tolerates_missing_context() -> None:
    message = fallback_message(AlertKind.DUST, {"voltage": 1.2})

    assert message == "DUST alert: voltage=1.2"


def test_remote_humanizer_uses_generated_text() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"message": "  Your panel is dusty.  "})

    humanizer = _remote(handler)
    message = asyncio.run(humanizer.humanize(AlertKind.DUST, {"dustDensity": 150.0, "threshold": 100.0}))

    assert message == "Your panel is dusty."
    assert seen == {"kind": "DUST", "context": {"dustDensity": 150.0, "threshold": 100.0}}


def test_remote_humanizer_falls_back_on_errors() -> None:
    context = {"dustDensity": 150.0, "threshold": 100.0}
    expected = fallback_message(AlertKind.DUST, context)

    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def not_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="hello")

    def wrong_shape(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["message"])

    def invalid_url(request: httpx.Request) -> httpx.Response:
        raise httpx.InvalidURL("bad host")

    for handler in (server_error, timeout, not_json, wrong_shape, invalid_url):
        assert asyncio.run(_remote(handler).humanize(AlertKind.DUST, context)) == expected


def test_build_humanizer_selects_variant() -> None:
    assert type(build_humanizer(None)) is FallbackHumanizer
    assert isinstance(build_humanizer("http://writer.test"), RemoteHumanizer)
