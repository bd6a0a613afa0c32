"""Ingestion session pipeline ordering and failure containment."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Union

import pytest

from app.schemas import TelemetrySample
from datastore.telemetry_store import TelemetryStore
from models.records import TelemetryReading
from services.alerts import AlertEngine, AlertThresholds
from services.cooldown import CooldownRegistry
from services.errors import PersistenceError, TransportError
from services.hub import BroadcastHub
from services.ingestion import NACK_MALFORMED, NACK_STORAGE, IngestionSession, SessionState


class FakeTransport:
    """Replays queued device messages, then reports a disconnect."""

    def __init__(self, messages: List[Union[str, bytes]], fail_on_send: bool = False) -> None:
        self.messages = list(messages)
        self.sent: List[str] = []
        self.fail_on_send = fail_on_send

    async def receive(self) -> Union[str, bytes]:
        if not self.messages:
            raise TransportError("device hung up")
        return self.messages.pop(0)

    async def send_text(self, text: str) -> None:
        if self.fail_on_send:
            raise TransportError("socket closed")
        self.sent.append(text)


class RecordingHub(BroadcastHub):
    def __init__(self) -> None:
        super().__init__()
        self.events: List[dict[str, Any]] = []

    def publish(self, event) -> int:
        self.events.append(event.model_dump(mode="json"))
        return super().publish(event)


class FlakyStore:
    """Fails the appends whose 1-based position is listed in ``failures``."""

    def __init__(self, failures: Optional[set[int]] = None) -> None:
        self.store = TelemetryStore(name="test")
        self.failures = failures or set()
        self.calls = 0

    async def append(self, reading: TelemetryReading) -> TelemetrySample:
        self.calls += 1
        if self.calls in self.failures:
            raise PersistenceError("store offline")
        return self.store.append(reading)


def _engine(overheat: float = 50.0) -> AlertEngine:
    thresholds = AlertThresholds(dust=100.0, low_power=10.0, daylight=50.0, overheat=overheat)
    return AlertEngine(thresholds=thresholds, cooldowns=CooldownRegistry(300))


def _message(**fields) -> str:
    return json.dumps(fields)


def _run(transport: FakeTransport, store: FlakyStore, hub: RecordingHub, **kwargs) -> IngestionSession:
    async def scenario() -> IngestionSession:
        session = IngestionSession(
            transport=transport,
            append=store.append,
            hub=hub,
            engine=_engine(**kwargs),
        )
        await session.run()
        return session

    return asyncio.run(scenario())


def test_valid_sample_is_stored_acked_and_broadcast() -> None:
    transport = FakeTransport(
        [_message(t=45, h=40, dustV=1.2, dust=50, ldr=300, ldrPct=80, v=12, i=1.5, p=0)]
    )
    store = FlakyStore()
    hub = RecordingHub()

    session = _run(transport, store, hub)

    stored = store.store.latest()
    assert stored is not None
    assert stored.power == 18.0
    assert transport.sent == [f"ACK {stored.id}"]
    assert hub.events == [
        {"type": "new-sample", "data": stored.model_dump(mode="json", by_alias=True)}
    ]
    assert hub.events[0]["data"]["power"] == 18.0
    assert session.state is SessionState.closed


def test_overheat_alert_follows_sample_event() -> None:
    transport = FakeTransport([_message(t=55, h=40, v=12, i=1.5)])
    hub = RecordingHub()

    _run(transport, FlakyStore(), hub)

    assert [event["type"] for event in hub.events] == ["new-sample", "alert"]
    alert = hub.events[1]["data"]
    assert alert["kind"] == "OVERHEAT"
    assert alert["severity"] == "WARNING"
    assert alert["context"]["temperature"] == 55
    assert alert["message"]
    assert "generatedAt" in alert


def test_malformed_message_is_nacked_without_side_effects(caplog) -> None:
    transport = FakeTransport(["{broken", _message(t=20, v=12, i=1)])
    store = FlakyStore()
    hub = RecordingHub()

    with caplog.at_level(logging.WARNING):
        _run(transport, store, hub)

    assert transport.sent[0] == NACK_MALFORMED
    assert transport.sent[1].startswith("ACK ")
    assert store.calls == 1
    assert [event["type"] for event in hub.events] == ["new-sample"]

    records = [record for record in caplog.records if record.name == "services.ingestion"]
    assert any("Rejected device message" in record.getMessage() for record in records)
    assert any(getattr(record, "session_id", None) for record in records)


def test_numeric_edge_cases_do_not_end_the_session() -> None:
    nested = '{"t": ' + "[" * 200_000 + "]" * 200_000 + "}"
    oversized = '{"t": 1' + "0" * 400 + ', "v": 12, "i": 0.5}'
    transport = FakeTransport([nested, oversized, _message(t=21, v=12, i=1)])
    store = FlakyStore()
    hub = RecordingHub()

    _run(transport, store, hub)

    assert transport.sent[0] == NACK_MALFORMED
    assert transport.sent[1].startswith("ACK ")
    assert transport.sent[2].startswith("ACK ")
    assert [event["data"]["temperature"] for event in hub.events] == [None, 21.0]
    assert hub.events[0]["data"]["power"] == 6.0


class ExplodingEngine(AlertEngine):
    async def evaluate(self, sample: TelemetrySample):
        raise RuntimeError("rule blew up")


def test_alert_evaluation_failure_keeps_sample_and_session(caplog) -> None:
    transport = FakeTransport([_message(t=55), _message(t=56)])
    store = FlakyStore()
    hub = RecordingHub()
    engine = ExplodingEngine(thresholds=AlertThresholds(), cooldowns=CooldownRegistry(300))

    async def scenario() -> None:
        session = IngestionSession(transport=transport, append=store.append, hub=hub, engine=engine)
        await session.run()

    with caplog.at_level(logging.ERROR):
        asyncio.run(scenario())

    assert [reply.split(" ")[0] for reply in transport.sent] == ["ACK", "ACK"]
    assert [event["type"] for event in hub.events] == ["new-sample", "new-sample"]
    assert sum("Alert evaluation failed" in record.getMessage() for record in caplog.records) == 2


def test_store_failure_nacks_and_next_message_still_processed() -> None:
    transport = FakeTransport([_message(t=20, dust=150), _message(t=21, dust=10)])
    store = FlakyStore(failures={1})
    hub = RecordingHub()

    _run(transport, store, hub)

    assert transport.sent[0] == NACK_STORAGE
    assert transport.sent[1].startswith("ACK ")
    assert len(store.store) == 1
    # No DUST alert: the dusty sample never got persisted.
    assert [event["type"] for event in hub.events] == ["new-sample"]
    assert hub.events[0]["data"]["temperature"] == 21.0


def test_messages_are_processed_in_device_order() -> None:
    transport = FakeTransport([_message(t=float(n)) for n in range(5)])
    store = FlakyStore()
    hub = RecordingHub()

    _run(transport, store, hub)

    assert [event["data"]["temperature"] for event in hub.events] == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert len(transport.sent) == 5


def test_transport_failure_on_reply_closes_session() -> None:
    transport = FakeTransport([_message(t=20), _message(t=21)], fail_on_send=True)
    store = FlakyStore()
    hub = RecordingHub()
    closed: List[IngestionSession] = []

    async def scenario() -> IngestionSession:
        session = IngestionSession(
            transport=transport,
            append=store.append,
            hub=hub,
            engine=_engine(),
            on_close=closed.append,
        )
        await session.run()
        return session

    session = asyncio.run(scenario())

    assert session.state is SessionState.closed
    assert closed == [session]
    # The first sample was persisted before the acknowledgment failed; nothing after it ran.
    assert store.calls == 1
    assert hub.events == []


def test_closed_session_ignores_messages() -> None:
    transport = FakeTransport([])
    store = FlakyStore()
    session = IngestionSession(transport=transport, append=store.append, hub=RecordingHub(), engine=_engine())
    session.close()

    assert asyncio.run(session.handle_message(_message(t=20))) is False
    assert store.calls == 0
    assert transport.sent == []


def test_handle_message_reports_transport_error_to_caller() -> None:
    transport = FakeTransport([], fail_on_send=True)
    session = IngestionSession(
        transport=transport, append=FlakyStore().append, hub=RecordingHub(), engine=_engine()
    )

    with pytest.raises(TransportError):
        asyncio.run(session.handle_message("not json"))
    assert session.closed
