"""Per-connection device ingestion loop."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Union
from uuid import uuid4

from app.schemas import BroadcastEvent, TelemetrySample
from models.records import TelemetryReading
from services.alerts import AlertEngine
from services.codec import decode
from services.errors import CodecError, PersistenceError, TransportError
from services.hub import BroadcastHub

logger = logging.getLogger(__name__)

NACK_MALFORMED = "NACK malformed"
NACK_STORAGE = "NACK storage-unavailable"


def ack(sample: TelemetrySample) -> str:
    return f"ACK {sample.id}"


class DeviceTransport(Protocol):
    """Message-oriented device connection. Failures raise ``TransportError``."""

    async def receive(self) -> Union[bytes, str]: ...

    async def send_text(self, text: str) -> None: ...


class SessionState(str, Enum):
    connected = "connected"
    processing = "processing"
    closed = "closed"


AppendFunction = Callable[[TelemetryReading], Awaitable[TelemetrySample]]


class IngestionSession:
    """Drives decode, persist, acknowledge, broadcast and alerting per message.

    Messages are handled one at a time in arrival order. Message-level
    failures are answered with a negative acknowledgment and never end the
    session; transport failures close it.
    """

    def __init__(
        self,
        transport: DeviceTransport,
        append: AppendFunction,
        hub: BroadcastHub,
        engine: AlertEngine,
        on_close: Optional[Callable[["IngestionSession"], None]] = None,
    ) -> None:
        self.id = uuid4().hex[:12]
        self.state = SessionState.connected
        self._transport = transport
        self._append = append
        self._hub = hub
        self._engine = engine
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self.state is SessionState.closed

    async def run(self) -> None:
        logger.info("Device connected", extra={"session_id": self.id})
        try:
            while not self.closed:
                try:
                    raw = await self._transport.receive()
                except TransportError as exc:
                    logger.info(
                        "Device connection ended",
                        extra={"session_id": self.id, "reason": str(exc) or "closed"},
                    )
                    break
                try:
                    await self.handle_message(raw)
                except TransportError as exc:
                    logger.warning(
                        "Device connection failed while replying",
                        extra={"session_id": self.id, "reason": str(exc) or "closed"},
                    )
                    break
        finally:
            self.close()

    async def handle_message(self, raw: Union[bytes, str]) -> bool:
        """Run the pipeline for one message; return whether it was stored."""
        if self.closed:
            return False
        self.state = SessionState.processing
        try:
            return await self._process(raw)
        finally:
            if self.state is SessionState.processing:
                self.state = SessionState.connected

    def close(self) -> None:
        if self.closed:
            return
        self.state = SessionState.closed
        logger.info("Device session closed", extra={"session_id": self.id})
        if self._on_close is not None:
            self._on_close(self)

    async def _process(self, raw: Union[bytes, str]) -> bool:
        started = time.perf_counter()
        try:
            reading = decode(raw)
        except CodecError as exc:
            logger.warning(
                "Rejected device message",
                extra={"session_id": self.id, "reason": str(exc)},
            )
            await self._reply(NACK_MALFORMED)
            return False

        try:
            sample = await self._append(reading)
        except PersistenceError as exc:
            logger.error(
                "Failed to persist sample; message dropped",
                extra={"session_id": self.id, "reason": str(exc)},
            )
            await self._reply(NACK_STORAGE)
            return False

        await self._reply(ack(sample))
        self._hub.publish(BroadcastEvent.new_sample(sample))

        try:
            alerts = await self._engine.evaluate(sample)
        except Exception:  # noqa: BLE001 - the sample stays acknowledged and broadcast
            logger.exception(
                "Alert evaluation failed",
                extra={"session_id": self.id, "sample_id": sample.id},
            )
            alerts = []
        for alert in alerts:
            self._hub.publish(BroadcastEvent.alert(alert))

        logger.debug(
            "Sample processed",
            extra={
                "session_id": self.id,
                "sample_id": sample.id,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return True

    async def _reply(self, text: str) -> None:
        if self.closed:
            return
        try:
            await self._transport.send_text(text)
        except TransportError:
            self.close()
            raise
