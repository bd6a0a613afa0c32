"""Wiring of store, hub, alert engine and device sessions."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Optional

from app.schemas import TelemetrySample
from datastore.telemetry_store import AppendTicket, TelemetryStore, build_default_store
from models.records import TelemetryReading
from services.alerts import AlertEngine, AlertThresholds
from services.cooldown import CooldownRegistry
from services.errors import PersistenceError
from services.humanize import FallbackHumanizer, build_humanizer
from services.hub import BroadcastHub
from services.ingestion import DeviceTransport, IngestionSession
from services.scoring import Scorer, load_scorer
from settings import get_settings


class DeviceBusyError(RuntimeError):
    """Raised when a second device tries to connect while one is active."""


class TelemetryService:
    """Owns the long-lived pipeline components and the single device slot."""

    def __init__(
        self,
        store: TelemetryStore,
        hub: BroadcastHub,
        engine: AlertEngine,
        store_timeout: float = 5.0,
        workers: int = 4,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.engine = engine
        self.store_timeout = store_timeout
        self.executor = executor or ThreadPoolExecutor(max_workers=workers)
        self._device_session: Optional[IngestionSession] = None

    @property
    def device_session(self) -> Optional[IngestionSession]:
        return self._device_session

    async def persist(self, reading: TelemetryReading) -> TelemetrySample:
        """Append on a worker thread, failing with ``PersistenceError`` after the timeout.

        A timed-out append is abandoned and never written. An append that
        already started writing when the timeout hit is awaited instead, so
        the caller's answer always matches what the store holds.
        """
        loop = asyncio.get_running_loop()
        ticket = AppendTicket()
        pending = loop.run_in_executor(self.executor, self.store.append, reading, ticket)
        try:
            return await asyncio.wait_for(asyncio.shield(pending), timeout=self.store_timeout)
        except asyncio.TimeoutError as exc:
            if not ticket.abandon():
                return await pending
            pending.cancel()
            raise PersistenceError(
                f"Store {self.store.name!r} did not answer within {self.store_timeout}s."
            ) from exc

    def open_device_session(self, transport: DeviceTransport) -> IngestionSession:
        if self._device_session is not None and not self._device_session.closed:
            raise DeviceBusyError("A device session is already active.")
        session = IngestionSession(
            transport=transport,
            append=self.persist,
            hub=self.hub,
            engine=self.engine,
            on_close=self._release_device,
        )
        self._device_session = session
        return session

    async def shutdown(self) -> None:
        """Release observers, the humanizer client and worker threads."""
        if self._device_session is not None:
            self._device_session.close()
        await self.hub.close()
        await self.engine.humanizer.aclose()
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _release_device(self, session: IngestionSession) -> None:
        if self._device_session is session:
            self._device_session = None


def build_engine(
    thresholds: AlertThresholds,
    cooldown_window: float,
    scorer: Optional[Scorer] = None,
    humanizer: Optional[FallbackHumanizer] = None,
) -> AlertEngine:
    return AlertEngine(
        thresholds=thresholds,
        cooldowns=CooldownRegistry(cooldown_window),
        scorer=scorer,
        humanizer=humanizer,
    )


@lru_cache
def build_default_service(workers: Optional[int] = None) -> TelemetryService:
    """Factory that wires the service from environment settings."""
    settings = get_settings()
    executor = ThreadPoolExecutor(max_workers=workers or settings.processor_workers)
    scorer = load_scorer(
        settings.scorer_model_path, timeout=settings.scorer_timeout, executor=executor
    )
    engine = build_engine(
        AlertThresholds.from_settings(settings),
        settings.cooldown_window,
        scorer=scorer,
        humanizer=build_humanizer(settings.humanizer_url, timeout=settings.humanizer_timeout),
    )
    hub = BroadcastHub(
        queue_size=settings.observer_queue_size,
        send_timeout=settings.observer_send_timeout,
    )
    return TelemetryService(
        store=build_default_store(),
        hub=hub,
        engine=engine,
        store_timeout=settings.store_timeout,
        executor=executor,
    )
