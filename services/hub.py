"""Fan-out of live events to connected observers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Set
from uuid import uuid4

from app.schemas import BroadcastEvent

logger = logging.getLogger(__name__)


class ObserverConnection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ObserverSession:
    """One observer connection with its own ordered outbound queue."""

    def __init__(self, connection: ObserverConnection, queue_size: int) -> None:
        self.id = uuid4().hex[:12]
        self.connection = connection
        self.alive = True
        self.queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.task: Optional[asyncio.Task[None]] = None


class BroadcastHub:
    """Delivers every published event to every live observer.

    ``publish`` never waits on observers. Each observer is drained by its own
    task, so a slow or broken observer only affects itself: it is dropped
    once its queue overflows or a send fails.
    """

    def __init__(self, queue_size: int = 100, send_timeout: float = 5.0) -> None:
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self._sessions: Dict[str, ObserverSession] = {}
        self._closing: Set[asyncio.Task[None]] = set()

    @property
    def observer_count(self) -> int:
        return len(self._sessions)

    def subscribe(self, connection: ObserverConnection) -> ObserverSession:
        session = ObserverSession(connection, self.queue_size)
        self._sessions[session.id] = session
        session.task = asyncio.get_running_loop().create_task(self._pump(session))
        logger.info("Observer connected", extra={"observer_id": session.id})
        return session

    def unsubscribe(self, session: ObserverSession) -> None:
        if self._discard(session):
            logger.info("Observer disconnected", extra={"observer_id": session.id})

    def publish(self, event: BroadcastEvent) -> int:
        """Queue ``event`` for every live observer and return how many got it."""
        payload = event.model_dump(mode="json")
        delivered = 0
        for session in list(self._sessions.values()):
            try:
                session.queue.put_nowait(payload)
            except asyncio.QueueFull:
                self._drop(session, reason="queue full")
                continue
            delivered += 1
        return delivered

    async def close(self) -> None:
        sessions = list(self._sessions.values())
        for session in sessions:
            self._discard(session)
        tasks: List[asyncio.Task[None]] = [s.task for s in sessions if s.task is not None]
        tasks.extend(self._closing)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _pump(self, session: ObserverSession) -> None:
        while session.alive:
            payload = await session.queue.get()
            try:
                await asyncio.wait_for(
                    session.connection.send_json(payload), timeout=self.send_timeout
                )
            except Exception as exc:  # noqa: BLE001 - any send failure drops the observer
                self._drop(session, reason=type(exc).__name__, cancel=False)
                return

    def _discard(self, session: ObserverSession, cancel: bool = True) -> bool:
        if self._sessions.pop(session.id, None) is None:
            return False
        session.alive = False
        if cancel and session.task is not None and not session.task.done():
            session.task.cancel()
        return True

    def _drop(self, session: ObserverSession, reason: str, cancel: bool = True) -> None:
        if not self._discard(session, cancel=cancel):
            return
        logger.warning(
            "Dropping observer",
            extra={"observer_id": session.id, "reason": reason},
        )
        task = asyncio.get_running_loop().create_task(self._close_quietly(session))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    @staticmethod
    async def _close_quietly(session: ObserverSession) -> None:
        try:
            await session.connection.close(code=1008)
        except Exception:  # noqa: BLE001 - connection may already be gone
            logger.debug("Observer connection already closed", extra={"observer_id": session.id})
