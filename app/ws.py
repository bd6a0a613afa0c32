"""WebSocket endpoints for the device and for live observers."""

from __future__ import annotations

import logging
from typing import Union

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from services.errors import TransportError
from services.pipeline import DeviceBusyError, TelemetryService, build_default_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service() -> TelemetryService:
    return build_default_service()


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the device transport interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def receive(self) -> Union[bytes, str]:
        try:
            message = await self._websocket.receive()
        except RuntimeError as exc:
            raise TransportError(str(exc)) from exc
        if message["type"] == "websocket.disconnect":
            raise TransportError(f"disconnected with code {message.get('code')}")
        if message.get("bytes") is not None:
            return message["bytes"]
        return message.get("text") or ""

    async def send_text(self, text: str) -> None:
        try:
            await self._websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc


@router.websocket("/ws/device")
async def device_endpoint(
    websocket: WebSocket,
    service: TelemetryService = Depends(get_service),
) -> None:
    try:
        session = service.open_device_session(WebSocketTransport(websocket))
    except DeviceBusyError:
        logger.warning("Refusing second device connection", extra={"reason": "device busy"})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return
    try:
        await websocket.accept()
    except RuntimeError:
        session.close()
        raise
    await session.run()


@router.websocket("/ws/observers")
async def observer_endpoint(
    websocket: WebSocket,
    service: TelemetryService = Depends(get_service),
) -> None:
    await websocket.accept()
    observer = service.hub.subscribe(websocket)
    try:
        # Observer frames carry nothing; reading only detects the disconnect.
        while observer.alive:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except RuntimeError:
        logger.debug("Observer socket already closed", extra={"observer_id": observer.id})
    finally:
        service.hub.unsubscribe(observer)
