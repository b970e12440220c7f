"""WebSocket endpoint for live chat, presence and typing indicators."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketState

from messenger.config import settings
from messenger.dependencies import get_hub
from messenger.services.chat_errors import CLOSE_POLICY_VIOLATION, TransportError
from messenger.services.connection_registry import Connection
from messenger.services.realtime_hub import RealtimeHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])


class WebSocketTransport:
    """Adapt a Starlette WebSocket to the connection transport interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def receive(self) -> str | bytes:
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise TransportError("Client disconnected")
        text = message.get("text")
        if text is not None:
            return text
        return message.get("bytes") or b""

    async def send_json(self, payload: dict) -> None:
        await self.websocket.send_json(payload)

    async def close(self, code: int, reason: str) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        await self.websocket.close(code=code, reason=reason)


def origin_allowed(origin: str | None) -> bool:
    if not origin:
        return False
    return origin.rstrip("/") in settings.ws_allowed_origins


def client_ip(websocket: WebSocket) -> str:
    if websocket.client is None:
        return "unknown"
    return websocket.client.host


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    hub: Annotated[RealtimeHub, Depends(get_hub)],
):
    """Accept a client socket and hand it to the realtime hub.

    Liveness is tracked with application frames, not protocol ping/pong.
    The server sends `heartbeat` every `ws_heartbeat_interval_seconds`, and
    a client must send some frame (a `ping` is enough) within each interval.
    A client that stays silent for two intervals is closed with 4004.
    """
    origin = websocket.headers.get("origin")
    if not origin_allowed(origin):
        logger.warning("WebSocket connection rejected from origin: %s", origin)
        await websocket.close(code=CLOSE_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(WebSocketTransport(websocket), client_ip(websocket))
    await hub.serve(connection)
