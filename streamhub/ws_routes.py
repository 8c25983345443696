"""
ws_routes.py — WebSocket endpoint for live stream presence + chat.

Single route, /ws by default (kept off any other traffic sharing the port).
All frames are JSON envelopes: {"type": "join_stream", "payload": {...}}
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket
from fastapi.websockets import WebSocketState

from streamhub.ws_hub import LiveHub

logger = logging.getLogger(__name__)

_CLOSE = object()


class WebSocketTransport:
    """
    Adapts a Starlette WebSocket to the hub's non-blocking Transport.

    send() only appends to a per-connection FIFO; run() is the single writer
    that drains it onto the socket, so frames leave in the order the hub
    queued them.
    """

    def __init__(self, ws: WebSocket):
        self._ws = ws
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._closing = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closing
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def send(self, text: str) -> None:
        self._outbox.put_nowait(text)

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._outbox.put_nowait(_CLOSE)

    async def run(self) -> None:
        while True:
            item = await self._outbox.get()
            if item is _CLOSE:
                break
            try:
                await self._ws.send_text(item)
            except Exception as e:
                logger.debug("WS send failed, writer stopping: %s", e)
                self._closing = True
                return

        # Close initiated on our side (reaper / shutdown) while the peer is still there
        if (
            self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        ):
            try:
                await self._ws.close(code=1000)
            except RuntimeError as e:
                logger.debug("WS close failed: %s", e)


def _get_hub(ws: WebSocket) -> LiveHub:
    return ws.app.state.live_hub


async def live_ws_endpoint(ws: WebSocket):
    await ws.accept()
    hub = _get_hub(ws)
    transport = WebSocketTransport(ws)
    try:
        connection_id = hub.connect(transport)
    except ValueError as e:
        logger.error("Rejecting WS connection: %s", e)
        await ws.close(code=1011)
        return
    writer = asyncio.create_task(transport.run())

    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            hub.handle_message(connection_id, raw)
    except Exception as e:
        logger.warning("WS connection error for %s: %s", connection_id, e)
    finally:
        hub.disconnect(connection_id)
        transport.close()
        await writer


def create_ws_router(path: str = "/ws") -> APIRouter:
    ws_router = APIRouter()
    ws_router.add_api_websocket_route(path, live_ws_endpoint)
    return ws_router
