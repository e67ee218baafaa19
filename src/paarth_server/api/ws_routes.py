"""
WebSocket Route

Binds one WebSocket connection to one conversation session and feeds its
text frames to the ConnectionHandler. The receive loop never awaits
generation work, so interrupts are read while a response is pending.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..relay.connection import ConnectionHandler

logger = logging.getLogger("paarth.ws")

router = APIRouter(tags=["websocket"])

BINARY_FRAME_TEXT = "Binary frames are not supported; send JSON text frames"


class WebSocketTransport:
    """Session transport backed by a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, message: Mapping[str, Any]) -> None:
        await self._websocket.send_json(dict(message))

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True
        await self._websocket.close(code=code)


@router.websocket("/ws")
async def conversation_socket(websocket: WebSocket) -> None:
    services = websocket.app.state.services

    await websocket.accept()
    transport = WebSocketTransport(websocket)
    handler = ConnectionHandler(services, transport)
    session = await handler.open()
    logger.info("Client connected: %s", session.id)

    try:
        while not handler.ended:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            text = frame.get("text")
            if text is not None:
                await handler.handle_raw(text)
            elif frame.get("bytes") is not None:
                await websocket.send_json({"type": "error", "message": BINARY_FRAME_TEXT})
    except WebSocketDisconnect:
        pass
    except RuntimeError as exc:
        # Raised by Starlette when receiving on a socket closed from our side.
        logger.debug("Receive loop stopped for %s: %s", session.id, exc)
    finally:
        transport.mark_closed()
        await handler.close()
        logger.info("Client disconnected: %s", session.id)
