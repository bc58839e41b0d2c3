"""WebSocket endpoint for presence and direct message delivery."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from parley.realtime import RealtimeServices

router = APIRouter(tags=["ws"])

logger = logging.getLogger(__name__)


async def iter_frames(websocket: WebSocket) -> AsyncIterator[str | bytes]:
    """Yield text or binary frames until the peer goes away."""

    while websocket.application_state == WebSocketState.CONNECTED:
        try:
            message = await websocket.receive()
        except (RuntimeError, WebSocketDisconnect):
            break
        if message["type"] == "websocket.disconnect":
            break
        if message.get("text") is not None:
            yield message["text"]
        elif message.get("bytes") is not None:
            yield message["bytes"]


@router.websocket("/ws")
async def websocket_realtime(websocket: WebSocket) -> None:
    """Live channel: one ``authenticate`` event, then messages, receipts and typing."""

    services: RealtimeServices = websocket.app.state.realtime
    event_router = services.router

    await websocket.accept()
    session = event_router.open(websocket)
    try:
        async for frame in iter_frames(websocket):
            await event_router.handle_text(session, frame)
    finally:
        logger.debug("Websocket closed for user %s", session.user_id)
        await event_router.close(session)
