"""Realtime WebSocket endpoint."""

from __future__ import annotations

import json

from starlette.websockets import WebSocket, WebSocketDisconnect

from task_bidder_service.core.state import get_app_state
from task_bidder_service.logging import get_logger


async def realtime_endpoint(websocket: WebSocket) -> None:
    """
    Accept a realtime connection and serve the authentication handshake.

    Client sends ``{"type": "AUTHENTICATE", "userId": ...}``; the server
    registers the connection for that user and answers
    ``{"type": "AUTHENTICATED", "userId": ...}``. Malformed or unknown
    messages are ignored. The connection is unregistered on disconnect.
    """
    logger = get_logger(__name__)
    state = get_app_state()
    if state.notifier is None:
        msg = "ConnectionRegistry not initialized"
        raise RuntimeError(msg)
    notifier = state.notifier

    await websocket.accept()
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                logger.debug("Ignoring binary realtime message")
                continue

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON realtime message")
                continue

            if not isinstance(message, dict) or message.get("type") != "AUTHENTICATE":
                logger.debug("Ignoring unsupported realtime message")
                continue

            user_id = message.get("userId")
            if not isinstance(user_id, str) or not user_id:
                logger.debug("Ignoring AUTHENTICATE without userId")
                continue

            await notifier.register(user_id, websocket)
            await websocket.send_json({"type": "AUTHENTICATED", "userId": user_id})
    except WebSocketDisconnect:
        pass
    finally:
        await notifier.unregister(websocket)
