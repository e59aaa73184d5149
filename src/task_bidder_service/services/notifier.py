"""Registry of authenticated WebSocket connections and best-effort event fan-out."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from starlette.websockets import WebSocketState

from task_bidder_service.logging import get_logger

if TYPE_CHECKING:
    from starlette.websockets import WebSocket

    from task_bidder_service.schemas import RealtimeEvent


class ConnectionRegistry:
    """
    Maps user ids to their live WebSocket connection.

    One connection per user; a later registration replaces the earlier one.
    Delivery is best effort: a user without a connected socket simply misses
    the event, and send failures never propagate to the caller.
    """

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    async def register(self, user_id: str, connection: WebSocket) -> None:
        async with self._lock:
            self._connections[user_id] = connection
        self._logger.info("Realtime client registered", extra={"user_id": user_id})

    async def unregister(self, connection: WebSocket) -> None:
        """Drop every entry that points at this connection handle."""
        async with self._lock:
            stale = [
                user_id
                for user_id, registered in reversed(self._connections.items())
                if registered is connection
            ]
            for user_id in stale:
                del self._connections[user_id]
        for user_id in stale:
            self._logger.info("Realtime client unregistered", extra={"user_id": user_id})

    async def connected_count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def is_registered(self, user_id: str) -> bool:
        async with self._lock:
            return user_id in self._connections

    async def send(self, user_id: str, event: RealtimeEvent) -> None:
        """Deliver an event to one user if they are connected."""
        async with self._lock:
            connection = self._connections.get(user_id)
        if connection is None:
            return
        await self._deliver(user_id, connection, event)

    async def broadcast(self, event: RealtimeEvent, exclude_user_id: str | None = None) -> None:
        """Deliver an event to every connected user except ``exclude_user_id``."""
        async with self._lock:
            snapshot = list(self._connections.items())
        for user_id, connection in snapshot:
            if user_id == exclude_user_id:
                continue
            await self._deliver(user_id, connection, event)

    async def _deliver(self, user_id: str, connection: WebSocket, event: RealtimeEvent) -> None:
        if connection.client_state != WebSocketState.CONNECTED:
            return
        try:
            await connection.send_json(event.model_dump(mode="json"))
        except Exception as exc:
            self._logger.debug(
                "Realtime delivery failed",
                extra={"user_id": user_id, "event_type": event.type, "error": str(exc)},
            )

    async def close(self) -> None:
        """Forget all connections. Called at shutdown."""
        async with self._lock:
            count = len(self._connections)
            self._connections.clear()
        self._logger.info("Realtime registry closed", extra={"dropped_connections": count})
