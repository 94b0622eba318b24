"""Delivers outbound dispatches to open WebSocket connections."""

from __future__ import annotations

from collections.abc import Iterable
import logging

from fastapi import WebSocket, WebSocketDisconnect

from chat_app.core.models import Dispatch

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Maps connection ids to sockets. Only touched from the event loop."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def add(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def remove(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def count(self) -> int:
        return len(self._sockets)

    async def send(self, connection_id: str, event: str, data: dict[str, object]) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            # The receive loop of that socket performs the actual cleanup.
            logger.debug("Dropped %s for closing connection %s: %s", event, connection_id, exc)

    async def deliver(self, dispatches: Iterable[Dispatch]) -> None:
        for dispatch in dispatches:
            if dispatch.is_broadcast:
                for connection_id in list(self._sockets):
                    await self.send(connection_id, dispatch.event, dispatch.payload)
            else:
                await self.send(dispatch.recipient, dispatch.event, dispatch.payload)
