"""Service owning per-connection identity and room association."""

from __future__ import annotations

from datetime import datetime

from chat_app.core.errors import NotFound
from chat_app.core.models import Connection


class SessionRegistry:
    """Tracks live connections. Queue entries and rooms only reference these ids."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def register(self, connection_id: str, display_name: str, now: datetime) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            connection = Connection(
                connection_id=connection_id,
                display_name=display_name,
                connected_at=now,
            )
            self._connections[connection_id] = connection
        return connection

    def unregister(self, connection_id: str) -> Connection | None:
        """Forget a connection. Returns ``None`` when it was already gone."""
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise NotFound(f"Unknown connection {connection_id}.")
        return connection

    def find(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def attach_room(self, connection_id: str, room_id: str) -> None:
        self.get(connection_id).room_id = room_id

    def detach_room(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.room_id = None

    def attach_debate(self, connection_id: str, code: str) -> None:
        self.get(connection_id).debate_code = code

    def detach_debate(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.debate_code = None

    def display_name_of(self, connection_id: str, default: str = "Stranger") -> str:
        connection = self._connections.get(connection_id)
        return connection.display_name if connection else default

    def count(self) -> int:
        return len(self._connections)
