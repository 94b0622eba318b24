"""Service for creating, looking up and tearing down 1:1 rooms."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from chat_app.core.errors import NotFound
from chat_app.core.models import ChatMode, Room


class RoomManager:
    """Tracks active paired rooms and the member index that points into them."""

    def __init__(self, segment_duration_seconds: int) -> None:
        self._segment_duration_seconds = segment_duration_seconds
        self._rooms: dict[str, Room] = {}
        self._room_of_member: dict[str, str] = {}

    def create_room(
        self,
        mode: ChatMode,
        requester_id: str,
        waiting_id: str,
        requested_modes: dict[str, ChatMode],
        now: datetime,
    ) -> Room:
        """Create a room. The requester that completed the match becomes ``user1``."""
        if not mode.is_concrete:
            raise ValueError("A room needs a resolved mode.")
        room = Room(
            room_id=f"room_{uuid4().hex}",
            mode=mode,
            members=(requester_id, waiting_id),
            requested_modes=dict(requested_modes),
            created_at=now,
            segment_started_at=now,
            segment_duration_seconds=self._segment_duration_seconds,
        )
        self._rooms[room.room_id] = room
        self._room_of_member[requester_id] = room.room_id
        self._room_of_member[waiting_id] = room.room_id
        return room

    def get(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise NotFound(f"Unknown room {room_id}.")
        return room

    def find(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def room_for_member(self, connection_id: str) -> Room | None:
        room_id = self._room_of_member.get(connection_id)
        return self._rooms.get(room_id) if room_id else None

    def remove(self, room_id: str) -> Room | None:
        """Drop the room together with its member index entries."""
        room = self._rooms.pop(room_id, None)
        if room is None:
            return None
        for member in room.members:
            if self._room_of_member.get(member) == room_id:
                del self._room_of_member[member]
        return room

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def count(self) -> int:
        return len(self._rooms)
