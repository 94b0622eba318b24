"""Derived live counts for display. Nothing here is stored."""

from __future__ import annotations

from collections.abc import Iterable

from chat_app.core.models import ChatMode, PresenceCounts, Room


def compute_presence(
    connection_count: int,
    queue_depths: dict[ChatMode, int],
    rooms: Iterable[Room],
) -> PresenceCounts:
    """Queue depth plus room members per mode; ``any`` waiters count as video."""
    counts = PresenceCounts(
        total=connection_count,
        video=queue_depths.get(ChatMode.VIDEO, 0) + queue_depths.get(ChatMode.ANY, 0),
        audio=queue_depths.get(ChatMode.AUDIO, 0),
        text=queue_depths.get(ChatMode.TEXT, 0),
    )
    for room in rooms:
        members = len(room.members)
        if room.mode is ChatMode.VIDEO:
            counts.video += members
        elif room.mode is ChatMode.AUDIO:
            counts.audio += members
        elif room.mode is ChatMode.TEXT:
            counts.text += members
    return counts
