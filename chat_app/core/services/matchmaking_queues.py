"""Per-mode FIFO waiting lists with cross-mode compatibility rules."""

from __future__ import annotations

from chat_app.core.models import ANY_MODE_PRIORITY, ChatMode, QueueEntry, resolve_mode


class MatchmakingQueues:
    """Holds waiting connections; a connection id sits in at most one queue.

    Not thread-safe on its own: the owning session store serializes access, which
    is what makes ``claim_match`` an atomic search-and-remove.
    """

    def __init__(self) -> None:
        self._queues: dict[ChatMode, list[QueueEntry]] = {mode: [] for mode in ChatMode}
        self._queued_in: dict[str, ChatMode] = {}

    def search_order(self, mode: ChatMode) -> tuple[ChatMode, ...]:
        """Queues inspected for a requester of ``mode``, in priority order."""
        if mode is ChatMode.ANY:
            return ANY_MODE_PRIORITY + (ChatMode.ANY,)
        return (mode, ChatMode.ANY)

    def claim_match(self, connection_id: str, mode: ChatMode) -> tuple[QueueEntry, ChatMode] | None:
        """Remove and return the first compatible entry along with the resolved mode."""
        for queue_mode in self.search_order(mode):
            queue = self._queues[queue_mode]
            for index, entry in enumerate(queue):
                if entry.connection_id == connection_id:
                    continue
                del queue[index]
                self._queued_in.pop(entry.connection_id, None)
                return entry, resolve_mode(mode, entry.requested_mode)
        return None

    def enqueue(self, entry: QueueEntry) -> None:
        # Re-requesting replaces the previous entry so the one-queue invariant holds.
        self.remove(entry.connection_id)
        self._queues[entry.requested_mode].append(entry)
        self._queued_in[entry.connection_id] = entry.requested_mode

    def remove(self, connection_id: str) -> QueueEntry | None:
        """Drop the connection's entry wherever it is. No-op when absent."""
        mode = self._queued_in.pop(connection_id, None)
        if mode is None:
            return None
        queue = self._queues[mode]
        for index, entry in enumerate(queue):
            if entry.connection_id == connection_id:
                del queue[index]
                return entry
        return None

    def contains(self, connection_id: str) -> bool:
        return connection_id in self._queued_in

    def queued_mode(self, connection_id: str) -> ChatMode | None:
        return self._queued_in.get(connection_id)

    def depth(self, mode: ChatMode) -> int:
        return len(self._queues[mode])

    def depths(self) -> dict[ChatMode, int]:
        return {mode: self.depth(mode) for mode in self._queues}
