"""Topic-aware routing for opaque WebRTC negotiation messages.

Payloads are never inspected. A topic is a 1:1 room id or a debate code; the
relay only decides who receives a message and tags it with the sender.
"""

from __future__ import annotations

from chat_app.core.errors import NotFound, ProtocolViolation

SIGNAL_KINDS: tuple[str, ...] = ("offer", "answer", "ice")


class SignalingRelay:
    def __init__(self) -> None:
        self._topics: dict[str, set[str]] = {}

    def join(self, topic: str, connection_id: str) -> None:
        self._topics.setdefault(topic, set()).add(connection_id)

    def leave(self, topic: str, connection_id: str) -> None:
        members = self._topics.get(topic)
        if not members:
            return
        members.discard(connection_id)
        if not members:
            del self._topics[topic]

    def close_topic(self, topic: str) -> None:
        self._topics.pop(topic, None)

    def members(self, topic: str) -> set[str]:
        return set(self._topics.get(topic, ()))

    def route(
        self,
        topic: str,
        sender_id: str,
        target_id: str | None = None,
        require_target: bool = False,
    ) -> list[str]:
        """Return the recipients of a message from ``sender_id`` on ``topic``."""
        members = self._topics.get(topic)
        if not members or sender_id not in members:
            raise ProtocolViolation(f"Connection has not joined signaling topic {topic}.")
        if target_id is None:
            if require_target:
                raise ProtocolViolation("A target id is required in this room.")
            return sorted(member for member in members if member != sender_id)
        if target_id == sender_id:
            raise ProtocolViolation("Cannot relay a signal to yourself.")
        if target_id not in members:
            raise NotFound(f"Target {target_id} is not in signaling topic {topic}.")
        return [target_id]

    def topic_count(self) -> int:
        return len(self._topics)
