"""Domain models for the matchmaking and debate core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from chat_app.constants.session_constants import SEGMENT_DURATION_SECONDS

BROADCAST = "*"


class ChatMode(str, Enum):
    """Requested or resolved chat format. ``ANY`` is a wildcard for requests only."""

    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"
    ANY = "any"

    @property
    def is_concrete(self) -> bool:
        return self is not ChatMode.ANY


# Search order used when an ``any`` requester looks for a concrete peer.
ANY_MODE_PRIORITY: tuple[ChatMode, ...] = (ChatMode.VIDEO, ChatMode.AUDIO, ChatMode.TEXT)
DEFAULT_RESOLVED_MODE = ChatMode.VIDEO


def resolve_mode(requested: ChatMode, matched: ChatMode) -> ChatMode:
    """Return the concrete mode for a pairing of two requested modes."""
    if requested.is_concrete and matched.is_concrete:
        if requested is not matched:
            raise ValueError(f"Modes {requested.value} and {matched.value} are not compatible.")
        return requested
    if requested.is_concrete:
        return requested
    if matched.is_concrete:
        return matched
    return DEFAULT_RESOLVED_MODE


class RoomRole(str, Enum):
    USER1 = "user1"
    USER2 = "user2"


class DebatePhase(str, Enum):
    LOBBY = "lobby"
    DEBATE = "debate"
    QNA = "qna"
    ENDED = "ended"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = [DebatePhase.LOBBY, DebatePhase.DEBATE, DebatePhase.QNA, DebatePhase.ENDED]


class DebateRole(str, Enum):
    DEBATER1 = "debater1"
    DEBATER2 = "debater2"
    VIEWER = "viewer"


class Speaker(str, Enum):
    DEBATER1 = "debater1"
    DEBATER2 = "debater2"
    BOTH = "both"


@dataclass(slots=True)
class Connection:
    """A live transport session known to the registry."""

    connection_id: str
    display_name: str
    connected_at: datetime
    requested_mode: ChatMode | None = None
    room_id: str | None = None
    debate_code: str | None = None


@dataclass(slots=True)
class QueueEntry:
    """A connection waiting for a compatible peer."""

    connection_id: str
    requested_mode: ChatMode
    display_name: str
    enqueued_at: datetime


@dataclass(slots=True)
class Room:
    """A paired 1:1 session. ``members[0]`` is ``user1``, the segment authority."""

    room_id: str
    mode: ChatMode
    members: tuple[str, str]
    requested_modes: dict[str, ChatMode]
    created_at: datetime
    segment_started_at: datetime
    segment: int = 0
    round: int = 1
    segment_duration_seconds: int = SEGMENT_DURATION_SECONDS

    def role_of(self, connection_id: str) -> RoomRole | None:
        if connection_id == self.members[0]:
            return RoomRole.USER1
        if connection_id == self.members[1]:
            return RoomRole.USER2
        return None

    def peer_of(self, connection_id: str) -> str | None:
        if connection_id == self.members[0]:
            return self.members[1]
        if connection_id == self.members[1]:
            return self.members[0]
        return None

    def member_for(self, role: RoomRole) -> str:
        return self.members[0] if role is RoomRole.USER1 else self.members[1]


@dataclass(slots=True)
class DebateQuestion:
    question_id: str
    viewer_id: str
    viewer_name: str
    text: str
    submitted_at: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.question_id,
            "fromViewerId": self.viewer_id,
            "fromViewerName": self.viewer_name,
            "text": self.text,
        }


@dataclass(slots=True)
class ChatMessage:
    """Ephemeral chat text; relayed, never stored beyond the call."""

    message_id: str
    scope_id: str
    sender_id: str
    sender_name: str
    text: str
    html: str
    sent_at: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.message_id,
            "roomId": self.scope_id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "text": self.text,
            "html": self.html,
            "ts": int(self.sent_at.timestamp() * 1000),
        }


@dataclass(slots=True)
class PresenceCounts:
    total: int = 0
    video: int = 0
    audio: int = 0
    text: int = 0

    def to_payload(self) -> dict[str, object]:
        return {
            "total": self.total,
            "perMode": {"video": self.video, "audio": self.audio, "text": self.text},
        }


@dataclass(slots=True)
class Dispatch:
    """An outbound wire event addressed to one connection or to everyone."""

    recipient: str
    event: str
    payload: dict[str, object] = field(default_factory=dict)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST


@dataclass(slots=True)
class PeerReport:
    """A report forwarded to the external sink; the core keeps no copy."""

    report_id: str
    room_id: str
    reporter_id: str
    reported_id: str
    reason: str
    filed_at: datetime
