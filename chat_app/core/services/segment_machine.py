"""Segment/turn state machine for 1:1 rooms.

Segments cycle 0..3 forever; the round counter increments on every wraparound.
Speaking rights are a fixed table, so ``can_speak`` is a pure function.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_app.constants.session_constants import SEGMENTS_PER_ROUND
from chat_app.core.errors import ProtocolViolation
from chat_app.core.models import Room, RoomRole
from chat_app.core.settings import SkipPolicy

SPEAKING_RIGHTS: dict[int, dict[RoomRole, bool]] = {
    0: {RoomRole.USER1: True, RoomRole.USER2: False},
    1: {RoomRole.USER1: False, RoomRole.USER2: True},
    2: {RoomRole.USER1: False, RoomRole.USER2: True},
    3: {RoomRole.USER1: True, RoomRole.USER2: False},
}

# Used by SkipPolicy.SPEAKER_ONLY: the current speaker may yield the floor.
SKIP_RIGHTS: dict[int, RoomRole] = {
    segment: next(role for role, allowed in rights.items() if allowed)
    for segment, rights in SPEAKING_RIGHTS.items()
}


@dataclass(slots=True, frozen=True)
class SegmentChange:
    segment: int
    round: int
    wrapped: bool

    def to_payload(self) -> dict[str, object]:
        return {"segment": self.segment, "round": self.round}


def can_speak(segment: int, role: RoomRole) -> bool:
    if segment not in SPEAKING_RIGHTS:
        raise ValueError(f"Segment must be in [0, {SEGMENTS_PER_ROUND - 1}], got {segment}.")
    return SPEAKING_RIGHTS[segment][RoomRole(role)]


def speaker_for(segment: int) -> RoomRole:
    return SKIP_RIGHTS[segment]


def can_skip(policy: SkipPolicy, segment: int, role: RoomRole) -> bool:
    if policy is SkipPolicy.EITHER:
        return True
    if policy is SkipPolicy.AUTHORITY_ONLY:
        return role is RoomRole.USER1
    return speaker_for(segment) is role


def elapsed_seconds(room: Room, now: datetime) -> float:
    return max(0.0, (now - room.segment_started_at).total_seconds())


def remaining_seconds(room: Room, now: datetime) -> float:
    return max(0.0, room.segment_duration_seconds - elapsed_seconds(room, now))


def advance(room: Room, now: datetime) -> SegmentChange:
    """Move to the next segment, bumping the round on 3 -> 0."""
    next_segment = (room.segment + 1) % SEGMENTS_PER_ROUND
    wrapped = next_segment == 0
    room.segment = next_segment
    if wrapped:
        room.round += 1
    room.segment_started_at = now
    return SegmentChange(segment=room.segment, round=room.round, wrapped=wrapped)


def validate_timer_advance(
    room: Room,
    role: RoomRole | None,
    now: datetime,
    tolerance_seconds: float,
    from_segment: int | None = None,
) -> None:
    """Reject a timer-driven advance unless it comes from ``user1`` after the timer ran out."""
    if role is not RoomRole.USER1:
        raise ProtocolViolation("Only the segment authority (user1) may advance on timer.")
    if from_segment is not None and from_segment != room.segment:
        raise ProtocolViolation(
            f"Stale advance from segment {from_segment}; room is at segment {room.segment}."
        )
    if remaining_seconds(room, now) > tolerance_seconds:
        raise ProtocolViolation("Segment timer has not elapsed yet.")


def validate_skip(room: Room, role: RoomRole | None, policy: SkipPolicy) -> None:
    if role is None:
        raise ProtocolViolation("Only room members may skip.")
    if not can_skip(policy, room.segment, role):
        raise ProtocolViolation(f"{role.value} may not skip segment {room.segment}.")
