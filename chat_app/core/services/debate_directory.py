"""Service for creating, finding and destroying debate rooms."""

from __future__ import annotations

from datetime import datetime, timedelta
import random
import string

from chat_app.constants.session_constants import (
    DEBATE_CODE_LENGTH,
    DEBATE_DEFAULT_TITLE,
    DEBATE_MAX_SEGMENTS,
    DEBATE_MIN_SEGMENTS,
)
from chat_app.core.errors import NotFound, ProtocolViolation
from chat_app.core.models import DebatePhase
from chat_app.core.services.debate_session import DebateRoom


class DebateDirectory:
    """Maps room codes to debate rooms."""

    def __init__(
        self,
        segment_duration_seconds: int,
        qna_duration_seconds: int,
        rng: random.Random | None = None,
    ) -> None:
        self._segment_duration_seconds = segment_duration_seconds
        self._qna_duration_seconds = qna_duration_seconds
        self._rng = rng or random.Random()
        self._rooms: dict[str, DebateRoom] = {}

    def _generate_code(self) -> str:
        alphabet = string.ascii_uppercase + string.digits
        for _ in range(10):
            code = "".join(self._rng.choices(alphabet, k=DEBATE_CODE_LENGTH))
            if code not in self._rooms:
                return code
        raise RuntimeError("Could not allocate a unique debate code.")

    def create(
        self,
        segments_total: int,
        now: datetime,
        title: str | None = None,
        rules_html: str = "",
    ) -> DebateRoom:
        if not DEBATE_MIN_SEGMENTS <= segments_total <= DEBATE_MAX_SEGMENTS:
            raise ProtocolViolation(
                f"Segment count must be between {DEBATE_MIN_SEGMENTS} and {DEBATE_MAX_SEGMENTS}."
            )
        room = DebateRoom(
            code=self._generate_code(),
            segments_total=segments_total,
            created_at=now,
            segment_duration_seconds=self._segment_duration_seconds,
            qna_duration_seconds=self._qna_duration_seconds,
            title=(title or "").strip() or DEBATE_DEFAULT_TITLE,
            rules_html=rules_html,
            rng=random.Random(self._rng.random()),
        )
        self._rooms[room.code] = room
        return room

    def get(self, code: str) -> DebateRoom:
        room = self._rooms.get(code.strip().upper()) if code else None
        if room is None:
            raise NotFound(f"Unknown debate {code}.")
        return room

    def find(self, code: str) -> DebateRoom | None:
        return self._rooms.get(code)

    def remove(self, code: str) -> DebateRoom | None:
        return self._rooms.pop(code, None)

    def purge_abandoned(self, now: datetime, max_age_seconds: int) -> list[DebateRoom]:
        """Drop rooms nobody ever joined once they are older than ``max_age_seconds``."""
        cutoff = now - timedelta(seconds=max_age_seconds)
        stale = [
            room
            for room in self._rooms.values()
            if room.is_empty() and room.phase is DebatePhase.LOBBY and room.created_at <= cutoff
        ]
        for room in stale:
            del self._rooms[room.code]
        return stale

    def live_rooms(self) -> list[DebateRoom]:
        return [room for room in self._rooms.values() if room.phase is not DebatePhase.ENDED]

    def count(self) -> int:
        return len(self._rooms)
