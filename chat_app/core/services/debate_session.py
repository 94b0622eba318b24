"""State machine for a 2-debater, N-viewer debate room.

Phases only move forward: lobby -> debate -> qna -> ended. The speaker is derived
from the segment index parity; Q&A questions are drawn round-robin over a
shuffled order of viewers so no single viewer can dominate.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
import random
from uuid import uuid4

from chat_app.constants.session_constants import DEBATE_DEFAULT_TITLE
from chat_app.core.errors import ProtocolViolation
from chat_app.core.models import DebatePhase, DebateQuestion, DebateRole, Speaker

logger = logging.getLogger(__name__)

DEBATER_SLOTS: tuple[DebateRole, DebateRole] = (DebateRole.DEBATER1, DebateRole.DEBATER2)


def speaker_for_segment(segment_index: int) -> Speaker:
    return Speaker.DEBATER1 if segment_index % 2 == 0 else Speaker.DEBATER2


class QuestionPicker:
    """Round-robin over a shuffled viewer order, reshuffled after each full pass."""

    def __init__(self, rng: random.Random | None = None, max_reshuffles: int = 2) -> None:
        self._rng = rng or random.Random()
        self._max_reshuffles = max_reshuffles
        self._order: list[str] = []
        self._cursor = 0

    def pick(self, pending: dict[str, list[DebateQuestion]]) -> DebateQuestion | None:
        """Pop the next question, or return ``None`` when nothing is pending."""
        reshuffles = 0
        while True:
            while self._cursor < len(self._order):
                viewer_id = self._order[self._cursor]
                self._cursor += 1
                questions = pending.get(viewer_id)
                if questions:
                    return questions.pop(0)
            if reshuffles >= self._max_reshuffles or not any(pending.values()):
                if any(pending.values()):
                    logger.warning("Question order exhausted with questions still pending.")
                return None
            self._reshuffle(pending)
            reshuffles += 1

    def _reshuffle(self, pending: dict[str, list[DebateQuestion]]) -> None:
        order = [viewer_id for viewer_id, questions in pending.items() if questions]
        self._rng.shuffle(order)
        self._order = order
        self._cursor = 0


class DebateRoom:
    """One debate room. Not thread-safe; the session store serializes access."""

    def __init__(
        self,
        code: str,
        segments_total: int,
        created_at: datetime,
        segment_duration_seconds: int,
        qna_duration_seconds: int,
        title: str = DEBATE_DEFAULT_TITLE,
        rules_html: str = "",
        rng: random.Random | None = None,
    ) -> None:
        self.code = code
        self.title = title
        self.rules_html = rules_html
        self.segments_total = segments_total
        self.created_at = created_at
        self.segment_duration_seconds = segment_duration_seconds
        self.qna_duration_seconds = qna_duration_seconds
        self.phase = DebatePhase.LOBBY
        self.segment_index = 0
        self.speaker = speaker_for_segment(0)
        self.segment_deadline: datetime | None = None
        self.qna_deadline: datetime | None = None
        self.end_reason: str | None = None
        self.current_question: DebateQuestion | None = None
        self._slots: dict[DebateRole, str | None] = {slot: None for slot in DEBATER_SLOTS}
        self._names: dict[str, str] = {}
        self._viewers: dict[str, str] = {}
        self._pending: dict[str, list[DebateQuestion]] = {}
        self._picker = QuestionPicker(rng)

    # --- Membership ---

    def role_of(self, connection_id: str) -> DebateRole | None:
        for slot, occupant in self._slots.items():
            if occupant == connection_id:
                return slot
        if connection_id in self._viewers:
            return DebateRole.VIEWER
        return None

    def debater_ids(self) -> list[str]:
        return [occupant for occupant in self._slots.values() if occupant]

    def viewer_ids(self) -> list[str]:
        return list(self._viewers)

    def members(self) -> list[str]:
        return self.debater_ids() + self.viewer_ids()

    def name_of(self, connection_id: str) -> str:
        return self._names.get(connection_id, "Stranger")

    def is_empty(self) -> bool:
        return not self.debater_ids() and not self._viewers

    def join(self, connection_id: str, display_name: str, as_debater: bool) -> DebateRole:
        """Claim the first free debater slot or join as viewer."""
        existing = self.role_of(connection_id)
        if existing is not None:
            return existing
        if self.phase is DebatePhase.ENDED:
            raise ProtocolViolation(f"Debate {self.code} has ended.")
        if as_debater:
            if self.phase is not DebatePhase.LOBBY:
                raise ProtocolViolation("Debater slots can only be claimed in the lobby.")
            free = next((slot for slot in DEBATER_SLOTS if self._slots[slot] is None), None)
            if free is None:
                raise ProtocolViolation(f"Both debater slots of {self.code} are taken.")
            self._slots[free] = connection_id
            self._names[connection_id] = display_name
            return free
        self._viewers[connection_id] = display_name
        self._names[connection_id] = display_name
        return DebateRole.VIEWER

    def remove(self, connection_id: str, now: datetime) -> DebateRole | None:
        """Remove a member. Losing a debater after the lobby ends the debate."""
        role = self.role_of(connection_id)
        if role is None:
            return None
        if role is DebateRole.VIEWER:
            del self._viewers[connection_id]
            self._pending.pop(connection_id, None)
        else:
            self._slots[role] = None
            if self.phase in (DebatePhase.DEBATE, DebatePhase.QNA):
                self.end(f"{role.value} left")
        self._names.pop(connection_id, None)
        return role

    # --- Phase transitions ---

    def _transition(self, phase: DebatePhase) -> None:
        if phase.rank <= self.phase.rank:
            raise ProtocolViolation(
                f"Debate {self.code} cannot move from {self.phase.value} to {phase.value}."
            )
        logger.info("Debate %s: %s -> %s", self.code, self.phase.value, phase.value)
        self.phase = phase

    def start(self, connection_id: str, now: datetime) -> None:
        role = self.role_of(connection_id)
        if role not in DEBATER_SLOTS:
            raise ProtocolViolation("Only debaters may start the debate.")
        if self.phase is not DebatePhase.LOBBY:
            raise ProtocolViolation(f"Debate {self.code} is already {self.phase.value}.")
        if None in self._slots.values():
            raise ProtocolViolation("Both debater slots must be filled before starting.")
        self._transition(DebatePhase.DEBATE)
        self._begin_segment(0, now)

    def _begin_segment(self, index: int, now: datetime) -> None:
        self.segment_index = index
        self.speaker = speaker_for_segment(index)
        self.segment_deadline = now + timedelta(seconds=self.segment_duration_seconds)

    def advance_segment(self, now: datetime) -> None:
        """Force the next segment; the last one opens Q&A, and advancing Q&A restarts its clock."""
        if self.phase is DebatePhase.DEBATE:
            next_index = self.segment_index + 1
            if next_index >= self.segments_total:
                self._enter_qna(now)
            else:
                self._begin_segment(next_index, now)
        elif self.phase is DebatePhase.QNA:
            self.qna_deadline = now + timedelta(seconds=self.qna_duration_seconds)
        else:
            raise ProtocolViolation(f"Debate {self.code} has no running segment ({self.phase.value}).")

    def skip(self, connection_id: str, now: datetime) -> None:
        if self.role_of(connection_id) not in DEBATER_SLOTS:
            raise ProtocolViolation("Only debaters may skip a segment.")
        self.advance_segment(now)

    def _enter_qna(self, now: datetime) -> None:
        self._transition(DebatePhase.QNA)
        self.speaker = Speaker.BOTH
        self.segment_deadline = None
        self.qna_deadline = now + timedelta(seconds=self.qna_duration_seconds)

    def end(self, reason: str) -> bool:
        """Move to ``ended``. Returns ``False`` when already ended."""
        if self.phase is DebatePhase.ENDED:
            return False
        self._transition(DebatePhase.ENDED)
        self.end_reason = reason
        self.segment_deadline = None
        self.qna_deadline = None
        return True

    def tick(self, now: datetime) -> bool:
        """Apply any deadline that passed. Returns ``True`` when the state moved."""
        if self.phase is DebatePhase.DEBATE and self.segment_deadline and now >= self.segment_deadline:
            self.advance_segment(now)
            return True
        if self.phase is DebatePhase.QNA and self.qna_deadline and now >= self.qna_deadline:
            self.end("qna timeout")
            return True
        return False

    def is_timed(self) -> bool:
        return self.phase in (DebatePhase.DEBATE, DebatePhase.QNA)

    def remaining_seconds(self, now: datetime) -> int:
        deadline = self.segment_deadline if self.phase is DebatePhase.DEBATE else self.qna_deadline
        if deadline is None or not self.is_timed():
            return 0
        return max(0, int(round((deadline - now).total_seconds())))

    # --- Questions ---

    def submit_question(self, connection_id: str, text: str, now: datetime) -> DebateQuestion:
        if self.role_of(connection_id) is not DebateRole.VIEWER:
            raise ProtocolViolation("Only viewers may submit questions.")
        if self.phase is DebatePhase.ENDED:
            raise ProtocolViolation(f"Debate {self.code} has ended.")
        question = DebateQuestion(
            question_id=uuid4().hex,
            viewer_id=connection_id,
            viewer_name=self.name_of(connection_id),
            text=text,
            submitted_at=now,
        )
        self._pending.setdefault(connection_id, []).append(question)
        return question

    def next_question(self, connection_id: str) -> DebateQuestion | None:
        if self.role_of(connection_id) not in DEBATER_SLOTS:
            raise ProtocolViolation("Only debaters may draw the next question.")
        if self.phase is not DebatePhase.QNA:
            raise ProtocolViolation("Questions are drawn during Q&A only.")
        self.current_question = self._picker.pick(self._pending)
        return self.current_question

    def pending_count(self) -> int:
        return sum(len(questions) for questions in self._pending.values())

    # --- Snapshots ---

    def snapshot(self, now: datetime) -> dict[str, object]:
        """Full state broadcast to every member on each change and tick."""
        debaters: dict[str, object] = {}
        for slot in DEBATER_SLOTS:
            occupant = self._slots[slot]
            debaters[slot.value] = (
                {"id": occupant, "name": self.name_of(occupant)} if occupant else None
            )
        return {
            "code": self.code,
            "title": self.title,
            "phase": self.phase.value,
            "segmentIndex": self.segment_index,
            "segmentsTotal": self.segments_total,
            "speaker": self.speaker.value,
            "remainingSeconds": self.remaining_seconds(now),
            "viewersCount": len(self._viewers),
            "debaters": debaters,
            "currentQuestion": self.current_question.to_payload() if self.current_question else None,
            "pendingQuestions": self.pending_count(),
            "rulesHtml": self.rules_html,
            "endReason": self.end_reason,
        }

    def summary(self) -> dict[str, object]:
        return {
            "code": self.code,
            "title": self.title,
            "phase": self.phase.value,
            "segmentsTotal": self.segments_total,
            "viewersCount": len(self._viewers),
            "openDebaterSlots": sum(1 for occupant in self._slots.values() if occupant is None),
        }
