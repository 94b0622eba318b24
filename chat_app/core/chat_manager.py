"""Session store shared by the WebSocket layer and the debate timers."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import logging
import random
from threading import Lock
from uuid import uuid4

from chat_app.constants.session_constants import DEBATE_RULES_TEXT
from chat_app.core.errors import NotFound, ProtocolViolation
from chat_app.core.hooks import LoggingEventSink, NullTimerScheduler, SessionEventSink, TimerScheduler
from chat_app.core.markdown_renderer import renderer
from chat_app.core.models import (
    BROADCAST,
    ChatMessage,
    ChatMode,
    Connection,
    DebatePhase,
    DebateRole,
    Dispatch,
    PeerReport,
    PresenceCounts,
    QueueEntry,
    Room,
)
from chat_app.core.name_assigner import NameAssigner
from chat_app.core.services import segment_machine
from chat_app.core.services.debate_directory import DebateDirectory
from chat_app.core.services.debate_session import DebateRoom
from chat_app.core.services.matchmaking_queues import MatchmakingQueues
from chat_app.core.services.presence import compute_presence
from chat_app.core.services.room_manager import RoomManager
from chat_app.core.services.session_registry import SessionRegistry
from chat_app.core.services.signaling_relay import SIGNAL_KINDS, SignalingRelay
from chat_app.core.settings import SessionSettings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatManager:
    """Facade for the session services: registry, queues, rooms, debates and signaling.

    Every public method takes the single store lock, validates before mutating,
    and returns the outbound events the caller must deliver.
    """

    def __init__(
        self,
        settings: SessionSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        timers: TimerScheduler | None = None,
        event_sink: SessionEventSink | None = None,
        name_assigner: NameAssigner | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._lock = Lock()
        self._settings = settings or SessionSettings()
        self._clock = clock or _utcnow
        self._timers: TimerScheduler = timers or NullTimerScheduler()
        self._events: SessionEventSink = event_sink or LoggingEventSink()
        self._names = name_assigner or NameAssigner.from_defaults()

        # Services
        self._registry = SessionRegistry()
        self._queues = MatchmakingQueues()
        self._rooms = RoomManager(self._settings.segment_duration_seconds)
        self._debates = DebateDirectory(
            segment_duration_seconds=self._settings.debate_segment_duration_seconds,
            qna_duration_seconds=self._settings.debate_qna_duration_seconds,
            rng=rng,
        )
        self._signaling = SignalingRelay()
        self._rules_html = renderer.render_fragment(DEBATE_RULES_TEXT)

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def attach_timer_scheduler(self, timers: TimerScheduler) -> None:
        with self._lock:
            self._timers = timers

    # --- Connection Lifecycle ---

    def connect(self, connection_id: str, display_name: str | None = None) -> tuple[Connection, list[Dispatch]]:
        with self._lock:
            connection = self._registry.register(
                connection_id, self._names.choose(display_name), self._clock()
            )
            logger.info("Connection %s registered as %s", connection_id, connection.display_name)
            return connection, [self._presence_dispatch()]

    def disconnect(self, connection_id: str) -> list[Dispatch]:
        """Tear down everything the connection touches. Safe to call twice."""
        with self._lock:
            connection = self._registry.find(connection_id)
            if connection is None:
                return []
            dispatches: list[Dispatch] = []
            self._queues.remove(connection_id)
            room = self._rooms.room_for_member(connection_id)
            if room is not None:
                dispatches.extend(self._teardown_room(room, connection_id, disconnected=True))
            if connection.debate_code:
                dispatches.extend(self._leave_debate(connection_id, connection.debate_code, "disconnected"))
            self._registry.unregister(connection_id)
            logger.info("Connection %s disconnected", connection_id)
            dispatches.append(self._presence_dispatch())
            return dispatches

    # --- Matchmaking ---

    def request_match(
        self,
        connection_id: str,
        mode: ChatMode | str,
        display_name: str | None = None,
    ) -> list[Dispatch]:
        requested = _parse_mode(mode)
        with self._lock:
            connection = self._registry.get(connection_id)
            if connection.room_id is not None:
                raise ProtocolViolation("Leave the current room before requesting a new match.")
            dispatches = self._drop_finished_debate(connection)
            if display_name is not None:
                connection.display_name = self._names.choose(display_name)
            connection.requested_mode = requested
            self._queues.remove(connection_id)
            now = self._clock()

            while True:
                claimed = self._queues.claim_match(connection_id, requested)
                if claimed is None:
                    self._queues.enqueue(
                        QueueEntry(
                            connection_id=connection_id,
                            requested_mode=requested,
                            display_name=connection.display_name,
                            enqueued_at=now,
                        )
                    )
                    logger.info("Connection %s queued for %s", connection_id, requested.value)
                    dispatches.append(Dispatch(connection_id, "queue-joined", {"mode": requested.value}))
                    dispatches.append(self._presence_dispatch())
                    return dispatches
                entry, resolved = claimed
                peer = self._registry.find(entry.connection_id)
                if peer is not None and peer.room_id is None and peer.debate_code is None:
                    break
                logger.warning("Discarding stale queue entry for %s", entry.connection_id)

            room = self._rooms.create_room(
                resolved,
                requester_id=connection_id,
                waiting_id=peer.connection_id,
                requested_modes={connection_id: requested, peer.connection_id: entry.requested_mode},
                now=now,
            )
            self._registry.attach_room(connection_id, room.room_id)
            self._registry.attach_room(peer.connection_id, room.room_id)
            logger.info(
                "Matched %s (user1) with %s (user2) in %s, mode %s",
                connection_id,
                peer.connection_id,
                room.room_id,
                resolved.value,
            )
            dispatches.append(Dispatch(connection_id, "match-found", self._match_payload(room, connection_id)))
            dispatches.append(Dispatch(peer.connection_id, "match-found", self._match_payload(room, peer.connection_id)))
            dispatches.append(self._presence_dispatch())
            return dispatches

    def leave_queue(self, connection_id: str) -> list[Dispatch]:
        with self._lock:
            if self._queues.remove(connection_id) is None:
                return []
            logger.info("Connection %s left the queue", connection_id)
            return [self._presence_dispatch()]

    def is_queued(self, connection_id: str) -> bool:
        with self._lock:
            return self._queues.contains(connection_id)

    # --- 1:1 Rooms ---

    def get_room(self, room_id: str) -> Room:
        with self._lock:
            return self._rooms.get(room_id)

    def send_message(self, connection_id: str, room_id: str, text: str) -> list[Dispatch]:
        with self._lock:
            room = self._member_room(connection_id, room_id)
            message = self._build_message(connection_id, room_id, text)
            peer = room.peer_of(connection_id)
            return [Dispatch(peer, "message-received", message.to_payload())]

    def advance_segment(
        self,
        connection_id: str,
        room_id: str,
        from_segment: int | None = None,
    ) -> list[Dispatch]:
        """Timer-driven advance, only accepted from ``user1`` once the segment ran out."""
        with self._lock:
            room = self._member_room(connection_id, room_id)
            now = self._clock()
            segment_machine.validate_timer_advance(
                room,
                room.role_of(connection_id),
                now,
                self._settings.segment_clock_tolerance_seconds,
                from_segment,
            )
            change = segment_machine.advance(room, now)
            recipients = [member for member in room.members if member != connection_id]
            return self._segment_dispatches(room, change, recipients, now)

    def skip_segment(self, connection_id: str, room_id: str) -> list[Dispatch]:
        with self._lock:
            room = self._member_room(connection_id, room_id)
            segment_machine.validate_skip(room, room.role_of(connection_id), self._settings.skip_policy)
            now = self._clock()
            change = segment_machine.advance(room, now)
            logger.info("Connection %s skipped to segment %s in %s", connection_id, change.segment, room_id)
            return self._segment_dispatches(room, change, list(room.members), now)

    def leave_room(self, connection_id: str, room_id: str) -> list[Dispatch]:
        """Explicit leave. Leaving a room that is already gone is a no-op."""
        with self._lock:
            self._registry.get(connection_id)
            room = self._rooms.find(room_id)
            if room is None or room.role_of(connection_id) is None:
                return []
            dispatches = self._teardown_room(room, connection_id, disconnected=False)
            dispatches.append(self._presence_dispatch())
            return dispatches

    def report_peer(self, connection_id: str, room_id: str, reason: str) -> list[Dispatch]:
        with self._lock:
            room = self._member_room(connection_id, room_id)
            report = PeerReport(
                report_id=f"RPT-{uuid4().hex[:12]}",
                room_id=room_id,
                reporter_id=connection_id,
                reported_id=room.peer_of(connection_id),
                reason=(reason or "").strip()[: self._settings.max_message_length],
                filed_at=self._clock(),
            )
            self._events.report_filed(report)
            return [Dispatch(connection_id, "report-filed", {"reportId": report.report_id})]

    # --- Signaling ---

    def join_signaling(self, connection_id: str, topic: str) -> list[Dispatch]:
        with self._lock:
            debate = self._find_debate(topic)
            if debate is not None:
                topic = debate.code
                if debate.role_of(connection_id) is None:
                    raise ProtocolViolation(f"Join debate {topic} before signaling in it.")
            else:
                self._member_room(connection_id, topic)
            self._signaling.join(topic, connection_id)
            return []

    def relay_signal(
        self,
        connection_id: str,
        kind: str,
        topic: str,
        payload: object,
        target_id: str | None = None,
    ) -> list[Dispatch]:
        if kind not in SIGNAL_KINDS:
            raise ProtocolViolation(f"Unknown signal kind {kind}.")
        with self._lock:
            debate = self._find_debate(topic)
            if debate is not None:
                topic = debate.code
                role = debate.role_of(connection_id)
                if role is None:
                    raise ProtocolViolation(f"Connection is not part of debate {topic}.")
                recipients = self._signaling.route(topic, connection_id, target_id, require_target=True)
                from_role = role.value
            else:
                room = self._member_room(connection_id, topic)
                recipients = self._signaling.route(topic, connection_id, target_id)
                from_role = room.role_of(connection_id).value
            event = f"relay-{kind}"
            return [
                Dispatch(
                    recipient,
                    event,
                    {"roomId": topic, "fromId": connection_id, "fromRole": from_role, "payload": payload},
                )
                for recipient in recipients
            ]

    # --- Debates ---

    def create_debate(
        self,
        connection_id: str,
        segment_count: int,
        title: str | None = None,
        display_name: str | None = None,
    ) -> list[Dispatch]:
        with self._lock:
            connection = self._registry.get(connection_id)
            if display_name is not None:
                connection.display_name = self._names.choose(display_name)
            now = self._clock()
            for stale in self._debates.purge_abandoned(now, self._settings.debate_abandon_seconds):
                self._signaling.close_topic(stale.code)
                self._events.room_closed(stale.code, "debate", "abandoned")
            room = self._debates.create(segment_count, now, title=title, rules_html=self._rules_html)
            logger.info("Connection %s created debate %s (%s segments)", connection_id, room.code, segment_count)
            return [
                Dispatch(
                    connection_id,
                    "debate-created",
                    {"code": room.code, "title": room.title, "segmentsTotal": room.segments_total},
                )
            ]

    def join_debate(
        self,
        connection_id: str,
        code: str,
        role: str,
        display_name: str | None = None,
    ) -> list[Dispatch]:
        if role not in ("debater", "viewer"):
            raise ProtocolViolation(f"Unknown debate role {role}.")
        with self._lock:
            connection = self._registry.get(connection_id)
            if connection.room_id is not None:
                raise ProtocolViolation("Leave the current room before joining a debate.")
            room = self._debates.get(code)
            previous = connection.debate_code
            if previous not in (None, room.code):
                other = self._debates.find(previous)
                if other is not None and other.phase is not DebatePhase.ENDED:
                    raise ProtocolViolation(f"Already in debate {previous}.")
            name = self._names.choose(display_name) if display_name is not None else connection.display_name
            joined_role = room.join(connection_id, name, as_debater=role == "debater")
            dispatches = [] if previous == room.code else self._drop_finished_debate(connection)
            connection.display_name = name
            if self._queues.remove(connection_id) is not None:
                dispatches.append(self._presence_dispatch())
            self._registry.attach_debate(connection_id, room.code)
            self._signaling.join(room.code, connection_id)
            now = self._clock()
            logger.info("Connection %s joined debate %s as %s", connection_id, room.code, joined_role.value)

            dispatches.append(
                Dispatch(
                    connection_id,
                    "debate-joined",
                    {"code": room.code, "role": joined_role.value, "state": room.snapshot(now)},
                )
            )
            if joined_role is DebateRole.VIEWER:
                for debater_id in room.debater_ids():
                    dispatches.append(self._viewer_joined(room, debater_id, connection_id))
            else:
                for viewer_id in room.viewer_ids():
                    dispatches.append(self._viewer_joined(room, connection_id, viewer_id))
            dispatches.extend(self._debate_state_dispatches(room, now))
            return dispatches

    def start_debate(self, connection_id: str, code: str) -> list[Dispatch]:
        with self._lock:
            room = self._debates.get(code)
            now = self._clock()
            room.start(connection_id, now)
            self._timers.start(room.code)
            return self._debate_state_dispatches(room, now)

    def skip_debate_segment(self, connection_id: str, code: str) -> list[Dispatch]:
        with self._lock:
            room = self._debates.get(code)
            was_ended = room.phase is DebatePhase.ENDED
            now = self._clock()
            room.skip(connection_id, now)
            return self._after_debate_change(room, was_ended, now)

    def force_debate_advance(self, code: str) -> list[Dispatch]:
        """Advance as if the segment timer fired, regardless of the deadline."""
        with self._lock:
            room = self._debates.get(code)
            was_ended = room.phase is DebatePhase.ENDED
            now = self._clock()
            room.advance_segment(now)
            return self._after_debate_change(room, was_ended, now)

    def debate_chat(self, connection_id: str, code: str, text: str) -> list[Dispatch]:
        with self._lock:
            room = self._debates.get(code)
            role = room.role_of(connection_id)
            if role is None:
                raise ProtocolViolation(f"Join debate {room.code} before chatting.")
            message = self._build_message(connection_id, room.code, text)
            payload = {"code": room.code, "role": role.value, "message": message.to_payload()}
            return [Dispatch(member, "debate-chat", payload) for member in room.members()]

    def debate_question(self, connection_id: str, code: str, text: str) -> list[Dispatch]:
        with self._lock:
            room = self._debates.get(code)
            question = room.submit_question(connection_id, self._clean_text(text), self._clock())
            dispatches = [Dispatch(connection_id, "debate-question-accepted", {"code": room.code, "id": question.question_id})]
            dispatches.extend(self._debate_state_dispatches(room, self._clock()))
            return dispatches

    def debate_qna_next(self, connection_id: str, code: str) -> list[Dispatch]:
        with self._lock:
            room = self._debates.get(code)
            question = room.next_question(connection_id)
            if question is not None:
                logger.info("Debate %s: selected question %s from %s", room.code, question.question_id, question.viewer_id)
            return self._debate_state_dispatches(room, self._clock())

    def leave_debate(self, connection_id: str, code: str) -> list[Dispatch]:
        with self._lock:
            connection = self._registry.get(connection_id)
            if connection.debate_code != code.strip().upper():
                return []
            return self._leave_debate(connection_id, connection.debate_code, "left")

    def tick_debate(self, code: str) -> list[Dispatch]:
        """Timer callback: apply deadlines and broadcast the full state."""
        with self._lock:
            room = self._debates.find(code)
            if room is None or not room.is_timed():
                self._timers.cancel(code)
                return []
            now = self._clock()
            room.tick(now)
            return self._after_debate_change(room, False, now)

    def abort_debate(self, code: str, reason: str) -> list[Dispatch]:
        """End a debate whose timer can no longer drive it."""
        with self._lock:
            room = self._debates.find(code)
            if room is None:
                return []
            was_ended = room.phase is DebatePhase.ENDED
            room.end(reason)
            logger.warning("Debate %s aborted: %s", code, reason)
            return self._after_debate_change(room, was_ended, self._clock())

    def get_debate_state(self, code: str) -> dict[str, object]:
        with self._lock:
            return self._debates.get(code).snapshot(self._clock())

    def list_live_debates(self) -> list[dict[str, object]]:
        with self._lock:
            return [room.summary() for room in self._debates.live_rooms()]

    # --- Presence & Health ---

    def presence(self) -> PresenceCounts:
        with self._lock:
            return self._compute_presence()

    def health_snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "status": "ok",
                "onlineUsers": self._registry.count(),
                "activeRooms": self._rooms.count(),
                "debates": self._debates.count(),
                "queued": sum(self._queues.depths().values()),
            }

    # --- Internal helpers (lock held) ---

    def _compute_presence(self) -> PresenceCounts:
        return compute_presence(self._registry.count(), self._queues.depths(), self._rooms.rooms())

    def _presence_dispatch(self) -> Dispatch:
        return Dispatch(BROADCAST, "presence-counts", self._compute_presence().to_payload())

    def _find_debate(self, topic: str) -> DebateRoom | None:
        # Debate codes are case-insensitive; 1:1 room ids are matched as given.
        return self._debates.find(topic.strip().upper()) if topic else None

    def _member_room(self, connection_id: str, room_id: str) -> Room:
        self._registry.get(connection_id)
        room = self._rooms.get(room_id)
        if room.role_of(connection_id) is None:
            raise ProtocolViolation(f"Connection is not a member of {room_id}.")
        return room

    def _clean_text(self, text: str) -> str:
        if not isinstance(text, str):
            raise ProtocolViolation("Message text must be a string.")
        cleaned = text.strip()
        if not cleaned:
            raise ProtocolViolation("Message text cannot be empty.")
        if len(cleaned) > self._settings.max_message_length:
            raise ProtocolViolation(
                f"Message text exceeds {self._settings.max_message_length} characters."
            )
        return cleaned

    def _build_message(self, connection_id: str, scope_id: str, text: str) -> ChatMessage:
        cleaned = self._clean_text(text)
        return ChatMessage(
            message_id=uuid4().hex,
            scope_id=scope_id,
            sender_id=connection_id,
            sender_name=self._registry.display_name_of(connection_id),
            text=cleaned,
            html=renderer.render_fragment(cleaned),
            sent_at=self._clock(),
        )

    def _match_payload(self, room: Room, connection_id: str) -> dict[str, object]:
        peer_id = room.peer_of(connection_id)
        return {
            "roomId": room.room_id,
            "role": room.role_of(connection_id).value,
            "peerId": peer_id,
            "peerName": self._registry.display_name_of(peer_id),
            "resolvedMode": room.mode.value,
            "segment": room.segment,
            "round": room.round,
            "segmentDuration": room.segment_duration_seconds,
        }

    def _segment_dispatches(
        self,
        room: Room,
        change: segment_machine.SegmentChange,
        recipients: list[str],
        now: datetime,
    ) -> list[Dispatch]:
        dispatches = []
        for member in recipients:
            payload = change.to_payload()
            payload["roomId"] = room.room_id
            payload["remainingSeconds"] = segment_machine.remaining_seconds(room, now)
            payload["canSpeak"] = segment_machine.can_speak(change.segment, room.role_of(member))
            dispatches.append(Dispatch(member, "segment-changed", payload))
        return dispatches

    def _teardown_room(self, room: Room, leaver_id: str, disconnected: bool) -> list[Dispatch]:
        # Room and member index go together, so no reader sees half a room.
        self._rooms.remove(room.room_id)
        self._signaling.close_topic(room.room_id)
        for member in room.members:
            self._registry.detach_room(member)
        reason = "disconnected" if disconnected else "left"
        self._events.room_closed(room.room_id, "pair", f"{leaver_id} {reason}")
        peer_id = room.peer_of(leaver_id)
        if peer_id is None or not self._registry.is_connected(peer_id):
            return []
        resume_mode = room.requested_modes.get(peer_id, room.mode)
        event = "peer-disconnected" if disconnected else "peer-left"
        return [Dispatch(peer_id, event, {"roomId": room.room_id, "resumeMode": resume_mode.value})]

    def _drop_finished_debate(self, connection: Connection) -> list[Dispatch]:
        """Detach from an ended debate; refuse while the debate is still running."""
        if connection.debate_code is None:
            return []
        room = self._debates.find(connection.debate_code)
        if room is not None and room.phase is not DebatePhase.ENDED:
            raise ProtocolViolation(f"Leave debate {room.code} first.")
        return self._leave_debate(connection.connection_id, connection.debate_code, "moved on")

    def _leave_debate(self, connection_id: str, code: str, reason: str) -> list[Dispatch]:
        self._registry.detach_debate(connection_id)
        self._signaling.leave(code, connection_id)
        room = self._debates.find(code)
        if room is None:
            return []
        was_ended = room.phase is DebatePhase.ENDED
        now = self._clock()
        role = room.remove(connection_id, now)
        if role is None:
            return []
        logger.info("Connection %s %s debate %s (%s)", connection_id, reason, code, role.value)
        dispatches = []
        if role is DebateRole.VIEWER:
            for debater_id in room.debater_ids():
                dispatches.append(Dispatch(debater_id, "viewer-left", {"code": code, "viewerId": connection_id}))
        dispatches.extend(self._after_debate_change(room, was_ended, now))
        return dispatches

    def _after_debate_change(self, room: DebateRoom, was_ended: bool, now: datetime) -> list[Dispatch]:
        if not was_ended and room.phase is DebatePhase.ENDED:
            self._timers.cancel(room.code)
            self._events.room_closed(room.code, "debate", room.end_reason or "ended")
        if room.is_empty():
            self._debates.remove(room.code)
            self._signaling.close_topic(room.code)
            logger.info("Debate %s destroyed", room.code)
            return []
        return self._debate_state_dispatches(room, now)

    def _debate_state_dispatches(self, room: DebateRoom, now: datetime) -> list[Dispatch]:
        snapshot = room.snapshot(now)
        return [Dispatch(member, "debate-state", snapshot) for member in room.members()]

    def _viewer_joined(self, room: DebateRoom, debater_id: str, viewer_id: str) -> Dispatch:
        return Dispatch(
            debater_id,
            "viewer-joined",
            {"code": room.code, "viewerId": viewer_id, "viewerName": room.name_of(viewer_id)},
        )


def _parse_mode(mode: ChatMode | str) -> ChatMode:
    try:
        return ChatMode(mode)
    except ValueError as exc:
        raise ProtocolViolation(f"Unknown chat mode {mode!r}.") from exc
