"""End-to-end tests of the session store facade."""

import pytest

from chat_app.core.errors import NotFound, ProtocolViolation
from chat_app.core.models import BROADCAST, ChatMode, DebatePhase
from chat_app.core.settings import SkipPolicy
from conftest import events, single


def match_pair(manager, connect, first_mode="video", second_mode="any"):
    a, b = connect("a", "b")
    manager.request_match(a, first_mode)
    dispatches = manager.request_match(b, second_mode)
    room_id = single(dispatches, "match-found", b).payload["roomId"]
    return room_id, dispatches


class TestConnections:
    def test_connect_broadcasts_presence(self, manager):
        connection, dispatches = manager.connect("a", display_name="  Alice  ")
        assert connection.display_name == "Alice"
        presence = single(dispatches, "presence-counts", BROADCAST)
        assert presence.payload["total"] == 1

    def test_blank_name_gets_handle(self, manager):
        connection, _ = manager.connect("a", display_name="   ")
        assert connection.display_name

    def test_disconnect_is_idempotent(self, manager, connect):
        connect("a")
        assert manager.disconnect("a")
        assert manager.disconnect("a") == []

    def test_unknown_connection_cannot_match(self, manager):
        with pytest.raises(NotFound):
            manager.request_match("ghost", "video")


class TestMatchmaking:
    def test_video_then_any_scenario(self, manager, connect):
        a, b = connect("a", "b")
        queued = manager.request_match(a, "video")
        assert single(queued, "queue-joined", a).payload == {"mode": "video"}
        assert manager.is_queued(a)

        dispatches = manager.request_match(b, "any")
        to_a = single(dispatches, "match-found", a).payload
        to_b = single(dispatches, "match-found", b).payload
        assert to_a["resolvedMode"] == to_b["resolvedMode"] == "video"
        # b completed the match, so b is user1 and a (the waiting peer) is user2.
        assert to_b["role"] == "user1"
        assert to_a["role"] == "user2"
        assert to_b["peerId"] == a and to_b["peerName"] == "A"
        assert to_a["roomId"] == to_b["roomId"]

        room = manager.get_room(to_a["roomId"])
        assert room.members == (b, a)
        assert (room.segment, room.round) == (0, 1)
        assert not manager.is_queued(a)

    def test_requester_in_room_is_rejected(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        with pytest.raises(ProtocolViolation):
            manager.request_match("a", "text")
        assert manager.get_room(room_id)

    def test_unknown_mode_rejected(self, manager, connect):
        connect("a")
        with pytest.raises(ProtocolViolation):
            manager.request_match("a", "hologram")

    def test_incompatible_modes_both_queue(self, manager, connect):
        connect("a", "b")
        manager.request_match("a", "audio")
        dispatches = manager.request_match("b", "text")
        assert single(dispatches, "queue-joined", "b")
        presence = single(dispatches, "presence-counts").payload
        assert presence["perMode"] == {"video": 0, "audio": 1, "text": 1}

    def test_each_waiting_entry_matched_once(self, manager, connect):
        connect("w", "r1", "r2")
        manager.request_match("w", "text")
        first = manager.request_match("r1", "text")
        second = manager.request_match("r2", "text")
        assert events(first, "match-found")
        assert not events(second, "match-found")
        assert single(second, "queue-joined", "r2")

    def test_many_requests_never_double_match(self, manager, connect):
        ids = connect(*[f"c{i}" for i in range(9)])
        modes = ["video", "any", "audio", "text", "any", "video", "text", "audio", "any"]
        matched = []
        for connection_id, mode in zip(ids, modes):
            for dispatch in events(manager.request_match(connection_id, mode), "match-found"):
                matched.append(dispatch.recipient)
        assert len(matched) == len(set(matched))
        for connection_id in matched:
            assert not manager.is_queued(connection_id)

    def test_leave_queue(self, manager, connect):
        connect("a")
        manager.request_match("a", "any")
        assert single(manager.leave_queue("a"), "presence-counts")
        assert manager.leave_queue("a") == []
        assert manager.presence().video == 0

    def test_disconnect_while_queued_is_not_matchable(self, manager, connect):
        connect("a", "b")
        manager.request_match("a", "video")
        manager.disconnect("a")
        dispatches = manager.request_match("b", "video")
        assert single(dispatches, "queue-joined", "b")


class TestRoomTeardown:
    def test_leave_notifies_peer_left(self, manager, connect, sink):
        room_id, _ = match_pair(manager, connect)
        dispatches = manager.leave_room("b", room_id)
        peer_left = single(dispatches, "peer-left", "a")
        assert peer_left.payload == {"roomId": room_id, "resumeMode": "video"}
        assert not events(dispatches, "peer-disconnected")
        with pytest.raises(NotFound):
            manager.get_room(room_id)
        assert sink.closed[-1][:2] == (room_id, "pair")

    def test_disconnect_notifies_with_resume_mode(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        dispatches = manager.disconnect("a")
        notice = single(dispatches, "peer-disconnected", "b")
        # b asked for "any" and keeps that across rematches.
        assert notice.payload["resumeMode"] == "any"
        assert not events(dispatches, "peer-left")

    def test_remaining_member_can_rematch(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        manager.leave_room("a", room_id)
        assert single(manager.request_match("b", "any"), "queue-joined", "b")

    def test_leave_twice_is_noop(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        manager.leave_room("a", room_id)
        assert manager.leave_room("a", room_id) == []
        assert manager.leave_room("b", room_id) == []

    def test_presence_counts_room_members(self, manager, connect):
        match_pair(manager, connect, "audio", "audio")
        counts = manager.presence()
        assert (counts.total, counts.audio, counts.video) == (2, 2, 0)


class TestMessages:
    def test_message_goes_to_peer_only(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        dispatches = manager.send_message("a", room_id, "  hello *there*  ")
        message = single(dispatches, "message-received", "b").payload
        assert message["senderId"] == "a"
        assert message["senderName"] == "A"
        assert message["text"] == "hello *there*"
        assert "<em>there</em>" in message["html"]
        assert len(dispatches) == 1

    def test_raw_html_is_escaped(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        message = manager.send_message("a", room_id, "<script>x</script>")[0].payload
        assert "<script>" not in message["html"]

    def test_empty_and_foreign_messages_rejected(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        connect("c")
        with pytest.raises(ProtocolViolation):
            manager.send_message("a", room_id, "   ")
        with pytest.raises(ProtocolViolation):
            manager.send_message("c", room_id, "hi")
        with pytest.raises(NotFound):
            manager.send_message("a", "room_missing", "hi")


class TestSegments:
    def test_authority_advances_after_timer(self, manager, connect, clock):
        room_id, _ = match_pair(manager, connect)
        authority = manager.get_room(room_id).members[0]
        listener = manager.get_room(room_id).members[1]
        clock.advance(60)
        dispatches = manager.advance_segment(authority, room_id, from_segment=0)
        changed = single(dispatches, "segment-changed", listener).payload
        assert (changed["segment"], changed["round"]) == (1, 1)
        assert changed["canSpeak"] is True
        assert not events(dispatches, "segment-changed", authority)

    def test_early_or_non_authority_advance_rejected(self, manager, connect, clock):
        room_id, _ = match_pair(manager, connect)
        room = manager.get_room(room_id)
        with pytest.raises(ProtocolViolation):
            manager.advance_segment(room.members[0], room_id)
        clock.advance(60)
        with pytest.raises(ProtocolViolation):
            manager.advance_segment(room.members[1], room_id)
        assert manager.get_room(room_id).segment == 0

    def test_duplicate_timer_advance_is_stale(self, manager, connect, clock):
        room_id, _ = match_pair(manager, connect)
        authority = manager.get_room(room_id).members[0]
        clock.advance(60)
        manager.advance_segment(authority, room_id, from_segment=0)
        with pytest.raises(ProtocolViolation):
            manager.advance_segment(authority, room_id, from_segment=0)

    def test_full_round_wraps(self, manager, connect, clock):
        room_id, _ = match_pair(manager, connect)
        authority = manager.get_room(room_id).members[0]
        for _ in range(4):
            clock.advance(60)
            manager.advance_segment(authority, room_id)
        room = manager.get_room(room_id)
        assert (room.segment, room.round) == (0, 2)

    def test_default_policy_is_authority_only_skip(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        room = manager.get_room(room_id)
        with pytest.raises(ProtocolViolation):
            manager.skip_segment(room.members[1], room_id)
        dispatches = manager.skip_segment(room.members[0], room_id)
        assert len(events(dispatches, "segment-changed")) == 2

    def test_either_policy(self, settings, manager, connect):
        settings.skip_policy = SkipPolicy.EITHER
        room_id, _ = match_pair(manager, connect)
        listener = manager.get_room(room_id).members[1]
        manager.skip_segment(listener, room_id)
        assert manager.get_room(room_id).segment == 1


class TestSignaling:
    def test_offer_routed_to_joined_peer(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        manager.join_signaling("a", room_id)
        manager.join_signaling("b", room_id)
        dispatches = manager.relay_signal("a", "offer", room_id, {"sdp": "x"})
        offer = single(dispatches, "relay-offer", "b").payload
        assert offer["fromId"] == "a"
        assert offer["payload"] == {"sdp": "x"}

    def test_relay_before_join_rejected(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        with pytest.raises(ProtocolViolation):
            manager.relay_signal("a", "ice", room_id, {})

    def test_non_member_cannot_join_topic(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        connect("c")
        with pytest.raises(ProtocolViolation):
            manager.join_signaling("c", room_id)

    def test_unknown_kind(self, manager, connect):
        room_id, _ = match_pair(manager, connect)
        with pytest.raises(ProtocolViolation):
            manager.relay_signal("a", "bye", room_id, {})


class TestReports:
    def test_report_forwarded_to_sink(self, manager, connect, sink):
        room_id, _ = match_pair(manager, connect)
        dispatches = manager.report_peer("a", room_id, "spam")
        assert single(dispatches, "report-filed", "a")
        report = sink.reports[0]
        assert (report.reporter_id, report.reported_id, report.reason) == ("a", "b", "spam")


class TestDebates:
    def create(self, manager, connect, segments=6):
        connect("d1", "d2", "v1")
        created = manager.create_debate("d1", segments, title="Cats vs Dogs")
        code = single(created, "debate-created", "d1").payload["code"]
        manager.join_debate("d1", code, "debater")
        manager.join_debate("d2", code, "debater")
        return code

    def test_join_roles_and_viewer_notice(self, manager, connect):
        code = self.create(manager, connect)
        dispatches = manager.join_debate("v1", code, "viewer", "Vee")
        assert single(dispatches, "debate-joined", "v1").payload["role"] == "viewer"
        assert single(dispatches, "viewer-joined", "d1").payload["viewerId"] == "v1"
        assert single(dispatches, "viewer-joined", "d2")
        assert len(events(dispatches, "debate-state")) == 3

    def test_late_debater_sees_existing_viewers(self, manager, connect):
        connect("d1", "v1", "v2")
        code = single(manager.create_debate("d1", 2), "debate-created", "d1").payload["code"]
        manager.join_debate("v1", code, "viewer")
        manager.join_debate("v2", code, "viewer")
        dispatches = manager.join_debate("d1", code, "debater")
        notices = events(dispatches, "viewer-joined", "d1")
        assert {notice.payload["viewerId"] for notice in notices} == {"v1", "v2"}
        assert {notice.payload["viewerName"] for notice in notices} == {"V1", "V2"}
        assert not events(dispatches, "viewer-joined", "v1")

    def test_abandoned_lobby_is_purged(self, manager, connect, clock, settings, sink):
        connect("host")
        abandoned = single(manager.create_debate("host", 2), "debate-created", "host").payload["code"]
        kept = single(manager.create_debate("host", 2), "debate-created", "host").payload["code"]
        manager.join_debate("host", kept, "debater")

        clock.advance(settings.debate_abandon_seconds + 1)
        manager.create_debate("host", 2)

        with pytest.raises(NotFound):
            manager.get_debate_state(abandoned)
        assert manager.get_debate_state(kept)["phase"] == "lobby"
        assert (abandoned, "debate", "abandoned") in sink.closed

    def test_fresh_lobby_survives_sweep(self, manager, connect, clock, settings):
        connect("host")
        code = single(manager.create_debate("host", 2), "debate-created", "host").payload["code"]
        clock.advance(settings.debate_abandon_seconds - 1)
        manager.create_debate("host", 2)
        assert manager.get_debate_state(code)["phase"] == "lobby"

    def test_segment_count_bounds(self, manager, connect):
        connect("d1")
        with pytest.raises(ProtocolViolation):
            manager.create_debate("d1", 0)
        with pytest.raises(ProtocolViolation):
            manager.create_debate("d1", 21)

    def test_six_forced_advances_open_qna(self, manager, connect, timers):
        code = self.create(manager, connect, segments=6)
        manager.start_debate("d1", code)
        assert timers.started == [code]
        for _ in range(6):
            dispatches = manager.force_debate_advance(code)
        state = single(dispatches, "debate-state", "d1").payload
        assert state["phase"] == "qna"
        assert state["speaker"] == "both"
        assert state["remainingSeconds"] == 600

    def test_tick_applies_deadline(self, manager, connect, clock):
        code = self.create(manager, connect)
        manager.start_debate("d1", code)
        clock.advance(120)
        state = single(manager.tick_debate(code), "debate-state", "d2").payload
        assert state["segmentIndex"] == 1
        assert state["speaker"] == "debater2"

    def test_tick_for_missing_room_is_safe(self, manager, timers):
        assert manager.tick_debate("NOPE00") == []
        assert "NOPE00" in timers.cancelled

    def test_debater_disconnect_ends_for_everyone(self, manager, connect, timers, sink):
        code = self.create(manager, connect)
        manager.join_debate("v1", code, "viewer")
        manager.start_debate("d2", code)
        dispatches = manager.disconnect("d1")
        for member in ("d2", "v1"):
            assert single(dispatches, "debate-state", member).payload["phase"] == "ended"
        assert timers.cancelled == [code]
        assert (code, "debate") == sink.closed[-1][:2]

    def test_ended_debate_cannot_restart(self, manager, connect):
        code = self.create(manager, connect)
        manager.start_debate("d1", code)
        manager.leave_debate("d2", code)
        with pytest.raises(ProtocolViolation):
            manager.start_debate("d1", code)
        with pytest.raises(ProtocolViolation):
            manager.skip_debate_segment("d1", code)
        with pytest.raises(ProtocolViolation):
            manager.join_debate("v1", code, "viewer")
        assert manager.get_debate_state(code)["phase"] == DebatePhase.ENDED.value

    def test_room_destroyed_when_empty(self, manager, connect):
        code = self.create(manager, connect)
        manager.leave_debate("d1", code)
        manager.leave_debate("d2", code)
        with pytest.raises(NotFound):
            manager.get_debate_state(code)
        assert manager.list_live_debates() == []

    def test_qna_flow(self, manager, connect):
        code = self.create(manager, connect, segments=1)
        manager.join_debate("v1", code, "viewer")
        manager.debate_question("v1", code, "What about birds?")
        manager.start_debate("d1", code)
        manager.skip_debate_segment("d2", code)
        dispatches = manager.debate_qna_next("d1", code)
        current = single(dispatches, "debate-state", "v1").payload["currentQuestion"]
        assert current["text"] == "What about birds?"
        assert current["fromViewerId"] == "v1"

    def test_skip_during_qna_restarts_its_clock(self, manager, connect, clock, timers):
        code = self.create(manager, connect, segments=1)
        manager.start_debate("d1", code)
        manager.skip_debate_segment("d1", code)
        clock.advance(100)
        assert manager.get_debate_state(code)["remainingSeconds"] == 500
        dispatches = manager.skip_debate_segment("d2", code)
        state = single(dispatches, "debate-state", "d1").payload
        assert state["phase"] == "qna"
        assert state["remainingSeconds"] == 600
        assert timers.cancelled == []

    def test_abort_ends_debate_and_cancels_timer(self, manager, connect, timers, sink):
        code = self.create(manager, connect)
        manager.start_debate("d1", code)
        dispatches = manager.abort_debate(code, "timer failure")
        state = single(dispatches, "debate-state", "d2").payload
        assert state["phase"] == "ended"
        assert state["endReason"] == "timer failure"
        assert timers.cancelled == [code]
        assert sink.closed[-1] == (code, "debate", "timer failure")
        assert manager.abort_debate("NOPE00", "timer failure") == []

    def test_debate_chat_reaches_all_members(self, manager, connect):
        code = self.create(manager, connect)
        manager.join_debate("v1", code, "viewer")
        dispatches = manager.debate_chat("v1", code, "go d1!")
        assert {d.recipient for d in dispatches} == {"d1", "d2", "v1"}
        assert dispatches[0].payload["role"] == "viewer"

    def test_debate_signaling_needs_target(self, manager, connect):
        code = self.create(manager, connect)
        manager.join_debate("v1", code, "viewer")
        with pytest.raises(ProtocolViolation):
            manager.relay_signal("d1", "offer", code, {"sdp": "o"})
        dispatches = manager.relay_signal("d1", "offer", code, {"sdp": "o"}, target_id="v1")
        offer = single(dispatches, "relay-offer", "v1").payload
        assert offer["fromRole"] == "debater1"

    def test_debate_code_case_insensitive_for_signaling(self, manager, connect):
        code = self.create(manager, connect)
        typed = f" {code.lower()} "
        manager.join_debate("v1", typed, "viewer")
        assert manager.join_signaling("d1", typed) == []
        dispatches = manager.relay_signal("d1", "offer", typed, {"sdp": "o"}, target_id="v1")
        offer = single(dispatches, "relay-offer", "v1").payload
        assert offer["roomId"] == code
        answer = manager.relay_signal("v1", "answer", code.lower(), {"sdp": "a"}, target_id="d1")
        assert single(answer, "relay-answer", "d1").payload["fromRole"] == "viewer"

    def test_running_debate_blocks_matchmaking(self, manager, connect):
        code = self.create(manager, connect)
        with pytest.raises(ProtocolViolation):
            manager.request_match("d1", "video")
        manager.start_debate("d1", code)
        manager.leave_debate("d2", code)
        # The debate has ended, so d1 may queue again.
        assert single(manager.request_match("d1", ChatMode.TEXT), "queue-joined", "d1")

    def test_browse_lists_live_debates(self, manager, connect):
        code = self.create(manager, connect)
        listing = manager.list_live_debates()
        assert listing[0]["code"] == code
        assert listing[0]["title"] == "Cats vs Dogs"
        assert listing[0]["openDebaterSlots"] == 0
