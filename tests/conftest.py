"""
Shared pytest fixtures for the session core tests.

Time is driven by a fake clock and debate timers by a recording scheduler, so
nothing here sleeps or needs an event loop.
"""

from datetime import datetime, timedelta, timezone
import random

import pytest

from chat_app.core.chat_manager import ChatManager
from chat_app.core.models import Dispatch
from chat_app.core.name_assigner import NameAssigner
from chat_app.core.settings import SessionSettings


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingTimers:
    """Timer scheduler that records calls instead of ticking."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.cancelled: list[str] = []
        self.running: set[str] = set()

    def start(self, key: str) -> None:
        self.started.append(key)
        self.running.add(key)

    def cancel(self, key: str) -> None:
        self.cancelled.append(key)
        self.running.discard(key)


class RecordingSink:
    def __init__(self) -> None:
        self.closed: list[tuple[str, str, str]] = []
        self.reports = []

    def room_closed(self, room_id: str, kind: str, reason: str) -> None:
        self.closed.append((room_id, kind, reason))

    def report_filed(self, report) -> None:
        self.reports.append(report)


def events(dispatches: list[Dispatch], event: str, recipient: str | None = None) -> list[Dispatch]:
    """Filter dispatches by event name and, optionally, recipient."""
    return [
        d
        for d in dispatches
        if d.event == event and (recipient is None or d.recipient == recipient)
    ]


def single(dispatches: list[Dispatch], event: str, recipient: str | None = None) -> Dispatch:
    found = events(dispatches, event, recipient)
    assert len(found) == 1, f"expected one {event} for {recipient}, got {found}"
    return found[0]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> RecordingTimers:
    return RecordingTimers()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def settings() -> SessionSettings:
    return SessionSettings()


@pytest.fixture
def manager(settings, clock, timers, sink) -> ChatManager:
    return ChatManager(
        settings=settings,
        clock=clock,
        timers=timers,
        event_sink=sink,
        name_assigner=NameAssigner.from_defaults(rng=random.Random(7)),
        rng=random.Random(42),
    )


@pytest.fixture
def connect(manager):
    """Register connections by id and return the ids."""

    def _connect(*connection_ids: str) -> list[str]:
        for connection_id in connection_ids:
            manager.connect(connection_id, display_name=connection_id.upper())
        return list(connection_ids)

    return _connect
