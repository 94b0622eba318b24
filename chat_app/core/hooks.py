"""Seams between the session core and its collaborators.

The core schedules timers and reports closed rooms and filed reports through
these small interfaces; the server wires in asyncio and logging versions.
"""

from __future__ import annotations

import logging
from typing import Protocol

from chat_app.core.models import PeerReport

logger = logging.getLogger(__name__)


class TimerScheduler(Protocol):
    def start(self, key: str) -> None:
        """Begin ticking for ``key``. Starting a running key is a no-op."""

    def cancel(self, key: str) -> None:
        """Stop ticking for ``key``. Cancelling an unknown key is a no-op."""


class NullTimerScheduler:
    """Scheduler used when nothing drives ticks (CLI tools, unit tests)."""

    def start(self, key: str) -> None:
        pass

    def cancel(self, key: str) -> None:
        pass


class SessionEventSink(Protocol):
    def room_closed(self, room_id: str, kind: str, reason: str) -> None:
        ...

    def report_filed(self, report: PeerReport) -> None:
        ...


class LoggingEventSink:
    """Default sink that only logs."""

    def room_closed(self, room_id: str, kind: str, reason: str) -> None:
        logger.info("Closed %s room %s (%s)", kind, room_id, reason)

    def report_filed(self, report: PeerReport) -> None:
        logger.warning(
            "Report %s: %s reported %s in %s: %s",
            report.report_id,
            report.reporter_id,
            report.reported_id,
            report.room_id,
            report.reason,
        )
