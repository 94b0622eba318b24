"""Tunable session settings, defaulting to the shared constants."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import os

from chat_app.constants.session_constants import (
    DEBATE_ABANDON_SECONDS,
    DEBATE_QNA_DURATION_SECONDS,
    DEBATE_SEGMENT_DURATION_SECONDS,
    DEBATE_TICK_SECONDS,
    MAX_MESSAGE_LENGTH,
    SEGMENT_CLOCK_TOLERANCE_SECONDS,
    SEGMENT_DURATION_SECONDS,
)


class SkipPolicy(str, Enum):
    """Who may skip the current 1:1 segment."""

    AUTHORITY_ONLY = "authority-only"
    EITHER = "either"
    SPEAKER_ONLY = "speaker-only"


@dataclass(slots=True)
class SessionSettings:
    segment_duration_seconds: int = SEGMENT_DURATION_SECONDS
    segment_clock_tolerance_seconds: float = SEGMENT_CLOCK_TOLERANCE_SECONDS
    skip_policy: SkipPolicy = SkipPolicy.AUTHORITY_ONLY
    debate_segment_duration_seconds: int = DEBATE_SEGMENT_DURATION_SECONDS
    debate_qna_duration_seconds: int = DEBATE_QNA_DURATION_SECONDS
    debate_tick_seconds: float = DEBATE_TICK_SECONDS
    debate_abandon_seconds: int = DEBATE_ABANDON_SECONDS
    max_message_length: int = MAX_MESSAGE_LENGTH

    @classmethod
    def from_env(cls) -> "SessionSettings":
        """Build settings, letting ``SKIP_POLICY`` and ``SEGMENT_DURATION`` override defaults."""
        settings = cls()
        policy = os.environ.get("SKIP_POLICY")
        if policy:
            settings.skip_policy = SkipPolicy(policy)
        duration = os.environ.get("SEGMENT_DURATION")
        if duration:
            settings.segment_duration_seconds = int(duration)
        return settings
