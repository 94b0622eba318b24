"""Timing and sizing constants shared by the matchmaking and debate layers."""

SEGMENT_DURATION_SECONDS: int = 60
SEGMENTS_PER_ROUND: int = 4
SEGMENT_CLOCK_TOLERANCE_SECONDS: float = 2.0

DEBATE_SEGMENT_DURATION_SECONDS: int = 120
DEBATE_QNA_DURATION_SECONDS: int = 600
DEBATE_DEFAULT_SEGMENTS: int = 6
DEBATE_MIN_SEGMENTS: int = 1
DEBATE_MAX_SEGMENTS: int = 20
DEBATE_TICK_SECONDS: float = 1.0
DEBATE_ABANDON_SECONDS: int = 300
DEBATE_CODE_LENGTH: int = 6
DEBATE_DEFAULT_TITLE: str = "Untitled Debate"
DEBATE_RULES_TEXT: str = (
    "Each speaker gets **2 minutes** per segment. No interruptions.\n\n"
    "After the segments, a **10-minute Q&A** with viewer questions picked "
    "in a shuffled rotation, one question per viewer per pass."
)

MAX_MESSAGE_LENGTH: int = 1000
MAX_DISPLAY_NAME_LENGTH: int = 40
