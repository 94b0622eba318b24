"""Utility for assigning anonymous display names to connections."""

from __future__ import annotations

from collections import deque
import random
from threading import Lock

from chat_app.constants.session_constants import MAX_DISPLAY_NAME_LENGTH

_DEFAULT_HANDLES = [
    "Stranger",
    "Quiet Otter",
    "Curious Heron",
    "Brave Lynx",
    "Gentle Moose",
    "Swift Falcon",
    "Calm Badger",
    "Lucky Panda",
    "Sleepy Koala",
    "Bold Walrus",
    "Witty Raven",
    "Cosmic Gecko",
    "Sunny Marmot",
    "Mellow Bison",
    "Nimble Ferret",
    "Patient Tortoise",
]


class NameAssigner:
    """Provides randomized, non-repeating anonymous handles."""

    def __init__(self, names: list[str], rng: random.Random | None = None):
        cleaned = [name.strip() for name in names if name.strip()]
        if not cleaned:
            raise ValueError("Name list cannot be empty.")
        self._names = cleaned
        self._pool: deque[str] = deque()
        self._lock = Lock()
        self._rng = rng or random.Random()
        self._refill_pool()

    @classmethod
    def from_defaults(cls, rng: random.Random | None = None) -> "NameAssigner":
        return cls(list(_DEFAULT_HANDLES), rng=rng)

    def next_name(self) -> str:
        with self._lock:
            if not self._pool:
                self._refill_pool()
            return self._pool.popleft()

    def choose(self, requested: str | None) -> str:
        """Return the trimmed requested name, or a fresh handle when it is blank."""
        if requested:
            stripped = requested.strip()[:MAX_DISPLAY_NAME_LENGTH].strip()
            if stripped:
                return stripped
        return self.next_name()

    def _refill_pool(self) -> None:
        shuffled = list(self._names)
        self._rng.shuffle(shuffled)
        self._pool.extend(shuffled)
