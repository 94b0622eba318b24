"""One asyncio ticker task per running debate room."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging

from chat_app.constants.session_constants import DEBATE_TICK_SECONDS

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], Awaitable[None]]


class DebateTicker:
    """Implements the core's timer scheduler on top of asyncio tasks.

    ``start`` and ``cancel`` are called with the session lock held, from the
    event loop thread, so they only create or cancel tasks and never await.
    """

    def __init__(self, interval_seconds: float = DEBATE_TICK_SECONDS) -> None:
        self._interval_seconds = interval_seconds
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._on_tick: TickCallback | None = None
        self._on_failure: TickCallback | None = None

    def bind(self, on_tick: TickCallback, on_failure: TickCallback | None = None) -> None:
        """Set the tick callback and, optionally, the one run after a tick raised."""
        self._on_tick = on_tick
        self._on_failure = on_failure

    def start(self, key: str) -> None:
        if key in self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks[key] = loop.create_task(self._run(key), name=f"debate-ticker-{key}")
        logger.debug("Started ticker for %s", key)

    def cancel(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is None:
            return
        # A tick that ends its own debate lets the loop exit instead of cancelling
        # itself, so the final state still goes out.
        if task is not asyncio.current_task():
            task.cancel()
        logger.debug("Cancelled ticker for %s", key)

    def is_running(self, key: str) -> bool:
        return key in self._tasks

    async def _run(self, key: str) -> None:
        try:
            while key in self._tasks:
                await asyncio.sleep(self._interval_seconds)
                if key not in self._tasks or self._on_tick is None:
                    break
                await self._on_tick(key)
        except Exception:
            logger.exception("Ticker for %s failed", key)
            self._tasks.pop(key, None)
            if self._on_failure is not None:
                await self._on_failure(key)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
