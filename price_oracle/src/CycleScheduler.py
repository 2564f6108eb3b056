"""CycleScheduler: One cancelable timer for the next update cycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class CycleScheduler:
    """Holds at most one pending timer that spawns the cycle callback.

    Arming again replaces the pending timer. The spawned task is kept
    referenced until it finishes so the loop does not drop it.

    :ivar callback: Coroutine function started when the timer fires.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]]) -> None:
        self.callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def armed(self) -> bool:
        """True while a timer is pending."""
        return self._handle is not None

    @property
    def task(self) -> asyncio.Task | None:
        """The most recently spawned callback task, if any."""
        return self._task

    def arm(self, delay: float) -> None:
        """Fire the callback after delay seconds, replacing any pending timer.

        :param delay: Seconds from now; negative values fire on the next
            loop iteration.
        """
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(0.0, delay), self._fire)
        logger.debug(f"Next cycle armed in {max(0.0, delay):.1f}s")

    def cancel(self) -> None:
        """Cancel the pending timer, if any. Running callbacks are left alone."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self.callback())
