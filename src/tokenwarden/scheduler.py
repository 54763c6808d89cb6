"""Proactive renewal timer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class RenewalScheduler:
    """Holds at most one pending timer that calls ``callback`` when it fires.

    Arming replaces whatever timer was pending. A delay that is already in
    the past still fires, on the next loop iteration. The scheduler never
    looks at the outcome of ``callback``; the renewal coordinator owns that.

    Arming outside a running event loop records the delay and the timer is
    set by :meth:`start`.
    """

    def __init__(self, callback: Callable[[], Awaitable[Any]], *, clock: Callable[[], float] = time.time) -> None:
        self._callback = callback
        self._clock = clock
        self._handle: asyncio.TimerHandle | None = None
        self._pending_deadline: float | None = None
        self._deadline: float | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self.fire_count = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None or self._pending_deadline is not None

    @property
    def deadline(self) -> float | None:
        """Wall-clock time at which the pending timer fires."""
        if self._pending_deadline is not None:
            return self._pending_deadline
        return self._deadline

    def arm(self, delay_seconds: float) -> None:
        self.disarm()
        delay = max(0.0, float(delay_seconds))
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._pending_deadline = self._clock() + delay
            logger.debug("no running loop; renewal timer deferred until start()")
            return
        self._deadline = self._clock() + delay
        self._handle = loop.call_later(delay, self._fire)
        logger.debug("renewal timer armed for %.1fs", delay)

    def arm_for(self, expires_at: float) -> None:
        """Arm so the timer fires at the store's buffered expiry."""
        self.arm(expires_at - self._clock())

    def start(self) -> None:
        """Set a timer deferred by an :meth:`arm` made outside the loop."""
        if self._pending_deadline is None:
            return
        deadline = self._pending_deadline
        self._pending_deadline = None
        self.arm(deadline - self._clock())

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("renewal timer disarmed")
        self._pending_deadline = None
        self._deadline = None

    def _fire(self) -> None:
        self._handle = None
        self._deadline = None
        self.fire_count += 1
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduled renewal raised")

    async def aclose(self) -> None:
        self.disarm()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
