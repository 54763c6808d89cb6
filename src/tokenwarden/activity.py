"""Best-effort activity tracking.

The tracker talks to the network through the bare HTTP client, never
through the call guard, and its failures stop here. Nothing in this module
can clear credentials or end a session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import httpx

logger = logging.getLogger(__name__)


class ActivityTracker:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        heartbeat_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self.heartbeat_url = heartbeat_url
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()
        self.last_activity: float | None = None

    def touch(self, access_token: str | None = None) -> None:
        """Record activity now and, if configured, ping the heartbeat endpoint."""
        self.last_activity = self._clock()
        if self.heartbeat_url is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._heartbeat(access_token))
        except RuntimeError:
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _heartbeat(self, access_token: str | None) -> None:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        try:
            await self._http.post(self.heartbeat_url, json={"at": int(self.last_activity or 0)}, headers=headers)
        except Exception as exc:
            logger.debug("activity heartbeat failed (non-fatal): %s", exc)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
