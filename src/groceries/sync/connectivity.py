"""
Connectivity tracking.

The client is considered online until a call fails with NetworkFailure, and
online again as soon as any call (or the live channel) reaches the server.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

OnlineListener = Callable[[], Awaitable[None]]


class ConnectivityMonitor:
    """
    Online/offline flag with offline -> online transition listeners.

    Listeners run as background tasks so that the caller reporting the
    transition (often a store operation) is never blocked by a queue drain.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[OnlineListener] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: OnlineListener) -> None:
        """Register a coroutine function to run on every offline -> online transition."""
        self._listeners.append(listener)

    def mark_offline(self) -> None:
        if self._online:
            logger.info("Connectivity lost")
        self._online = False

    def mark_online(self) -> None:
        if self._online:
            return
        self._online = True
        logger.info("Connectivity restored")
        for listener in self._listeners:
            task = asyncio.ensure_future(listener())
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def set_online(self, online: bool) -> None:
        if online:
            self.mark_online()
        else:
            self.mark_offline()

    async def wait_idle(self) -> None:
        """Wait for transition listeners that are still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            logger.error("Reconnect handler failed: %s", exc, exc_info=exc)
