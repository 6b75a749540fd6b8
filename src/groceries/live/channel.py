"""
Live update channel over Server-Sent Events.

Keeps a push subscription open to the server, hands each change event to a
callback and reconnects with exponential backoff when the stream drops.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from groceries.config import RECONNECT_BASE_DELAY_SECONDS, RECONNECT_MAX_DELAY_SECONDS
from groceries.schema.models import ChangeEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Any]
ConnectionHandler = Callable[[bool], Any]
Sleep = Callable[[float], Awaitable[None]]


class ChannelState(Enum):
    """State of the push subscription."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class ExponentialBackoff:
    """Reconnect delays: base, 2*base, 4*base, ... capped at max_delay."""

    base_delay: float = RECONNECT_BASE_DELAY_SECONDS
    max_delay: float = RECONNECT_MAX_DELAY_SECONDS

    def delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (0-based)."""
        # Cap the exponent too so very long outages cannot overflow
        return min(self.base_delay * (2 ** min(attempt, 32)), self.max_delay)


class StreamEnded(Exception):
    """The server closed the event stream."""


class Subscription:
    """Handle for an active channel connection; close() cancels it."""

    def __init__(self, channel: LiveUpdateChannel):
        self._channel = channel

    @property
    def state(self) -> ChannelState:
        return self._channel.state

    async def close(self) -> None:
        await self._channel.disconnect()


class LiveUpdateChannel:
    """
    Resilient SSE subscription.

    Transitions:
    - connect(): DISCONNECTED -> CONNECTING
    - stream opened: CONNECTING/RECONNECTING -> CONNECTED (backoff reset)
    - transport error or stream end: -> RECONNECTING (after backoff delay)
    - disconnect(): any -> DISCONNECTED, no callbacks afterwards

    Callers never see the difference between a fresh connection and a
    resumed one; catching up on missed changes is the store's job.
    """

    def __init__(
        self,
        backoff: ExponentialBackoff | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.backoff = backoff or ExponentialBackoff()
        self._transport = transport
        self._sleep = sleep

        self.state = ChannelState.DISCONNECTED
        self.reconnect_attempts = 0
        self.scheduled_delays: list[float] = []

        self._url: str | None = None
        self._on_event: EventHandler | None = None
        self._on_connection_change: ConnectionHandler | None = None
        self._task: asyncio.Task[None] | None = None
        self._client: httpx.AsyncClient | None = None
        self._closed = True

    @property
    def is_connected(self) -> bool:
        return self.state is ChannelState.CONNECTED

    async def connect(
        self,
        url: str,
        on_event: EventHandler,
        on_connection_change: ConnectionHandler | None = None,
    ) -> Subscription:
        """Open the subscription. Replaces any existing one."""
        if not self._closed:
            await self.disconnect()

        self._url = url
        self._on_event = on_event
        self._on_connection_change = on_connection_change
        self._closed = False
        self.reconnect_attempts = 0
        self.state = ChannelState.CONNECTING

        # No read timeout: the stream is expected to sit idle between events
        self._client = httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(10.0, read=None),
        )
        self._task = asyncio.create_task(self._run())
        logger.info("Connecting to live updates at %s", url)
        return Subscription(self)

    async def disconnect(self) -> None:
        """Cancel any pending reconnect and close the active stream."""
        self._closed = True
        self.state = ChannelState.DISCONNECTED
        self.reconnect_attempts = 0

        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        client, self._client = self._client, None
        if client:
            await client.aclose()
        logger.info("Live updates disconnected")

    async def _run(self) -> None:
        while not self._closed:
            try:
                await self._listen()
            except (httpx.HTTPError, StreamEnded) as e:
                logger.warning("Live update connection error: %s", e)

            if self._closed:
                return
            await self._notify_connection(False)

            delay = self.backoff.delay(self.reconnect_attempts)
            self.scheduled_delays.append(delay)
            logger.info(
                "Scheduling reconnect in %.0fs (attempt %d)", delay, self.reconnect_attempts + 1
            )
            self.state = ChannelState.RECONNECTING
            await self._sleep(delay)
            self.reconnect_attempts += 1

    async def _listen(self) -> None:
        assert self._client is not None and self._url is not None
        async with self._client.stream(
            "GET", self._url, headers={"Accept": "text/event-stream"}
        ) as response:
            response.raise_for_status()
            self.state = ChannelState.CONNECTED
            self.reconnect_attempts = 0
            logger.info("Live updates connected")
            await self._notify_connection(True)

            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if self._closed:
                    return
                if not line:
                    # Blank line terminates one SSE message
                    if data_lines:
                        await self._dispatch("\n".join(data_lines))
                        data_lines = []
                elif line.startswith(":"):
                    continue  # Comment / heartbeat
                elif line.startswith("data:"):
                    data_lines.append(line[5:].lstrip(" "))
            if data_lines:
                await self._dispatch("\n".join(data_lines))

        raise StreamEnded("Server closed the event stream")

    async def _dispatch(self, raw: str) -> None:
        try:
            event = ChangeEvent.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("Dropping malformed live update %r: %s", raw[:200], e)
            return

        logger.debug("Received live update %s", event.type)
        if self._closed or self._on_event is None:
            return
        try:
            await _maybe_await(self._on_event(event))
        except Exception:
            # Handler failures leave the stream open
            logger.exception("Live update handler failed for %s", event.type)

    async def _notify_connection(self, connected: bool) -> None:
        if self._closed or self._on_connection_change is None:
            return
        await _maybe_await(self._on_connection_change(connected))


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result
