"""
Agent Heartbeat

Emits a ping envelope on a fixed interval while the connection is open.
The coordinator records the ping and replies with pong; pong carries no
further meaning for the agent.

Heartbeats are liveness bookkeeping only. Disconnection is detected by the
transport closing, never by missed pings.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from filerelay.protocol.envelope import Envelope, create_ping

logger = logging.getLogger(__name__)


class Heartbeat:
    """Background ping task for one connection."""

    def __init__(self, send: Callable[[Envelope], Awaitable[None]], interval: float = 30.0):
        """
        Args:
            send: Coroutine that delivers an envelope to the coordinator
            interval: Seconds between pings
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._send = send
        self._interval = interval
        self._task: asyncio.Task | None = None
        self.sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start pinging."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="heartbeat")

    async def stop(self) -> None:
        """Stop pinging."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._send(create_ping())
            except Exception as e:
                # Connection is going away; the client loop handles reconnection
                logger.debug(f"Heartbeat stopped: {e}")
                break
            self.sent += 1
