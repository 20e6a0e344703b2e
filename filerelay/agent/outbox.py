"""
Agent Outbox

Every envelope the agent sends goes through one Outbox per connection.

- Concurrent transfers and the heartbeat all put() into the same bounded
  queue; one writer task owns the socket and sends frames in queue order
- put() waits while the queue is full, so a fast file read cannot run
  more than `max_size` envelopes ahead of the network
- A sender that waits longer than `put_timeout` gets OutboxClosedError
- The first failed write closes the outbox and wakes every waiting sender
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class OutboxClosedError(ConnectionError):
    """The connection behind an outbox can no longer accept envelopes."""
    def __init__(self, name: str, reason: str = "closed"):
        self.name = name
        self.reason = reason
        super().__init__(f"Outbox {reason} for {name}")


class Outbox:
    """Bounded send queue drained by a single writer task."""

    def __init__(
        self,
        name: str,
        send_fn: Callable[[str], Awaitable[None]],
        max_size: int = 64,
        put_timeout: float = 30.0
    ):
        """
        Args:
            name: Label used in logs (the agent id)
            send_fn: Writes one text frame to the socket
            max_size: Envelopes that may wait in the queue
            put_timeout: Seconds put() waits for room before giving up
        """
        self.name = name
        self._write = send_fn
        self._pending: asyncio.Queue[str] = asyncio.Queue(maxsize=max_size)
        self._put_timeout = put_timeout
        self._writer: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def qsize(self) -> int:
        """Envelopes waiting to be written."""
        return self._pending.qsize()

    async def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"outbox_{self.name}")

    async def stop(self) -> None:
        """Close the outbox. Anything still queued is dropped."""
        self._closed = True
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    async def put(self, message: str) -> None:
        """
        Queue one frame for the writer.

        Raises:
            OutboxClosedError: The outbox is closed, closed while waiting,
                or had no room for `put_timeout` seconds
        """
        if self._closed:
            raise OutboxClosedError(self.name)
        try:
            await asyncio.wait_for(self._pending.put(message), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            raise OutboxClosedError(self.name, reason="full") from None
        if self._closed:
            raise OutboxClosedError(self.name)

    async def _drain(self) -> None:
        while not self._closed:
            message = await self._pending.get()
            try:
                await self._write(message)
            except Exception as e:
                logger.warning(f"Write to coordinator failed for {self.name}: {e}")
                self._close_and_flush()
                return

    def _close_and_flush(self) -> None:
        self._closed = True
        # Emptying the queue unblocks senders waiting in put()
        while not self._pending.empty():
            self._pending.get_nowait()
