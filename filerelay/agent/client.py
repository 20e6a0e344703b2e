"""
Agent Client

Keeps a WebSocket connection to the coordinator open and serves
download requests over it.

Connection flow:
1. Connect to the coordinator's /ws endpoint
2. Send client_info with the agent identity, wait for connected
3. Start the heartbeat
4. Run each download_request as its own task through the TransferExecutor
5. On disconnect: stop the heartbeat, cancel running transfers, wait
   `reconnect_delay` seconds and start over (no backoff, no retry limit)
"""

import asyncio
import logging
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

from filerelay.agent.executor import TransferExecutor
from filerelay.agent.heartbeat import Heartbeat
from filerelay.agent.outbox import Outbox
from filerelay.config import RelaySettings
from filerelay.errors import ProtocolError
from filerelay.protocol.envelope import (
    Envelope,
    MessageType,
    create_client_info,
    parse_envelope,
)

logger = logging.getLogger(__name__)


class AgentClient:
    """
    Long-lived agent connection with unconditional reconnect.
    """

    def __init__(
        self,
        agent_id: str,
        server_url: str,
        executor: TransferExecutor,
        heartbeat_interval: float = 30.0,
        reconnect_delay: float = 5.0,
        outbox_size: int = 64,
        send_timeout: float = 30.0
    ):
        """
        Initialize the client.

        Args:
            agent_id: Identity announced in client_info
            server_url: Coordinator WebSocket URL
            executor: Serves download requests
            heartbeat_interval: Seconds between pings
            reconnect_delay: Fixed wait before reconnecting
            outbox_size: Max queued outbound envelopes
            send_timeout: Max seconds to wait for outbox space
        """
        self.agent_id = agent_id
        self.server_url = server_url
        self._executor = executor
        self._heartbeat_interval = heartbeat_interval
        self._reconnect_delay = reconnect_delay
        self._outbox_size = outbox_size
        self._send_timeout = send_timeout

        # Running download tasks for the current connection
        self._transfers: set[asyncio.Task] = set()

        self._ws: Any = None
        self._stopping = False
        self.registered = False

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "AgentClient":
        return cls(
            agent_id=settings.agent_id,
            server_url=settings.server_url,
            executor=TransferExecutor(settings.agent_base_dir, settings.chunk_size),
            heartbeat_interval=settings.heartbeat_interval,
            reconnect_delay=settings.reconnect_delay,
            outbox_size=settings.outbox_size,
            send_timeout=settings.send_timeout,
        )

    async def run(self) -> None:
        """Connect, serve, and reconnect until stop() is called."""
        while not self._stopping:
            try:
                await self.connect_once()
            except (OSError, WebSocketException) as e:
                logger.error(f"WS error: {e}")

            if self._stopping:
                break
            logger.info(f"Reconnecting in {self._reconnect_delay:g}s...")
            await asyncio.sleep(self._reconnect_delay)

    async def connect_once(self) -> None:
        """Open one connection and serve it until it closes."""
        logger.info(f"Connecting to {self.server_url}")
        async with websockets.connect(self.server_url) as ws:
            logger.info("Connected to server")
            await self.serve(ws)

    async def serve(self, ws: Any) -> None:
        """
        Serve an open connection.

        Args:
            ws: Connected socket (async iterable of frames with send/close)
        """
        self._ws = ws
        self.registered = False
        outbox = Outbox(
            self.agent_id,
            ws.send,
            max_size=self._outbox_size,
            put_timeout=self._send_timeout,
        )
        await outbox.start()

        async def send(envelope: Envelope) -> None:
            await outbox.put(envelope.to_wire())

        heartbeat = Heartbeat(send, self._heartbeat_interval)

        try:
            await send(create_client_info(self.agent_id))
            heartbeat.start()

            async for raw in ws:
                await self.handle_message(raw, send)
        finally:
            await heartbeat.stop()
            await self._cancel_transfers()
            await outbox.stop()
            self._ws = None
            self.registered = False
            logger.info("Disconnected")

    async def handle_message(self, raw: str | bytes, send) -> None:
        """Route one message from the coordinator."""
        try:
            envelope = parse_envelope(raw)
        except ProtocolError as e:
            logger.warning(f"Message error: {e}")
            return

        if envelope.message_type == MessageType.CONNECTED:
            self.registered = True
            logger.info(f"Registered as: {envelope.client_id}")

        elif envelope.message_type == MessageType.PONG:
            logger.debug("pong")

        elif envelope.message_type == MessageType.DOWNLOAD_REQUEST:
            task = asyncio.create_task(
                self._executor.execute(envelope.request_id, envelope.file_name, send),
                name=f"transfer_{envelope.request_id}"
            )
            self._transfers.add(task)
            task.add_done_callback(self._transfer_done)

        else:
            logger.warning(f"Unexpected message type: {envelope.message_type.value}")

    async def stop(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._stopping = True
        if self._ws is not None:
            await self._ws.close()

    @property
    def active_transfers(self) -> int:
        return len(self._transfers)

    def _transfer_done(self, task: asyncio.Task) -> None:
        self._transfers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{task.get_name()} crashed: {task.exception()!r}")

    async def _cancel_transfers(self) -> None:
        tasks = [t for t in self._transfers if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning(f"Cancelled {len(tasks)} transfer(s) on disconnect")
        self._transfers.clear()
