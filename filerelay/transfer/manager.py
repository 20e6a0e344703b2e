"""
Transfer Manager

Owns every transfer request: issues download_request envelopes,
reassembles incoming chunks into output files, and finalizes state on
download_complete / download_error or connection loss.

Chunks are appended in arrival order. The transport delivers messages
reliably and in order per connection, so there is no reordering or gap
detection here.

Each request has its own asyncio lock; all events for one request_id
are serialized on it while distinct requests proceed independently.
No admission control is applied beyond refusing a second active request
for the same output file.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from filerelay.errors import AgentNotConnectedError, TransferInProgressError
from filerelay.protocol.envelope import Envelope, create_download_request, decode_chunk
from filerelay.registry import AgentRegistry
from filerelay.transfer.request import TransferRequest, TransferStatus

logger = logging.getLogger(__name__)

# Log chunk progress every N chunks
PROGRESS_EVERY = 100


class TransferManager:
    """
    Manages the lifecycle of transfer requests.

    Output files land at <download_dir>/<agent_id>_<file_name>. The
    in-memory request map is the only index; it is lost on restart.
    """

    def __init__(self, registry: AgentRegistry, download_dir: str | Path = "./downloads"):
        """
        Initialize the transfer manager.

        Args:
            registry: Connection registry used to resolve agents
            download_dir: Root directory for reassembled files
        """
        self._registry = registry
        self._download_dir = Path(download_dir).resolve()

        # Primary index: request_id -> TransferRequest
        self._requests: dict[str, TransferRequest] = {}

        # Open output files: request_id -> aiofiles handle
        self._sinks: dict[str, Any] = {}

        # Per-request locks: request_id -> Lock
        self._locks: dict[str, asyncio.Lock] = {}

        # Connection each active request was issued over: request_id -> conn_id
        self._conn_by_request: dict[str, str] = {}

    @property
    def download_dir(self) -> Path:
        return self._download_dir

    async def request(self, agent_id: str, file_name: str) -> str:
        """
        Ask an agent for a file.

        Args:
            agent_id: Target agent identity
            file_name: File to fetch, relative to the agent's base directory

        Returns:
            The new request_id

        Raises:
            AgentNotConnectedError: If the agent has no live connection
                (nothing is sent in that case)
            TransferInProgressError: If an active request already writes
                the same output file
        """
        connection = await self._registry.get_connection(agent_id)
        if connection is None:
            raise AgentNotConnectedError(agent_id)

        # No await between this check and the insert below
        path = self.output_path(agent_id, file_name)
        for other in self._requests.values():
            if not other.is_terminal and self.output_path(other.agent_id, other.file_name) == path:
                raise TransferInProgressError(agent_id, file_name, other.request_id)

        transfer = TransferRequest(agent_id=agent_id, file_name=file_name)
        request_id = transfer.request_id
        lock = asyncio.Lock()

        # Hold the lock until DOWNLOADING so an early chunk waits for it
        async with lock:
            self._requests[request_id] = transfer
            self._locks[request_id] = lock
            self._conn_by_request[request_id] = connection.conn_id

            envelope = create_download_request(request_id, file_name)
            try:
                await connection.send(envelope.to_wire())
            except Exception as e:
                logger.error(f"Sending download request {request_id} to {agent_id} failed: {e}")
                self._requests.pop(request_id, None)
                self._locks.pop(request_id, None)
                self._conn_by_request.pop(request_id, None)
                raise AgentNotConnectedError(agent_id) from e

            transfer.transition(TransferStatus.DOWNLOADING)

        logger.info(f"Download request {request_id} sent to {agent_id} ({file_name})")
        return request_id

    async def handle_chunk(self, envelope: Envelope, agent_id: str | None = None) -> None:
        """
        Append one download_chunk to its transfer's output file.

        Args:
            envelope: A validated download_chunk envelope
            agent_id: Identity of the connection the chunk arrived on
        """
        request_id = envelope.request_id
        transfer = self._requests.get(request_id)
        if transfer is None:
            logger.error(f"Download {request_id} not found, dropping chunk")
            return

        async with self._locks[request_id]:
            if not self._accepts(transfer, agent_id, "chunk"):
                return

            try:
                data = decode_chunk(envelope.chunk)
            except ValueError as e:
                await self._fail(transfer, f"Invalid chunk encoding: {e}")
                return

            try:
                sink = self._sinks.get(request_id)
                if sink is None:
                    sink = await self._open_sink(transfer)
                await sink.write(data)
            except (OSError, ValueError) as e:
                await self._fail(transfer, str(e))
                return

            transfer.bytes_received += len(data)

        done = envelope.chunk_index + 1
        if done % PROGRESS_EVERY == 0 or done == envelope.total_chunks:
            logger.info(f"Chunk {done}/{envelope.total_chunks} for {request_id}")

    async def handle_complete(self, envelope: Envelope, agent_id: str | None = None) -> None:
        """Close the output file and mark the transfer completed."""
        request_id = envelope.request_id
        transfer = self._requests.get(request_id)
        if transfer is None:
            logger.error(f"Download {request_id} not found")
            return

        async with self._locks[request_id]:
            if not self._accepts(transfer, agent_id, "completion"):
                return

            try:
                if request_id not in self._sinks:
                    # Empty source file: no chunk ever opened a sink
                    await self._open_sink(transfer)
                await self._close_sink(request_id)
            except (OSError, ValueError) as e:
                await self._fail(transfer, str(e))
                return

            transfer.transition(TransferStatus.COMPLETED)
            self._conn_by_request.pop(request_id, None)

        logger.info(f"Download {request_id} completed: {transfer.file_path}")
        logger.info(f"Total bytes: {transfer.bytes_received}")

    async def handle_error(self, envelope: Envelope, agent_id: str | None = None) -> None:
        """Close the output file and mark the transfer failed with the agent's reason."""
        request_id = envelope.request_id
        transfer = self._requests.get(request_id)
        if transfer is None:
            logger.error(f"Download {request_id} not found")
            return

        async with self._locks[request_id]:
            if not self._accepts(transfer, agent_id, "error"):
                return
            await self._fail(transfer, envelope.error or "Unknown error")

    async def fail_connection_transfers(
        self,
        conn_id: str,
        reason: str = "agent disconnected"
    ) -> int:
        """
        Fail every active transfer issued over a connection.

        Called when the connection closes. Nothing else can arrive for
        those requests, so they are failed immediately.

        Returns:
            Number of transfers failed
        """
        request_ids = [
            rid for rid, cid in list(self._conn_by_request.items()) if cid == conn_id
        ]
        failed = 0
        for request_id in request_ids:
            if await self._fail_if_downloading(request_id, reason):
                failed += 1
        return failed

    async def close(self) -> None:
        """Fail all active transfers and release their files."""
        for request_id in list(self._requests):
            await self._fail_if_downloading(request_id, "coordinator shutting down")

    def get_status(self, request_id: str) -> TransferRequest | None:
        """Snapshot of a transfer, or None if unknown."""
        transfer = self._requests.get(request_id)
        return transfer.model_copy() if transfer else None

    def list(self) -> list[TransferRequest]:
        """Snapshots of all transfers, oldest first."""
        return [t.model_copy() for t in self._requests.values()]

    @property
    def transfer_count(self) -> int:
        return len(self._requests)

    @property
    def active_count(self) -> int:
        """Transfers not yet in a terminal state."""
        return sum(1 for t in self._requests.values() if not t.is_terminal)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _fail_if_downloading(self, request_id: str, reason: str) -> bool:
        """Fail a request unless it finished or request() discarded it meanwhile."""
        transfer = self._requests.get(request_id)
        lock = self._locks.get(request_id)
        if transfer is None or lock is None:
            return False
        async with lock:
            if self._requests.get(request_id) is not transfer:
                return False
            if transfer.status != TransferStatus.DOWNLOADING:
                return False
            await self._fail(transfer, reason)
            return True

    def _accepts(self, transfer: TransferRequest, agent_id: str | None, what: str) -> bool:
        if self._requests.get(transfer.request_id) is not transfer:
            logger.debug(f"Discarding {what} for withdrawn request {transfer.request_id}")
            return False
        if agent_id is not None and agent_id != transfer.agent_id:
            logger.warning(
                f"Dropping {what} for {transfer.request_id} from {agent_id} "
                f"(request belongs to {transfer.agent_id})"
            )
            return False
        if transfer.is_terminal:
            # Agent is not told about local failures; late events are discarded
            logger.debug(
                f"Discarding {what} for {transfer.request_id} "
                f"(already {transfer.status.value})"
            )
            return False
        return True

    def output_path(self, agent_id: str, file_name: str) -> Path:
        """
        Deterministic output path for an agent's file.

        Both parts come from the network, so separators are flattened in
        each and the result is always a direct child of download_dir.
        """
        name = f"{_flatten(agent_id)}_{_flatten(file_name)}"
        return self._download_dir / name

    async def _open_sink(self, transfer: TransferRequest) -> Any:
        path = self.output_path(transfer.agent_id, transfer.file_name)
        if path.parent != self._download_dir or "\x00" in path.name:
            raise ValueError(f"Refusing output path outside {self._download_dir}: {path}")

        await aiofiles.os.makedirs(self._download_dir, exist_ok=True)
        sink = await aiofiles.open(path, "wb")
        self._sinks[transfer.request_id] = sink
        transfer.file_path = str(path)
        return sink

    async def _close_sink(self, request_id: str) -> None:
        """Close and forget the sink. The reference is dropped even if close fails."""
        sink = self._sinks.pop(request_id, None)
        if sink is not None:
            await sink.close()

    async def _fail(self, transfer: TransferRequest, error: str) -> None:
        try:
            await self._close_sink(transfer.request_id)
        except OSError as e:
            logger.warning(f"Closing output for {transfer.request_id} failed: {e}")

        transfer.fail(error)
        self._conn_by_request.pop(transfer.request_id, None)
        logger.error(f"Download {transfer.request_id} failed: {error}")


def _flatten(part: str) -> str:
    return part.replace("/", "_").replace("\\", "_")
