"""
Transfer Executor

Agent side of a transfer: resolves the requested file under the agent's
base directory and streams it back as download_chunk envelopes followed
by download_complete.

Every failure (missing file, read error, dead connection) ends the
transfer with a download_error; that envelope is the only way agent
errors reach the coordinator.

Reads are strictly sequential per transfer. Backpressure comes from the
send callable (the agent's bounded Outbox).
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable

import aiofiles
import aiofiles.os

from filerelay.errors import TransferFileNotFoundError
from filerelay.protocol.envelope import (
    CHUNK_SIZE,
    Envelope,
    create_download_chunk,
    create_download_complete,
    create_download_error,
    total_chunks,
)

logger = logging.getLogger(__name__)

SendFn = Callable[[Envelope], Awaitable[None]]

# Log progress every N chunks
PROGRESS_EVERY = 100


class TransferExecutor:
    """
    Executes download requests against a base directory.
    """

    def __init__(self, base_dir: str | Path, chunk_size: int = CHUNK_SIZE):
        """
        Initialize the executor.

        Args:
            base_dir: Requested file names resolve under this directory
            chunk_size: Raw bytes per chunk
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._base_dir = Path(base_dir).expanduser().resolve()
        self._chunk_size = chunk_size

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    async def resolve(self, file_name: str) -> Path:
        """
        Map a requested name to a regular file under the base directory.

        Raises:
            TransferFileNotFoundError: If the file is missing, is not a
                regular file, lies outside the base directory, or the name
                cannot be resolved at all (e.g. it contains a NUL byte)
        """
        try:
            path = (self._base_dir / file_name).resolve()
            found = path.is_relative_to(self._base_dir) and await aiofiles.os.path.isfile(path)
        except (OSError, ValueError) as e:
            logger.debug(f"Cannot resolve {file_name!r}: {e}")
            found = False
        if not found:
            raise TransferFileNotFoundError(file_name)
        return path

    async def execute(self, request_id: str, file_name: str, send: SendFn) -> bool:
        """
        Stream one file to the coordinator.

        Args:
            request_id: Request being served
            file_name: Requested file, relative to the base directory
            send: Coroutine that delivers an envelope to the coordinator

        Returns:
            True if download_complete was sent, False if the transfer failed
        """
        logger.info(f"Download requested: {file_name} ({request_id})")

        try:
            path = await self.resolve(file_name)
        except TransferFileNotFoundError as e:
            logger.warning(f"Download {request_id}: {e}")
            await self._report_error(send, request_id, str(e))
            return False

        try:
            file_size = (await aiofiles.os.stat(path)).st_size
            chunk_count = total_chunks(file_size, self._chunk_size)

            logger.info(f"File: {path}")
            logger.info(f"Size: {file_size:,} bytes")
            logger.info(f"Chunks: {chunk_count}")

            chunk_index = 0
            bytes_read = 0

            async with aiofiles.open(path, "rb") as f:
                while True:
                    data = await f.read(self._chunk_size)
                    if not data:
                        break

                    await send(create_download_chunk(request_id, data, chunk_index, chunk_count))

                    bytes_read += len(data)
                    chunk_index += 1

                    if chunk_index % PROGRESS_EVERY == 0:
                        logger.info(
                            f"Progress: {chunk_index}/{chunk_count} "
                            f"({bytes_read:,}/{file_size:,} bytes)"
                        )

            await send(create_download_complete(request_id))

        except Exception as e:
            logger.error(f"Download {request_id} aborted: {e}")
            await self._report_error(send, request_id, str(e) or type(e).__name__)
            return False

        logger.info(f"Transfer complete: {chunk_index} chunks ({bytes_read:,} bytes)")
        return True

    async def _report_error(self, send: SendFn, request_id: str, error: str) -> None:
        try:
            await send(create_download_error(request_id, error))
        except Exception as e:
            # Connection is gone; the coordinator fails the transfer on disconnect
            logger.error(f"Could not report failure of {request_id}: {e}")
