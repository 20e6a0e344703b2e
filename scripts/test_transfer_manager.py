#!/usr/bin/env python3
"""
Transfer Manager Test Script

Drives the coordinator's transfer lifecycle with hand-built envelopes.

Usage:
    python scripts/test_transfer_manager.py

This script:
1. Requests files from a fake connected agent
2. Feeds chunk / complete / error envelopes
3. Verifies output files, byte counts and final status
4. Covers disconnects, late events and local I/O failures
"""

import asyncio
import json
import logging
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, ".")

from filerelay.errors import AgentNotConnectedError, TransferInProgressError
from filerelay.protocol import (
    Envelope,
    MessageType,
    create_download_chunk,
    create_download_complete,
    create_download_error,
)
from filerelay.registry import AgentRegistry
from filerelay.transfer import TransferManager, TransferStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class FakeWebSocket:
    """Server-side socket stand-in that records sent text."""

    def __init__(self, fail: bool = False):
        self.sent: list[str] = []
        self.fail = fail

    async def send_text(self, message: str) -> None:
        if self.fail:
            raise ConnectionError("socket is closed")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        pass


async def setup(download_dir: Path, agent_id: str = "c1"):
    registry = AgentRegistry()
    ws = FakeWebSocket()
    connection = await registry.add(agent_id, ws)
    return registry, ws, connection, TransferManager(registry, download_dir)


async def test_unknown_agent_sends_nothing():
    """Test requesting from an identity that is not registered."""
    logger.info("=" * 60)
    logger.info("Test: Unknown Agent")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, ws, _, manager = await setup(Path(tmp))

        try:
            await manager.request("ghost", "notes.txt")
            raise AssertionError("Expected AgentNotConnectedError")
        except AgentNotConnectedError as e:
            assert str(e) == "Client ghost not connected"
            assert e.agent_id == "ghost"

        assert ws.sent == []
        assert manager.transfer_count == 0

    logger.info("Rejected without sending ✓")


async def test_request_sends_download_request():
    """Test a request is registered as downloading and reaches the agent."""
    logger.info("=" * 60)
    logger.info("Test: Request")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, ws, _, manager = await setup(Path(tmp))

        request_id = await manager.request("c1", "notes.txt")

        assert len(ws.sent) == 1
        wire = json.loads(ws.sent[0])
        assert wire == {"type": "download_request", "requestId": request_id, "fileName": "notes.txt"}

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.DOWNLOADING
        assert status.started_at is not None
        assert status.completed_at is None
        assert status.bytes_received == 0

    logger.info(f"Request {request_id} sent ✓")


async def test_send_failure_discards_request():
    """Test a request whose download_request cannot be delivered."""
    logger.info("=" * 60)
    logger.info("Test: Send Failure")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        registry = AgentRegistry()
        await registry.add("c1", FakeWebSocket(fail=True))
        manager = TransferManager(registry, tmp)

        try:
            await manager.request("c1", "notes.txt")
            raise AssertionError("Expected AgentNotConnectedError")
        except AgentNotConnectedError:
            pass

        assert manager.transfer_count == 0

    logger.info("Undeliverable request discarded ✓")


async def test_chunks_reassembled_in_order():
    """Test chunks are appended and counted, then completed."""
    logger.info("=" * 60)
    logger.info("Test: Reassembly")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        request_id = await manager.request("c1", "notes.txt")

        parts = [b"hello ", b"relay ", b"world"]
        for i, part in enumerate(parts):
            await manager.handle_chunk(
                create_download_chunk(request_id, part, i, len(parts)), agent_id="c1"
            )
            assert manager.get_status(request_id).bytes_received == sum(len(p) for p in parts[:i + 1])

        await manager.handle_complete(create_download_complete(request_id), agent_id="c1")

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.COMPLETED
        assert status.bytes_received == 17
        assert status.completed_at is not None
        assert status.file_path == str(Path(tmp).resolve() / "c1_notes.txt")
        assert Path(status.file_path).read_bytes() == b"hello relay world"
        assert manager.active_count == 0

    logger.info("File reassembled ✓")


async def test_agent_error_fails_request():
    """Test download_error marks the request failed with the agent's reason."""
    logger.info("=" * 60)
    logger.info("Test: Agent Error")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        request_id = await manager.request("c1", "missing.txt")

        await manager.handle_error(
            create_download_error(request_id, "file not found: missing.txt"), agent_id="c1"
        )

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.FAILED
        assert "not found" in status.error
        assert status.completed_at is not None

    logger.info("Agent error recorded ✓")


async def test_unknown_request_is_ignored():
    """Test events and lookups for an unknown request id."""
    logger.info("=" * 60)
    logger.info("Test: Unknown Request")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))

        assert manager.get_status("nope") is None
        await manager.handle_chunk(create_download_chunk("nope", b"data", 0, 1), agent_id="c1")
        await manager.handle_complete(create_download_complete("nope"), agent_id="c1")
        await manager.handle_error(create_download_error("nope", "boom"), agent_id="c1")

        assert manager.get_status("nope") is None
        assert manager.transfer_count == 0
        assert list(Path(tmp).iterdir()) == []

    logger.info("Unknown request ignored ✓")


async def test_terminal_state_discards_late_events():
    """Test nothing changes once a request is completed or failed."""
    logger.info("=" * 60)
    logger.info("Test: Terminal Guard")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        request_id = await manager.request("c1", "notes.txt")

        await manager.handle_chunk(create_download_chunk(request_id, b"abc", 0, 1), agent_id="c1")
        await manager.handle_complete(create_download_complete(request_id), agent_id="c1")

        await manager.handle_chunk(create_download_chunk(request_id, b"late", 1, 2), agent_id="c1")
        await manager.handle_error(create_download_error(request_id, "too late"), agent_id="c1")
        await manager.handle_complete(create_download_complete(request_id), agent_id="c1")

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.COMPLETED
        assert status.bytes_received == 3
        assert status.error is None
        assert Path(status.file_path).read_bytes() == b"abc"

    logger.info("Late events discarded ✓")


async def test_wrong_agent_is_ignored():
    """Test events from another agent do not touch the request."""
    logger.info("=" * 60)
    logger.info("Test: Wrong Agent")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        registry, _, _, manager = await setup(Path(tmp))
        await registry.add("c2", FakeWebSocket())
        request_id = await manager.request("c1", "notes.txt")

        await manager.handle_chunk(create_download_chunk(request_id, b"evil", 0, 1), agent_id="c2")
        await manager.handle_complete(create_download_complete(request_id), agent_id="c2")

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.DOWNLOADING
        assert status.bytes_received == 0

    logger.info("Foreign events dropped ✓")


async def test_invalid_chunk_fails_request():
    """Test a chunk that is not valid base64."""
    logger.info("=" * 60)
    logger.info("Test: Invalid Chunk")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        request_id = await manager.request("c1", "notes.txt")

        bad = Envelope(
            message_type=MessageType.DOWNLOAD_CHUNK,
            request_id=request_id,
            chunk="@@not-base64@@",
            chunk_index=0,
            total_chunks=1,
        )
        await manager.handle_chunk(bad, agent_id="c1")

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.FAILED
        assert status.error.startswith("Invalid chunk encoding")

    logger.info("Bad chunk failed the request ✓")


async def test_sink_failure_fails_request():
    """Test a local write failure marks the request failed."""
    logger.info("=" * 60)
    logger.info("Test: Sink Failure")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        # A regular file where the download directory should be
        blocked = Path(tmp) / "blocked"
        blocked.write_text("not a directory")

        _, _, _, manager = await setup(blocked)
        request_id = await manager.request("c1", "notes.txt")
        await manager.handle_chunk(create_download_chunk(request_id, b"abc", 0, 1), agent_id="c1")

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.FAILED
        assert status.bytes_received == 0
        assert status.error

    logger.info(f"Write failure recorded: {status.error} ✓")


async def test_empty_file_completes():
    """Test download_complete with no chunks produces an empty file."""
    logger.info("=" * 60)
    logger.info("Test: Empty File")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        request_id = await manager.request("c1", "empty.txt")

        await manager.handle_complete(create_download_complete(request_id), agent_id="c1")

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.COMPLETED
        assert status.bytes_received == 0
        assert Path(status.file_path).read_bytes() == b""

    logger.info("Empty file written ✓")


async def test_disconnect_fails_active_transfers():
    """Test connection loss fails only that connection's active transfers."""
    logger.info("=" * 60)
    logger.info("Test: Disconnect")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        registry, _, connection, manager = await setup(Path(tmp))
        other = await registry.add("c2", FakeWebSocket())

        done_id = await manager.request("c1", "done.txt")
        await manager.handle_complete(create_download_complete(done_id), agent_id="c1")
        active_id = await manager.request("c1", "big.bin")
        await manager.handle_chunk(create_download_chunk(active_id, b"part", 0, 9), agent_id="c1")
        other_id = await manager.request("c2", "other.txt")

        failed = await manager.fail_connection_transfers(connection.conn_id)
        assert failed == 1

        assert manager.get_status(done_id).status == TransferStatus.COMPLETED
        active = manager.get_status(active_id)
        assert active.status == TransferStatus.FAILED
        assert active.error == "agent disconnected"
        assert active.bytes_received == 4
        assert manager.get_status(other_id).status == TransferStatus.DOWNLOADING

        assert await manager.fail_connection_transfers(connection.conn_id) == 0
        assert await manager.fail_connection_transfers(other.conn_id) == 1

    logger.info("Disconnected transfers failed ✓")


async def test_output_path_flattens_separators():
    """Test nested names map to a single file in the download directory."""
    logger.info("=" * 60)
    logger.info("Test: Output Path")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))

        path = manager.output_path("c1", "docs/2024\\report.txt")
        assert path.parent == manager.download_dir
        assert path.name == "c1_docs_2024_report.txt"

        request_id = await manager.request("c1", "../escape.txt")
        await manager.handle_chunk(create_download_chunk(request_id, b"x", 0, 1), agent_id="c1")
        assert Path(manager.get_status(request_id).file_path).parent == manager.download_dir

    logger.info("Paths stay inside the download directory ✓")


async def test_close_fails_active():
    """Test shutdown fails every transfer still in flight."""
    logger.info("=" * 60)
    logger.info("Test: Close")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        request_id = await manager.request("c1", "notes.txt")
        await manager.handle_chunk(create_download_chunk(request_id, b"abc", 0, 2), agent_id="c1")

        await manager.close()

        status = manager.get_status(request_id)
        assert status.status == TransferStatus.FAILED
        assert status.error == "coordinator shutting down"
        assert [t.request_id for t in manager.list()] == [request_id]

    logger.info("Shutdown handled ✓")


async def test_concurrent_requests_are_independent():
    """Test interleaved chunks for two requests land in their own files."""
    logger.info("=" * 60)
    logger.info("Test: Concurrent Requests")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, _, _, manager = await setup(Path(tmp))
        first = await manager.request("c1", "a.txt")
        second = await manager.request("c1", "b.txt")

        await asyncio.gather(
            manager.handle_chunk(create_download_chunk(first, b"AAA", 0, 2), agent_id="c1"),
            manager.handle_chunk(create_download_chunk(second, b"BB", 0, 1), agent_id="c1"),
        )
        await manager.handle_chunk(create_download_chunk(first, b"aa", 1, 2), agent_id="c1")
        await manager.handle_complete(create_download_complete(second), agent_id="c1")
        await manager.handle_complete(create_download_complete(first), agent_id="c1")

        assert Path(manager.get_status(first).file_path).read_bytes() == b"AAAaa"
        assert Path(manager.get_status(second).file_path).read_bytes() == b"BB"

    logger.info("Requests isolated ✓")


class GatedWebSocket(FakeWebSocket):
    """Socket whose next send blocks until released, then fails."""

    def __init__(self):
        super().__init__()
        self.armed = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send_text(self, message: str) -> None:
        if self.armed:
            self.entered.set()
            await self.release.wait()
            raise ConnectionError("socket closed during send")
        await super().send_text(message)


async def test_hostile_agent_id_stays_in_download_dir():
    """Test agent ids with separators or NUL cannot escape the download dir."""
    logger.info("=" * 60)
    logger.info("Test: Hostile Agent Id")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp, "dl")
        registry = AgentRegistry()
        manager = TransferManager(registry, root)

        for agent_id in ("../escaped", "..\\..\\win", "/abs/agent"):
            await registry.add(agent_id, FakeWebSocket())
            request_id = await manager.request(agent_id, "f.txt")
            await manager.handle_chunk(
                create_download_chunk(request_id, b"data", 0, 1), agent_id=agent_id
            )
            await manager.handle_complete(create_download_complete(request_id), agent_id=agent_id)

            status = manager.get_status(request_id)
            assert status.status == TransferStatus.COMPLETED
            assert Path(status.file_path).parent == manager.download_dir

        assert [p.name for p in Path(tmp).iterdir()] == ["dl"]
        assert sorted(p.name for p in manager.download_dir.iterdir()) == [
            ".._.._win_f.txt", ".._escaped_f.txt", "_abs_agent_f.txt"
        ]

        await registry.add("nul\x00agent", FakeWebSocket())
        request_id = await manager.request("nul\x00agent", "f.txt")
        await manager.handle_chunk(
            create_download_chunk(request_id, b"data", 0, 1), agent_id="nul\x00agent"
        )
        status = manager.get_status(request_id)
        assert status.status == TransferStatus.FAILED
        assert status.bytes_received == 0

    logger.info("Output confined to the download directory ✓")


async def test_disconnect_while_request_is_sending():
    """Test connection cleanup racing a download_request that then fails."""
    logger.info("=" * 60)
    logger.info("Test: Disconnect During Request")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        registry = AgentRegistry()
        ws = GatedWebSocket()
        connection = await registry.add("c1", ws)
        manager = TransferManager(registry, tmp)

        earlier = await manager.request("c1", "earlier.txt")

        ws.armed = True
        sending = asyncio.create_task(manager.request("c1", "later.txt"))
        await ws.entered.wait()

        cleanup = asyncio.create_task(manager.fail_connection_transfers(connection.conn_id))
        await asyncio.sleep(0.01)
        ws.release.set()

        try:
            await sending
            raise AssertionError("Expected AgentNotConnectedError")
        except AgentNotConnectedError:
            pass

        assert await cleanup == 1
        status = manager.get_status(earlier)
        assert status.status == TransferStatus.FAILED
        assert status.error == "agent disconnected"
        assert manager.transfer_count == 1

    logger.info("Cleanup skipped the withdrawn request ✓")


async def test_close_while_request_is_sending():
    """Test shutdown while a download_request is still in flight."""
    with tempfile.TemporaryDirectory() as tmp:
        registry = AgentRegistry()
        ws = GatedWebSocket()
        await registry.add("c1", ws)
        manager = TransferManager(registry, tmp)

        ws.armed = True
        sending = asyncio.create_task(manager.request("c1", "slow.txt"))
        await ws.entered.wait()

        closing = asyncio.create_task(manager.close())
        await asyncio.sleep(0.01)
        ws.release.set()

        results = await asyncio.gather(sending, closing, return_exceptions=True)
        assert isinstance(results[0], AgentNotConnectedError)
        assert results[1] is None
        assert manager.transfer_count == 0


async def test_same_output_path_rejected_while_active():
    """Test a second active request for the same output file is refused."""
    logger.info("=" * 60)
    logger.info("Test: Same Output Path")
    logger.info("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        _, ws, _, manager = await setup(Path(tmp))
        first = await manager.request("c1", "notes.txt")

        try:
            await manager.request("c1", "notes.txt")
            raise AssertionError("Expected TransferInProgressError")
        except TransferInProgressError as e:
            assert e.request_id == first

        # Names that flatten to the same file collide too
        nested = await manager.request("c1", "a/b.txt")
        try:
            await manager.request("c1", "a_b.txt")
            raise AssertionError("Expected TransferInProgressError")
        except TransferInProgressError as e:
            assert e.request_id == nested

        assert len(ws.sent) == 2

        await manager.handle_complete(create_download_complete(first), agent_id="c1")
        again = await manager.request("c1", "notes.txt")
        assert again != first

    logger.info("Concurrent writers to one file refused ✓")


async def main():
    """Run all tests."""
    logger.info("Transfer Manager Test Suite")
    logger.info("=" * 60)

    try:
        await test_unknown_agent_sends_nothing()
        await test_request_sends_download_request()
        await test_send_failure_discards_request()
        await test_chunks_reassembled_in_order()
        await test_agent_error_fails_request()
        await test_unknown_request_is_ignored()
        await test_terminal_state_discards_late_events()
        await test_wrong_agent_is_ignored()
        await test_invalid_chunk_fails_request()
        await test_sink_failure_fails_request()
        await test_empty_file_completes()
        await test_disconnect_fails_active_transfers()
        await test_output_path_flattens_separators()
        await test_close_fails_active()
        await test_concurrent_requests_are_independent()
        await test_hostile_agent_id_stays_in_download_dir()
        await test_disconnect_while_request_is_sending()
        await test_close_while_request_is_sending()
        await test_same_output_path_rejected_while_active()

        logger.info("")
        logger.info("=" * 60)
        logger.info("All tests passed! ✓")
        logger.info("=" * 60)

    except AssertionError as e:
        logger.error(f"Test failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
