"""
WebSocket Handler

The coordinator side of every agent connection.

Supported message types (agent -> coordinator):
- client_info -> connected (must be the first message)
- ping -> pong
- download_chunk / download_complete / download_error -> TransferManager

Malformed or unexpected envelopes are logged and dropped; they never
end the connection. When the transport closes, the agent is removed
from the registry and its in-flight transfers are failed.
"""

from __future__ import annotations

import logging

from fastapi import WebSocket, WebSocketDisconnect

from filerelay.errors import ProtocolError
from filerelay.protocol.envelope import (
    Envelope,
    MessageType,
    create_connected,
    create_pong,
    parse_envelope,
)
from filerelay.registry import AgentConnection, AgentRegistry
from filerelay.transfer import TransferManager

logger = logging.getLogger(__name__)


class ConnectionHandler:
    """
    Handles agent WebSocket connections and message dispatch.

    One instance serves all connections; per-connection state lives in
    the AgentConnection created at handshake.
    """

    def __init__(self, registry: AgentRegistry, transfers: TransferManager):
        """
        Initialize the handler.

        Args:
            registry: Connection registry for handshake/heartbeat/removal
            transfers: Transfer manager receiving chunk/complete/error events
        """
        self._registry = registry
        self._transfers = transfers

        self._handlers = {
            MessageType.PING: self._handle_ping,
            MessageType.DOWNLOAD_CHUNK: self._handle_chunk,
            MessageType.DOWNLOAD_COMPLETE: self._handle_complete,
            MessageType.DOWNLOAD_ERROR: self._handle_error,
        }

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Handle a WebSocket connection lifecycle.

        The first message must be client_info. Afterwards messages are
        processed one at a time in arrival order.

        Args:
            websocket: The WebSocket connection
        """
        await websocket.accept()

        connection: AgentConnection | None = None

        try:
            connection = await self._handshake(websocket)
            if connection is None:
                return

            # Main message loop
            while True:
                raw = await websocket.receive_text()
                await self.dispatch(connection, raw)

        except WebSocketDisconnect:
            logger.info(
                f"WebSocket disconnected: {connection.agent_id if connection else 'unregistered'}"
            )

        except Exception as e:
            logger.error(f"WebSocket error: {e}")

        finally:
            if connection:
                await self._registry.remove(connection.agent_id, websocket)
                failed = await self._transfers.fail_connection_transfers(connection.conn_id)
                if failed:
                    logger.warning(
                        f"Failed {failed} in-flight transfer(s) from {connection.agent_id} "
                        f"after disconnect"
                    )

    async def _handshake(self, websocket: WebSocket) -> AgentConnection | None:
        """
        Wait for client_info and register the agent.

        Returns:
            The connection context, or None if the handshake was refused
        """
        raw = await websocket.receive_text()
        try:
            envelope = parse_envelope(raw)
        except ProtocolError as e:
            logger.warning(f"Rejected handshake: {e}")
            await websocket.close(code=1002, reason="Invalid handshake")
            return None

        if envelope.message_type != MessageType.CLIENT_INFO:
            logger.warning(f"First message was {envelope.message_type.value}, expected client_info")
            await websocket.close(code=1002, reason="client_info required")
            return None

        connection = await self._registry.add(envelope.client_id, websocket)
        await connection.send(create_connected(connection.agent_id).to_wire())
        return connection

    async def dispatch(self, connection: AgentConnection, raw: str) -> None:
        """
        Parse one received message and route it.

        Args:
            connection: Context of the connection the message arrived on
            raw: Message text as received
        """
        try:
            envelope = parse_envelope(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping message from {connection.agent_id}: {e}")
            return

        handler = self._handlers.get(envelope.message_type)
        if handler:
            await handler(connection, envelope)
        else:
            logger.warning(
                f"Unexpected message type from {connection.agent_id}: "
                f"{envelope.message_type.value}"
            )

    async def _handle_ping(self, connection: AgentConnection, envelope: Envelope) -> None:
        """Handle ping: refresh liveness and reply with pong."""
        await self._registry.update_heartbeat(connection.agent_id)
        await connection.send(create_pong().to_wire())

    async def _handle_chunk(self, connection: AgentConnection, envelope: Envelope) -> None:
        await self._transfers.handle_chunk(envelope, agent_id=connection.agent_id)

    async def _handle_complete(self, connection: AgentConnection, envelope: Envelope) -> None:
        await self._transfers.handle_complete(envelope, agent_id=connection.agent_id)

    async def _handle_error(self, connection: AgentConnection, envelope: Envelope) -> None:
        await self._transfers.handle_error(envelope, agent_id=connection.agent_id)
