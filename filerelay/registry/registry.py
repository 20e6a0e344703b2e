"""
Connection Registry

In-memory registry of live agent connections keyed by agent identity.

Each identity maps to at most one transport at a time. Registering an
identity again replaces the previous entry and closes its socket; the
registry does not try to tell a reconnect from an impersonation.

Liveness is bookkeeping only: heartbeats refresh last_heartbeat, but
entries are removed solely when their transport closes or errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from filerelay.registry.connection import AgentConnection

logger = logging.getLogger(__name__)


class AgentRegistry:
    """
    Tracks connected agents and their transport handles.

    Safe for concurrent coroutines using an asyncio lock.
    Read operations return snapshots, never the live records.
    """

    def __init__(self):
        # agent_id -> AgentConnection
        self._connections: dict[str, AgentConnection] = {}

        self._lock = asyncio.Lock()

    async def add(self, agent_id: str, websocket: Any) -> AgentConnection:
        """
        Register a connection, overwriting any existing entry for the identity.

        Args:
            agent_id: Identity announced by the agent
            websocket: Transport handle for the connection

        Returns:
            The new connection context for this transport
        """
        connection = AgentConnection(agent_id=agent_id, websocket=websocket)

        async with self._lock:
            existing = self._connections.get(agent_id)
            if existing and existing.websocket is not websocket:
                # Agent reconnecting - close old connection
                try:
                    await existing.websocket.close(code=1000, reason="Agent reconnected")
                except Exception as e:
                    logger.debug(f"Closing replaced connection for {agent_id} failed: {e}")

            self._connections[agent_id] = connection
            total = len(self._connections)

        logger.info(f"Client {agent_id} connected (total: {total})")
        return connection.model_copy()

    async def remove(self, agent_id: str, websocket: Any = None) -> AgentConnection | None:
        """
        Remove a connection. Idempotent on unknown identities.

        Args:
            agent_id: Identity to remove
            websocket: When given, only remove the entry if it still belongs
                to this transport (a replaced connection closing late must
                not evict its successor)

        Returns:
            The removed connection, or None if nothing was removed
        """
        async with self._lock:
            existing = self._connections.get(agent_id)
            if existing is None:
                return None
            if websocket is not None and existing.websocket is not websocket:
                return None
            del self._connections[agent_id]
            total = len(self._connections)

        logger.info(f"Client {agent_id} disconnected (total: {total})")
        return existing

    async def get(self, agent_id: str) -> Any | None:
        """Get the live transport handle for an agent."""
        async with self._lock:
            connection = self._connections.get(agent_id)
            return connection.websocket if connection else None

    async def get_connection(self, agent_id: str) -> AgentConnection | None:
        """Get a snapshot of the connection context for an agent."""
        async with self._lock:
            connection = self._connections.get(agent_id)
            return connection.model_copy() if connection else None

    async def list(self) -> list[AgentConnection]:
        """Snapshot of all registered connections."""
        async with self._lock:
            return [c.model_copy() for c in self._connections.values()]

    async def ids(self) -> list[str]:
        """Identities of all registered agents."""
        async with self._lock:
            return list(self._connections.keys())

    async def update_heartbeat(self, agent_id: str) -> bool:
        """
        Refresh last_heartbeat for an agent.

        Returns:
            True if the agent was found and updated, False otherwise
        """
        async with self._lock:
            connection = self._connections.get(agent_id)
            if connection:
                connection.touch()
                return True
            return False

    async def has(self, agent_id: str) -> bool:
        async with self._lock:
            return agent_id in self._connections

    @property
    def connection_count(self) -> int:
        """Number of registered connections."""
        return len(self._connections)
