"""
Agent Connection Model

Represents one live agent connection held by the coordinator.
Created at handshake and threaded through every handler for that
connection, so identity never has to be recovered from the socket.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentConnection(BaseModel):
    """
    The coordinator's view of a connected agent.
    """

    # === Identity ===
    agent_id: str = Field(
        ...,
        description="Identity the agent announced in client_info"
    )
    conn_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Unique identifier of this transport (changes on reconnect)"
    )

    # === Transport ===
    websocket: Any = Field(
        default=None,
        exclude=True,
        repr=False,
        description="Live transport handle (anything with send_text/close)"
    )

    # === Presence ===
    connected_at: datetime = Field(
        default_factory=_utcnow,
        description="When the handshake completed"
    )
    last_heartbeat: datetime = Field(
        default_factory=_utcnow,
        description="Last ping received from the agent"
    )

    def touch(self) -> None:
        """Update last_heartbeat to current time."""
        self.last_heartbeat = _utcnow()

    async def send(self, message: str) -> None:
        """Send raw text over this connection."""
        await self.websocket.send_text(message)

    def to_public_dict(self) -> dict:
        """Public view used by the HTTP API."""
        return {
            "id": self.agent_id,
            "connectedAt": self.connected_at.isoformat(),
            "lastPing": self.last_heartbeat.isoformat(),
        }

    class Config:
        # websocket is an arbitrary transport object
        arbitrary_types_allowed = True
