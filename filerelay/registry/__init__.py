# Connection Registry
# Tracks live agent connections: handshake, heartbeat bookkeeping, removal

from filerelay.registry.connection import AgentConnection
from filerelay.registry.registry import AgentRegistry

__all__ = ["AgentConnection", "AgentRegistry"]
