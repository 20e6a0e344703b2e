# Agent
# Connects outward to the coordinator and streams requested files back

from filerelay.agent.executor import TransferExecutor
from filerelay.agent.heartbeat import Heartbeat
from filerelay.agent.outbox import Outbox, OutboxClosedError
from filerelay.agent.client import AgentClient

__all__ = [
    "TransferExecutor",
    "Heartbeat",
    "Outbox",
    "OutboxClosedError",
    "AgentClient",
]
