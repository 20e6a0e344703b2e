# filerelay - chunked file transfer from remote agents to a central coordinator
# Agents hold long-lived WebSocket connections and stream requested files back

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from filerelay.errors import (
    RelayError,
    AgentNotConnectedError,
    TransferFileNotFoundError,
    ProtocolError,
    InvalidTransitionError,
    TransferInProgressError,
)
from filerelay.protocol import CHUNK_SIZE, Envelope, MessageType, parse_envelope
from filerelay.registry import AgentConnection, AgentRegistry
from filerelay.transfer import TransferManager, TransferRequest, TransferStatus

__all__ = [
    "__version__",
    # Errors
    "RelayError",
    "AgentNotConnectedError",
    "TransferFileNotFoundError",
    "ProtocolError",
    "InvalidTransitionError",
    "TransferInProgressError",
    # Protocol
    "CHUNK_SIZE",
    "Envelope",
    "MessageType",
    "parse_envelope",
    # Coordinator core
    "AgentConnection",
    "AgentRegistry",
    "TransferManager",
    "TransferRequest",
    "TransferStatus",
]
