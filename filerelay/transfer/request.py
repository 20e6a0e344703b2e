"""
Transfer Request Model

Tracks one file transfer from an agent to the coordinator.

Transfer Lifecycle:
1. PENDING - Request created, download_request not yet delivered
2. DOWNLOADING - download_request sent, chunks may arrive
3. COMPLETED - Agent sent download_complete, sink closed
4. FAILED - Agent sent download_error, local I/O failed, or the connection dropped

COMPLETED and FAILED are terminal.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from filerelay.errors import InvalidTransitionError


class TransferStatus(str, Enum):
    """Transfer lifecycle states."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed forward moves; terminal states have none
TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({TransferStatus.DOWNLOADING}),
    TransferStatus.DOWNLOADING: frozenset({TransferStatus.COMPLETED, TransferStatus.FAILED}),
    TransferStatus.COMPLETED: frozenset(),
    TransferStatus.FAILED: frozenset(),
}


class TransferRequest(BaseModel):
    """
    State of a single transfer request.

    Owned by the TransferManager; everything else sees copies.
    """

    # === Identity ===
    request_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Globally unique request identifier"
    )
    agent_id: str = Field(
        ...,
        description="Agent the file is requested from"
    )
    file_name: str = Field(
        ...,
        description="File name as requested, relative to the agent's base directory"
    )

    # === Progress ===
    status: TransferStatus = Field(
        default=TransferStatus.PENDING,
        description="Current lifecycle state"
    )
    bytes_received: int = Field(
        default=0,
        ge=0,
        description="Sum of decoded chunk sizes accepted so far"
    )
    file_path: str | None = Field(
        default=None,
        description="Output path, set when the first chunk arrives"
    )
    error: str | None = Field(
        default=None,
        description="Failure reason (failed only)"
    )

    # === Timestamps ===
    started_at: datetime | None = Field(
        default=None,
        description="When download_request was sent"
    )
    completed_at: datetime | None = Field(
        default=None,
        description="When the transfer reached a terminal state"
    )

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.status]

    def transition(self, target: TransferStatus) -> None:
        """
        Move to `target`, stamping the matching timestamp.

        Raises:
            InvalidTransitionError: If the move is not a forward edge
        """
        if target not in TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.request_id, self.status.value, target.value)

        self.status = target
        now = datetime.now(timezone.utc)
        if target == TransferStatus.DOWNLOADING:
            self.started_at = now
        elif target in (TransferStatus.COMPLETED, TransferStatus.FAILED):
            self.completed_at = now

    def fail(self, error: str) -> None:
        """Transition to FAILED and record the reason."""
        self.transition(TransferStatus.FAILED)
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "requestId": self.request_id,
            "clientId": self.agent_id,
            "fileName": self.file_name,
            "status": self.status.value,
            "bytesReceived": self.bytes_received,
            "filePath": self.file_path,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }
