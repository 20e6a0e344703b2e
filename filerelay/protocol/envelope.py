"""
Relay Message Envelope Model

Every message exchanged between the coordinator and an agent is one flat
JSON object whose "type" field selects how the remaining fields are read.

Wire shape (camelCase, only populated fields are sent):
    {"type": "download_chunk", "requestId": "...", "chunk": "<base64>",
     "chunkIndex": 0, "totalChunks": 4}

Each type declares the fields it requires. Envelopes are validated against
that table as soon as they are received, so handlers never have to check
for optional-field presence themselves.

There is no version field: both ends are assumed to speak the same schema.
"""

import base64
from enum import Enum

from pydantic import BaseModel, Field, ValidationError, model_validator

from filerelay.errors import ProtocolError

# Raw bytes carried by one download_chunk before base64 encoding
CHUNK_SIZE = 64 * 1024


class MessageType(str, Enum):
    """
    Relay message types.

    Handshake:
    - client_info -> agent announces its identity
    - connected -> coordinator confirms registration

    Liveness:
    - ping -> agent heartbeat
    - pong -> coordinator reply

    Transfer:
    - download_request -> coordinator asks an agent for a file
    - download_chunk -> one encoded slice of the file
    - download_complete -> all chunks sent
    - download_error -> agent could not finish the transfer
    """
    CLIENT_INFO = "client_info"
    CONNECTED = "connected"
    PING = "ping"
    PONG = "pong"
    DOWNLOAD_REQUEST = "download_request"
    DOWNLOAD_CHUNK = "download_chunk"
    DOWNLOAD_COMPLETE = "download_complete"
    DOWNLOAD_ERROR = "download_error"


# Attribute names that must be present (and non-empty) for each type
REQUIRED_FIELDS: dict[MessageType, tuple[str, ...]] = {
    MessageType.CLIENT_INFO: ("client_id",),
    MessageType.CONNECTED: ("client_id",),
    MessageType.PING: (),
    MessageType.PONG: (),
    MessageType.DOWNLOAD_REQUEST: ("request_id", "file_name"),
    MessageType.DOWNLOAD_CHUNK: ("request_id", "chunk", "chunk_index", "total_chunks"),
    MessageType.DOWNLOAD_COMPLETE: ("request_id",),
    MessageType.DOWNLOAD_ERROR: ("request_id", "error"),
}


class Envelope(BaseModel):
    """
    The envelope for all relay communication.

    Python attributes are snake_case; the wire uses the camelCase aliases.
    """

    message_type: MessageType = Field(
        ...,
        alias="type",
        description="Discriminates how the other fields are interpreted"
    )
    request_id: str | None = Field(
        default=None,
        alias="requestId",
        description="Transfer request this message belongs to"
    )
    file_name: str | None = Field(
        default=None,
        alias="fileName",
        description="File requested from the agent, relative to its base directory"
    )
    client_id: str | None = Field(
        default=None,
        alias="clientId",
        description="Agent identity (handshake only)"
    )
    chunk: str | None = Field(
        default=None,
        description="Base64-encoded slice of file content"
    )
    chunk_index: int | None = Field(
        default=None,
        alias="chunkIndex",
        ge=0,
        description="Zero-based position of this chunk"
    )
    total_chunks: int | None = Field(
        default=None,
        alias="totalChunks",
        ge=0,
        description="Number of chunks the agent will send for this request"
    )
    error: str | None = Field(
        default=None,
        description="Human-readable failure reason (download_error only)"
    )

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def _check_required_fields(self) -> "Envelope":
        missing = [
            name for name in REQUIRED_FIELDS[self.message_type]
            if getattr(self, name) in (None, "")
        ]
        if missing:
            wire_names = [type(self).model_fields[name].alias or name for name in missing]
            raise ValueError(
                f"{self.message_type.value} requires {', '.join(wire_names)}"
            )
        return self

    def to_wire(self) -> str:
        """Serialize to the JSON text sent over the connection."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


def parse_envelope(raw: str | bytes) -> Envelope:
    """
    Parse and validate a received message.

    Raises:
        ProtocolError: If the text is not JSON, the type is unknown,
            or required fields are missing or mistyped
    """
    try:
        return Envelope.model_validate_json(raw)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'envelope'}: {err['msg']}"
            for err in e.errors()
        )
        raise ProtocolError(f"Invalid envelope: {details}") from e


# === Chunk encoding ===

def encode_chunk(data: bytes) -> str:
    """Encode raw bytes into the transport-safe chunk text."""
    return base64.b64encode(data).decode("ascii")


def decode_chunk(text: str) -> bytes:
    """
    Decode chunk text back into raw bytes.

    Raises:
        ValueError: If the text is not valid base64
    """
    return base64.b64decode(text, validate=True)


def total_chunks(size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Number of chunks needed for a file of `size` bytes."""
    return (size + chunk_size - 1) // chunk_size


# === Convenience constructors ===

def create_client_info(client_id: str) -> Envelope:
    """Agent handshake announcing its identity."""
    return Envelope(message_type=MessageType.CLIENT_INFO, client_id=client_id)


def create_connected(client_id: str) -> Envelope:
    """
    Coordinator response confirming registration.
    """
    return Envelope(message_type=MessageType.CONNECTED, client_id=client_id)


def create_ping() -> Envelope:
    return Envelope(message_type=MessageType.PING)


def create_pong() -> Envelope:
    return Envelope(message_type=MessageType.PONG)


def create_download_request(request_id: str, file_name: str) -> Envelope:
    """
    Create a download request.

    Sent by the coordinator; the agent answers with chunks followed by
    download_complete, or with download_error.
    """
    return Envelope(
        message_type=MessageType.DOWNLOAD_REQUEST,
        request_id=request_id,
        file_name=file_name
    )


def create_download_chunk(
    request_id: str,
    data: bytes,
    chunk_index: int,
    total_chunks: int
) -> Envelope:
    """
    Create a chunk message.

    `data` is the raw slice; it is base64-encoded into the envelope.
    """
    return Envelope(
        message_type=MessageType.DOWNLOAD_CHUNK,
        request_id=request_id,
        chunk=encode_chunk(data),
        chunk_index=chunk_index,
        total_chunks=total_chunks
    )


def create_download_complete(request_id: str) -> Envelope:
    return Envelope(message_type=MessageType.DOWNLOAD_COMPLETE, request_id=request_id)


def create_download_error(request_id: str, error: str) -> Envelope:
    """
    Create a transfer failure message.

    This is the only way agent-side failures reach the coordinator.
    """
    return Envelope(
        message_type=MessageType.DOWNLOAD_ERROR,
        request_id=request_id,
        error=error
    )
