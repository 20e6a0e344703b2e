# Protocol
# Envelope schema shared by the coordinator and agents

from filerelay.protocol.envelope import (
    CHUNK_SIZE,
    Envelope,
    MessageType,
    parse_envelope,
    encode_chunk,
    decode_chunk,
    total_chunks,
    create_client_info,
    create_connected,
    create_ping,
    create_pong,
    create_download_request,
    create_download_chunk,
    create_download_complete,
    create_download_error,
)

__all__ = [
    "CHUNK_SIZE",
    "Envelope",
    "MessageType",
    "parse_envelope",
    "encode_chunk",
    "decode_chunk",
    "total_chunks",
    "create_client_info",
    "create_connected",
    "create_ping",
    "create_pong",
    "create_download_request",
    "create_download_chunk",
    "create_download_complete",
    "create_download_error",
]
