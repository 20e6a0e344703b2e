"""
Relay Configuration

Environment-based settings for the coordinator, the agent and the CLI.

Environment variables (loaded from a .env file in the working directory
when present):
- FILERELAY_HOST / FILERELAY_PORT: coordinator bind address
- FILERELAY_DOWNLOAD_DIR: where reassembled files are written
- FILERELAY_SERVER_URL: WebSocket URL the agent connects to
- FILERELAY_AGENT_ID: agent identity (random if unset)
- FILERELAY_AGENT_BASE_DIR: directory the agent serves files from
- FILERELAY_CHUNK_SIZE: bytes per download_chunk
- FILERELAY_HEARTBEAT_INTERVAL: seconds between agent pings
- FILERELAY_RECONNECT_DELAY: seconds the agent waits before reconnecting
- FILERELAY_OUTBOX_SIZE: max queued outbound envelopes on the agent
- FILERELAY_SEND_TIMEOUT: seconds to wait for outbox space before giving up
- FILERELAY_LOG_LEVEL: logging level name
- FILERELAY_API_URL: base URL the CLI talks to

Usage:
    settings = settings_from_env()
    manager = TransferManager(registry, download_dir=settings.download_dir)
"""

from __future__ import annotations

import os
import secrets
import string
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from filerelay.protocol.envelope import CHUNK_SIZE


def _random_agent_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "client_" + "".join(secrets.choice(alphabet) for _ in range(6))


@dataclass
class RelaySettings:
    """
    Configuration for relay processes.

    Attributes:
        host: Coordinator bind host
        port: Coordinator bind port (HTTP API and /ws share it)
        download_dir: Root directory for reassembled files
        server_url: WebSocket endpoint for agents
        agent_id: Identity announced in client_info
        agent_base_dir: Files requested from the agent resolve under this directory
        chunk_size: Raw bytes per chunk before encoding
        heartbeat_interval: Seconds between ping envelopes
        reconnect_delay: Fixed delay before the agent reconnects
        outbox_size: Bound on queued outbound envelopes (agent side)
        send_timeout: Seconds a sender waits for outbox space
        log_level: Logging level name
        api_url: HTTP API base URL used by the CLI
    """
    host: str = "0.0.0.0"
    port: int = 8000
    download_dir: Path = field(default_factory=lambda: Path("./downloads"))
    server_url: str = "ws://localhost:8000/ws"
    agent_id: str = field(default_factory=_random_agent_id)
    agent_base_dir: Path = field(default_factory=Path.home)
    chunk_size: int = CHUNK_SIZE
    heartbeat_interval: float = 30.0
    reconnect_delay: float = 5.0
    outbox_size: int = 64
    send_timeout: float = 30.0
    log_level: str = "INFO"
    api_url: str = "http://localhost:8000"


def settings_from_env() -> RelaySettings:
    """
    Create RelaySettings from environment variables.

    Unset variables fall back to the RelaySettings defaults.
    """
    load_dotenv()

    defaults = RelaySettings()
    return RelaySettings(
        host=os.getenv("FILERELAY_HOST", defaults.host),
        port=int(os.getenv("FILERELAY_PORT", str(defaults.port))),
        download_dir=Path(os.getenv("FILERELAY_DOWNLOAD_DIR", str(defaults.download_dir))),
        server_url=os.getenv("FILERELAY_SERVER_URL", defaults.server_url),
        agent_id=os.getenv("FILERELAY_AGENT_ID", defaults.agent_id),
        agent_base_dir=Path(
            os.getenv("FILERELAY_AGENT_BASE_DIR", str(defaults.agent_base_dir))
        ).expanduser(),
        chunk_size=int(os.getenv("FILERELAY_CHUNK_SIZE", str(defaults.chunk_size))),
        heartbeat_interval=float(
            os.getenv("FILERELAY_HEARTBEAT_INTERVAL", str(defaults.heartbeat_interval))
        ),
        reconnect_delay=float(
            os.getenv("FILERELAY_RECONNECT_DELAY", str(defaults.reconnect_delay))
        ),
        outbox_size=int(os.getenv("FILERELAY_OUTBOX_SIZE", str(defaults.outbox_size))),
        send_timeout=float(os.getenv("FILERELAY_SEND_TIMEOUT", str(defaults.send_timeout))),
        log_level=os.getenv("FILERELAY_LOG_LEVEL", defaults.log_level).upper(),
        api_url=os.getenv("FILERELAY_API_URL", defaults.api_url),
    )
