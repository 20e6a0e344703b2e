"""
Coordinator Application

FastAPI application exposing the agent WebSocket endpoint (/ws) and the
HTTP control API. This is the main entry point for running the coordinator.

Configured via environment variables (see filerelay.config):
- FILERELAY_HOST / FILERELAY_PORT: bind address
- FILERELAY_DOWNLOAD_DIR: where reassembled files are written
- FILERELAY_LOG_LEVEL: logging level

Environment variables can be loaded from a .env file in the project root.

Run with:
    filerelay-server
    # or
    uvicorn filerelay.transport.app:app --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket

# Load environment variables from .env file
load_dotenv()

from filerelay import __version__
from filerelay.api import router
from filerelay.config import RelaySettings, settings_from_env
from filerelay.registry import AgentRegistry
from filerelay.transfer import TransferManager
from filerelay.transport.handler import ConnectionHandler

# Configure logging
logging.basicConfig(
    level=os.getenv("FILERELAY_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(settings: RelaySettings | None = None) -> FastAPI:
    """
    Create the coordinator app.

    Components are built in the lifespan and stored on app.state so the
    HTTP routes and the WebSocket endpoint share them.

    Args:
        settings: Explicit settings; read from the environment when None
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Initializes and tears down all coordinator components.
        """
        config = settings or settings_from_env()

        # Startup
        logger.info("Starting coordinator...")

        registry = AgentRegistry()
        transfers = TransferManager(registry, download_dir=config.download_dir)

        app.state.settings = config
        app.state.registry = registry
        app.state.transfers = transfers
        app.state.handler = ConnectionHandler(registry, transfers)

        logger.info(f"Downloads directory: {transfers.download_dir}")
        logger.info("Coordinator started")

        yield

        # Shutdown
        logger.info("Shutting down coordinator...")
        await transfers.close()
        logger.info("Coordinator stopped")

    app = FastAPI(
        title="filerelay",
        description="Coordinator for chunked file transfers from remote agents",
        version=__version__,
        lifespan=lifespan
    )
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for agents.

        The first message must be client_info.
        """
        handler: ConnectionHandler | None = getattr(websocket.app.state, "handler", None)
        if handler is None:
            await websocket.close(code=1011, reason="Coordinator not initialized")
            return

        await handler.handle_connection(websocket)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the coordinator with uvicorn."""
    settings = settings_from_env()
    uvicorn.run(
        "filerelay.transport.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
