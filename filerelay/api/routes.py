"""
HTTP Control API

Thin request/response wrapper over the registry and the transfer
manager. Mounted on the same FastAPI app as the /ws endpoint.

Endpoints:
- GET  /health                  liveness and counters
- GET  /clients                 connected agents
- POST /download                start a transfer
- GET  /download/{request_id}   transfer status
- GET  /downloads               all transfers
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from filerelay.errors import AgentNotConnectedError, TransferInProgressError
from filerelay.registry import AgentRegistry
from filerelay.transfer import TransferManager

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "file_to_download.txt"

router = APIRouter()


# === Pydantic Models ===

class DownloadBody(BaseModel):
    """Request to fetch a file from an agent."""
    client_id: str = Field(..., alias="clientId", min_length=1)
    file_name: str = Field(default=DEFAULT_FILE_NAME, alias="fileName", min_length=1)

    class Config:
        populate_by_name = True


def _registry(request: Request) -> AgentRegistry:
    return request.app.state.registry


def _transfers(request: Request) -> TransferManager:
    return request.app.state.transfers


@router.get("/health", tags=["General"])
async def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "clients": _registry(request).connection_count,
        "downloads": _transfers(request).transfer_count,
        "active_downloads": _transfers(request).active_count,
    }


@router.get("/clients", tags=["Clients"])
async def list_clients(request: Request):
    """List connected agents."""
    clients = [c.to_public_dict() for c in await _registry(request).list()]
    return {"clients": clients, "count": len(clients)}


@router.post("/download", tags=["Downloads"])
async def start_download(body: DownloadBody, request: Request):
    """Ask a connected agent for a file."""
    registry = _registry(request)
    try:
        request_id = await _transfers(request).request(body.client_id, body.file_name)
    except AgentNotConnectedError as e:
        return JSONResponse(
            status_code=404,
            content={"error": str(e), "available": await registry.ids()},
        )
    except TransferInProgressError as e:
        return JSONResponse(
            status_code=409,
            content={"error": str(e), "requestId": e.request_id},
        )

    return {
        "message": "Download started",
        "requestId": request_id,
        "clientId": body.client_id,
        "fileName": body.file_name,
    }


@router.get("/download/{request_id}", tags=["Downloads"])
async def download_status(request_id: str, request: Request):
    """Status of a single transfer."""
    transfer = _transfers(request).get_status(request_id)
    if transfer is None:
        return JSONResponse(status_code=404, content={"error": "Download not found"})
    return transfer.to_dict()


@router.get("/downloads", tags=["Downloads"])
async def list_downloads(request: Request):
    """All transfers known to this coordinator."""
    downloads = [t.to_dict() for t in _transfers(request).list()]
    return {"downloads": downloads, "count": len(downloads)}
