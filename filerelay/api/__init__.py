# HTTP Control API
# Read/write operations over the registry and transfer manager

from filerelay.api.routes import router

__all__ = ["router"]
