# Transport Layer
# Handles agent WebSocket connections and the coordinator application
# Separated from transfer logic so the core can be driven without a server

from filerelay.transport.handler import ConnectionHandler
from filerelay.transport.app import app, create_app

__all__ = ["ConnectionHandler", "app", "create_app"]
