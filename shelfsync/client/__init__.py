"""Viewer-side synchronization.

Provides the local replica, the sync client that keeps it consistent with
the server over a real-time transport, and an HTTP client for mutations.
"""

from .api_client import CatalogClient
from .replica import RecencyMarkers, Replica
from .sync_client import ConnectionState, ConnectionStatus, SyncClient
from .transport import Transport, WebSocketTransport

__all__ = [
    "CatalogClient",
    "ConnectionState",
    "ConnectionStatus",
    "RecencyMarkers",
    "Replica",
    "SyncClient",
    "Transport",
    "WebSocketTransport",
]
