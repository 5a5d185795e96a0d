"""Central catalog authority.

Hosts the book API and the real-time channel using FastAPI, and fans every
committed mutation out to the connected viewers.
"""

from .app import create_app
from .broadcaster import MutationBroadcaster
from .registry import ConnectionRegistry, Session

__all__ = ["ConnectionRegistry", "MutationBroadcaster", "Session", "create_app"]
