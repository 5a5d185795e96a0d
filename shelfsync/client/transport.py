"""Bidirectional, order-preserving channel between a viewer and the server."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from .. import protocol
from ..exceptions import TransportError

logger = logging.getLogger(__name__)


class Transport(ABC):
    """One connection attempt's channel.

    A transport is used for a single connection. Reconnecting means building
    a new one, which gives the server a brand-new session.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel.

        Raises:
            TransportError: If the connection cannot be established.
        """
        pass

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Send one message.

        Raises:
            TransportError: If the channel is closed or the write fails.
        """
        pass

    @abstractmethod
    async def receive(self) -> dict[str, Any]:
        """Wait for the next message.

        Raises:
            TransportError: When the channel drops. ProtocolError for a
                frame that cannot be decoded.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        pass


class WebSocketTransport(Transport):
    """Transport over the server's ``/ws`` WebSocket endpoint."""

    def __init__(self, url: str, open_timeout: float = 20.0):
        """Initialize the transport.

        Args:
            url: WebSocket URL, e.g. "ws://localhost:5000/ws".
            open_timeout: Seconds allowed for the opening handshake.
        """
        self.url = url
        self.open_timeout = open_timeout
        self._ws: ClientConnection | None = None

    async def connect(self) -> None:
        try:
            self._ws = await connect(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Cannot connect to {self.url}: {e}") from e
        logger.debug(f"WebSocket open to {self.url}")

    def _require(self) -> ClientConnection:
        if self._ws is None:
            raise TransportError("Transport is not connected")
        return self._ws

    async def send(self, message: dict[str, Any]) -> None:
        ws = self._require()
        try:
            await ws.send(protocol.encode(message))
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def receive(self) -> dict[str, Any]:
        ws = self._require()
        try:
            frame = await ws.recv()
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Connection lost: {e}") from e
        return protocol.decode(frame)

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing WebSocket: {e}")
