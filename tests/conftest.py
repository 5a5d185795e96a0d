"""Shared fixtures: an in-process server and a transport that talks to it."""

import asyncio
import pytest
from typing import Any

from shelfsync import protocol
from shelfsync.catalog import SEED_BOOKS, RecordStore
from shelfsync.client.transport import Transport
from shelfsync.exceptions import TransportError
from shelfsync.server import ConnectionRegistry, MutationBroadcaster

_DROPPED = object()


class InProcessTransport(Transport):
    """Transport wired straight into a ConnectionRegistry."""

    def __init__(self, server: "InProcessServer"):
        self.server = server
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.session = None
        self.closed = False

    async def connect(self) -> None:
        self.server.connect_calls += 1
        if self.server.refuse_next > 0:
            self.server.refuse_next -= 1
            raise TransportError("Connection refused")
        self.server.transports.append(self)
        if self.server.silent:
            return
        self.session = self.server.registry.open(self._deliver, closer=self._server_close)

    async def _deliver(self, frame: str) -> None:
        self.inbox.put_nowait(frame)

    async def _server_close(self) -> None:
        self.inbox.put_nowait(_DROPPED)

    def push_raw(self, frame: str) -> None:
        """Inject a frame as if the server had sent it."""
        self.inbox.put_nowait(frame)

    async def drop(self) -> None:
        """Simulate the network going away."""
        if self.session is not None:
            await self.server.registry.close(self.session)
        self.inbox.put_nowait(_DROPPED)

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed or self.session is None:
            raise TransportError("Transport is not connected")
        self.sent.append(message)
        if message["type"] == protocol.REQUEST_SNAPSHOT:
            self.server.registry.send_snapshot(self.session)

    async def receive(self) -> dict[str, Any]:
        frame = await self.inbox.get()
        if frame is _DROPPED:
            raise TransportError("Connection lost")
        return protocol.decode(frame)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.session is not None:
            await self.server.registry.close(self.session)


class InProcessServer:
    """Store, registry and broadcaster without a network in between."""

    def __init__(self):
        self.store = RecordStore()
        self.store.seed(SEED_BOOKS)
        self.registry = ConnectionRegistry(self.store)
        self.broadcaster = MutationBroadcaster(self.registry)
        self.transports: list[InProcessTransport] = []
        self.connect_calls = 0
        self.refuse_next = 0
        self.silent = False

    def transport_factory(self) -> InProcessTransport:
        return InProcessTransport(self)

    @property
    def live_transports(self) -> list[InProcessTransport]:
        return [t for t in self.transports if not t.closed]

    async def drop_all(self) -> None:
        for transport in self.live_transports:
            await transport.drop()


@pytest.fixture
def server():
    return InProcessServer()

