"""Tests for the connection registry fan-out."""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock

from shelfsync.catalog import SEED_BOOKS, RecordFields, RecordStore
from shelfsync.catalog.events import created_event, deleted_event
from shelfsync.server import ConnectionRegistry, MutationBroadcaster


async def settle():
    """Let writer tasks drain their queues."""
    for _ in range(10):
        await asyncio.sleep(0)


class RecordingSender:
    """Sender that keeps every frame it is given."""

    def __init__(self):
        self.frames: list[dict] = []

    async def __call__(self, frame: str) -> None:
        self.frames.append(json.loads(frame))

    @property
    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]


class BlockedSender:
    """Sender whose writes never complete."""

    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0

    async def __call__(self, frame: str) -> None:
        self.calls += 1
        await self.release.wait()


async def failing_sender(frame: str) -> None:
    raise ConnectionResetError("peer went away")


@pytest.fixture
def store():
    store = RecordStore()
    store.seed(SEED_BOOKS)
    return store


def new_book(store, title="Dune"):
    return store.create(RecordFields.from_payload({"title": title, "author": "Herbert"}))


class TestHandshake:
    """Tests for what a new session receives."""

    @pytest.mark.asyncio
    async def test_open_sends_welcome_and_snapshot(self, store):
        """Test the handshake is a welcome followed by a full snapshot."""
        registry = ConnectionRegistry(store)
        sender = RecordingSender()

        session = registry.open(sender)
        await settle()

        assert sender.types == ["welcome", "snapshot"]
        assert sender.frames[0]["session_id"] == session.session_id
        assert sender.frames[1]["count"] == 2
        assert registry.count == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_snapshot_precedes_events(self, store):
        """Test an event broadcast right after open arrives after the snapshot."""
        registry = ConnectionRegistry(store)
        sender = RecordingSender()

        registry.open(sender)
        registry.broadcast(created_event(new_book(store)))
        await settle()

        assert sender.types == ["welcome", "snapshot", "created"]
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_no_history_before_connect(self, store):
        """Test events from before a session existed reach it only via the snapshot."""
        registry = ConnectionRegistry(store)
        broadcaster = MutationBroadcaster(registry)
        broadcaster.created(new_book(store))

        sender = RecordingSender()
        registry.open(sender)
        await settle()

        assert sender.types == ["welcome", "snapshot"]
        assert sender.frames[1]["count"] == 3
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_send_snapshot_on_request(self, store):
        """Test an on-demand snapshot reflects the current store."""
        registry = ConnectionRegistry(store)
        sender = RecordingSender()
        session = registry.open(sender)

        new_book(store)
        assert registry.send_snapshot(session)
        await settle()

        assert sender.types == ["welcome", "snapshot", "snapshot"]
        assert sender.frames[2]["count"] == 3
        await registry.close_all()


class TestFanOut:
    """Tests for broadcast delivery."""

    @pytest.mark.asyncio
    async def test_same_order_for_every_session(self, store):
        """Test two sessions see the same events in the same order."""
        registry = ConnectionRegistry(store)
        a, b = RecordingSender(), RecordingSender()
        registry.open(a)
        registry.open(b)

        books = [new_book(store, f"Book {i}") for i in range(5)]
        for book in books:
            registry.broadcast(created_event(book))
        registry.broadcast(deleted_event(store.delete(books[0].id)))
        await settle()

        def event_ids(sender):
            return [(f["type"], f["record"]["id"]) for f in sender.frames[2:]]

        assert event_ids(a) == event_ids(b)
        assert [t for t, _ in event_ids(a)] == ["created"] * 5 + ["deleted"]
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_broadcast_returns_recipient_count(self, store):
        """Test broadcast reports how many sessions were targeted."""
        registry = ConnectionRegistry(store)
        registry.open(RecordingSender())
        registry.open(RecordingSender())

        assert registry.broadcast(created_event(new_book(store))) == 2
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_closed_session_not_targeted(self, store):
        """Test no broadcast reaches a closed session."""
        registry = ConnectionRegistry(store)
        sender = RecordingSender()
        session = registry.open(sender)
        await settle()

        await registry.close(session)
        delivered = registry.broadcast(created_event(new_book(store)))
        await settle()

        assert delivered == 0
        assert registry.count == 0
        assert sender.types == ["welcome", "snapshot"]

    @pytest.mark.asyncio
    async def test_slow_session_does_not_block_others(self, store):
        """Test a stalled viewer never delays the rest."""
        registry = ConnectionRegistry(store)
        slow = BlockedSender()
        fast = RecordingSender()
        registry.open(slow)
        registry.open(fast)

        registry.broadcast(created_event(new_book(store)))
        await settle()

        assert fast.types == ["welcome", "snapshot", "created"]
        assert slow.calls == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_failed_send_drops_session(self, store):
        """Test a session whose write fails is unregistered."""
        registry = ConnectionRegistry(store)
        closer = AsyncMock()
        registry.open(failing_sender, closer=closer)
        healthy = RecordingSender()
        registry.open(healthy)
        await settle()

        assert registry.count == 1
        closer.assert_awaited_once()

        registry.broadcast(created_event(new_book(store)))
        await settle()
        assert healthy.types[-1] == "created"
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_overflowing_session_dropped(self, store):
        """Test a session that falls too far behind is disconnected."""
        registry = ConnectionRegistry(store, max_pending_messages=3)
        closer = AsyncMock()
        slow = BlockedSender()
        session = registry.open(slow, closer=closer)
        await settle()

        for i in range(5):
            registry.broadcast(created_event(new_book(store, f"Book {i}")))
        await settle()

        assert not session.is_open
        assert registry.count == 0
        closer.assert_awaited_once()
        await registry.close(session)
