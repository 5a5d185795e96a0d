"""Registry of live viewer sessions.

Each session owns an outbound queue drained by its own writer task, so a
fan-out never awaits a network write: a slow or dead viewer cannot delay
the mutation path or any other viewer.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .. import protocol
from ..catalog import Event, RecordStore
from ..catalog.records import utcnow

logger = logging.getLogger(__name__)

Sender = Callable[[str], Awaitable[None]]
Closer = Callable[[], Awaitable[None]]


@dataclass
class Session:
    """One connected viewer."""

    session_id: str
    sender: Sender
    closer: Closer | None = None
    connected_at: datetime = field(default_factory=utcnow)
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    is_open: bool = True
    writer: asyncio.Task | None = None
    close_task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return self.queue.qsize()


class ConnectionRegistry:
    """Tracks live sessions and fans events out to them."""

    def __init__(self, store: RecordStore, max_pending_messages: int = 1000):
        """Initialize the registry.

        Args:
            store: Store used to build handshake and on-demand snapshots.
            max_pending_messages: Queue length at which a session is
                considered stalled and dropped. A dropped viewer reconnects
                and resyncs from a fresh snapshot.
        """
        self._store = store
        self.max_pending_messages = max_pending_messages
        self._sessions: dict[str, Session] = {}

    def open(self, sender: Sender, closer: Closer | None = None) -> Session:
        """Register a new session and queue its handshake.

        The welcome and snapshot frames are queued before the session can
        receive any broadcast, so the snapshot always precedes the first
        event the viewer sees. Must be called from the server's event loop.

        Args:
            sender: Coroutine function writing one text frame to the viewer.
            closer: Optional coroutine function closing the viewer's
                connection, used when the registry drops the session.

        Returns:
            The registered Session.
        """
        session = Session(
            session_id=uuid.uuid4().hex,
            sender=sender,
            closer=closer,
        )
        self._sessions[session.session_id] = session

        self._enqueue(session, protocol.welcome_message(session.session_id))
        self._enqueue(session, protocol.snapshot_message(self._store.list()))
        session.writer = asyncio.get_running_loop().create_task(
            self._drain(session)
        )

        logger.info(
            f"Client connected: {session.session_id} ({self.count} connected)"
        )
        return session

    def send_snapshot(self, session: Session) -> bool:
        """Queue a fresh full snapshot for one session."""
        return self._enqueue(session, protocol.snapshot_message(self._store.list()))

    def broadcast(self, event: Event) -> int:
        """Queue an event on every registered session.

        Args:
            event: Event to deliver.

        Returns:
            Number of sessions the event was queued for.
        """
        frame = protocol.encode(protocol.event_message(event))
        delivered = 0
        for session in list(self._sessions.values()):
            if self._enqueue(session, frame):
                delivered += 1
        return delivered

    async def close(self, session: Session) -> None:
        """Unregister a session and stop its writer."""
        was_open = session.is_open
        self._discard(session)

        if session.writer and not session.writer.done():
            session.writer.cancel()
            try:
                await session.writer
            except asyncio.CancelledError:
                pass

        if was_open:
            logger.info(
                f"Client disconnected: {session.session_id} ({self.count} connected)"
            )

    async def close_all(self) -> None:
        """Close every session (server shutdown)."""
        for session in list(self._sessions.values()):
            await self.close(session)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    @property
    def count(self) -> int:
        """Number of live sessions."""
        return len(self._sessions)

    def _enqueue(self, session: Session, message: dict[str, Any] | str) -> bool:
        if not session.is_open:
            return False

        if session.pending >= self.max_pending_messages:
            logger.warning(
                f"Session {session.session_id} has {session.pending} pending "
                f"messages, dropping it"
            )
            self._drop(session)
            return False

        frame = message if isinstance(message, str) else protocol.encode(message)
        session.queue.put_nowait(frame)
        return True

    async def _drain(self, session: Session) -> None:
        while True:
            frame = await session.queue.get()
            try:
                await session.sender(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Send to session {session.session_id} failed: {e}")
                self._drop(session)
                return

    def _discard(self, session: Session) -> None:
        session.is_open = False
        self._sessions.pop(session.session_id, None)

    def _drop(self, session: Session) -> None:
        """Unregister a session from inside the fan-out path."""
        self._discard(session)

        current = asyncio.current_task()
        if session.writer and session.writer is not current and not session.writer.done():
            session.writer.cancel()

        if session.closer is not None and session.close_task is None:
            session.close_task = asyncio.get_running_loop().create_task(
                self._close_connection(session)
            )

    async def _close_connection(self, session: Session) -> None:
        try:
            await session.closer()
        except Exception as e:
            logger.debug(f"Closing session {session.session_id} failed: {e}")
