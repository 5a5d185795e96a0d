"""Sync client keeping a viewer's replica consistent with the server.

Handles the connection state machine, bounded reconnection, event
application and snapshot resync.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .. import protocol
from ..catalog.records import utcnow
from ..config import ClientConfig
from ..exceptions import ProtocolError, TransportError
from .replica import DEFAULT_RECENCY_WINDOW, Replica
from .transport import Transport, WebSocketTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]
Handler = Callable[[Any], None]

SUBSCRIPTION_KINDS = frozenset(
    {
        "connection_change",
        "connection_error",
        "reconnect_attempt",
        "reconnect_error",
        "reconnected",
        "reconnect_failed",
        "snapshot",
        "created",
        "updated",
        "deleted",
        "notification",
        "marker_expired",
    }
)


class ConnectionState(Enum):
    """State of the viewer's logical connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    RECONNECT_FAILED = "reconnect_failed"  # Terminal until reconnect()


@dataclass
class ConnectionStatus:
    """Point-in-time view of the client's connection."""

    state: ConnectionState
    session_id: str | None = None
    attempt: int = 0
    replica_count: int = 0
    last_snapshot: datetime | None = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


class SyncClient:
    """Owns a replica and keeps it in step with the catalog server.

    Every connection starts with a handshake in which the server pushes a
    full snapshot; the replica is replaced wholesale by it, so missed events
    are never replayed, only superseded. When the channel drops the client
    makes up to ``max_reconnect_attempts`` sequential attempts, waiting
    ``reconnect_delay`` before each, and then gives up in RECONNECT_FAILED
    until ``reconnect()`` is called.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        recency_window: float = DEFAULT_RECENCY_WINDOW,
        handshake_timeout: float = 20.0,
    ):
        """Initialize the sync client.

        Args:
            transport_factory: Builds a fresh Transport for each attempt.
            max_reconnect_attempts: Automatic attempts before giving up.
            reconnect_delay: Seconds to wait before each attempt.
            recency_window: Seconds records stay marked new/updated.
            handshake_timeout: Seconds allowed to receive the initial
                snapshot after the channel opens.
        """
        self._transport_factory = transport_factory
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.handshake_timeout = handshake_timeout

        self.replica = Replica(
            recency_window=recency_window,
            on_marker_expired=lambda record_id: self._emit("marker_expired", record_id),
        )

        self._handlers: dict[str, list[Handler]] = {}
        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._transport: Transport | None = None
        self._task: asyncio.Task | None = None
        self._waiters: list[tuple[frozenset[ConnectionState], asyncio.Future]] = []
        self.session_id: str | None = None
        self._last_snapshot: datetime | None = None

    @classmethod
    def from_config(cls, config: ClientConfig) -> "SyncClient":
        """Build a client talking WebSocket to the configured server."""
        return cls(
            transport_factory=lambda: WebSocketTransport(
                config.ws_url, open_timeout=config.connect_timeout_seconds
            ),
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_delay=config.reconnect_delay_seconds,
            recency_window=config.recency_window_seconds,
            handshake_timeout=config.connect_timeout_seconds,
        )

    # ==================== Subscriptions ====================

    def on(self, kind: str, handler: Handler) -> None:
        """Register a handler for a kind of client event.

        Args:
            kind: One of SUBSCRIPTION_KINDS.
            handler: Called with the event payload.

        Raises:
            ValueError: If the kind is unknown.
        """
        if kind not in SUBSCRIPTION_KINDS:
            raise ValueError(f"Unknown event kind: {kind}")
        self._handlers.setdefault(kind, []).append(handler)

    def off(self, kind: str, handler: Handler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(kind)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._handlers[kind]

    def handler_count(self, kind: str | None = None) -> int:
        if kind is not None:
            return len(self._handlers.get(kind, []))
        return sum(len(h) for h in self._handlers.values())

    def _emit(self, kind: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(kind, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception(f"Error in handler for {kind}")

    # ==================== Lifecycle ====================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def attempt(self) -> int:
        """Current automatic reconnection attempt (0 when not retrying)."""
        return self._attempt

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start connecting in the background.

        At most one connection run exists at a time; calling start() while
        one is active returns it unchanged.
        """
        if self.running:
            return self._task
        self._attempt = 0
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def reconnect(self) -> bool:
        """User-triggered reconnect.

        Leaves RECONNECT_FAILED (or a manual disconnect) with a reset
        attempt counter and a brand-new handshake.

        Returns:
            True if a new connection run was started.
        """
        if self.running:
            logger.debug(f"Reconnect ignored, client is {self._state.value}")
            return False
        logger.info("Manual reconnect requested")
        self.start()
        return True

    async def disconnect(self) -> None:
        """Stop the connection run and close the channel.

        Handlers and replica stay in place; reconnect() resumes.
        """
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._close_transport()
        self._attempt = 0
        self._set_state(ConnectionState.DISCONNECTED, reason="client disconnect")

    async def close(self) -> None:
        """Tear the client down: disconnect, drop all handlers, stop timers."""
        await self.disconnect()
        self._handlers.clear()
        self.replica.close()
        for _, future in self._waiters:
            if not future.done():
                future.cancel()
        self._waiters.clear()

    async def wait_for_state(
        self, *states: ConnectionState, timeout: float | None = None
    ) -> ConnectionState:
        """Wait until the client enters one of the given states.

        Raises:
            asyncio.TimeoutError: If the timeout elapses first.
        """
        if self._state in states:
            return self._state
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((frozenset(states), future))
        return await asyncio.wait_for(future, timeout)

    async def request_snapshot(self) -> bool:
        """Ask the server for a fresh full snapshot.

        Returns:
            True if the request was sent. The snapshot itself arrives
            asynchronously and replaces the replica.
        """
        if not self.is_connected or self._transport is None:
            logger.warning("Not connected, snapshot request not sent")
            return False
        try:
            await self._transport.send(protocol.request_snapshot_message())
        except TransportError as e:
            # The receive loop notices the drop and starts reconnecting
            logger.warning(f"Snapshot request failed: {e}")
            return False
        return True

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            session_id=self.session_id,
            attempt=self._attempt,
            replica_count=len(self.replica),
            last_snapshot=self._last_snapshot,
        )

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status as a plain dictionary."""
        status = self.status()
        return {
            "state": status.state.value,
            "connected": status.connected,
            "session_id": status.session_id,
            "attempt": status.attempt,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "replica_count": status.replica_count,
            "last_snapshot": (
                status.last_snapshot.isoformat() if status.last_snapshot else None
            ),
        }

    # ==================== Connection run ====================

    async def _run(self) -> None:
        try:
            self._set_state(ConnectionState.CONNECTING)
            connected = await self._open()

            while True:
                if connected:
                    reason = await self._pump()
                    await self._close_transport()
                    logger.warning(f"Disconnected from server: {reason}")
                    self._set_state(ConnectionState.DISCONNECTED, reason=reason)

                connected = await self._reconnect_sequence()
                if not connected:
                    logger.error(
                        f"Failed to reconnect after {self.max_reconnect_attempts} attempts"
                    )
                    self._set_state(ConnectionState.RECONNECT_FAILED)
                    self._emit(
                        "reconnect_failed",
                        {"attempts": self.max_reconnect_attempts},
                    )
                    return
        finally:
            await self._close_transport()

    async def _reconnect_sequence(self) -> bool:
        """Sequential, bounded reconnection attempts."""
        self._attempt = 0
        while self._attempt < self.max_reconnect_attempts:
            self._attempt += 1
            attempt = self._attempt
            self._set_state(ConnectionState.RECONNECTING)
            self._emit("reconnect_attempt", {"attempt_number": attempt})
            logger.info(
                f"Attempting to reconnect... {attempt}/{self.max_reconnect_attempts}"
            )

            await asyncio.sleep(self.reconnect_delay)

            if await self._open():
                logger.info(f"Reconnected after {attempt} attempts")
                self._emit("reconnected", {"attempt_number": attempt})
                return True

            self._emit("reconnect_error", {"attempt_number": attempt})
        return False

    async def _open(self) -> bool:
        """Open a fresh transport and complete the snapshot handshake."""
        transport = self._transport_factory()
        try:
            await transport.connect()
            await asyncio.wait_for(self._handshake(transport), self.handshake_timeout)
        except (TransportError, asyncio.TimeoutError) as e:
            error = str(e) or "handshake timed out"
            logger.warning(f"Connection error: {error}")
            await transport.close()
            self._emit("connection_error", {"error": error})
            return False
        except asyncio.CancelledError:
            await transport.close()
            raise

        self._transport = transport
        self._attempt = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to server: {self.session_id}")
        return True

    async def _handshake(self, transport: Transport) -> None:
        """Read frames until the initial snapshot has been applied."""
        self.session_id = None
        while True:
            message = await transport.receive()
            kind = message["type"]
            if kind == protocol.WELCOME:
                self.session_id = message.get("session_id")
            elif kind == protocol.SNAPSHOT:
                self._apply_snapshot(message)
                return
            else:
                # Anything earlier than the snapshot is already reflected in it
                logger.debug(f"Skipping '{kind}' received before snapshot")

    async def _pump(self) -> str:
        """Apply inbound frames until the channel drops.

        Returns:
            The reason the channel dropped.
        """
        while True:
            try:
                message = await self._transport.receive()
            except ProtocolError as e:
                logger.warning(f"Ignoring bad frame: {e}")
                continue
            except TransportError as e:
                return str(e) or "transport closed"

            try:
                self._dispatch(message)
            except ProtocolError as e:
                logger.warning(f"Ignoring bad frame: {e}")

    def _dispatch(self, message: dict[str, Any]) -> None:
        kind = message["type"]
        if kind == protocol.SNAPSHOT:
            self._apply_snapshot(message)
        elif kind in protocol.EVENT_TYPES:
            event = protocol.parse_event(message)
            self.replica.apply(event)
            self._emit(kind, event)
            self._emit(
                "notification",
                {
                    "type": kind,
                    "message": event.message,
                    "record": event.record,
                    "timestamp": event.timestamp,
                },
            )
        elif kind == protocol.WELCOME:
            self.session_id = message.get("session_id")
        else:
            logger.debug(f"Ignoring unknown message type '{kind}'")

    def _apply_snapshot(self, message: dict[str, Any]) -> None:
        records = protocol.parse_snapshot(message)
        self.replica.replace_all(records)
        self._last_snapshot = utcnow()
        logger.info(f"Received snapshot with {len(records)} books")
        self._emit("snapshot", self.replica.records)

    async def _close_transport(self) -> None:
        if self._transport is None:
            return
        transport, self._transport = self._transport, None
        await transport.close()

    def _set_state(self, state: ConnectionState, reason: str | None = None) -> None:
        if state == self._state and state != ConnectionState.RECONNECTING:
            return
        self._state = state
        if state != ConnectionState.CONNECTED:
            self.session_id = None

        self._emit(
            "connection_change",
            {
                "state": state.value,
                "connected": state == ConnectionState.CONNECTED,
                "session_id": self.session_id,
                "attempt": self._attempt,
                "reason": reason,
            },
        )

        remaining = []
        for states, future in self._waiters:
            if future.done():
                continue
            if state in states:
                future.set_result(state)
            else:
                remaining.append((states, future))
        self._waiters = remaining
