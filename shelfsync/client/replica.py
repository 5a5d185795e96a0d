"""Viewer-local copy of the catalog.

Event application is idempotent and tolerant of events that no longer match
the replica's content: there are no sequence numbers, so an update or delete
for an unknown id is simply ignored until the next snapshot.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

from ..catalog import Event, EventKind, Record

logger = logging.getLogger(__name__)

DEFAULT_RECENCY_WINDOW = 3.0


class RecencyMarkers:
    """Set of record ids whose entries expire after a fixed window.

    Each entry has a deadline and, when an event loop is running, a timer
    that removes it. Re-marking or discarding an id cancels its pending
    timer, so an old timer can never clear a newer mark.
    """

    def __init__(
        self,
        window: float = DEFAULT_RECENCY_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        on_expire: Callable[[str], None] | None = None,
    ):
        self.window = window
        self._clock = clock
        self._on_expire = on_expire
        self._deadlines: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def mark(self, record_id: str) -> None:
        self._cancel_timer(record_id)
        self._deadlines[record_id] = self._clock() + self.window

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the deadline alone expires the entry
            return
        self._timers[record_id] = loop.call_later(
            self.window, self._expire, record_id
        )

    def discard(self, record_id: str) -> None:
        self._cancel_timer(record_id)
        self._deadlines.pop(record_id, None)

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._deadlines.clear()

    @property
    def ids(self) -> set[str]:
        """Ids whose mark has not expired."""
        return {record_id for record_id in list(self._deadlines) if record_id in self}

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def __contains__(self, record_id: object) -> bool:
        deadline = self._deadlines.get(record_id)
        if deadline is None:
            return False
        if self._clock() >= deadline:
            self.discard(record_id)
            return False
        return True

    def __len__(self) -> int:
        return len(self.ids)

    def _cancel_timer(self, record_id: str) -> None:
        timer = self._timers.pop(record_id, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, record_id: str) -> None:
        self._timers.pop(record_id, None)
        self._deadlines.pop(record_id, None)
        if self._on_expire:
            self._on_expire(record_id)


class Replica:
    """Ordered local set of records owned by one sync client."""

    def __init__(
        self,
        recency_window: float = DEFAULT_RECENCY_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        on_marker_expired: Callable[[str], None] | None = None,
    ):
        """Initialize an empty replica.

        Args:
            recency_window: Seconds a record stays marked as recently
                created or updated.
            clock: Monotonic clock used for marker deadlines.
            on_marker_expired: Called with the record id when a marker
                expires, so a presentation layer can refresh.
        """
        self._records: list[Record] = []
        self.recently_created = RecencyMarkers(recency_window, clock, on_marker_expired)
        self.recently_updated = RecencyMarkers(recency_window, clock, on_marker_expired)

    # ==================== Snapshot ====================

    def replace_all(self, records: Iterable[Record]) -> None:
        """Replace the replica wholesale with a snapshot.

        Markers for records that are not in the snapshot are cleared.
        """
        self._records = list(records)
        present = {r.id for r in self._records}
        for markers in (self.recently_created, self.recently_updated):
            for record_id in list(markers.ids):
                if record_id not in present:
                    markers.discard(record_id)

    # ==================== Events ====================

    def apply(self, event: Event) -> bool:
        """Apply one event.

        Returns:
            True if the replica's records changed.
        """
        if event.kind is EventKind.CREATED:
            return self.apply_created(event.record)
        if event.kind is EventKind.UPDATED:
            return self.apply_updated(event.record)
        return self.apply_deleted(event.record.id)

    def apply_created(self, record: Record) -> bool:
        """Insert at the front; a duplicate changes nothing and is not marked."""
        if self._index(record.id) is not None:
            return False
        self._records.insert(0, record)
        self.recently_created.mark(record.id)
        return True

    def apply_updated(self, record: Record) -> bool:
        index = self._index(record.id)
        if index is None:
            logger.debug(f"Update for unknown record {record.id} ignored")
            return False
        self._records[index] = record
        self.recently_updated.mark(record.id)
        return True

    def apply_deleted(self, record_id: str) -> bool:
        self.recently_created.discard(record_id)
        self.recently_updated.discard(record_id)

        index = self._index(record_id)
        if index is None:
            logger.debug(f"Delete for unknown record {record_id} ignored")
            return False
        del self._records[index]
        return True

    # ==================== Queries ====================

    @property
    def records(self) -> list[Record]:
        return list(self._records)

    def get(self, record_id: str) -> Record | None:
        index = self._index(record_id)
        return None if index is None else self._records[index]

    def badge(self, record_id: str) -> str | None:
        """Presentation marker for a record: "new", "updated" or None.

        A recently created record shows as new even if it was also updated.
        """
        if record_id in self.recently_created:
            return "new"
        if record_id in self.recently_updated:
            return "updated"
        return None

    def close(self) -> None:
        """Cancel all marker timers."""
        self.recently_created.clear()
        self.recently_updated.clear()

    def __contains__(self, record_id: object) -> bool:
        return self._index(record_id) is not None

    def __len__(self) -> int:
        return len(self._records)

    def _index(self, record_id: object) -> int | None:
        for i, record in enumerate(self._records):
            if record.id == record_id:
                return i
        return None
