"""Book catalog domain.

Provides the record schema, the authoritative store and the events emitted
for committed mutations.
"""

from .events import Event, EventKind, build_event
from .records import SEED_BOOKS, Record, RecordFields
from .store import RecordStore

__all__ = [
    "Event",
    "EventKind",
    "build_event",
    "Record",
    "RecordFields",
    "RecordStore",
    "SEED_BOOKS",
]
