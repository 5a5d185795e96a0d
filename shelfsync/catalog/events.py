"""Mutation events broadcast to connected viewers.

Events are ephemeral broadcast payloads. They carry no sequence number and
are never stored or replayed; a viewer that misses one recovers through a
snapshot.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .records import Record, utcnow


class EventKind(Enum):
    """Kind of committed mutation."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


MESSAGE_TEMPLATES = {
    EventKind.CREATED: 'New book "{title}" has been added',
    EventKind.UPDATED: 'Book "{title}" has been updated',
    EventKind.DELETED: 'Book "{title}" has been deleted',
}


@dataclass(frozen=True)
class Event:
    """Notification describing one committed mutation."""

    kind: EventKind
    record: Record
    message: str
    previous_record: Record | None = None  # updated only
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.kind.value,
            "record": self.record.to_dict(),
            "previous_record": (
                self.previous_record.to_dict() if self.previous_record else None
            ),
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from dictionary."""
        previous = data.get("previous_record")
        return cls(
            kind=EventKind(data["type"]),
            record=Record.from_dict(data["record"]),
            previous_record=Record.from_dict(previous) if previous else None,
            message=data.get("message", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


def build_event(
    kind: EventKind,
    record: Record,
    previous: Record | None = None,
) -> Event:
    """Turn a mutation result into its Event.

    Args:
        kind: What happened to the record.
        record: The record after the mutation (the removed record for
            deletes).
        previous: The record before an update.

    Returns:
        The Event to broadcast.
    """
    if kind is not EventKind.UPDATED:
        previous = None
    return Event(
        kind=kind,
        record=record,
        previous_record=previous,
        message=MESSAGE_TEMPLATES[kind].format(title=record.title),
    )


def created_event(record: Record) -> Event:
    return build_event(EventKind.CREATED, record)


def updated_event(record: Record, previous: Record) -> Event:
    return build_event(EventKind.UPDATED, record, previous)


def deleted_event(record: Record) -> Event:
    return build_event(EventKind.DELETED, record)
