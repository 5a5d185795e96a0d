"""Message schema for the real-time channel.

Every frame is a JSON object with a ``type`` key. Server to viewer:
``welcome``, ``snapshot`` and one frame per event kind. Viewer to server:
``request_snapshot``.
"""

import json
from typing import Any

from .catalog.events import Event, EventKind
from .catalog.records import Record
from .exceptions import ProtocolError

WELCOME = "welcome"
SNAPSHOT = "snapshot"
REQUEST_SNAPSHOT = "request_snapshot"
EVENT_TYPES = frozenset(kind.value for kind in EventKind)


def welcome_message(session_id: str) -> dict[str, Any]:
    return {"type": WELCOME, "session_id": session_id}


def snapshot_message(records: list[Record]) -> dict[str, Any]:
    return {
        "type": SNAPSHOT,
        "records": [r.to_dict() for r in records],
        "count": len(records),
    }


def event_message(event: Event) -> dict[str, Any]:
    return event.to_dict()


def request_snapshot_message() -> dict[str, Any]:
    return {"type": REQUEST_SNAPSHOT}


def encode(message: dict[str, Any]) -> str:
    """Serialize a message to a text frame."""
    return json.dumps(message)


def decode(frame: str | bytes) -> dict[str, Any]:
    """Parse a text frame.

    Raises:
        ProtocolError: If the frame is not a JSON object with a string type.
    """
    try:
        message = json.loads(frame)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid frame: {e}") from e

    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise ProtocolError("Frame is missing a message type")
    return message


def parse_snapshot(message: dict[str, Any]) -> list[Record]:
    """Extract the records from a snapshot message."""
    try:
        return [Record.from_dict(r) for r in message["records"]]
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed snapshot: {e}") from e


def parse_event(message: dict[str, Any]) -> Event:
    """Extract the Event from an event message."""
    try:
        return Event.from_dict(message)
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed event: {e}") from e
