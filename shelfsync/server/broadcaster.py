"""Turns committed mutations into events and fans them out."""

import logging

from ..catalog import Event, Record
from ..catalog.events import created_event, deleted_event, updated_event
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class MutationBroadcaster:
    """Emits exactly one event per committed mutation.

    Callers invoke it right after the store commits, in the same synchronous
    step, and never for a rejected mutation. Delivery is queued, so there is
    no ordering guarantee between the caller's own response and the event it
    triggered.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self.published = 0

    def publish(self, event: Event) -> Event:
        """Fan an event out to every live session."""
        recipients = self.registry.broadcast(event)
        self.published += 1
        logger.info(f"{event.message} - broadcasting to {recipients} clients")
        return event

    def created(self, record: Record) -> Event:
        return self.publish(created_event(record))

    def updated(self, record: Record, previous: Record) -> Event:
        return self.publish(updated_event(record, previous))

    def deleted(self, record: Record) -> Event:
        return self.publish(deleted_event(record))
