"""Exception hierarchy for Shelfsync."""


class ShelfsyncError(Exception):
    """Base exception for all Shelfsync errors."""


class ValidationError(ShelfsyncError):
    """Missing required field or out-of-range value.

    Caller-correctable. Raised before any mutation happens.
    """

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


class ConflictError(ShelfsyncError):
    """Uniqueness violation (duplicate ISBN)."""

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(ShelfsyncError):
    """The requested record id does not exist."""

    def __init__(self, message: str = "Book not found", *, record_id: str = ""):
        self.record_id = record_id
        super().__init__(message)


class TransportError(ShelfsyncError):
    """Connection-level failure.

    Only ever surfaced to the sync client's connection state machine,
    never to a mutation caller on the authority side.
    """


class ProtocolError(TransportError):
    """A frame on the real-time channel could not be decoded."""
