"""Authoritative in-memory record store.

Every mutation of the catalog passes through RecordStore. Each operation
validates completely before touching the collection, so a rejected call
leaves the store exactly as it was.
"""

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime

from ..exceptions import ConflictError, NotFoundError
from .records import Record, RecordFields, utcnow

logger = logging.getLogger(__name__)

DUPLICATE_ISBN_MESSAGE = "Book with this ISBN already exists"


class RecordStore:
    """Insertion-ordered collection of Records keyed by id.

    Not thread-safe. The server calls it only from coroutines on a single
    event loop, which serializes mutations.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        """Initialize an empty store.

        Args:
            clock: Source of timezone-aware "now" timestamps.
        """
        self._clock = clock
        self._records: dict[str, Record] = {}

    def seed(self, fields: Iterable[RecordFields]) -> list[Record]:
        """Populate the store at process start.

        Args:
            fields: Field sets to create, in order.

        Returns:
            The created records.
        """
        created = [self.create(f) for f in fields]
        logger.info(f"Seeded store with {len(created)} records")
        return created

    def _check_isbn(self, isbn: str, exclude_id: str | None = None) -> None:
        if not isbn:
            return
        for record in self._records.values():
            if record.isbn == isbn and record.id != exclude_id:
                raise ConflictError(DUPLICATE_ISBN_MESSAGE, field="isbn")

    def _require(self, record_id: str) -> Record:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(record_id=record_id)
        return record

    def create(self, fields: RecordFields) -> Record:
        """Create a record.

        Args:
            fields: Validated fields for the new record.

        Returns:
            The new Record.

        Raises:
            ConflictError: If a non-empty ISBN is already taken.
        """
        self._check_isbn(fields.isbn)

        now = self._clock()
        record_id = str(uuid.uuid4())
        while record_id in self._records:
            record_id = str(uuid.uuid4())

        record = Record(
            id=record_id,
            title=fields.title,
            author=fields.author,
            isbn=fields.isbn,
            published_year=fields.published_year,
            genre=fields.genre,
            created_at=now,
            updated_at=now,
        )
        self._records[record.id] = record
        return record

    def update(self, record_id: str, fields: RecordFields) -> tuple[Record, Record]:
        """Replace every mutable field of a record.

        Args:
            record_id: Id of the record to update.
            fields: Validated replacement fields.

        Returns:
            Tuple of (updated record, previous record).

        Raises:
            NotFoundError: If the id is unknown.
            ConflictError: If the ISBN belongs to another record.
        """
        previous = self._require(record_id)
        self._check_isbn(fields.isbn, exclude_id=record_id)

        updated = previous.with_fields(fields, updated_at=self._clock())
        self._records[record_id] = updated
        return updated, previous

    def delete(self, record_id: str) -> Record:
        """Remove a record.

        Raises:
            NotFoundError: If the id is unknown.
        """
        self._require(record_id)
        return self._records.pop(record_id)

    def get(self, record_id: str) -> Record:
        """Get a record by id.

        Raises:
            NotFoundError: If the id is unknown.
        """
        return self._require(record_id)

    def list(self) -> list[Record]:
        """Snapshot of the full collection in insertion order."""
        return list(self._records.values())

    @property
    def count(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records
