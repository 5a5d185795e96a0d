"""Tests for the record schema and the authoritative store."""

import pytest
from datetime import datetime, timedelta, timezone

from shelfsync.catalog import SEED_BOOKS, Record, RecordFields, RecordStore
from shelfsync.exceptions import ConflictError, NotFoundError, ValidationError


class FakeClock:
    """Clock that advances one second per call."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def store():
    """Create a store seeded with the two sample books."""
    store = RecordStore(clock=FakeClock())
    store.seed(SEED_BOOKS)
    return store


def dune(**overrides) -> RecordFields:
    payload = {"title": "Dune", "author": "Herbert"}
    payload.update(overrides)
    return RecordFields.from_payload(payload)


class TestRecordFields:
    """Tests for payload validation at the store boundary."""

    def test_minimal_payload(self):
        """Test title and author alone are enough."""
        fields = RecordFields.from_payload({"title": "Dune", "author": "Herbert"})

        assert fields.title == "Dune"
        assert fields.author == "Herbert"
        assert fields.isbn == ""
        assert fields.published_year is None
        assert fields.genre == ""

    def test_strips_whitespace(self):
        """Test text fields are trimmed."""
        fields = RecordFields.from_payload(
            {"title": "  Dune ", "author": " Herbert", "isbn": " 123 ", "genre": "SF "}
        )

        assert fields.title == "Dune"
        assert fields.author == "Herbert"
        assert fields.isbn == "123"
        assert fields.genre == "SF"

    @pytest.mark.parametrize(
        "payload",
        [
            {"author": "Herbert"},
            {"title": "Dune"},
            {"title": "   ", "author": "Herbert"},
            {"title": "Dune", "author": ""},
            {"title": None, "author": "Herbert"},
        ],
    )
    def test_missing_required_field(self, payload):
        """Test title and author are required."""
        with pytest.raises(ValidationError, match="Title and author are required"):
            RecordFields.from_payload(payload)

    def test_non_mapping_payload(self):
        """Test a payload that is not an object is rejected."""
        with pytest.raises(ValidationError):
            RecordFields.from_payload(["Dune", "Herbert"])
        with pytest.raises(ValidationError):
            RecordFields.from_payload(None)

    def test_wrong_type(self):
        """Test non-string text fields are rejected."""
        with pytest.raises(ValidationError):
            RecordFields.from_payload({"title": 42, "author": "Herbert"})
        with pytest.raises(ValidationError):
            RecordFields.from_payload({"title": "Dune", "author": "Herbert", "isbn": 9})

    def test_published_year(self):
        """Test year parsing and range checks."""
        assert dune(published_year=1965).published_year == 1965
        assert dune(published_year="1965").published_year == 1965
        assert dune(published_year="").published_year is None
        assert dune(published_year=None).published_year is None

        for bad in (-1, datetime.now(timezone.utc).year + 1, "soon", True, 19.65):
            with pytest.raises(ValidationError):
                dune(published_year=bad)

    def test_unknown_keys_ignored(self):
        """Test extra keys such as id are not taken from the payload."""
        fields = dune(id="forged", created_at="yesterday")
        assert fields.to_dict() == {
            "title": "Dune",
            "author": "Herbert",
            "isbn": "",
            "published_year": None,
            "genre": "",
        }


class TestRecord:
    """Tests for the Record value object."""

    def test_to_dict_from_dict(self, store):
        """Test a record survives serialization."""
        record = store.create(dune(isbn="978-0441013593", published_year=1965))

        data = record.to_dict()
        assert data["isbn"] == "978-0441013593"
        assert data["published_year"] == 1965
        assert data["created_at"] == record.created_at.isoformat()

        assert Record.from_dict(data) == record

    def test_records_are_immutable(self, store):
        """Test records cannot be changed in place."""
        record = store.list()[0]
        with pytest.raises(AttributeError):
            record.title = "Changed"


class TestRecordStoreCreate:
    """Tests for creating records."""

    def test_seeded(self, store):
        """Test the store starts with the seed books."""
        titles = [r.title for r in store.list()]
        assert titles == ["The Great Gatsby", "To Kill a Mockingbird"]
        assert store.count == 2

    def test_create_appends(self, store):
        """Test a new record is appended with fresh id and timestamps."""
        record = store.create(dune())

        assert store.count == 3
        assert store.list()[-1] == record
        assert record.id not in {r.id for r in store.list()[:-1]}
        assert record.created_at == record.updated_at
        assert record.isbn == ""
        assert store.get(record.id) == record

    def test_create_unique_ids(self, store):
        """Test every record gets its own id."""
        ids = {store.create(dune()).id for _ in range(20)}
        assert len(ids) == 20

    def test_create_duplicate_isbn(self, store):
        """Test a taken ISBN is a conflict and nothing changes."""
        before = store.list()

        with pytest.raises(ConflictError, match="ISBN already exists"):
            store.create(dune(isbn="978-0-7432-7356-5"))

        assert store.list() == before

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"title": "", "author": ""}, "title"),
            ({"title": "Dune", "author": "   "}, "author"),
            ({"title": "Dune", "author": "Herbert", "published_year": 3000}, "published_year"),
            ({"title": "Dune", "author": "Herbert", "published_year": True}, "published_year"),
        ],
    )
    def test_create_rejects_invalid_fields(self, store, kwargs, field):
        """Test fields built without a payload are still validated."""
        before = store.list()

        with pytest.raises(ValidationError) as exc_info:
            store.create(RecordFields(**kwargs))

        assert exc_info.value.field == field
        assert store.list() == before

    def test_empty_isbn_not_unique(self, store):
        """Test many records may have no ISBN."""
        store.create(dune())
        store.create(dune())
        assert store.count == 4


class TestRecordStoreUpdate:
    """Tests for updating records."""

    def test_update_replaces_fields(self, store):
        """Test update keeps id and created_at and advances updated_at."""
        record = store.create(dune())

        updated, previous = store.update(record.id, dune(genre="Science Fiction"))

        assert previous == record
        assert updated.id == record.id
        assert updated.genre == "Science Fiction"
        assert updated.created_at == record.created_at
        assert updated.updated_at > record.updated_at
        assert store.get(record.id) == updated

    def test_update_keeps_position(self, store):
        """Test an update does not move the record."""
        record = store.create(dune())
        store.update(record.id, dune(genre="Science Fiction"))

        assert [r.id for r in store.list()][-1] == record.id

    def test_update_clears_omitted_optional_fields(self, store):
        """Test update is a full replacement of mutable fields."""
        record = store.create(dune(isbn="111", genre="SF", published_year=1965))
        updated, _ = store.update(record.id, dune())

        assert updated.isbn == ""
        assert updated.genre == ""
        assert updated.published_year is None

    def test_update_may_keep_own_isbn(self, store):
        """Test the uniqueness check excludes the record itself."""
        gatsby = store.list()[0]
        updated, _ = store.update(
            gatsby.id,
            RecordFields.from_payload({**gatsby.to_dict(), "genre": "Classic"}),
        )
        assert updated.isbn == gatsby.isbn

    def test_update_conflict(self, store):
        """Test taking another record's ISBN is rejected atomically."""
        record = store.create(dune())
        before = store.list()

        with pytest.raises(ConflictError):
            store.update(record.id, dune(isbn="978-0-06-112008-4"))

        assert store.list() == before

    def test_update_not_found(self, store):
        """Test updating an unknown id."""
        before = store.list()
        with pytest.raises(NotFoundError):
            store.update("missing", dune())
        assert store.list() == before

    def test_updated_at_never_before_created_at(self):
        """Test a clock going backwards cannot break updated_at >= created_at."""
        times = iter(
            [
                datetime(2025, 1, 2, tzinfo=timezone.utc),
                datetime(2025, 1, 1, tzinfo=timezone.utc),
            ]
        )
        store = RecordStore(clock=lambda: next(times))
        record = store.create(dune())

        updated, _ = store.update(record.id, dune(genre="SF"))

        assert updated.updated_at >= updated.created_at


class TestRecordStoreDelete:
    """Tests for deleting and reading records."""

    def test_delete(self, store):
        """Test delete removes and returns the record."""
        record = store.create(dune())

        removed = store.delete(record.id)

        assert removed == record
        assert store.count == 2
        assert record.id not in store

    def test_delete_not_found(self, store):
        """Test deleting an unknown id leaves the store alone."""
        before = store.list()
        with pytest.raises(NotFoundError):
            store.delete("missing")
        assert store.list() == before

    def test_get_not_found(self, store):
        """Test get signals a missing id."""
        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_list_is_a_copy(self, store):
        """Test callers cannot mutate the store through list()."""
        snapshot = store.list()
        snapshot.clear()
        assert store.count == 2

    def test_isbn_unique_across_sequence(self, store):
        """Test no sequence of creates and updates yields duplicate ISBNs."""
        a = store.create(dune(isbn="A"))
        b = store.create(dune(isbn="B"))
        for record_id, isbn in [(a.id, "B"), (b.id, "A"), (a.id, "C"), (b.id, "A")]:
            try:
                store.update(record_id, dune(isbn=isbn))
            except ConflictError:
                pass

        isbns = [r.isbn for r in store.list() if r.isbn]
        assert len(isbns) == len(set(isbns))
