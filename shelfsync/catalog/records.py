"""Record schema and field validation for the book catalog."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from ..exceptions import ValidationError

REQUIRED_MESSAGE = "Title and author are required"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Record:
    """A single catalog entry."""

    id: str
    title: str
    author: str
    created_at: datetime
    updated_at: datetime
    isbn: str = ""
    published_year: int | None = None
    genre: str = ""

    def with_fields(self, fields: "RecordFields", updated_at: datetime) -> "Record":
        """Return a copy with all mutable fields replaced.

        ``id`` and ``created_at`` are carried over unchanged.
        """
        return replace(
            self,
            title=fields.title,
            author=fields.author,
            isbn=fields.isbn,
            published_year=fields.published_year,
            genre=fields.genre,
            updated_at=max(updated_at, self.created_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "published_year": self.published_year,
            "genre": self.genre,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            isbn=data.get("isbn") or "",
            published_year=data.get("published_year"),
            genre=data.get("genre") or "",
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


def _optional_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field=key)
    return value.strip()


def _published_year(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationError(
                "Please enter a valid year", field="published_year"
            ) from None
    _check_year(value)
    return value


def _check_year(value: Any) -> None:
    if value is None:
        return
    # bool is an int subclass; True is not a year
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Please enter a valid year", field="published_year")
    if value < 0 or value > utcnow().year:
        raise ValidationError("Please enter a valid year", field="published_year")


@dataclass(frozen=True)
class RecordFields:
    """The mutable fields accepted by create and update.

    Validated on construction, so an invalid field set never reaches the
    store however it was built.
    """

    title: str
    author: str
    isbn: str = ""
    published_year: int | None = None
    genre: str = ""

    def __post_init__(self):
        for name in ("title", "author"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(REQUIRED_MESSAGE, field=name)
        for name in ("isbn", "genre"):
            if not isinstance(getattr(self, name), str):
                raise ValidationError(f"{name} must be a string", field=name)
        _check_year(self.published_year)

    @classmethod
    def from_payload(cls, payload: Any) -> "RecordFields":
        """Validate a raw request payload.

        Args:
            payload: Mapping with title, author and optional isbn,
                published_year and genre. Unknown keys are ignored.

        Returns:
            Validated RecordFields.

        Raises:
            ValidationError: If a required field is missing or empty, a
                field has the wrong type, or the year is out of range.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        title = payload.get("title")
        author = payload.get("author")
        if title is not None and not isinstance(title, str):
            raise ValidationError("title must be a string", field="title")
        if author is not None and not isinstance(author, str):
            raise ValidationError("author must be a string", field="author")

        title = (title or "").strip()
        author = (author or "").strip()
        if not title:
            raise ValidationError(REQUIRED_MESSAGE, field="title")
        if not author:
            raise ValidationError(REQUIRED_MESSAGE, field="author")

        return cls(
            title=title,
            author=author,
            isbn=_optional_text(payload, "isbn"),
            published_year=_published_year(payload.get("published_year")),
            genre=_optional_text(payload, "genre"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "published_year": self.published_year,
            "genre": self.genre,
        }


SEED_BOOKS = [
    RecordFields(
        title="The Great Gatsby",
        author="F. Scott Fitzgerald",
        isbn="978-0-7432-7356-5",
        published_year=1925,
        genre="Fiction",
    ),
    RecordFields(
        title="To Kill a Mockingbird",
        author="Harper Lee",
        isbn="978-0-06-112008-4",
        published_year=1960,
        genre="Fiction",
    ),
]
