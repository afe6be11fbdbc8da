"""Field annotations attached to record fields with ``typing.Annotated``.

Example::

    @dataclass
    class User(Document):
        username: Annotated[str, mongo_unique]
        salt: Annotated[bytes, binary_type()] = b""
        created: Annotated[SchemaDate, schema_name("date-created")] = ...
        session: Annotated[int, schema_ignore] = 0
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from typed_documents.document import BinarySubtype


@dataclass(frozen=True)
class FieldAnnotation:
    """Base class for all field annotations."""

    # Annotations that may appear at most once on a field
    unique_per_field = True


@dataclass(frozen=True)
class SchemaIgnore(FieldAnnotation):
    """The field is never encoded or decoded."""

    unique_per_field = False


@dataclass(frozen=True)
class SchemaName(FieldAnnotation):
    """Store the field under a custom key."""

    name: str


@dataclass(frozen=True)
class Encode(FieldAnnotation):
    """Encode the field by calling the named method of the record.

    The method receives the whole record (as ``self``) and its result is
    stored as-is.
    """

    func: str


@dataclass(frozen=True)
class Decode(FieldAnnotation):
    """Decode the field by calling the named method with the whole document."""

    func: str


@dataclass(frozen=True)
class BinaryType(FieldAnnotation):
    """Store the field as binary data. The field must hold one-byte elements."""

    subtype: int = BinarySubtype.GENERIC


@dataclass(frozen=True)
class FixedLength(FieldAnnotation):
    """The stored array (or binary data) must have exactly this many elements."""

    length: int


@dataclass(frozen=True)
class IndexAnnotation(FieldAnnotation):
    """Base class for annotations that request an index on the field."""

    unique_per_field = False


@dataclass(frozen=True)
class MongoForceIndex(IndexAnnotation):
    """Create an index even when no index flag is set."""


@dataclass(frozen=True)
class MongoBackground(IndexAnnotation):
    """Build the index in the background."""


@dataclass(frozen=True)
class MongoDropDuplicates(IndexAnnotation):
    """Drop duplicates while building a unique index (old servers only)."""


@dataclass(frozen=True)
class MongoSparse(IndexAnnotation):
    """Omit documents that do not contain the field from the index."""


@dataclass(frozen=True)
class MongoUnique(IndexAnnotation):
    """Reject documents with a duplicate value for the field."""


@dataclass(frozen=True)
class MongoExpire(IndexAnnotation):
    """Expire documents this many seconds after the (date) field value."""

    seconds: int

    unique_per_field = True

    def __post_init__(self) -> None:
        if isinstance(self.seconds, timedelta):
            object.__setattr__(self, "seconds", int(self.seconds.total_seconds()))
        if self.seconds < 0:
            raise ValueError("Expiry must not be negative")


schema_ignore = SchemaIgnore()
mongo_force_index = MongoForceIndex()
mongo_background = MongoBackground()
mongo_drop_duplicates = MongoDropDuplicates()
mongo_sparse = MongoSparse()
mongo_unique = MongoUnique()


def schema_name(name: str) -> SchemaName:
    """Store the field under ``name``."""
    return SchemaName(name)


def binary_type(subtype: int = BinarySubtype.GENERIC) -> BinaryType:
    """Store the field as binary data of the given subtype."""
    return BinaryType(subtype)


def mongo_expire(seconds: int | timedelta) -> MongoExpire:
    """Expire documents ``seconds`` after the field's date value."""
    return MongoExpire(seconds)  # type: ignore[arg-type]


def fixed_length(length: int) -> FixedLength:
    return FixedLength(length)
