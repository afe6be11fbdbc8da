"""A date field that can stand for "the time of saving"."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from typed_documents.errors import MappingError

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Sentinel value meaning "now", resolved when the date is encoded
NOW = -1


def _to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


class SchemaDate:
    """Milliseconds since the Unix epoch (UTC), stored as a BSON date.

    ``SchemaDate.now()`` is a sentinel that turns into the current time each
    time it is encoded, so a record field defaulting to it records the time
    of saving.
    """

    __slots__ = ("time",)

    def __init__(self, time: int = 0) -> None:
        self.time = int(time)

    @classmethod
    def now(cls) -> SchemaDate:
        return cls(NOW)

    @property
    def is_now(self) -> bool:
        return self.time == NOW

    @classmethod
    def from_datetime(cls, dt: datetime) -> SchemaDate:
        """Create from a datetime; naive values are taken as UTC."""
        return cls(_to_millis(dt))

    def to_datetime(self) -> datetime:
        """Return an aware UTC datetime, resolving the "now" sentinel."""
        if self.is_now:
            now = datetime.now(timezone.utc)
            return now.replace(microsecond=now.microsecond // 1000 * 1000)
        return _EPOCH + timedelta(milliseconds=self.time)

    def to_iso_ext_string(self) -> str:
        """Format as ``YYYY-MM-DDTHH:MM:SS.sssZ``."""
        dt = self.to_datetime()
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

    @classmethod
    def from_iso_ext_string(cls, text: str) -> SchemaDate:
        """Parse an ISO 8601 extended string; a trailing ``Z`` means UTC."""
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return cls.from_datetime(datetime.fromisoformat(text))
        except ValueError as e:
            raise ValueError(f"Invalid ISO date '{text}'") from e

    @staticmethod
    def to_bson(date: SchemaDate) -> datetime:
        return date.to_datetime()

    @classmethod
    def from_bson(cls, value: Any) -> SchemaDate:
        if not isinstance(value, datetime):
            raise MappingError(f"Cannot decode {type(value).__name__} as a date")
        return cls.from_datetime(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SchemaDate):
            return NotImplemented
        return self.time == other.time

    def __hash__(self) -> int:
        return hash(self.time)

    def __repr__(self) -> str:
        if self.is_now:
            return "SchemaDate.now()"
        return f"SchemaDate({self.time})"
