"""The document store collaborator.

The mapping core never talks to a server itself. It hands encoded documents
to an object implementing :class:`Collection`; :class:`PyMongoCollection`
implements it on top of pymongo.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from enum import IntFlag
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pymongo import ASCENDING, CursorType, MongoClient

if TYPE_CHECKING:
    from pymongo.collection import Collection as MongoCollection

logger = logging.getLogger(__name__)


class QueryFlags(IntFlag):
    """Options for ``find``."""

    NONE = 0
    TAILABLE_CURSOR = 1 << 1
    SECONDARY_OK = 1 << 2
    NO_CURSOR_TIMEOUT = 1 << 4
    AWAIT_DATA = 1 << 5
    EXHAUST = 1 << 6
    PARTIAL = 1 << 7


class UpdateFlags(IntFlag):
    """Options for ``update``."""

    NONE = 0
    UPSERT = 1 << 0
    MULTI_UPDATE = 1 << 1


class DeleteFlags(IntFlag):
    """Options for ``remove``."""

    NONE = 0
    SINGLE_REMOVE = 1 << 0


class InsertFlags(IntFlag):
    """Options for ``insert``."""

    NONE = 0
    CONTINUE_ON_ERROR = 1 << 0


class IndexFlags(IntFlag):
    """Options for ``ensure_index``."""

    NONE = 0
    BACKGROUND = 1 << 0
    DROP_DUPLICATES = 1 << 1
    SPARSE = 1 << 2
    UNIQUE = 1 << 3
    EXPIRE_AFTER_SECONDS = 1 << 4


@runtime_checkable
class Cursor(Protocol):
    """Iterable query result that can still be sorted and sliced."""

    def __iter__(self) -> Iterator[dict[str, Any]]: ...

    def sort(self, key_or_list: Any, direction: Any = None) -> Any: ...

    def limit(self, limit: int) -> Any: ...

    def skip(self, skip: int) -> Any: ...


@runtime_checkable
class Collection(Protocol):
    """What the mapping layer needs from a document collection."""

    @property
    def name(self) -> str: ...

    def find_one(self, filter: Mapping[str, Any]) -> dict[str, Any] | None: ...

    def find(
        self,
        filter: Mapping[str, Any] | None = None,
        flags: QueryFlags = QueryFlags.NONE,
        skip: int = 0,
        batch_size: int = 0,
    ) -> Cursor: ...

    def insert(
        self,
        documents: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        flags: InsertFlags = InsertFlags.NONE,
    ) -> None: ...

    def update(
        self,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        flags: UpdateFlags = UpdateFlags.NONE,
    ) -> None: ...

    def remove(
        self,
        filter: Mapping[str, Any] | None = None,
        flags: DeleteFlags = DeleteFlags.NONE,
    ) -> None: ...

    def ensure_index(
        self,
        fields: Sequence[tuple[str, int]],
        flags: IndexFlags = IndexFlags.NONE,
        expire_after_seconds: int = 0,
    ) -> None: ...

    def count(self, filter: Mapping[str, Any] | None = None) -> int: ...

    def drop(self) -> None: ...

    def aggregate(self, pipeline: Sequence[Mapping[str, Any]], **options: Any) -> Iterable[dict[str, Any]]: ...


def _is_operator_document(update: Mapping[str, Any]) -> bool:
    return bool(update) and all(key.startswith("$") for key in update)


class PyMongoCollection:
    """:class:`Collection` implemented on a pymongo collection."""

    def __init__(self, collection: MongoCollection) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    @property
    def raw(self) -> MongoCollection:
        """Return the wrapped pymongo collection."""
        return self._collection

    def find_one(self, filter: Mapping[str, Any]) -> dict[str, Any] | None:
        return self._collection.find_one(filter)

    def find(
        self,
        filter: Mapping[str, Any] | None = None,
        flags: QueryFlags = QueryFlags.NONE,
        skip: int = 0,
        batch_size: int = 0,
    ) -> Cursor:
        cursor_type = CursorType.NON_TAILABLE
        if flags & QueryFlags.TAILABLE_CURSOR:
            cursor_type = CursorType.TAILABLE
            if flags & QueryFlags.AWAIT_DATA:
                cursor_type = CursorType.TAILABLE_AWAIT
        elif flags & QueryFlags.EXHAUST:
            cursor_type = CursorType.EXHAUST
        return self._collection.find(
            filter or {},
            skip=skip,
            batch_size=batch_size,
            cursor_type=cursor_type,
            no_cursor_timeout=bool(flags & QueryFlags.NO_CURSOR_TIMEOUT),
            allow_partial_results=bool(flags & QueryFlags.PARTIAL),
        )

    def insert(
        self,
        documents: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        flags: InsertFlags = InsertFlags.NONE,
    ) -> None:
        if isinstance(documents, Mapping):
            self._collection.insert_one(documents)
        else:
            ordered = not (flags & InsertFlags.CONTINUE_ON_ERROR)
            self._collection.insert_many(list(documents), ordered=ordered)

    def update(
        self,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        flags: UpdateFlags = UpdateFlags.NONE,
    ) -> None:
        upsert = bool(flags & UpdateFlags.UPSERT)
        if not _is_operator_document(update):
            # Whole-document replacement
            self._collection.replace_one(filter, update, upsert=upsert)
        elif flags & UpdateFlags.MULTI_UPDATE:
            self._collection.update_many(filter, update, upsert=upsert)
        else:
            self._collection.update_one(filter, update, upsert=upsert)

    def remove(
        self,
        filter: Mapping[str, Any] | None = None,
        flags: DeleteFlags = DeleteFlags.NONE,
    ) -> None:
        if flags & DeleteFlags.SINGLE_REMOVE:
            self._collection.delete_one(filter or {})
        else:
            self._collection.delete_many(filter or {})

    def ensure_index(
        self,
        fields: Sequence[tuple[str, int]],
        flags: IndexFlags = IndexFlags.NONE,
        expire_after_seconds: int = 0,
    ) -> None:
        options: dict[str, Any] = {}
        if flags & IndexFlags.BACKGROUND:
            options["background"] = True
        if flags & IndexFlags.SPARSE:
            options["sparse"] = True
        if flags & IndexFlags.UNIQUE:
            options["unique"] = True
        if flags & IndexFlags.EXPIRE_AFTER_SECONDS:
            options["expireAfterSeconds"] = expire_after_seconds
        if flags & IndexFlags.DROP_DUPLICATES:
            logger.warning(
                "dropDups is not supported by current servers; ignored for index on %s",
                [name for name, _ in fields],
            )
        keys = [(name, direction or ASCENDING) for name, direction in fields]
        self._collection.create_index(keys, **options)

    def count(self, filter: Mapping[str, Any] | None = None) -> int:
        return self._collection.count_documents(filter or {})

    def drop(self) -> None:
        self._collection.drop()

    def aggregate(self, pipeline: Sequence[Mapping[str, Any]], **options: Any) -> Iterable[dict[str, Any]]:
        return self._collection.aggregate(list(pipeline), **options)


def connect(uri: str, database: str, collection: str, **client_options: Any) -> PyMongoCollection:
    """Open a client and return one of its collections as a :class:`Collection`.

    Args:
        uri: MongoDB connection string.
        database: Database name.
        collection: Collection name.
        **client_options: Passed through to ``pymongo.MongoClient``.
    """
    client: MongoClient[dict[str, Any]] = MongoClient(uri, **client_options)
    return PyMongoCollection(client[database][collection])
