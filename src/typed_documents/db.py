"""Binding record types to collections, and persisting records.

    @dataclass
    class User(Document):
        username: Annotated[str, mongo_unique]
        age: int = 0

    bind(User, connect("mongodb://localhost", "app", "users"))

    user = User("alice", 31)
    user.save()
    User.find_one(query(User).username("alice"))
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from bson.objectid import ObjectId

from typed_documents import rules
from typed_documents.document import ID_KEY
from typed_documents.errors import BindingError, DocumentNotFoundError, PipelineError
from typed_documents.mapper import from_document, get_identity, set_identity, to_document
from typed_documents.query import Query
from typed_documents.store import Collection, Cursor, DeleteFlags, QueryFlags, UpdateFlags
from typed_documents.types import schema_of

logger = logging.getLogger(__name__)

T = TypeVar("T")
D = TypeVar("D", bound="Document")

# Class attribute holding the collection a record type is bound to
COLLECTION_ATTR = "__schema_collection__"


def bind(record_type: type, collection: Collection) -> None:
    """Bind a record type to the collection its records are stored in.

    Builds (and so validates) the record schema and creates the indexes its
    field annotations ask for. A type can be bound only once.

    Raises:
        BindingError: If the type is already bound.
        DefinitionError: If the record type can never be mapped.
    """
    schema = schema_of(record_type)
    if COLLECTION_ATTR in record_type.__dict__:
        raise BindingError(f"'{schema.name}' is already bound to a collection")

    for name, spec in schema.indexes():
        logger.debug("Ensuring index on %s.%s (flags=%r)", collection.name, name, spec.flags)
        collection.ensure_index([(name, 1)], spec.flags, spec.expire_after_seconds)

    setattr(record_type, COLLECTION_ATTR, collection)
    logger.debug("Bound %s to collection %s", schema.name, collection.name)


register = bind


def collection_of(record_type: type) -> Collection:
    """Return the collection a record type is bound to.

    Raises:
        BindingError: If the type was never bound.
    """
    collection = record_type.__dict__.get(COLLECTION_ATTR)
    if collection is None:
        raise BindingError(f"'{record_type.__name__}' is not bound to a collection")
    return collection


def is_bound(record_type: type) -> bool:
    return COLLECTION_ATTR in record_type.__dict__


def to_filter(q: Query[Any] | Mapping[str, Any] | None) -> dict[str, Any]:
    """Turn a query argument (Query, plain dict or None) into a filter document."""
    if q is None:
        return {}
    if isinstance(q, Query):
        return Query.to_bson(q)
    return rules.encode(q)


def _object_id(id: ObjectId | str) -> ObjectId:
    if isinstance(id, ObjectId):
        return id
    return ObjectId(id)


class Document:
    """Mixin for dataclass records that live in a collection.

    The identity is kept outside the dataclass fields and stored under
    ``_id``; it is generated on the first successful ``save``.
    """

    __schema_identity__: ClassVar[bool] = True

    @property
    def bson_id(self) -> ObjectId | None:
        return get_identity(self)

    @bson_id.setter
    def bson_id(self, object_id: ObjectId | None) -> None:
        set_identity(self, object_id)

    @classmethod
    def collection(cls) -> Collection:
        return collection_of(cls)

    def save(self) -> None:
        """Insert the record, or replace the stored one if it has an identity."""
        collection = collection_of(type(self))
        object_id = self.bson_id
        if object_id is None:
            object_id = ObjectId()
            collection.insert({ID_KEY: object_id, **to_document(self)})
            self.bson_id = object_id
            logger.debug("Inserted %s %s", type(self).__name__, object_id)
        else:
            collection.update({ID_KEY: object_id}, to_document(self), UpdateFlags.UPSERT)
            logger.debug("Replaced %s %s", type(self).__name__, object_id)

    def merge(self) -> None:
        """Like ``save``, but only sets the record's fields on the stored document."""
        object_id = self.bson_id
        if object_id is None:
            self.save()
            return
        fields = to_document(self)
        fields.pop(ID_KEY, None)
        collection_of(type(self)).update({ID_KEY: object_id}, {"$set": fields}, UpdateFlags.UPSERT)
        logger.debug("Merged %s %s", type(self).__name__, object_id)

    def remove(self) -> bool:
        """Delete the stored record. Returns False if it was never saved."""
        object_id = self.bson_id
        if object_id is None:
            return False
        collection_of(type(self)).remove({ID_KEY: object_id}, DeleteFlags.SINGLE_REMOVE)
        logger.debug("Removed %s %s", type(self).__name__, object_id)
        return True

    @classmethod
    def find_one_or_throw(cls, q: Query[Any] | Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Return the first matching raw document.

        Raises:
            DocumentNotFoundError: If nothing matches.
        """
        doc = collection_of(cls).find_one(to_filter(q))
        if doc is None:
            raise DocumentNotFoundError(f"No {cls.__name__} matches {to_filter(q)!r}")
        return doc

    @classmethod
    def find_by_id(cls: type[D], id: ObjectId | str) -> D:
        return from_document(cls.find_one_or_throw({ID_KEY: _object_id(id)}), cls)

    @classmethod
    def find_one(cls: type[D], q: Query[Any] | Mapping[str, Any] | None = None) -> D:
        return from_document(cls.find_one_or_throw(q), cls)

    @classmethod
    def try_find_by_id(cls: type[D], id: ObjectId | str, default: D | None = None) -> D | None:
        doc = collection_of(cls).find_one({ID_KEY: _object_id(id)})
        if doc is None:
            return default
        return from_document(doc, cls)

    @classmethod
    def try_find_one(
        cls: type[D], q: Query[Any] | Mapping[str, Any] | None = None, default: D | None = None
    ) -> D | None:
        doc = collection_of(cls).find_one(to_filter(q))
        if doc is None:
            return default
        return from_document(doc, cls)

    @classmethod
    def find(
        cls: type[D],
        q: Query[Any] | Mapping[str, Any] | None = None,
        flags: QueryFlags = QueryFlags.NONE,
        skip: int = 0,
        batch_size: int = 0,
    ) -> list[D]:
        return list(cls.find_range(q, flags, skip, batch_size))

    @classmethod
    def find_range(
        cls: type[D],
        q: Query[Any] | Mapping[str, Any] | None = None,
        flags: QueryFlags = QueryFlags.NONE,
        skip: int = 0,
        batch_size: int = 0,
    ) -> DocumentRange[D]:
        cursor = collection_of(cls).find(to_filter(q), flags, skip, batch_size)
        return DocumentRange(cursor, cls)

    @classmethod
    def find_all(cls: type[D]) -> DocumentRange[D]:
        return cls.find_range()

    @classmethod
    def insert_many(cls, records: Iterable[Document]) -> None:
        """Insert records in one call, letting the store assign their identities."""
        records = list(records)
        docs = []
        for r in records:
            r.bson_id = None
            docs.append(to_document(r))
        collection_of(cls).insert(docs)
        # pymongo writes the ids it generated back into the inserted dicts
        for r, doc in zip(records, docs):
            r.bson_id = doc.get(ID_KEY)
        logger.debug("Inserted %d %s records", len(docs), cls.__name__)

    @classmethod
    def update(
        cls,
        q: Query[Any] | Mapping[str, Any] | None,
        update: Mapping[str, Any],
        flags: UpdateFlags = UpdateFlags.NONE,
    ) -> None:
        collection_of(cls).update(to_filter(q), rules.encode(update), flags)
        logger.debug("Updated %s where %r", cls.__name__, to_filter(q))

    @classmethod
    def upsert(cls, q: Query[Any] | Mapping[str, Any] | None, update: Mapping[str, Any]) -> None:
        cls.update(q, update, UpdateFlags.UPSERT)

    @classmethod
    def remove_where(
        cls, selector: Query[Any] | Mapping[str, Any] | None, flags: DeleteFlags = DeleteFlags.NONE
    ) -> None:
        collection_of(cls).remove(to_filter(selector), flags)
        logger.debug("Removed %s where %r", cls.__name__, to_filter(selector))

    @classmethod
    def remove_all(cls) -> None:
        cls.remove_where(None)

    @classmethod
    def drop_table(cls) -> None:
        collection_of(cls).drop()
        logger.debug("Dropped collection of %s", cls.__name__)

    @classmethod
    def count(cls, q: Query[Any] | Mapping[str, Any] | None = None) -> int:
        return collection_of(cls).count(to_filter(q))

    @classmethod
    def count_all(cls) -> int:
        return cls.count(None)

    @classmethod
    def aggregate(cls) -> SchemaPipeline:
        """Start an aggregation pipeline on the record type's collection."""
        return SchemaPipeline(collection_of(cls))


_EMPTY = object()


class DocumentRange(Generic[T]):
    """Lazily decoded query results.

    Iterate it, or walk it with ``empty`` / ``front`` / ``pop_front``.
    ``sort``, ``limit`` and ``skip`` must be called before reading.
    """

    def __init__(self, cursor: Cursor, record_type: type[T]) -> None:
        self._cursor = cursor
        self._record_type = record_type
        self._iterator: Iterator[dict[str, Any]] | None = None
        self._front: Any = _EMPTY

    def sort(self, order: Mapping[str, int] | Sequence[tuple[str, int]]) -> DocumentRange[T]:
        if isinstance(order, Mapping):
            order = list(order.items())
        self._cursor = self._cursor.sort(list(order))
        return self

    def limit(self, count: int) -> DocumentRange[T]:
        self._cursor = self._cursor.limit(count)
        return self

    def skip(self, count: int) -> DocumentRange[T]:
        self._cursor = self._cursor.skip(count)
        return self

    def _fill(self) -> None:
        if self._front is not _EMPTY:
            return
        if self._iterator is None:
            self._iterator = iter(self._cursor)
        doc = next(self._iterator, None)
        if doc is not None:
            self._front = from_document(doc, self._record_type)

    @property
    def empty(self) -> bool:
        self._fill()
        return self._front is _EMPTY

    @property
    def front(self) -> T:
        if self.empty:
            raise IndexError("front of an empty DocumentRange")
        return self._front

    def pop_front(self) -> None:
        if self.empty:
            raise IndexError("pop_front of an empty DocumentRange")
        self._front = _EMPTY

    def __iter__(self) -> Iterator[T]:
        while not self.empty:
            item = self.front
            self.pop_front()
            yield item


@dataclass
class PipelineUnwindOperation:
    """Options of an ``$unwind`` stage."""

    path: str
    include_array_index: str | None = None
    preserve_null_and_empty_arrays: bool | None = None

    def to_stage(self) -> str | dict[str, Any]:
        path = self.path if self.path.startswith("$") else "$" + self.path
        if self.include_array_index is None and self.preserve_null_and_empty_arrays is None:
            return path
        options: dict[str, Any] = {"path": path}
        if self.include_array_index is not None:
            options["includeArrayIndex"] = self.include_array_index
        if self.preserve_null_and_empty_arrays is not None:
            options["preserveNullAndEmptyArrays"] = self.preserve_null_and_empty_arrays
        return options


class SchemaPipeline:
    """Builder for an aggregation pipeline.

    ``output_to`` writes the results to a collection and must be the last
    stage; adding anything after it raises ``PipelineError``.
    """

    def __init__(self, collection: Collection) -> None:
        self._collection = collection
        self._stages: list[dict[str, Any]] = []
        self._finalized = False

    @property
    def stages(self) -> list[dict[str, Any]]:
        return list(self._stages)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _add(self, name: str, value: Any) -> SchemaPipeline:
        if self._finalized:
            raise PipelineError(f"Cannot add {name} after the pipeline output stage")
        self._stages.append({name: value})
        return self

    def project(self, projection: Mapping[str, Any]) -> SchemaPipeline:
        return self._add("$project", rules.encode(projection))

    def match(self, q: Query[Any] | Mapping[str, Any]) -> SchemaPipeline:
        return self._add("$match", to_filter(q))

    def redact(self, expression: Any) -> SchemaPipeline:
        return self._add("$redact", rules.encode(expression))

    def limit(self, count: int) -> SchemaPipeline:
        return self._add("$limit", count)

    def skip(self, count: int) -> SchemaPipeline:
        return self._add("$skip", count)

    def unwind(
        self,
        path: str | PipelineUnwindOperation,
        preserve_null_and_empty_arrays: bool | None = None,
    ) -> SchemaPipeline:
        if not isinstance(path, PipelineUnwindOperation):
            path = PipelineUnwindOperation(
                path, preserve_null_and_empty_arrays=preserve_null_and_empty_arrays
            )
        return self._add("$unwind", path.to_stage())

    def group(self, id: Any, accumulators: Mapping[str, Any] | None = None) -> SchemaPipeline:
        """Group by ``id`` (an expression such as ``"$field"``)."""
        stage = {ID_KEY: rules.encode(id)}
        stage.update(rules.encode(dict(accumulators or {})))
        return self._add("$group", stage)

    def group_all(self, accumulators: Mapping[str, Any] | None = None) -> SchemaPipeline:
        return self.group(None, accumulators)

    def sample(self, size: int) -> SchemaPipeline:
        return self._add("$sample", {"size": size})

    def sort(self, order: Mapping[str, int]) -> SchemaPipeline:
        return self._add("$sort", dict(order))

    def geo_near(self, options: Mapping[str, Any]) -> SchemaPipeline:
        return self._add("$geoNear", rules.encode(options))

    def lookup(self, from_: str, local_field: str, foreign_field: str, as_: str) -> SchemaPipeline:
        return self._add(
            "$lookup",
            {"from": from_, "localField": local_field, "foreignField": foreign_field, "as": as_},
        )

    def output_to(self, collection_name: str) -> SchemaPipeline:
        self._add("$out", collection_name)
        self._finalized = True
        return self

    def index_stats(self) -> SchemaPipeline:
        return self._add("$indexStats", {})

    def run(self, **options: Any) -> Iterable[dict[str, Any]]:
        """Run the pipeline; ``options`` go to the store's ``aggregate``."""
        logger.debug("Running pipeline on %s: %r", self._collection.name, self._stages)
        return self._collection.aggregate(self._stages, **options)

    def collect(self, record_type: type[T] | None = None, **options: Any) -> list[Any]:
        """Run the pipeline and return the documents, decoded if ``record_type`` is given."""
        docs = self.run(**options)
        if record_type is None:
            return list(docs)
        return [from_document(doc, record_type) for doc in docs]
