"""Type-checked filter documents for a record type.

    q = query(User).username("alice").age.gte(18)
    Query.to_bson(q)     # {"username": "alice", "age": {"$gte": 18}}

Each field accessor knows the declared type of its field, so operators that
make no sense for it (``regex`` on an int, ``of_length`` on a string) are
simply not there. Every operator replaces what was set for that field before
and returns the query, so calls chain.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar

from typed_documents import rules
from typed_documents.document import DocumentType
from typed_documents.types import FieldDescriptor, optional_inner, schema_of, split_annotated

T = TypeVar("T")


class Query(Generic[T]):
    """An accumulating filter document for records of one type.

    The query owns its document: the constructor and the combinators copy
    what they are given, so changing one query never changes another.

    Fields named like a member of this class (``document``, ``field``,
    ``set``, ``record_type``, ``to_bson``) are reached with ``field(name)``
    instead of attribute access.
    """

    def __init__(self, record_type: type[T], document: Mapping[str, Any] | None = None) -> None:
        self._record_type = record_type
        self._schema = schema_of(record_type)
        self._document: dict[str, Any] = copy.deepcopy(dict(document or {}))

    @property
    def record_type(self) -> type[T]:
        return self._record_type

    @property
    def document(self) -> dict[str, Any]:
        """The filter document built so far."""
        return self._document

    def field(self, name: str) -> FieldQuery:
        """Return the accessor for a field by its attribute name."""
        f = self._schema.get_field(name)
        if f is None or f.ignored:
            raise AttributeError(f"'{self._schema.name}' has no queryable field '{name}'")
        return _field_query_class(f)(self, f.document_name)

    def __getattr__(self, name: str) -> FieldQuery:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.field(name)

    def set(self, key: str, value: Any) -> Query[T]:
        """Set the condition for ``key``, replacing any earlier one."""
        self._document[key] = value
        return self

    @staticmethod
    def to_bson(q: Query[Any]) -> dict[str, Any]:
        return q._document

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Query):
            return NotImplemented
        return self._record_type is other._record_type and self._document == other._document

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Query({self._record_type.__name__}, {self._document!r})"


class FieldQuery:
    """Operators available on every field."""

    def __init__(self, parent: Query[Any], name: str) -> None:
        self._parent = parent
        self._name = name

    @property
    def name(self) -> str:
        """Key the field is stored under."""
        return self._name

    def _set(self, condition: Any) -> Query[Any]:
        return self._parent.set(self._name, condition)

    def _operator(self, op: str, operand: Any) -> Query[Any]:
        return self._set({op: operand})

    def __call__(self, value: Any) -> Query[Any]:
        return self.equals(value)

    def equals(self, value: Any) -> Query[Any]:
        return self._set(rules.encode(value))

    def ne(self, value: Any) -> Query[Any]:
        return self._operator("$ne", rules.encode(value))

    def gt(self, value: Any) -> Query[Any]:
        return self._operator("$gt", rules.encode(value))

    def gte(self, value: Any) -> Query[Any]:
        return self._operator("$gte", rules.encode(value))

    def lt(self, value: Any) -> Query[Any]:
        return self._operator("$lt", rules.encode(value))

    def lte(self, value: Any) -> Query[Any]:
        return self._operator("$lte", rules.encode(value))

    def one_of(self, *values: Any) -> Query[Any]:
        """Match any of ``values`` (``$in``)."""
        return self.in_array(values)

    def in_array(self, values: Iterable[Any]) -> Query[Any]:
        return self._operator("$in", [rules.encode(v) for v in values])

    def none_of(self, *values: Any) -> Query[Any]:
        """Match none of ``values`` (``$nin``)."""
        return self.not_in_array(values)

    def not_in_array(self, values: Iterable[Any]) -> Query[Any]:
        return self._operator("$nin", [rules.encode(v) for v in values])

    def exists(self, exists: bool = True) -> Query[Any]:
        return self._operator("$exists", exists)

    def type_of(self, tp: DocumentType) -> Query[Any]:
        return self._operator("$type", int(tp))

    def type_of_any(self, *types: DocumentType | Iterable[DocumentType]) -> Query[Any]:
        """Match any of the given types; accepts them spread out or as one list."""
        if len(types) == 1 and not isinstance(types[0], int):
            types = tuple(types[0])  # type: ignore[arg-type]
        return self._operator("$type", [int(t) for t in types])  # type: ignore[arg-type]

    eq = equal = equals
    not_equals = not_equal = ne
    greater_than = gt
    greater_than_or_equal = gte
    less_than = lt
    less_than_or_equal = lte
    not_one_of = none_of


class SequenceFieldQuery(FieldQuery):
    """Operators for array fields."""

    def contains_all(self, values: Iterable[Any]) -> Query[Any]:
        return self._operator("$all", [rules.encode(v) for v in values])

    def of_length(self, length: int) -> Query[Any]:
        return self._operator("$size", length)

    all = contains_all
    size = of_length


class IntegerFieldQuery(FieldQuery):
    """Operators for integer fields.

    Bit masks are given either as an integer or as a list of bit positions.
    """

    def bits_all_clear(self, mask: int | Iterable[int]) -> Query[Any]:
        return self._operator("$bitsAllClear", rules.encode(mask))

    def bits_all_set(self, mask: int | Iterable[int]) -> Query[Any]:
        return self._operator("$bitsAllSet", rules.encode(mask))

    def bits_any_clear(self, mask: int | Iterable[int]) -> Query[Any]:
        return self._operator("$bitsAnyClear", rules.encode(mask))

    def bits_any_set(self, mask: int | Iterable[int]) -> Query[Any]:
        return self._operator("$bitsAnySet", rules.encode(mask))

    def remainder(self, divisor: int, remainder: int) -> Query[Any]:
        """Match values where ``value % divisor == remainder`` (``$mod``)."""
        return self._operator("$mod", [divisor, remainder])


class TextFieldQuery(FieldQuery):
    """Operators for string fields."""

    def regex(self, pattern: str, options: str | None = None) -> Query[Any]:
        condition: dict[str, Any] = {"$regex": pattern}
        if options:
            condition["$options"] = options
        return self._set(condition)


def _field_query_class(f: FieldDescriptor) -> type[FieldQuery]:
    base = split_annotated(f.type_hint)[0]
    inner = optional_inner(base)
    if inner is not None:
        base = split_annotated(inner)[0]

    if f.is_binary:
        return FieldQuery
    if rules.rule_for_type(base).name in ("sequence", "tuple"):
        return SequenceFieldQuery
    if isinstance(base, type):
        if issubclass(base, str):
            return TextFieldQuery
        if issubclass(base, int) and not issubclass(base, bool):
            return IntegerFieldQuery
    return FieldQuery


def query(record_type: type[T]) -> Query[T]:
    """Start an empty query for ``record_type``."""
    return Query(record_type)


def _combine(op: str, queries: Iterable[Query[T]]) -> Query[T]:
    queries = list(queries)
    if not queries:
        raise ValueError(f"{op} needs at least one query")
    record_type = queries[0].record_type
    for q in queries[1:]:
        if q.record_type is not record_type:
            raise TypeError(
                f"Cannot combine queries on {record_type.__name__} and {q.record_type.__name__}"
            )
    return Query(record_type, {op: [Query.to_bson(q) for q in queries]})


def and_(*queries: Query[T]) -> Query[T]:
    """Match records satisfying every query.

    At least one query is required, since the record type of the result is
    taken from it. An empty call raises ValueError rather than producing
    ``{"$and": []}``. The same holds for ``or_``, ``nor`` and ``not_``.
    """
    return _combine("$and", queries)


def or_(*queries: Query[T]) -> Query[T]:
    return _combine("$or", queries)


def nor(*queries: Query[T]) -> Query[T]:
    return _combine("$nor", queries)


def not_(queries: Iterable[Query[T]]) -> Query[T]:
    """Negate queries. Unlike ``and_``/``or_``/``nor`` this takes one sequence."""
    return _combine("$not", queries)
