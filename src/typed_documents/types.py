"""Field descriptors and record schemas for the typed_documents library."""

from __future__ import annotations

import collections.abc
import dataclasses
import logging
import typing
from dataclasses import dataclass, field
from types import UnionType
from typing import Annotated, Any, Union

from typed_documents.annotations import (
    BinaryType,
    Decode,
    Encode,
    FieldAnnotation,
    FixedLength,
    IndexAnnotation,
    MongoBackground,
    MongoDropDuplicates,
    MongoExpire,
    MongoForceIndex,
    MongoSparse,
    MongoUnique,
    SchemaIgnore,
    SchemaName,
)
from typed_documents.document import ID_KEY
from typed_documents.errors import BinaryLengthError, DefinitionError
from typed_documents.store import IndexFlags

logger = logging.getLogger(__name__)

# Field types whose elements are exactly one byte wide
BYTE_SEQUENCE_TYPES: tuple[type, ...] = (bytes, bytearray)

_ANNOTATION_LABELS = {
    SchemaName: "name",
    Encode: "encoder",
    Decode: "decoder",
    BinaryType: "binary type",
    FixedLength: "fixed length",
    MongoExpire: "expiry value",
}


def split_annotated(hint: Any) -> tuple[Any, tuple[Any, ...]]:
    """Split ``Annotated[T, *meta]`` into ``(T, meta)``; other hints get empty meta."""
    if typing.get_origin(hint) is Annotated:
        return hint.__origin__, tuple(hint.__metadata__)
    return hint, ()


def field_annotations(metadata: tuple[Any, ...]) -> list[FieldAnnotation]:
    """Return the field annotations among ``Annotated`` metadata.

    Bare annotation classes (``Annotated[int, SchemaIgnore]``) are instantiated.
    """
    result: list[FieldAnnotation] = []
    for item in metadata:
        if isinstance(item, type) and issubclass(item, FieldAnnotation):
            item = item()
        if isinstance(item, FieldAnnotation):
            result.append(item)
    return result


def is_union(hint: Any) -> bool:
    """Check whether a hint is a ``Union`` / ``X | Y`` type."""
    return typing.get_origin(hint) is Union or isinstance(hint, UnionType)


def optional_inner(hint: Any) -> Any | None:
    """Return ``T`` for ``Optional[T]`` hints, else None."""
    if not is_union(hint):
        return None
    args = typing.get_args(hint)
    rest = [a for a in args if a is not type(None)]
    if len(args) == 2 and len(rest) == 1:
        return rest[0]
    return None


def defines_encode_hook(tp: Any) -> bool:
    """Check whether a type encodes itself via a ``to_bson`` hook."""
    return isinstance(tp, type) and callable(getattr(tp, "to_bson", None))


def defines_decode_hook(tp: Any) -> bool:
    """Check whether a type decodes itself via a ``from_bson`` hook."""
    return isinstance(tp, type) and callable(getattr(tp, "from_bson", None))


def is_callable_hint(hint: Any) -> bool:
    """Check whether a field hint describes a callable rather than data."""
    base, _ = split_annotated(hint)
    return base is collections.abc.Callable or typing.get_origin(base) is collections.abc.Callable


@dataclass
class IndexSpec:
    """Index requested on a single field."""

    flags: IndexFlags = IndexFlags.NONE
    expire_after_seconds: int = 0
    force: bool = False

    @property
    def wanted(self) -> bool:
        """Return whether an index should be created at all."""
        return self.flags != IndexFlags.NONE or self.force


@dataclass
class FieldDescriptor:
    """Mapping metadata for one field of a record."""

    source_name: str
    type_hint: Any
    document_name: str = ""
    ignored: bool = False
    custom_encode: str | None = None
    custom_decode: str | None = None
    binary_subtype: int | None = None
    fixed_length: int | None = None
    index: IndexSpec = field(default_factory=IndexSpec)

    def __post_init__(self) -> None:
        if not self.document_name:
            self.document_name = self.source_name

    @property
    def base_type(self) -> Any:
        """Return the declared type without its ``Annotated`` metadata."""
        return split_annotated(self.type_hint)[0]

    @property
    def is_binary(self) -> bool:
        """Return whether the field is stored as binary data."""
        return self.binary_subtype is not None


@dataclass
class RecordSchema:
    """Descriptor table for a record type, built once per class.

    ``fields`` holds every public data field in declaration order, including
    ignored ones; ``eligible_fields`` is what gets encoded and decoded.
    """

    name: str
    record_type: type
    fields: list[FieldDescriptor] = field(default_factory=list)
    has_identity: bool = False

    @property
    def eligible_fields(self) -> list[FieldDescriptor]:
        """Return the fields that take part in encoding and decoding."""
        return [f for f in self.fields if not f.ignored]

    def get_field(self, name: str) -> FieldDescriptor | None:
        """Get a field by its source (attribute) name."""
        for f in self.fields:
            if f.source_name == name:
                return f
        return None

    def get_field_by_document_name(self, name: str) -> FieldDescriptor | None:
        """Get an eligible field by the key it is stored under."""
        for f in self.eligible_fields:
            if f.document_name == name:
                return f
        return None

    def indexes(self) -> list[tuple[str, IndexSpec]]:
        """Return ``(document_name, spec)`` for every field that wants an index."""
        return [(f.document_name, f.index) for f in self.eligible_fields if f.index.wanted]


class SchemaRegistry:
    """Registry of record schemas, keyed by record class."""

    def __init__(self) -> None:
        self._schemas: dict[type, RecordSchema] = {}
        self._building: set[type] = set()

    def get(self, record_type: type) -> RecordSchema | None:
        """Get an already built schema."""
        return self._schemas.get(record_type)

    def get_or_build(self, record_type: type) -> RecordSchema:
        """Get the schema for a record type, building and validating it on first use.

        Raises:
            DefinitionError: If the record type can never be mapped.
            BinaryLengthError: If a binary field does not hold one-byte elements.
        """
        schema = self._schemas.get(record_type)
        if schema is not None:
            return schema

        self._building.add(record_type)
        try:
            schema = self._build(record_type)
        finally:
            self._building.discard(record_type)
        self._schemas[record_type] = schema
        logger.debug(
            "Built schema for %s with %d eligible fields",
            schema.name,
            len(schema.eligible_fields),
        )
        return schema

    def list_types(self) -> list[type]:
        """List all record types with a built schema."""
        return list(self._schemas.keys())

    def clear(self) -> None:
        self._schemas.clear()

    def __contains__(self, record_type: type) -> bool:
        return record_type in self._schemas

    def _build(self, record_type: type) -> RecordSchema:
        if not (isinstance(record_type, type) and dataclasses.is_dataclass(record_type)):
            raise DefinitionError(f"Record type '{record_type!r}' must be a dataclass")

        try:
            hints = typing.get_type_hints(record_type, include_extras=True)
        except NameError as e:
            raise DefinitionError(
                f"Cannot resolve field types of '{record_type.__name__}': {e}"
            ) from e

        schema = RecordSchema(
            name=record_type.__name__,
            record_type=record_type,
            has_identity=bool(getattr(record_type, "__schema_identity__", False)),
        )

        for dc_field in dataclasses.fields(record_type):
            if dc_field.name.startswith("_"):
                continue
            hint = hints.get(dc_field.name, Any)
            if is_callable_hint(hint):
                continue
            schema.fields.append(self._build_field(record_type, dc_field.name, hint))

        self._check_document_names(schema)

        if not schema.eligible_fields and not (
            defines_encode_hook(record_type) and defines_decode_hook(record_type)
        ):
            raise DefinitionError(
                f"Record type '{schema.name}' has no fields to encode"
            )
        return schema

    def _build_field(self, record_type: type, name: str, hint: Any) -> FieldDescriptor:
        base, metadata = split_annotated(hint)
        annotations = field_annotations(metadata)

        if any(isinstance(a, SchemaIgnore) for a in annotations):
            return FieldDescriptor(source_name=name, type_hint=hint, ignored=True)

        seen: dict[type, FieldAnnotation] = {}
        for a in annotations:
            if a.unique_per_field and type(a) in seen:
                label = _ANNOTATION_LABELS.get(type(a), type(a).__name__)
                raise DefinitionError(f"Member '{name}' can only have one {label}!")
            seen[type(a)] = a

        descriptor = FieldDescriptor(source_name=name, type_hint=hint)

        if SchemaName in seen:
            descriptor.document_name = seen[SchemaName].name  # type: ignore[attr-defined]
        if Encode in seen:
            descriptor.custom_encode = self._resolve_hook(record_type, name, seen[Encode].func)  # type: ignore[attr-defined]
        if Decode in seen:
            descriptor.custom_decode = self._resolve_hook(record_type, name, seen[Decode].func)  # type: ignore[attr-defined]
        if FixedLength in seen:
            descriptor.fixed_length = seen[FixedLength].length  # type: ignore[attr-defined]
        if BinaryType in seen:
            if (optional_inner(base) or base) not in BYTE_SEQUENCE_TYPES:
                raise BinaryLengthError(
                    f"Binary member '{name}' can only be a sequence of 1 byte values"
                )
            descriptor.binary_subtype = int(seen[BinaryType].subtype)  # type: ignore[attr-defined]

        descriptor.index = self._index_spec([a for a in annotations if isinstance(a, IndexAnnotation)])

        if descriptor.custom_encode is None or descriptor.custom_decode is None:
            self._check_hint(base, f"{record_type.__name__}.{name}")
        return descriptor

    def _resolve_hook(self, record_type: type, field_name: str, func: str) -> str:
        if not callable(getattr(record_type, func, None)):
            raise DefinitionError(
                f"Hook '{func}' of member '{field_name}' is not a method of '{record_type.__name__}'"
            )
        return func

    def _index_spec(self, annotations: list[IndexAnnotation]) -> IndexSpec:
        spec = IndexSpec()
        for a in annotations:
            if isinstance(a, MongoForceIndex):
                spec.force = True
            elif isinstance(a, MongoBackground):
                spec.flags |= IndexFlags.BACKGROUND
            elif isinstance(a, MongoDropDuplicates):
                spec.flags |= IndexFlags.DROP_DUPLICATES
            elif isinstance(a, MongoSparse):
                spec.flags |= IndexFlags.SPARSE
            elif isinstance(a, MongoUnique):
                spec.flags |= IndexFlags.UNIQUE
            elif isinstance(a, MongoExpire):
                spec.flags |= IndexFlags.EXPIRE_AFTER_SECONDS
                spec.expire_after_seconds = a.seconds
        return spec

    def _check_hint(self, hint: Any, where: str) -> None:
        """Reject types that can never be mapped, recursing into containers."""
        base, _ = split_annotated(hint)
        if defines_encode_hook(base) and defines_decode_hook(base):
            return
        origin = typing.get_origin(base)
        args = typing.get_args(base)

        if origin in (dict, collections.abc.Mapping, collections.abc.MutableMapping) or base in (dict,):
            if args:
                key_type = split_annotated(args[0])[0]
                if key_type is not str:
                    raise DefinitionError(
                        f"Associative arrays must have strings as keys ({where})"
                    )
                self._check_hint(args[1], where)
            return

        if origin is not None:
            for arg in args:
                if arg is Ellipsis or arg is type(None):
                    continue
                self._check_hint(arg, where)
            return

        if isinstance(base, type) and dataclasses.is_dataclass(base) and base not in self._building:
            self.get_or_build(base)

    def _check_document_names(self, schema: RecordSchema) -> None:
        seen: set[str] = set()
        for f in schema.eligible_fields:
            if f.document_name in seen:
                raise DefinitionError(
                    f"Two members of '{schema.name}' are stored under '{f.document_name}'"
                )
            seen.add(f.document_name)
        if schema.has_identity and ID_KEY in seen:
            raise DefinitionError(
                f"Member of '{schema.name}' uses the reserved key '{ID_KEY}'"
            )


registry = SchemaRegistry()


def schema_of(record_type: type) -> RecordSchema:
    """Return the (cached) schema of a record type from the default registry."""
    return registry.get_or_build(record_type)
