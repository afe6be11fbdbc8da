"""Record mapper: whole records to and from documents."""

from __future__ import annotations

import dataclasses
import typing
from collections.abc import Mapping
from typing import Any, TypeVar

from bson.binary import Binary
from bson.objectid import ObjectId

from typed_documents import rules
from typed_documents.document import ID_KEY, UNDEFINED, binary_data
from typed_documents.errors import BinaryLengthError, MappingError
from typed_documents.types import FieldDescriptor, optional_inner, schema_of

T = TypeVar("T")

# Instance attribute holding the identity of a Document record
IDENTITY_ATTR = "_schema_object_id"


def get_identity(obj: Any) -> ObjectId | None:
    """Return the identity stored on a record, if any."""
    return getattr(obj, IDENTITY_ATTR, None)


def set_identity(obj: Any, object_id: ObjectId | None) -> None:
    """Store an identity on a record (works for frozen dataclasses too)."""
    object.__setattr__(obj, IDENTITY_ATTR, object_id)


def to_document(obj: Any) -> dict[str, Any] | None:
    """Generate a document from a record.

    Args:
        obj: A dataclass record, or None.

    Returns:
        The document (``_id`` first when the record has an identity), or
        None for a None record.
    """
    if obj is None:
        return None

    schema = schema_of(type(obj))
    data: dict[str, Any] = {}

    if schema.has_identity:
        object_id = get_identity(obj)
        if object_id is not None:
            data[ID_KEY] = object_id

    for f in schema.eligible_fields:
        if f.custom_encode is not None:
            # The hook gets the whole record; its result is stored as-is
            data[f.document_name] = getattr(type(obj), f.custom_encode)(obj)
        elif f.is_binary:
            data[f.document_name] = _encode_binary(getattr(obj, f.source_name), f)
        else:
            data[f.document_name] = rules.encode(getattr(obj, f.source_name))

    return data


def from_document(doc: Mapping[str, Any] | None, record_type: type[T]) -> T | None:
    """Generate a record from a document.

    Fields whose key is missing (or holds ``UNDEFINED``) keep their zero value.

    Args:
        doc: The stored document, or None.
        record_type: Dataclass to build.

    Returns:
        The decoded record, or None for a None document.

    Raises:
        MappingError: If a stored value does not fit its field.
    """
    if doc is None:
        return None
    if not isinstance(doc, Mapping):
        raise MappingError(
            f"Expected an object for {record_type.__name__}, got {type(doc).__name__}"
        )

    schema = schema_of(record_type)
    obj = zero_record(record_type)

    if schema.has_identity:
        object_id = doc.get(ID_KEY)
        if object_id is not None and object_id is not UNDEFINED:
            if not isinstance(object_id, ObjectId):
                raise MappingError(
                    f"Expected an ObjectId under '{ID_KEY}', got {type(object_id).__name__}"
                )
            set_identity(obj, object_id)

    for f in schema.eligible_fields:
        if f.document_name not in doc:
            continue
        stored = doc[f.document_name]
        if stored is UNDEFINED:
            continue

        if f.custom_decode is not None:
            value = getattr(obj, f.custom_decode)(doc)
        elif f.is_binary:
            value = _decode_binary(stored, f)
        else:
            value = rules.decode(stored, f.type_hint)
        object.__setattr__(obj, f.source_name, value)

    return obj


def zero_record(record_type: type[T]) -> T:
    """Build a record holding defaults, or type-derived zero values for required fields."""
    hints = typing.get_type_hints(record_type, include_extras=True)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(record_type):  # type: ignore[arg-type]
        if not f.init:
            continue
        if f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING:
            continue
        kwargs[f.name] = rules.zero_value(hints.get(f.name, Any))
    return record_type(**kwargs)


def _encode_binary(value: Any, f: FieldDescriptor) -> Binary | None:
    if value is None:
        return None
    return Binary(bytes(value), f.binary_subtype)


def _decode_binary(stored: Any, f: FieldDescriptor) -> Any:
    base = f.base_type
    inner = optional_inner(base)
    if stored is None and inner is not None:
        return None
    try:
        raw = binary_data(stored)
    except MappingError as e:
        raise MappingError(f"Binary member '{f.source_name}': {e}") from e
    if f.fixed_length is not None and len(raw) != f.fixed_length:
        raise BinaryLengthError(
            f"Binary member '{f.source_name}' must hold {f.fixed_length} bytes, got {len(raw)}"
        )
    target = inner if inner is not None else base
    return target(raw)


def record(cls: type[T] | None = None, /, **dataclass_options: Any) -> Any:
    """Class decorator: make ``cls`` a dataclass and build its schema right away.

    Definition problems surface at class creation instead of first use::

        @record
        class Point:
            x: int
            y: int

        @record(frozen=True)
        class Key:
            name: str
    """

    def wrap(c: type[T]) -> type[T]:
        c = dataclasses.dataclass(c, **dataclass_options)
        schema_of(c)
        return c

    if cls is None:
        return wrap
    return wrap(cls)
