"""The type rule table: conversion between Python values and document values.

``encode`` dispatches on the runtime value, ``decode`` on the static type
hint of the target. Both walk the same ordered list of rules and the first
rule that matches wins, so the order of ``RULES`` matters:

     1. whole-value hooks (``to_bson`` / ``from_bson``)
     2. well-known BSON wrapper types
     3. enums
     4. flag sets
     5. fixed-arity tuples
     6. other sequences (not text)
     7. string-keyed mappings
     8. values that already are document values
     9. scalars
    10. dataclass records
    11. structural fallback over ``__dict__``
"""

from __future__ import annotations

import collections.abc
import dataclasses
import enum
import logging
import re
import typing
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from bson.binary import Binary
from bson.code import Code
from bson.max_key import MaxKey
from bson.min_key import MinKey
from bson.regex import Regex

from typed_documents.annotations import FixedLength
from typed_documents.document import INT64_MAX, INT64_MIN, UNDEFINED, WRAPPER_TYPES
from typed_documents.errors import ArrayLengthMismatchError, MappingError
from typed_documents.types import (
    defines_decode_hook,
    defines_encode_hook,
    field_annotations,
    is_union,
    optional_inner,
    split_annotated,
)

logger = logging.getLogger(__name__)

SCALAR_TYPES: tuple[type, ...] = (bool, int, float, str, bytes, bytearray)

# Document values with no Python-native counterpart, passed through untouched
RAW_DOCUMENT_TYPES: tuple[type, ...] = (Code, MinKey, MaxKey)

_SEQUENCE_ORIGINS = (
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Collection,
    collections.abc.Iterable,
)

_MAPPING_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)


@dataclass(frozen=True)
class Rule:
    """One entry of the rule table."""

    name: str
    matches_value: Callable[[Any], bool]
    matches_type: Callable[[Any], bool]
    encode: Callable[[Any], Any]
    decode: Callable[[Any, Any, tuple[Any, ...]], Any]


def _type_name(hint: Any) -> str:
    return getattr(hint, "__name__", None) or repr(hint)


def _stored_name(value: Any) -> str:
    return type(value).__name__


# ---- 1. whole-value hooks ----


def _hook_encode(value: Any) -> Any:
    return type(value).to_bson(value)


def _hook_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    return tp.from_bson(value)


# ---- 2. wrapper types ----


def _is_wrapper_value(value: Any) -> bool:
    return isinstance(value, WRAPPER_TYPES) or isinstance(value, re.Pattern)


def _is_wrapper_type(tp: Any) -> bool:
    if tp is re.Pattern or typing.get_origin(tp) is re.Pattern:
        return True
    return isinstance(tp, type) and issubclass(tp, WRAPPER_TYPES)


def _wrapper_encode(value: Any) -> Any:
    if isinstance(value, re.Pattern):
        return Regex.from_native(value)
    return value


def _wrapper_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    if tp is re.Pattern or typing.get_origin(tp) is re.Pattern:
        if isinstance(value, Regex):
            return value.try_compile()
        if isinstance(value, re.Pattern):
            return value
    elif tp is type(None):
        if value is None:
            return None
    elif isinstance(value, tp):
        return value
    elif tp is Binary and isinstance(value, (bytes, bytearray)):
        return Binary(bytes(value))
    raise MappingError(f"Cannot decode {_stored_name(value)} as {_type_name(tp)}")


# ---- 3. enums / 4. flags ----


def _is_enum_type(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, enum.Enum) and not issubclass(tp, enum.Flag)


def _is_flag_type(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, enum.Flag)


def _enum_encode(value: enum.Enum) -> Any:
    return encode(value.value)


def _enum_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    try:
        return tp(value)
    except ValueError as e:
        raise MappingError(f"{value!r} is not a valid {_type_name(tp)}") from e


def _flag_encode(value: enum.Flag) -> Any:
    return int(value.value)


def _flag_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    bits = _decode_int(value, int, meta)
    try:
        return tp(bits)
    except ValueError as e:
        raise MappingError(f"{bits!r} is not a valid {_type_name(tp)}") from e


# ---- 5. fixed-arity tuples ----


def _is_named_tuple(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, tuple) and hasattr(tp, "_fields")


def _is_fixed_tuple_type(tp: Any) -> bool:
    if _is_named_tuple(tp):
        return True
    if typing.get_origin(tp) is not tuple:
        return False
    args = typing.get_args(tp)
    return bool(args) and not (len(args) == 2 and args[1] is Ellipsis)


def _tuple_slot_types(tp: Any) -> list[Any]:
    if _is_named_tuple(tp):
        hints = typing.get_type_hints(tp, include_extras=True)
        return [hints.get(name, Any) for name in tp._fields]
    return list(typing.get_args(tp))


def _tuple_encode(value: tuple[Any, ...]) -> list[Any]:
    return [encode(v) for v in value]


def _tuple_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    items = _require_array(value, tp)
    slot_types = _tuple_slot_types(tp)
    if len(items) != len(slot_types):
        raise ArrayLengthMismatchError(len(slot_types), len(items), "tuple")
    decoded = [decode(item, slot) for item, slot in zip(items, slot_types)]
    if _is_named_tuple(tp):
        return tp(*decoded)
    return tuple(decoded)


# ---- 6. sequences ----


def _is_sequence_value(value: Any) -> bool:
    if isinstance(value, (str, bytes, bytearray, Mapping)):
        return False
    return isinstance(value, (list, set, frozenset, collections.abc.Sequence, collections.abc.Set))


def _is_sequence_type(tp: Any) -> bool:
    if tp in (list, set, frozenset, tuple):
        return True
    origin = typing.get_origin(tp)
    if origin is tuple:
        return True
    return origin in _SEQUENCE_ORIGINS


def _sequence_encode(value: Any) -> list[Any]:
    return [encode(v) for v in value]


def _require_array(value: Any, tp: Any) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        raise MappingError(f"Expected an array for {_type_name(tp)}, got {_stored_name(value)}")
    return list(value)


def _sequence_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    items = _require_array(value, tp)
    for a in field_annotations(meta):
        if isinstance(a, FixedLength) and len(items) != a.length:
            raise ArrayLengthMismatchError(a.length, len(items))

    origin = typing.get_origin(tp) or tp
    args = typing.get_args(tp)
    element_type = args[0] if args else Any
    decoded = [decode(item, element_type) for item in items]

    if origin in (set, collections.abc.Set, collections.abc.MutableSet):
        return set(decoded)
    if origin is frozenset:
        return frozenset(decoded)
    if origin is tuple:
        return tuple(decoded)
    return decoded


# ---- 7. mappings ----


def _is_mapping_type(tp: Any) -> bool:
    return tp is dict or typing.get_origin(tp) in _MAPPING_ORIGINS


def _mapping_encode(value: Mapping[Any, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise MappingError(f"Document keys must be strings, got {_stored_name(key)}")
        result[key] = encode(item)
    return result


def _mapping_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise MappingError(f"Expected an object for {_type_name(tp)}, got {_stored_name(value)}")
    args = typing.get_args(tp)
    if args and split_annotated(args[0])[0] is not str:
        raise MappingError("Associative arrays must have strings as keys")
    value_type = args[1] if args else Any
    return {key: decode(item, value_type) for key, item in value.items()}


# ---- 8. raw document values ----


def _is_raw_value(value: Any) -> bool:
    return value is UNDEFINED or isinstance(value, RAW_DOCUMENT_TYPES)


def _is_raw_type(tp: Any) -> bool:
    if tp is Any or tp is object:
        return True
    return isinstance(tp, type) and issubclass(tp, RAW_DOCUMENT_TYPES)


def _raw_encode(value: Any) -> Any:
    return value


def _raw_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    if tp is Any or tp is object or isinstance(value, tp):
        return value
    raise MappingError(f"Cannot decode {_stored_name(value)} as {_type_name(tp)}")


# ---- 9. scalars ----


def _is_scalar_type(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, SCALAR_TYPES)


def _scalar_encode(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise MappingError(f"Integer {value} does not fit in 64 bits")
        return value
    if isinstance(value, (bytes, bytearray)):
        return Binary(bytes(value))
    return value


def _decode_int(value: Any, tp: Any, meta: tuple[Any, ...]) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MappingError(f"Cannot decode {_stored_name(value)} as {_type_name(tp)}")
    try:
        return tp(int(value))
    except (ValueError, OverflowError) as e:
        raise MappingError(f"Cannot decode {value!r} as {_type_name(tp)}") from e


def _scalar_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    if issubclass(tp, bool):
        if isinstance(value, bool):
            return value
    elif issubclass(tp, int):
        return _decode_int(value, tp, meta)
    elif issubclass(tp, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return tp(value)
    elif issubclass(tp, str):
        if isinstance(value, str):
            return value
    elif isinstance(value, (bytes, bytearray)):
        return tp(value)
    raise MappingError(f"Cannot decode {_stored_name(value)} as {_type_name(tp)}")


# ---- 10. records ----


def _is_record_value(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _is_record_type(tp: Any) -> bool:
    return isinstance(tp, type) and dataclasses.is_dataclass(tp)


def _record_encode(value: Any) -> Any:
    from typed_documents.mapper import to_document

    return to_document(value)


def _record_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    from typed_documents.mapper import from_document

    if value is None:
        raise MappingError(f"Expected an object for {_type_name(tp)}, got null")
    return from_document(value, tp)


# ---- 11. structural fallback ----


def _fallback_encode(value: Any) -> dict[str, Any]:
    attributes = getattr(value, "__dict__", None)
    if attributes is None:
        raise MappingError(f"No rule to encode a value of type {_stored_name(value)}")
    logger.warning(
        "Falling back to structural encoding for type %s", _stored_name(value)
    )
    return {k: encode(v) for k, v in attributes.items() if not k.startswith("_")}


def _fallback_decode(value: Any, tp: Any, meta: tuple[Any, ...]) -> Any:
    if not isinstance(tp, type):
        raise MappingError(f"No rule to decode into {_type_name(tp)}")
    if not isinstance(value, Mapping):
        raise MappingError(f"Expected an object for {_type_name(tp)}, got {_stored_name(value)}")
    try:
        obj = tp.__new__(tp)
    except TypeError as e:
        raise MappingError(f"No rule to decode into {_type_name(tp)}") from e
    if not hasattr(obj, "__dict__"):
        raise MappingError(f"No rule to decode into {_type_name(tp)}")
    logger.warning("Falling back to structural decoding for type %s", _type_name(tp))
    obj.__dict__.update({k: decode(v, Any) for k, v in value.items()})
    return obj


RULES: list[Rule] = [
    Rule(
        "hook",
        lambda v: defines_encode_hook(type(v)),
        defines_decode_hook,
        _hook_encode,
        _hook_decode,
    ),
    Rule("wrapper", _is_wrapper_value, _is_wrapper_type, _wrapper_encode, _wrapper_decode),
    Rule(
        "enum",
        lambda v: _is_enum_type(type(v)),
        _is_enum_type,
        _enum_encode,
        _enum_decode,
    ),
    Rule(
        "flags",
        lambda v: _is_flag_type(type(v)),
        _is_flag_type,
        _flag_encode,
        _flag_decode,
    ),
    Rule(
        "tuple",
        lambda v: isinstance(v, tuple),
        _is_fixed_tuple_type,
        _tuple_encode,
        _tuple_decode,
    ),
    Rule("sequence", _is_sequence_value, _is_sequence_type, _sequence_encode, _sequence_decode),
    Rule(
        "mapping",
        lambda v: isinstance(v, Mapping),
        _is_mapping_type,
        _mapping_encode,
        _mapping_decode,
    ),
    Rule("document", _is_raw_value, _is_raw_type, _raw_encode, _raw_decode),
    Rule(
        "scalar",
        lambda v: isinstance(v, SCALAR_TYPES),
        _is_scalar_type,
        _scalar_encode,
        _scalar_decode,
    ),
    Rule("record", _is_record_value, _is_record_type, _record_encode, _record_decode),
    Rule("fallback", lambda v: True, lambda t: True, _fallback_encode, _fallback_decode),
]


def encode(value: Any) -> Any:
    """Convert a Python value to a document value.

    Raises:
        MappingError: If no rule can represent the value.
    """
    for rule in RULES:
        if rule.matches_value(value):
            return rule.encode(value)
    raise MappingError(f"No rule to encode a value of type {_stored_name(value)}")


def decode(value: Any, hint: Any) -> Any:
    """Convert a document value to a value of the type described by ``hint``.

    Args:
        value: The stored document value.
        hint: Type hint of the target, possibly ``Annotated``/``Optional``.

    Raises:
        MappingError: If the stored value cannot become the target type.
    """
    tp, meta = split_annotated(hint)

    inner = optional_inner(tp)
    if inner is not None:
        if value is None:
            return None
        return decode(value, typing.Annotated[(inner, *meta)] if meta else inner)
    if is_union(tp):
        raise MappingError(f"Cannot decode into ambiguous union {tp!r}")

    for rule in RULES:
        if rule.matches_type(tp):
            return rule.decode(value, tp, meta)
    raise MappingError(f"No rule to decode into {_type_name(tp)}")


def rule_for_type(hint: Any) -> Rule:
    """Return the rule ``decode`` would use for a hint."""
    tp, _ = split_annotated(hint)
    inner = optional_inner(tp)
    if inner is not None:
        return rule_for_type(inner)
    for rule in RULES:
        if rule.matches_type(tp):
            return rule
    return RULES[-1]


def zero_value(hint: Any) -> Any:
    """Return the value a field of type ``hint`` holds before anything is decoded."""
    tp, _ = split_annotated(hint)
    if optional_inner(tp) is not None or is_union(tp) or tp in (Any, object, type(None)):
        return None
    if _is_flag_type(tp):
        return tp(0)
    if _is_enum_type(tp):
        return next(iter(tp), None)
    if _is_fixed_tuple_type(tp):
        zeros = [zero_value(slot) for slot in _tuple_slot_types(tp)]
        return tp(*zeros) if _is_named_tuple(tp) else tuple(zeros)
    if _is_sequence_type(tp):
        origin = typing.get_origin(tp) or tp
        if origin in (set, collections.abc.Set, collections.abc.MutableSet):
            return set()
        if origin is frozenset:
            return frozenset()
        if origin is tuple:
            return ()
        return []
    if _is_mapping_type(tp):
        return {}
    if _is_record_type(tp):
        from typed_documents.mapper import zero_record

        return zero_record(tp)
    if isinstance(tp, type):
        if issubclass(tp, SCALAR_TYPES) or defines_decode_hook(tp):
            try:
                return tp()
            except TypeError:
                return None
    return None


__all__ = [
    "RULES",
    "Rule",
    "decode",
    "encode",
    "rule_for_type",
    "zero_value",
]
