"""The document value model.

Documents are plain Python values using the types of the ``bson`` package
that ships with pymongo, so everything produced here can be handed to any
standard MongoDB client unchanged:

    None, bool, int / Int64, float, str, Binary (or bytes), datetime,
    ObjectId, Regex, Timestamp, Decimal128, list and str-keyed dict.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from enum import IntEnum
from typing import Any

from bson.binary import (
    BINARY_SUBTYPE,
    FUNCTION_SUBTYPE,
    MD5_SUBTYPE,
    OLD_BINARY_SUBTYPE,
    OLD_UUID_SUBTYPE,
    USER_DEFINED_SUBTYPE,
    UUID_SUBTYPE,
    Binary,
)
from bson.code import Code
from bson.decimal128 import Decimal128
from bson.int64 import Int64
from bson.max_key import MaxKey
from bson.min_key import MinKey
from bson.objectid import ObjectId
from bson.regex import Regex
from bson.timestamp import Timestamp

from typed_documents.errors import MappingError

INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1
INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

# Key holding the identity of a stored record
ID_KEY = "_id"


class DocumentType(IntEnum):
    """BSON type codes, as used by the ``$type`` query operator."""

    DOUBLE = 1
    STRING = 2
    OBJECT = 3
    ARRAY = 4
    BINARY = 5
    UNDEFINED = 6
    OBJECT_ID = 7
    BOOL = 8
    DATE = 9
    NULL = 10
    REGEX = 11
    DB_POINTER = 12
    JAVASCRIPT = 13
    SYMBOL = 14
    JAVASCRIPT_WITH_SCOPE = 15
    INT = 16
    TIMESTAMP = 17
    LONG = 18
    DECIMAL = 19
    MIN_KEY = -1
    MAX_KEY = 127

    @property
    def alias(self) -> str:
        """Return the string alias the server accepts in place of the code."""
        aliases = {
            DocumentType.DOUBLE: "double",
            DocumentType.STRING: "string",
            DocumentType.OBJECT: "object",
            DocumentType.ARRAY: "array",
            DocumentType.BINARY: "binData",
            DocumentType.UNDEFINED: "undefined",
            DocumentType.OBJECT_ID: "objectId",
            DocumentType.BOOL: "bool",
            DocumentType.DATE: "date",
            DocumentType.NULL: "null",
            DocumentType.REGEX: "regex",
            DocumentType.DB_POINTER: "dbPointer",
            DocumentType.JAVASCRIPT: "javascript",
            DocumentType.SYMBOL: "symbol",
            DocumentType.JAVASCRIPT_WITH_SCOPE: "javascriptWithScope",
            DocumentType.INT: "int",
            DocumentType.TIMESTAMP: "timestamp",
            DocumentType.LONG: "long",
            DocumentType.DECIMAL: "decimal",
            DocumentType.MIN_KEY: "minKey",
            DocumentType.MAX_KEY: "maxKey",
        }
        return aliases[self]


class BinarySubtype(IntEnum):
    """Standard BSON binary subtypes."""

    GENERIC = BINARY_SUBTYPE
    FUNCTION = FUNCTION_SUBTYPE
    BINARY_OLD = OLD_BINARY_SUBTYPE
    UUID_OLD = OLD_UUID_SUBTYPE
    UUID = UUID_SUBTYPE
    MD5 = MD5_SUBTYPE
    ENCRYPTED = 6
    USER_DEFINED = USER_DEFINED_SUBTYPE


class _Undefined:
    """BSON's deprecated "undefined" value.

    Never produced by the encoder. A key holding it is treated as absent when
    a record is decoded.
    """

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

# Values passed through the encoder untouched
WRAPPER_TYPES: tuple[type, ...] = (
    Binary,
    ObjectId,
    datetime,
    Regex,
    Timestamp,
    Decimal128,
    type(None),
)


def document_type(value: Any) -> DocumentType:
    """Classify a document value.

    Args:
        value: A value of the document model.

    Returns:
        The BSON type tag of the value.

    Raises:
        MappingError: If the value is not part of the document model.
    """
    if value is UNDEFINED:
        return DocumentType.UNDEFINED
    if value is None:
        return DocumentType.NULL
    if isinstance(value, bool):
        return DocumentType.BOOL
    if isinstance(value, Int64):
        return DocumentType.LONG
    if isinstance(value, int):
        if INT32_MIN <= value <= INT32_MAX:
            return DocumentType.INT
        if INT64_MIN <= value <= INT64_MAX:
            return DocumentType.LONG
        raise MappingError(f"Integer {value} does not fit in 64 bits")
    if isinstance(value, float):
        return DocumentType.DOUBLE
    if isinstance(value, str):
        return DocumentType.STRING
    if isinstance(value, (bytes, bytearray)):
        return DocumentType.BINARY
    if isinstance(value, datetime):
        return DocumentType.DATE
    if isinstance(value, ObjectId):
        return DocumentType.OBJECT_ID
    if isinstance(value, (Regex, re.Pattern)):
        return DocumentType.REGEX
    if isinstance(value, Timestamp):
        return DocumentType.TIMESTAMP
    if isinstance(value, Decimal128):
        return DocumentType.DECIMAL
    if isinstance(value, Code):
        if value.scope:
            return DocumentType.JAVASCRIPT_WITH_SCOPE
        return DocumentType.JAVASCRIPT
    if isinstance(value, MinKey):
        return DocumentType.MIN_KEY
    if isinstance(value, MaxKey):
        return DocumentType.MAX_KEY
    if isinstance(value, list):
        return DocumentType.ARRAY
    if isinstance(value, Mapping):
        return DocumentType.OBJECT
    raise MappingError(f"{type(value).__name__} is not a document value")


def is_document_value(value: Any) -> bool:
    """Check whether a value (recursively) belongs to the document model."""
    try:
        kind = document_type(value)
    except MappingError:
        return False
    if kind == DocumentType.ARRAY:
        return all(is_document_value(v) for v in value)
    if kind == DocumentType.OBJECT:
        return all(isinstance(k, str) and is_document_value(v) for k, v in value.items())
    return True


def binary_data(value: Any) -> bytes:
    """Return the raw bytes of a stored binary value.

    Raises:
        MappingError: If the value is not binary.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise MappingError(f"Expected binary data, got {type(value).__name__}")


def binary_subtype(value: Any) -> int:
    """Return the subtype of a stored binary value (plain bytes are generic)."""
    if isinstance(value, Binary):
        return value.subtype
    binary_data(value)
    return BinarySubtype.GENERIC
