"""Exceptions raised by the typed_documents library."""

from __future__ import annotations


class SchemaError(Exception):
    """Base class for all typed_documents errors."""


class MappingError(SchemaError, TypeError):
    """A value has no applicable encode/decode rule or has the wrong stored type."""


class BinaryLengthError(MappingError):
    """A binary field is not made of one-byte elements, or its stored length is wrong."""


class ArrayLengthMismatchError(MappingError):
    """A stored array does not have the arity required by a tuple or fixed-length field."""

    def __init__(self, expected: int, actual: int, what: str = "array") -> None:
        super().__init__(f"Expected {what} of length {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StructuralError(MappingError):
    """A variant document is malformed."""


class VariantLabelError(SchemaError, TypeError):
    """A variant was accessed with the wrong label/type, or declared with duplicates."""


class DefinitionError(SchemaError, ValueError):
    """A record type is declared in a way that can never be mapped."""


class BindingError(DefinitionError):
    """A record type is bound twice, or used before being bound."""


class NotFoundError(SchemaError, LookupError):
    """A lookup that must find something found nothing."""


class DocumentNotFoundError(NotFoundError):
    """No document in the collection matched the query."""


class PipelineError(SchemaError, RuntimeError):
    """A stage was added to an aggregation pipeline that was already finalized."""
