"""Typed Documents - Map dataclass records to and from BSON documents."""

from typed_documents.annotations import (
    binary_type,
    fixed_length,
    mongo_background,
    mongo_drop_duplicates,
    mongo_expire,
    mongo_force_index,
    mongo_sparse,
    mongo_unique,
    schema_ignore,
    schema_name,
)
from typed_documents.date import SchemaDate
from typed_documents.db import (
    Document,
    DocumentRange,
    PipelineUnwindOperation,
    SchemaPipeline,
    bind,
    register,
)
from typed_documents.document import UNDEFINED, BinarySubtype, DocumentType
from typed_documents.errors import (
    ArrayLengthMismatchError,
    BinaryLengthError,
    BindingError,
    DefinitionError,
    DocumentNotFoundError,
    MappingError,
    NotFoundError,
    PipelineError,
    SchemaError,
    StructuralError,
    VariantLabelError,
)
from typed_documents.mapper import from_document, record, to_document
from typed_documents.query import Query, and_, nor, not_, or_, query
from typed_documents.store import (
    Collection,
    DeleteFlags,
    IndexFlags,
    InsertFlags,
    PyMongoCollection,
    QueryFlags,
    UpdateFlags,
    connect,
)
from typed_documents.types import RecordSchema, SchemaRegistry, schema_of
from typed_documents.variant import SchemaVariant

__all__ = [
    # Mapping
    "to_document",
    "from_document",
    "record",
    "schema_of",
    "RecordSchema",
    "SchemaRegistry",
    # Field annotations
    "binary_type",
    "fixed_length",
    "mongo_background",
    "mongo_drop_duplicates",
    "mongo_expire",
    "mongo_force_index",
    "mongo_sparse",
    "mongo_unique",
    "schema_ignore",
    "schema_name",
    # Value types
    "SchemaDate",
    "SchemaVariant",
    "UNDEFINED",
    "BinarySubtype",
    "DocumentType",
    # Queries
    "Query",
    "query",
    "and_",
    "or_",
    "nor",
    "not_",
    # Persistence
    "Document",
    "DocumentRange",
    "PipelineUnwindOperation",
    "SchemaPipeline",
    "bind",
    "register",
    "Collection",
    "PyMongoCollection",
    "connect",
    "QueryFlags",
    "UpdateFlags",
    "DeleteFlags",
    "InsertFlags",
    "IndexFlags",
    # Errors
    "SchemaError",
    "MappingError",
    "BinaryLengthError",
    "ArrayLengthMismatchError",
    "StructuralError",
    "VariantLabelError",
    "DefinitionError",
    "BindingError",
    "NotFoundError",
    "DocumentNotFoundError",
    "PipelineError",
]

__version__ = "0.1.0"
