"""Short names for the field annotations.

    from typed_documents.aliases import binary, ignore, name, unique
"""

from typed_documents.annotations import binary_type as binary
from typed_documents.annotations import mongo_background as background
from typed_documents.annotations import mongo_drop_duplicates as drop_duplicates
from typed_documents.annotations import mongo_expire as expire_after_seconds
from typed_documents.annotations import mongo_expire as expires
from typed_documents.annotations import mongo_force_index as force_index
from typed_documents.annotations import mongo_sparse as sparse
from typed_documents.annotations import mongo_unique as unique
from typed_documents.annotations import schema_ignore as ignore
from typed_documents.annotations import schema_name as name

__all__ = [
    "background",
    "binary",
    "drop_duplicates",
    "expire_after_seconds",
    "expires",
    "force_index",
    "ignore",
    "name",
    "sparse",
    "unique",
]
