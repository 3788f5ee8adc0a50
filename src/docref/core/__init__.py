"""
Core - Documents, Queries and Results

Backend-independent building blocks: tagged field values, paths, the query
model, entities, encryption hooks and the uniform ``Response``.
"""

from .configs import (
    DataFieldParams, DataLimitations, DataModifiers, DataWriter,
    child_path, generate_path
)
from .encryptor import ENCRYPTED_FIELD, DataEncryptor, JsonEncryptor, PassthroughEncryptor
from .entity import Entity
from .errors import (
    BatchError, CacheError, DataError, DelegateError, EncryptionError,
    InvalidPathError
)
from .field_value import (
    COUNT_PREFIX, REFERENCE_PREFIX, CountMarker, DataFieldValue,
    DataFieldValues, DataFieldWriteRef, Document, FieldKind, ReferenceMarker,
    classify, parse_directive
)
from .query import (
    Checker, CheckerType, DataFetchOptions, DataFieldPath, DataPagingOptions,
    DataQuery, DataSelection, DataSelections, DataSorting, QueryRequest,
    where, where_id_in
)
from .response import Response, Status

__all__ = [
    # Values
    "Document", "DataFieldValue", "DataFieldValues", "DataFieldWriteRef",
    "ReferenceMarker", "CountMarker", "FieldKind", "classify",
    "parse_directive", "REFERENCE_PREFIX", "COUNT_PREFIX",

    # Queries
    "DataQuery", "DataFieldPath", "DataSorting", "DataSelection",
    "DataSelections", "DataFetchOptions", "DataPagingOptions", "Checker",
    "CheckerType", "QueryRequest", "where", "where_id_in",

    # Configuration values
    "DataLimitations", "DataWriter", "DataFieldParams", "DataModifiers",
    "generate_path", "child_path",

    # Entities, encryption, results
    "Entity", "DataEncryptor", "PassthroughEncryptor", "JsonEncryptor",
    "ENCRYPTED_FIELD", "Response", "Status",

    # Errors
    "DataError", "DelegateError", "InvalidPathError", "BatchError",
    "EncryptionError", "CacheError",
]
