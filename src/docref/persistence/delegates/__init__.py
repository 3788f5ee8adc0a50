"""
Delegates - Backend Implementations

The delegate contract plus an in-memory document store and a SQL-backed
local store.
"""

from .base import DelegateMetrics, FieldTransform, StoredDocumentDelegate
from .interface import (
    BatchOperation, BatchOperationType, DataDelegate, DataGetSnapshot,
    DataGetsSnapshot, DataWriteBatch
)
from .memory import InMemoryDelegate
from .sql import SQLDelegate

__all__ = [
    "DataDelegate", "DataWriteBatch", "DataGetSnapshot", "DataGetsSnapshot",
    "BatchOperation", "BatchOperationType", "StoredDocumentDelegate",
    "FieldTransform", "DelegateMetrics", "InMemoryDelegate", "SQLDelegate",
]
