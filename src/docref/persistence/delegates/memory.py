"""
Memory Delegate - In-Memory Document Backend

🧠 In-Process Document Store:
Path-addressed document storage kept in process memory with change
notifications pushed to listeners. Stands in for a remote document store
in tests and single-process deployments.
"""

import copy
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ...core import paths
from ...core.field_value import Document
from .base import StoredDocumentDelegate

logger = logging.getLogger(__name__)


@dataclass
class DocumentRecord:
    """Record stored in memory with metadata"""
    data: Document
    created_at: datetime
    updated_at: datetime
    access_count: int = 0
    last_accessed: datetime = field(default_factory=datetime.now)

    def touch(self):
        """Update access tracking"""
        self.access_count += 1
        self.last_accessed = datetime.now()


class InMemoryDelegate(StoredDocumentDelegate):
    """
    In-memory delegate.

    Documents live in ``collection path -> id -> DocumentRecord``. Reads
    return deep copies so callers never share state with the store.
    """

    def __init__(self, enable_access_tracking: bool = True, **config: Any):
        super().__init__(**config)
        self._storage: Dict[str, Dict[str, DocumentRecord]] = defaultdict(dict)
        self.enable_access_tracking = enable_access_tracking

    async def _do_initialize(self):
        logger.info("InMemoryDelegate initialized")

    async def _do_shutdown(self):
        self._storage.clear()
        logger.info("InMemoryDelegate shutdown, storage cleared")

    @staticmethod
    def _split(path: str) -> Tuple[str, str]:
        return paths.parent(path), paths.document_id(path)

    async def _read(self, path: str) -> Optional[Document]:
        collection, doc_id = self._split(path)
        record = self._storage.get(collection, {}).get(doc_id)
        if record is None:
            return None
        if self.enable_access_tracking:
            record.touch()
        return copy.deepcopy(record.data)

    async def _write(self, path: str, data: Document):
        collection, doc_id = self._split(path)
        now = datetime.now()
        record = self._storage[collection].get(doc_id)
        if record is None:
            self._storage[collection][doc_id] = DocumentRecord(copy.deepcopy(data), now, now)
        else:
            record.data = copy.deepcopy(data)
            record.updated_at = now

    async def _remove(self, path: str) -> bool:
        collection, doc_id = self._split(path)
        documents = self._storage.get(collection)
        if not documents or doc_id not in documents:
            return False
        del documents[doc_id]
        if not documents:
            self._storage.pop(collection, None)
        return True

    async def _children(self, collection: str) -> List[Tuple[str, Document]]:
        documents = self._storage.get(collection, {})
        return [(doc_id, copy.deepcopy(record.data)) for doc_id, record in documents.items()]

    def paths(self) -> List[str]:
        """Every stored document path"""
        return sorted(
            paths.join(collection, doc_id)
            for collection, documents in self._storage.items()
            for doc_id in documents
        )

    def __len__(self) -> int:
        return sum(len(documents) for documents in self._storage.values())

    async def get_metrics(self) -> Dict[str, Any]:
        metrics = await super().get_metrics()
        metrics["collections"] = len(self._storage)
        metrics["documents"] = len(self)
        return metrics


__all__ = ["DocumentRecord", "InMemoryDelegate"]
