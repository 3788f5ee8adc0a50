"""
Base Delegate - Common Document Backend Functionality

🏗️ Shared Delegate Foundation:
Storage-agnostic implementation of the delegate contract on top of four
storage primitives (read, write, remove, list children). Provides
merge/update semantics, field-value transforms, in-process query
evaluation, change notifications for listeners, error wrapping and
metrics, so concrete backends only implement raw storage.
"""

import asyncio
import copy
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple

from ...core import paths
from ...core.errors import DataError, DelegateError, InvalidPathError
from ...core.field_value import DataFieldValue, DataFieldValues, DataFieldWriteRef, Document
from ...core.query import (
    Checker, DataFetchOptions, DataQuery, DataSelection, DataSorting
)
from ..query_builder import MemoryQuery, MemoryQueryBuilder
from .interface import (
    BatchOperation, BatchOperationType, DataDelegate, DataGetSnapshot,
    DataGetsSnapshot, DataWriteBatch
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldTransform:
    """Backend-native form of an abstract field-update marker"""
    kind: DataFieldValues
    value: Any = None


@dataclass
class DelegateMetrics:
    """Metrics collected by delegate implementations"""
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    batches_committed: int = 0
    notifications_sent: int = 0
    average_response_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "successful_operations": self.successful_operations,
            "failed_operations": self.failed_operations,
            "success_rate": self.successful_operations / max(self.total_operations, 1),
            "batches_committed": self.batches_committed,
            "notifications_sent": self.notifications_sent,
            "average_response_time_ms": self.average_response_time_ms,
        }


class StoredWriteBatch(DataWriteBatch):
    """Write batch applied by a ``StoredDocumentDelegate``"""

    def __init__(self, delegate: "StoredDocumentDelegate"):
        super().__init__()
        self._delegate = delegate

    async def _apply(self, operations: List[BatchOperation]):
        await self._delegate.apply_batch(operations)


class StoredDocumentDelegate(DataDelegate, ABC):
    """
    Base delegate over a path-addressed document storage.

    Subclasses implement ``_read``, ``_write``, ``_remove`` and
    ``_children``. Everything else (semantics of set/merge/update, field
    transforms, queries, listeners) is shared.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, **config):
        self.config = config
        self.metrics = DelegateMetrics()
        self.start_time = datetime.now()
        self.clock = clock or time.time
        self.query_builder = MemoryQueryBuilder()
        self._listeners: Dict[str, List[asyncio.Queue]] = {}
        self._is_initialized = False
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    # Lifecycle
    async def initialize(self):
        """Initialize the delegate"""
        if self._is_initialized:
            return
        self._logger.info(f"Initializing {self.__class__.__name__}")
        await self._do_initialize()
        self._is_initialized = True

    async def shutdown(self):
        """Shutdown the delegate"""
        if not self._is_initialized:
            return
        self._logger.info(f"Shutting down {self.__class__.__name__}")
        await self._do_shutdown()
        self._is_initialized = False

    async def _do_initialize(self):
        """Override in subclasses for specific initialization"""
        pass

    async def _do_shutdown(self):
        """Override in subclasses for specific shutdown"""
        pass

    async def get_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.to_dict()
        metrics["uptime_seconds"] = (datetime.now() - self.start_time).total_seconds()
        metrics["active_listeners"] = sum(len(queues) for queues in self._listeners.values())
        return metrics

    # Storage primitives
    @abstractmethod
    async def _read(self, path: str) -> Optional[Document]:
        """Raw stored document at a document path, or None"""
        pass

    @abstractmethod
    async def _write(self, path: str, data: Document):
        """Store a document (full replacement)"""
        pass

    @abstractmethod
    async def _remove(self, path: str) -> bool:
        """Remove a document, returning whether it existed"""
        pass

    @abstractmethod
    async def _children(self, collection: str) -> List[Tuple[str, Document]]:
        """(id, document) pairs directly under a collection path"""
        pass

    # Error handling and metrics
    @asynccontextmanager
    async def _operation(self, name: str, path: str):
        started = time.perf_counter()
        self.metrics.total_operations += 1
        try:
            yield
        except DataError:
            self.metrics.failed_operations += 1
            raise
        except Exception as e:
            self.metrics.failed_operations += 1
            self._logger.error(f"{name} failed for '{path}': {e}")
            raise DelegateError(f"{name} failed for '{path}'", e) from e
        else:
            self.metrics.successful_operations += 1
            duration = (time.perf_counter() - started) * 1000
            done = self.metrics.successful_operations
            average = self.metrics.average_response_time_ms
            self.metrics.average_response_time_ms = average + (duration - average) / done

    @staticmethod
    def _document_path(path: str) -> str:
        normalized = paths.normalize(path)
        if not paths.is_document_path(normalized):
            raise InvalidPathError(f"Not a document path: '{path}'")
        return normalized

    @staticmethod
    def _collection_path(path: str) -> str:
        normalized = paths.normalize(path)
        if not paths.is_collection_path(normalized):
            raise InvalidPathError(f"Not a collection path: '{path}'")
        return normalized

    @staticmethod
    def _with_id(doc_id: str, data: Document) -> Document:
        result = copy.deepcopy(data)
        result.setdefault("id", doc_id)
        return result

    # Field values
    def updating_field_value(self, value: Any) -> Any:
        if isinstance(value, FieldTransform):
            return value
        if not isinstance(value, DataFieldValue):
            return value
        if value.type is DataFieldValues.NONE:
            if isinstance(value.value, DataFieldWriteRef):
                return value
            return value.value
        return FieldTransform(value.type, value.value)

    def _resolve_value(self, current: Any, value: Any, exists: bool) -> Tuple[bool, Any]:
        """Returns (keep, new_value) for one field write"""
        value = self.updating_field_value(value)
        if isinstance(value, DataFieldValue):
            value = value.value.path if isinstance(value.value, DataFieldWriteRef) else value.value
        if isinstance(value, DataFieldWriteRef):
            return True, value.path
        if not isinstance(value, FieldTransform):
            return True, copy.deepcopy(value)
        kind = value.kind
        if kind is DataFieldValues.DELETE:
            return False, None
        if kind is DataFieldValues.SERVER_TIMESTAMP:
            return True, int(self.clock() * 1000)
        if kind is DataFieldValues.INCREMENT:
            base = current if exists and isinstance(current, (int, float)) and not isinstance(current, bool) else 0
            return True, base + value.value
        items = list(current) if exists and isinstance(current, list) else []
        if kind is DataFieldValues.ARRAY_UNION:
            for element in value.value or []:
                if element not in items:
                    items.append(copy.deepcopy(element))
            return True, items
        if kind is DataFieldValues.ARRAY_REMOVE:
            return True, [item for item in items if item not in (value.value or [])]
        return True, value.value

    def _merge_into(self, target: Document, data: Document, deep: bool) -> Document:
        for key, value in data.items():
            exists = key in target
            current = target.get(key)
            if deep and isinstance(value, dict) and isinstance(current, dict):
                target[key] = self._merge_into(dict(current), value, deep)
                continue
            if deep and isinstance(value, dict) and not exists:
                target[key] = self._merge_into({}, value, deep)
                continue
            keep, resolved = self._resolve_value(current, value, exists)
            if keep:
                target[key] = resolved
            else:
                target.pop(key, None)
        return target

    def _apply_update(self, target: Document, data: Document) -> Document:
        """Partial update; dotted keys address nested fields"""
        for key, value in data.items():
            parts = key.split(".")
            node = target
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            leaf = parts[-1]
            keep, resolved = self._resolve_value(node.get(leaf), value, leaf in node)
            if keep:
                node[leaf] = resolved
            else:
                node.pop(leaf, None)
        return target

    def _next_state(self, operation: BatchOperation, current: Optional[Document]) -> Optional[Document]:
        if operation.type is BatchOperationType.DELETE:
            return None
        if operation.type is BatchOperationType.UPDATE:
            if current is None:
                raise DelegateError(f"No document to update: '{operation.path}'")
            return self._apply_update(copy.deepcopy(current), operation.data or {})
        if operation.merge and current is not None:
            return self._merge_into(copy.deepcopy(current), operation.data or {}, True)
        return self._merge_into({}, operation.data or {}, True)

    # Writes
    async def apply_batch(self, operations: List[BatchOperation]):
        """
        Apply operations in order.

        All next states are computed before anything is written so a failing
        operation leaves the storage untouched.
        """
        async with self._operation("commit", f"{len(operations)} op(s)"):
            staged: Dict[str, Optional[Document]] = {}
            previous: Dict[str, Optional[Document]] = {}
            order: List[str] = []
            for operation in operations:
                path = self._document_path(operation.path)
                if path not in staged:
                    current = await self._read(path)
                    previous[path] = current
                    order.append(path)
                else:
                    current = staged[path]
                staged[path] = self._next_state(operation, current)
            for path in order:
                state = staged[path]
                if state is None:
                    await self._remove(path)
                else:
                    await self._write(path, state)
            self.metrics.batches_committed += 1
            self._logger.debug(f"Committed batch of {len(operations)} operation(s) over {len(order)} path(s)")
        for path in order:
            state = staged[path]
            changed = state if state is not None else previous[path]
            if changed is not None:
                self._notify(path, self._with_id(paths.document_id(path), changed))

    def batch(self) -> DataWriteBatch:
        return StoredWriteBatch(self)

    async def create(self, path: str, data: Document, merge: bool = True):
        await self.apply_batch([BatchOperation(BatchOperationType.SET, path, dict(data), merge)])

    async def update(self, path: str, data: Document):
        await self.apply_batch([BatchOperation(BatchOperationType.UPDATE, path, dict(data))])

    async def delete(self, path: str):
        await self.apply_batch([BatchOperation(BatchOperationType.DELETE, path)])

    # Reads
    async def count(self, path: str) -> Optional[int]:
        async with self._operation("count", path):
            collection = self._collection_path(path)
            return len(await self._children(collection))

    async def get_by_id(self, path: str) -> DataGetSnapshot:
        async with self._operation("get_by_id", path):
            doc_path = self._document_path(path)
            data = await self._read(doc_path)
            if data is None:
                return DataGetSnapshot(snapshot=doc_path)
            return DataGetSnapshot(doc=self._with_id(paths.document_id(doc_path), data), snapshot=doc_path)

    async def _collection_docs(self, collection: str) -> List[Document]:
        return [self._with_id(doc_id, data) for doc_id, data in await self._children(collection)]

    async def get(self, path: str) -> DataGetsSnapshot:
        async with self._operation("get", path):
            collection = self._collection_path(path)
            docs = await self._collection_docs(collection)
            return DataGetsSnapshot(docs=docs, snapshot=collection)

    def build_query(self, path: str,
                    queries: Iterable[DataQuery] = (),
                    selections: Iterable[DataSelection] = (),
                    sorts: Iterable[DataSorting] = (),
                    options: DataFetchOptions = DataFetchOptions()) -> MemoryQuery:
        return self.query_builder.build(MemoryQuery(path), queries, selections, sorts, options)

    async def run_query(self, query: MemoryQuery) -> DataGetsSnapshot:
        async with self._operation("query", query.path):
            collection = self._collection_path(query.path)
            docs = query.apply(await self._collection_docs(collection))
            return DataGetsSnapshot(docs=docs, snapshot=query)

    async def get_by_query(self, path: str,
                           queries: Iterable[DataQuery] = (),
                           selections: Iterable[DataSelection] = (),
                           sorts: Iterable[DataSorting] = (),
                           options: DataFetchOptions = DataFetchOptions()) -> DataGetsSnapshot:
        return await self.run_query(self.build_query(path, queries, selections, sorts, options))

    async def search(self, path: str, checker: Checker) -> DataGetsSnapshot:
        return await self.run_query(self.query_builder.search(MemoryQuery(path), checker))

    # Listeners
    def _subscribe(self, key: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.setdefault(key, []).append(queue)
        return queue

    def _unsubscribe(self, key: str, queue: asyncio.Queue):
        queues = self._listeners.get(key, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._listeners.pop(key, None)

    def _notify(self, path: str, changed: Document):
        for key in (path, paths.parent(path)):
            for queue in self._listeners.get(key, []):
                queue.put_nowait(changed)
                self.metrics.notifications_sent += 1

    @staticmethod
    def _drain(queue: asyncio.Queue, first: Document) -> List[Document]:
        changes = [first]
        while not queue.empty():
            changes.append(queue.get_nowait())
        return changes

    async def listen(self, path: str) -> AsyncIterator[DataGetsSnapshot]:
        collection = self._collection_path(path)
        queue = self._subscribe(collection)
        try:
            yield await self.get(collection)
            while True:
                changes = self._drain(queue, await queue.get())
                snapshot = await self.get(collection)
                yield snapshot.copy_with(doc_changes=changes)
        finally:
            self._unsubscribe(collection, queue)

    async def listen_by_id(self, path: str) -> AsyncIterator[DataGetSnapshot]:
        doc_path = self._document_path(path)
        queue = self._subscribe(doc_path)
        try:
            yield await self.get_by_id(doc_path)
            while True:
                self._drain(queue, await queue.get())
                yield await self.get_by_id(doc_path)
        finally:
            self._unsubscribe(doc_path, queue)

    async def listen_by_query(self, path: str,
                              queries: Iterable[DataQuery] = (),
                              selections: Iterable[DataSelection] = (),
                              sorts: Iterable[DataSorting] = (),
                              options: DataFetchOptions = DataFetchOptions()) -> AsyncIterator[DataGetsSnapshot]:
        query = self.build_query(path, list(queries), list(selections), list(sorts), options)
        collection = self._collection_path(path)
        queue = self._subscribe(collection)
        try:
            yield await self.run_query(query)
            while True:
                changes = self._drain(queue, await queue.get())
                snapshot = await self.run_query(query)
                relevant = [doc for doc in changes if query.matches(doc)]
                yield snapshot.copy_with(doc_changes=relevant)
        finally:
            self._unsubscribe(collection, queue)


__all__ = ["FieldTransform", "DelegateMetrics", "StoredWriteBatch", "StoredDocumentDelegate"]
