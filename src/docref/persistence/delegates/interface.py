"""
Delegate Interface

💾 Backend Capability Contract:
This module defines the contract every document backend (remote document
store, local key-value cache, ...) must implement. The operation engine
consumes only this interface and never inspects backend-specific errors.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Iterable, List, Optional, Tuple

from ...core.errors import BatchError
from ...core.field_value import Document
from ...core.query import (
    Checker, DataFetchOptions, DataQuery, DataSelection, DataSorting
)


@dataclass
class DataGetSnapshot:
    """Single-document read result"""
    doc: Document = field(default_factory=dict)
    snapshot: Any = None

    @property
    def exists(self) -> bool:
        return bool(self.doc)

    def copy_with(self, doc: Optional[Document] = None, snapshot: Any = None) -> "DataGetSnapshot":
        return DataGetSnapshot(
            doc=self.doc if doc is None else doc,
            snapshot=self.snapshot if snapshot is None else snapshot,
        )


@dataclass
class DataGetsSnapshot:
    """Collection read result: current documents plus changed documents"""
    docs: List[Document] = field(default_factory=list)
    doc_changes: List[Document] = field(default_factory=list)
    snapshot: Any = None

    @property
    def exists(self) -> bool:
        return bool(self.docs)

    def copy_with(self, docs: Optional[List[Document]] = None,
                  doc_changes: Optional[List[Document]] = None,
                  snapshot: Any = None) -> "DataGetsSnapshot":
        return DataGetsSnapshot(
            docs=self.docs if docs is None else docs,
            doc_changes=self.doc_changes if doc_changes is None else doc_changes,
            snapshot=self.snapshot if snapshot is None else snapshot,
        )


class BatchOperationType(Enum):
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class BatchOperation:
    """One buffered write"""
    type: BatchOperationType
    path: str
    data: Optional[Document] = None
    merge: bool = True


class DataWriteBatch(ABC):
    """
    Buffered set/update/delete operations applied on ``commit``.

    Operations keep their insertion order. Atomicity of the commit is the
    backend's responsibility.
    """

    def __init__(self):
        self._operations: List[BatchOperation] = []
        self._committed = False

    @property
    def operations(self) -> Tuple[BatchOperation, ...]:
        return tuple(self._operations)

    @property
    def is_committed(self) -> bool:
        return self._committed

    def __len__(self) -> int:
        return len(self._operations)

    def _append(self, operation: BatchOperation):
        if self._committed:
            raise BatchError("Write batch has already been committed")
        self._operations.append(operation)

    def set(self, path: str, data: Document, merge: bool = True):
        self._append(BatchOperation(BatchOperationType.SET, path, dict(data), merge))

    def update(self, path: str, data: Document):
        self._append(BatchOperation(BatchOperationType.UPDATE, path, dict(data)))

    def delete(self, path: str):
        self._append(BatchOperation(BatchOperationType.DELETE, path))

    async def commit(self):
        if self._committed:
            raise BatchError("Write batch has already been committed")
        self._committed = True
        if self._operations:
            await self._apply(list(self._operations))

    @abstractmethod
    async def _apply(self, operations: List[BatchOperation]):
        """Apply buffered operations to the backend"""
        pass


class DataDelegate(ABC):
    """
    Abstract backend delegate.

    Paths are ``collection/id[/collection/id...]`` strings. Read methods
    return snapshots whose documents carry their ``id``. Implementations
    raise ``DelegateError`` (or any exception) on failure.
    """

    @abstractmethod
    def batch(self) -> DataWriteBatch:
        """Create an empty write batch"""
        pass

    @abstractmethod
    def updating_field_value(self, value: Any) -> Any:
        """Translate abstract update markers into backend-native values"""
        pass

    @abstractmethod
    async def count(self, path: str) -> Optional[int]:
        """Count documents of a collection"""
        pass

    @abstractmethod
    async def create(self, path: str, data: Document, merge: bool = True):
        pass

    @abstractmethod
    async def delete(self, path: str):
        pass

    @abstractmethod
    async def update(self, path: str, data: Document):
        pass

    @abstractmethod
    async def get(self, path: str) -> DataGetsSnapshot:
        pass

    @abstractmethod
    async def get_by_id(self, path: str) -> DataGetSnapshot:
        pass

    @abstractmethod
    async def get_by_query(self, path: str,
                           queries: Iterable[DataQuery] = (),
                           selections: Iterable[DataSelection] = (),
                           sorts: Iterable[DataSorting] = (),
                           options: DataFetchOptions = DataFetchOptions()) -> DataGetsSnapshot:
        pass

    @abstractmethod
    def listen(self, path: str) -> AsyncIterator[DataGetsSnapshot]:
        """Push-based sequence of collection snapshots"""
        pass

    @abstractmethod
    def listen_by_id(self, path: str) -> AsyncIterator[DataGetSnapshot]:
        pass

    @abstractmethod
    def listen_by_query(self, path: str,
                        queries: Iterable[DataQuery] = (),
                        selections: Iterable[DataSelection] = (),
                        sorts: Iterable[DataSorting] = (),
                        options: DataFetchOptions = DataFetchOptions()) -> AsyncIterator[DataGetsSnapshot]:
        pass

    @abstractmethod
    async def search(self, path: str, checker: Checker) -> DataGetsSnapshot:
        """Prefix search when the checker asks for contains, equality otherwise"""
        pass

    async def initialize(self):
        """Override in subclasses for specific initialization"""
        pass

    async def shutdown(self):
        """Override in subclasses for specific shutdown"""
        pass


__all__ = [
    "DataGetSnapshot", "DataGetsSnapshot", "BatchOperationType",
    "BatchOperation", "DataWriteBatch", "DataDelegate"
]
