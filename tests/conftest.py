"""
Shared fixtures for the docref test suite

🧪 Test Doubles:
- RecordingDelegate: in-memory delegate that records every call and batch
- FailingDelegate: in-memory delegate whose storage raises on demand
- Sample entities used across source and repository tests
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from docref import DataCacheManager, Entity, InMemoryDelegate
from docref.persistence.delegates.interface import BatchOperation


class User(Entity):
    """Sample entity with a reference and a count field"""
    name: str = ""
    age: int = 0
    org: Optional[Dict[str, Any]] = None
    posts: Optional[int] = None


class Post(Entity):
    title: str = ""


class RecordingDelegate(InMemoryDelegate):
    """In-memory delegate that remembers what was asked of it"""

    def __init__(self, name: str = "delegate", journal: Optional[List[Tuple[str, str, str]]] = None, **config):
        super().__init__(**config)
        self.name = name
        self.journal = journal if journal is not None else []
        self.calls: List[Tuple[str, str]] = []
        self.batches: List[Tuple[BatchOperation, ...]] = []

    def _record(self, operation: str, path: str):
        self.calls.append((operation, path))
        self.journal.append((self.name, operation, path))

    def calls_to(self, operation: str) -> List[str]:
        return [path for name, path in self.calls if name == operation]

    async def apply_batch(self, operations: List[BatchOperation]):
        self.batches.append(tuple(operations))
        for operation in operations:
            self._record(operation.type.value, operation.path)
        await super().apply_batch(operations)

    async def count(self, path: str) -> Optional[int]:
        self._record("count", path)
        return await super().count(path)

    async def get(self, path: str):
        self._record("get", path)
        return await super().get(path)

    async def get_by_id(self, path: str):
        self._record("get_by_id", path)
        return await super().get_by_id(path)

    async def run_query(self, query):
        self._record("query", query.path)
        return await super().run_query(query)


class FailingDelegate(InMemoryDelegate):
    """In-memory delegate whose storage raises while ``failing`` is set"""

    def __init__(self, failing: bool = True, **config):
        super().__init__(**config)
        self.failing = failing

    def _check(self):
        if self.failing:
            raise ConnectionError("backend unavailable")

    async def _read(self, path: str):
        self._check()
        return await super()._read(path)

    async def _write(self, path: str, data):
        self._check()
        await super()._write(path, data)

    async def _children(self, collection: str):
        self._check()
        return await super()._children(collection)


async def always_online() -> bool:
    return True


async def always_offline() -> bool:
    return False


@pytest.fixture
def delegate():
    return RecordingDelegate()


@pytest.fixture
def cache():
    """Fresh cache per test so results never leak between tests"""
    return DataCacheManager()


@pytest.fixture(autouse=True)
def reset_shared_cache():
    yield
    DataCacheManager._instance = None
