"""
Data Operation - Reference-Aware Operation Engine

⚙️ Reference and Count Handling:
Builds create/read/update/delete on top of a ``DataDelegate`` and
understands reference fields (``@key``) and count fields (``#key``):

- Writes fan out reference-write directives into the same write batch as
  the parent document and store the bare reference path.
- Reads resolve references into the referenced documents (recursively) and
  substitute collection sizes for count fields.
- Deletes can cascade through the reference graph, deleting in chunks.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any, AsyncIterator, Collection, FrozenSet, Iterable, List, Mapping,
    Optional, Set
)

from ..core import paths
from ..core.configs import DataLimitations
from ..core.field_value import (
    DataFieldValue, DataFieldWriteRef, Document, FieldKind, ReferenceMarker,
    classify, parse_directive, storage_key, unwrap
)
from ..core.query import (
    Checker, DataFetchOptions, DataQuery, DataSelection, DataSorting
)
from .delegates.interface import (
    DataDelegate, DataGetSnapshot, DataGetsSnapshot, DataWriteBatch
)

logger = logging.getLogger(__name__)


class CountPolicy(Enum):
    """
    How zero counts are reported on read.

    ``OMIT_ZERO`` drops zero (or negative/unknown) counts everywhere: a
    scalar count field is omitted and list/map count fields only keep
    positive entries. ``LEGACY`` omits a zero scalar but keeps zeros
    inside list/map results.
    """
    OMIT_ZERO = "omit_zero"
    LEGACY = "legacy"


@dataclass
class DeleteReport:
    """Outcome of a (possibly cascading) delete"""
    paths: List[str] = field(default_factory=list)
    chunks: int = 0
    truncated: bool = False
    skipped: List[str] = field(default_factory=list)

    @property
    def deleted(self) -> List[str]:
        return list(self.paths)

    @property
    def is_complete(self) -> bool:
        return not self.truncated


@dataclass
class _DeleteWalk:
    limit: Optional[int]
    counter: bool
    visited: Set[str] = field(default_factory=set)
    paths: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    reserved: int = 0

    def reserve(self, path: str) -> bool:
        if self.limit is not None and self.reserved >= self.limit:
            self.visited.add(path)
            self.skipped.append(path)
            return False
        self.reserved += 1
        return True


def _documents(value: Any) -> List[Document]:
    if not value:
        return []
    if isinstance(value, Mapping):
        return [dict(value)]
    return [dict(item) for item in value if isinstance(item, Mapping) and item]


def _reference_paths(value: Any) -> List[str]:
    """Every document path held by a stored reference value"""
    value = unwrap(value)
    if isinstance(value, DataFieldValue):
        value = value.value
    if isinstance(value, DataFieldWriteRef):
        return [value.path] if value.path else []
    if isinstance(value, str):
        return [value] if value and paths.is_document_path(value) else []
    if isinstance(value, Mapping):
        directive = parse_directive(value)
        if directive is not None:
            return [directive.path]
        return [p for item in value.values() for p in _reference_paths(item)]
    if isinstance(value, (list, tuple)):
        return [p for item in value for p in _reference_paths(item)]
    return []


def _collection_paths(value: Any) -> List[str]:
    value = unwrap(value)
    if isinstance(value, str):
        return [value] if value and paths.is_collection_path(value) else []
    if isinstance(value, Mapping):
        return [p for item in value.values() for p in _collection_paths(item)]
    if isinstance(value, (list, tuple)):
        return [p for item in value for p in _collection_paths(item)]
    return []


class DataOperation:
    """Reference-aware operations over one delegate"""

    def __init__(self, delegate: DataDelegate, count_policy: CountPolicy = CountPolicy.OMIT_ZERO):
        self.delegate = delegate
        self.count_policy = count_policy
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def count(self, path: str) -> Optional[int]:
        return await self.delegate.count(path)

    async def create(self, path: str, data: Document, merge: bool = True, create_refs: bool = False):
        if not create_refs:
            await self.delegate.create(path, self.normalize(data), merge)
            return
        batch = self.delegate.batch()
        processed = self.transform_for_write(batch, data, merge)
        batch.set(path, processed, merge)
        await batch.commit()
        self._logger.debug(f"Created '{path}' with {len(batch) - 1} nested write(s)")

    async def update(self, path: str, data: Document, update_refs: bool = False):
        if not update_refs:
            await self.delegate.update(path, self.normalize(data))
            return
        batch = self.delegate.batch()
        processed = self.transform_for_write(batch, data, True)
        batch.update(path, processed)
        await batch.commit()
        self._logger.debug(f"Updated '{path}' with {len(batch) - 1} nested write(s)")

    @staticmethod
    def normalize(data: Document) -> Document:
        """Move tagged reference/count values under their prefixed keys"""
        result: Document = {}
        for key, value in data.items():
            kind, _ = classify(key, value)
            result[storage_key(kind, key)] = unwrap(value)
        return result

    def transform_for_write(self, batch: DataWriteBatch, data: Document, merge: bool = True) -> Document:
        """
        Rewrite a document for persistence.

        Reference-write directives found under reference fields are appended
        to ``batch`` (nested directives first) and replaced by their bare
        path. Plain fields pass through untouched. The caller appends the
        operation for the document itself.
        """
        result: Document = {}
        for key, value in data.items():
            kind, _ = classify(key, value)
            if kind is FieldKind.REFERENCE:
                result[storage_key(kind, key)] = self._write_reference(batch, unwrap(value), merge)
            elif kind is FieldKind.COUNT:
                result[storage_key(kind, key)] = unwrap(value)
            else:
                result[key] = value
        return result

    def _write_reference(self, batch: DataWriteBatch, value: Any, merge: bool) -> Any:
        directive = parse_directive(value)
        if directive is not None:
            self._append_directive(batch, directive, merge)
            return directive.path
        if isinstance(value, ReferenceMarker):
            return self._write_reference(batch, value.value, merge)
        if isinstance(value, DataFieldValue) and isinstance(value.value, DataFieldWriteRef):
            return value.value.path
        if isinstance(value, DataFieldWriteRef):
            return value.path
        if isinstance(value, Mapping):
            return {k: self._write_reference(batch, v, merge) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._write_reference(batch, item, merge) for item in value]
        return value

    def _append_directive(self, batch: DataWriteBatch, directive: DataFieldWriteRef, merge: bool):
        creates = [self.transform_for_write(batch, doc, merge) for doc in _documents(directive.create)]
        updates = [self.transform_for_write(batch, doc, merge) for doc in _documents(directive.update)]
        for doc in creates:
            batch.set(directive.path, doc, merge)
        for doc in updates:
            batch.update(directive.path, doc)
        if directive.delete:
            batch.delete(directive.path)
        self._logger.debug(
            f"Reference '{directive.path}': {len(creates)} set, {len(updates)} update, "
            f"delete={directive.delete}"
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, path: str,
                     delete_refs: bool = False,
                     counter: bool = False,
                     batch_limit: int = DataLimitations.batch_limit,
                     batch_max_limit: Optional[int] = None) -> DeleteReport:
        """
        Delete a document, optionally with everything it references.

        The cascade walks reference fields depth first and lists each
        document after the documents it references. With ``counter`` the
        count fields name collections whose children are deleted too.
        ``batch_max_limit`` caps how many documents are listed; references
        left out are reported in ``skipped``.
        """
        if not delete_refs:
            await self.delegate.delete(path)
            return DeleteReport([path], chunks=1)

        snapshot = await self.delegate.get_by_id(path)
        if not snapshot.exists:
            return DeleteReport()

        walk = _DeleteWalk(limit=batch_max_limit, counter=counter)
        walk.reserve(path)
        await self._walk_document(path, snapshot.doc, walk)

        report = DeleteReport(paths=list(walk.paths), truncated=bool(walk.skipped), skipped=list(walk.skipped))
        size = batch_limit if batch_limit and batch_limit > 0 else DataLimitations.batch_limit
        for start in range(0, len(walk.paths), size):
            batch = self.delegate.batch()
            for item in walk.paths[start:start + size]:
                batch.delete(item)
            await batch.commit()
            report.chunks += 1
            self._logger.debug(f"Committed delete chunk {report.chunks} ({len(batch)} path(s))")

        if report.truncated:
            self._logger.warning(
                f"Cascading delete of '{path}' stopped at {len(report.paths)} document(s); "
                f"{len(report.skipped)} reference(s) left in place"
            )
        return report

    async def _walk_document(self, path: str, doc: Document, walk: _DeleteWalk):
        walk.visited.add(path)
        for key, value in doc.items():
            if value is None:
                continue
            kind, _ = classify(key, value)
            if kind is FieldKind.REFERENCE:
                for reference in _reference_paths(value):
                    await self._walk_reference(reference, walk)
            elif kind is FieldKind.COUNT and walk.counter:
                for collection in _collection_paths(value):
                    await self._walk_collection(collection, walk)
        walk.paths.append(path)

    async def _walk_reference(self, path: str, walk: _DeleteWalk):
        if path in walk.visited:
            return
        if not walk.reserve(path):
            return
        walk.visited.add(path)
        snapshot = await self.delegate.get_by_id(path)
        if not snapshot.exists:
            walk.reserved -= 1
            return
        await self._walk_document(path, snapshot.doc, walk)

    async def _walk_collection(self, collection: str, walk: _DeleteWalk):
        snapshot = await self.delegate.get(collection)
        for child in snapshot.docs:
            child_id = child.get("id")
            if not child_id:
                continue
            child_path = paths.join(collection, str(child_id))
            if child_path in walk.visited or not walk.reserve(child_path):
                continue
            await self._walk_document(child_path, child, walk)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, path: str,
                  resolve_refs: bool = False,
                  resolve_doc_changes_refs: Optional[bool] = None,
                  countable: bool = False,
                  ignore: Collection[str] = ()) -> DataGetsSnapshot:
        data = await self.delegate.get(path)
        return await self._resolve_gets(data, resolve_refs, resolve_doc_changes_refs, countable, ignore)

    async def get_by_id(self, path: str,
                        resolve_refs: bool = False,
                        countable: bool = False,
                        ignore: Collection[str] = ()) -> DataGetSnapshot:
        return await self._get_by_id(path, resolve_refs, countable, frozenset(ignore), frozenset())

    async def _get_by_id(self, path: str, resolve_refs: bool, countable: bool,
                         ignore: FrozenSet[str], stack: FrozenSet[str]) -> DataGetSnapshot:
        data = await self.delegate.get_by_id(path)
        if not data.exists:
            return DataGetSnapshot()
        if not resolve_refs and not countable:
            return data
        doc = await self._resolve(data.doc, ignore, countable, resolve_refs, stack | {path})
        return data.copy_with(doc=doc)

    async def get_by_query(self, path: str,
                           queries: Iterable[DataQuery] = (),
                           selections: Iterable[DataSelection] = (),
                           sorts: Iterable[DataSorting] = (),
                           options: DataFetchOptions = DataFetchOptions(),
                           resolve_refs: bool = False,
                           resolve_doc_changes_refs: Optional[bool] = None,
                           countable: bool = False,
                           ignore: Collection[str] = ()) -> DataGetsSnapshot:
        data = await self.delegate.get_by_query(
            path, queries=queries, selections=selections, sorts=sorts, options=options
        )
        return await self._resolve_gets(data, resolve_refs, resolve_doc_changes_refs, countable, ignore)

    async def search(self, path: str, checker: Checker,
                     resolve_refs: bool = False,
                     resolve_doc_changes_refs: Optional[bool] = None,
                     countable: bool = False,
                     ignore: Collection[str] = ()) -> DataGetsSnapshot:
        data = await self.delegate.search(path, checker)
        return await self._resolve_gets(data, resolve_refs, resolve_doc_changes_refs, countable, ignore)

    async def listen(self, path: str,
                     resolve_refs: bool = False,
                     resolve_doc_changes_refs: Optional[bool] = None,
                     countable: bool = False,
                     ignore: Collection[str] = ()) -> AsyncIterator[DataGetsSnapshot]:
        async with aclosing(self.delegate.listen(path)) as stream:
            async for data in stream:
                yield await self._resolve_gets(data, resolve_refs, resolve_doc_changes_refs, countable, ignore)

    async def listen_by_id(self, path: str,
                           resolve_refs: bool = False,
                           countable: bool = False,
                           ignore: Collection[str] = ()) -> AsyncIterator[DataGetSnapshot]:
        async with aclosing(self.delegate.listen_by_id(path)) as stream:
            async for data in stream:
                if not data.exists:
                    yield DataGetSnapshot()
                elif not resolve_refs and not countable:
                    yield data
                else:
                    doc = await self._resolve(data.doc, frozenset(ignore), countable, resolve_refs,
                                              frozenset({path}))
                    yield data.copy_with(doc=doc)

    async def listen_by_query(self, path: str,
                              queries: Iterable[DataQuery] = (),
                              selections: Iterable[DataSelection] = (),
                              sorts: Iterable[DataSorting] = (),
                              options: DataFetchOptions = DataFetchOptions(),
                              resolve_refs: bool = False,
                              resolve_doc_changes_refs: Optional[bool] = None,
                              countable: bool = False,
                              ignore: Collection[str] = ()) -> AsyncIterator[DataGetsSnapshot]:
        stream_source = self.delegate.listen_by_query(
            path, queries=queries, selections=selections, sorts=sorts, options=options
        )
        async with aclosing(stream_source) as stream:
            async for data in stream:
                yield await self._resolve_gets(data, resolve_refs, resolve_doc_changes_refs, countable, ignore)

    async def _resolve_gets(self, data: DataGetsSnapshot, resolve_refs: bool,
                            resolve_doc_changes_refs: Optional[bool], countable: bool,
                            ignore: Collection[str]) -> DataGetsSnapshot:
        if not data.exists and not data.doc_changes:
            return DataGetsSnapshot(snapshot=data.snapshot)
        if not resolve_refs and not countable:
            return data
        ignored = frozenset(ignore)
        changes_refs = resolve_refs if resolve_doc_changes_refs is None else resolve_doc_changes_refs
        docs = await asyncio.gather(*(
            self._resolve(doc, ignored, countable, resolve_refs, self._own_path(data, doc))
            for doc in data.docs
        ))
        changes = await asyncio.gather(*(
            self._resolve(doc, ignored, countable, changes_refs, self._own_path(data, doc))
            for doc in data.doc_changes
        ))
        return data.copy_with(docs=list(docs), doc_changes=list(changes))

    @staticmethod
    def _own_path(data: DataGetsSnapshot, doc: Document) -> FrozenSet[str]:
        snapshot = getattr(data.snapshot, "path", data.snapshot)
        if isinstance(snapshot, str) and doc.get("id"):
            return frozenset({paths.join(snapshot, str(doc["id"]))})
        return frozenset()

    async def resolve_for_read(self, doc: Document, ignore: Collection[str] = (),
                               countable: bool = False) -> Document:
        """Resolve references (and counts when ``countable``) of one document"""
        return await self._resolve(doc, frozenset(ignore), countable, True, frozenset())

    async def _resolve(self, doc: Document, ignore: FrozenSet[str], countable: bool,
                       references: bool, stack: FrozenSet[str]) -> Document:
        result = dict(doc)
        fields: List[str] = []
        pending = []
        for key, value in doc.items():
            if value is None:
                continue
            kind, stripped = classify(key, value)
            if kind is FieldKind.PLAIN or key in ignore or stripped in ignore:
                continue
            value = unwrap(value)
            if kind is FieldKind.REFERENCE and references:
                pending.append(self._resolve_reference(value, ignore, countable, stack))
            elif kind is FieldKind.COUNT and countable:
                pending.append(self._resolve_count(value))
            else:
                continue
            fields.append(stripped)
        # Fields resolve concurrently; results keep key order.
        for stripped, resolved in zip(fields, await asyncio.gather(*pending)):
            if resolved is not None:
                result[stripped] = resolved
        return result

    async def _resolve_reference(self, value: Any, ignore: FrozenSet[str], countable: bool,
                                 stack: FrozenSet[str]) -> Any:
        if isinstance(value, str):
            if value in stack or not paths.is_document_path(value):
                return None
            snapshot = await self._get_by_id(value, True, countable, ignore, stack)
            return snapshot.doc if snapshot.exists else None
        if isinstance(value, (list, tuple)):
            items = await asyncio.gather(*(
                self._resolve_reference(item, ignore, countable, stack) for item in value
            ))
            return [item for item in items if item]
        if isinstance(value, Mapping):
            keys = list(value.keys())
            items = await asyncio.gather(*(
                self._resolve_reference(value[k], ignore, countable, stack) for k in keys
            ))
            return {k: item for k, item in zip(keys, items) if item}
        return None

    async def _count(self, path: Any) -> int:
        if not isinstance(path, str) or not paths.is_collection_path(path):
            return 0
        return await self.delegate.count(path) or 0

    async def _resolve_count(self, value: Any) -> Any:
        keep_zero = self.count_policy is CountPolicy.LEGACY
        if isinstance(value, str):
            count = await self._count(value)
            return count if count > 0 else None
        if isinstance(value, (list, tuple)):
            counts = await asyncio.gather(*(self._count(item) for item in value))
            return [c for c in counts if keep_zero or c > 0]
        if isinstance(value, Mapping):
            keys = list(value.keys())
            counts = await asyncio.gather(*(self._count(value[k]) for k in keys))
            return {k: c for k, c in zip(keys, counts) if keep_zero or c > 0}
        return None


# Export main components
__all__ = ["CountPolicy", "DeleteReport", "DataOperation"]
