"""
Data Source - Entity Operations Over One Delegate

📦 Entity-Level Data Access:
A DataSource binds an entity path to a delegate, converts raw documents
into entities through its ``build`` hook, passes documents through an
optional encryptor and honours backend limitations (``where_in`` fan-out,
delete batch sizes). Every failure is returned as a ``Response`` status;
no exception crosses this boundary.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Collection, Dict, Generic,
    Iterable, List, Mapping, Optional, Type, TypeVar
)

from ..core.configs import (
    DataFieldParams, DataLimitations, DataModifiers, DataWriter,
    child_path, generate_path
)
from ..core.encryptor import DataEncryptor
from ..core.entity import Entity
from ..core.field_value import Document
from ..core.query import (
    Checker, DataFetchOptions, DataQuery, DataSelection, DataSorting,
    where_id_in
)
from ..core.response import Response, Status
from .delegates.interface import DataDelegate, DataGetsSnapshot
from .operation import CountPolicy, DataOperation

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Entity)

ENCRYPTION_ERROR = "Encryption error!"


@dataclass
class _StreamFailure:
    error: BaseException


async def merge_streams(streams: Iterable[AsyncIterator[Any]]) -> AsyncIterator[Any]:
    """Interleave several async iterators as their items arrive"""
    queue: asyncio.Queue = asyncio.Queue()
    finished = object()

    async def pump(stream: AsyncIterator[Any]):
        try:
            async with aclosing(stream) as items:
                async for item in items:
                    queue.put_nowait(item)
        except Exception as e:
            queue.put_nowait(_StreamFailure(e))
        finally:
            queue.put_nowait(finished)

    tasks = [asyncio.ensure_future(pump(stream)) for stream in streams]
    remaining = len(tasks)
    try:
        while remaining:
            item = await queue.get()
            if item is finished:
                remaining -= 1
                continue
            if isinstance(item, _StreamFailure):
                raise item.error
            yield item
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class DataSource(ABC, Generic[T]):
    """
    Abstract data source for entities of type ``T``.

    Subclasses implement ``build`` (raw document to entity). Use
    ``RemoteDataSource`` / ``LocalDataSource`` to mark which side of a
    repository the source belongs to.
    """

    def __init__(self, path: str, delegate: DataDelegate,
                 encryptor: Optional[DataEncryptor] = None,
                 limitations: DataLimitations = DataLimitations(),
                 count_policy: CountPolicy = CountPolicy.OMIT_ZERO):
        self.path = path
        self.delegate = delegate
        self.encryptor = encryptor
        self.limitations = limitations
        self._operation = DataOperation(delegate, count_policy)
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @property
    def operation(self) -> DataOperation:
        return self._operation

    @property
    def is_encryptor(self) -> bool:
        return self.encryptor is not None

    @abstractmethod
    def build(self, source: Any) -> T:
        """Convert a raw document into an entity"""
        pass

    def ref(self, params: Optional[DataFieldParams], modifier: DataModifiers, id: Optional[str] = None) -> str:
        """Path of the collection (or document when ``id`` is given) for an operation"""
        return child_path(generate_path(params, self.path), id)

    async def execute(self, callback: Callable[[], Awaitable[Response]]) -> Response:
        try:
            return await callback()
        except Exception as e:
            self._logger.error(f"Operation on '{self.path}' failed: {e}")
            return Response(status=Status.FAILURE, error=str(e))

    async def execute_stream(self, callback: Callable[[], AsyncIterator[Response]]) -> AsyncIterator[Response]:
        try:
            async with aclosing(callback()) as stream:
                async for response in stream:
                    yield response
        except Exception as e:
            self._logger.error(f"Stream on '{self.path}' failed: {e}")
            yield Response(status=Status.FAILURE, error=str(e))

    async def _decode(self, doc: Document) -> Document:
        if self.is_encryptor:
            return await self.encryptor.output(doc)
        return doc

    async def _build_all(self, docs: Iterable[Document]) -> List[T]:
        result = []
        for doc in docs:
            if not doc:
                continue
            result.append(self.build(await self._decode(doc)))
        return result

    async def _collection_response(self, event: DataGetsSnapshot, only_updates: bool = False) -> Response[T]:
        if not event.docs and not event.doc_changes:
            return Response(status=Status.NOT_FOUND, snapshot=event.snapshot)
        result = await self._build_all(event.doc_changes if only_updates else event.docs)
        if not result:
            return Response(status=Status.NOT_FOUND, snapshot=event.snapshot)
        return Response(status=Status.OK, result=result, snapshot=event.snapshot)

    @staticmethod
    def _fan_out_status(responses: List[Response], expected: int) -> Status:
        succeeded = sum(1 for response in responses if response.is_successful)
        return Status.OK if succeeded == expected else Status.CANCELED

    def _exceeds_where_in(self, ids: List[str]) -> bool:
        return 0 < self.limitations.where_in < len(ids)

    # Reads

    async def check_by_id(self, id: str,
                          params: Optional[DataFieldParams] = None,
                          resolve_refs: bool = False,
                          ignore: Collection[str] = ()) -> Response[T]:
        if not id:
            return Response(status=Status.INVALID_ID)

        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.CHECK_BY_ID, id)
            data = await self.operation.get_by_id(path, resolve_refs=resolve_refs, ignore=ignore)
            if not data.exists:
                return Response(status=Status.NOT_FOUND)
            return Response(status=Status.OK, data=self.build(await self._decode(data.doc)), snapshot=data.snapshot)

        return await self.execute(callback)

    async def count(self, params: Optional[DataFieldParams] = None) -> Response[int]:
        async def callback() -> Response[int]:
            path = self.ref(params, DataModifiers.COUNT)
            return Response(status=Status.OK, data=await self.operation.count(path))

        return await self.execute(callback)

    async def get(self, params: Optional[DataFieldParams] = None,
                  only_updates: bool = False,
                  resolve_refs: bool = False,
                  resolve_doc_changes_refs: bool = False,
                  countable: bool = False,
                  ignore: Collection[str] = ()) -> Response[T]:
        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.GET)
            event = await self.operation.get(
                path,
                resolve_refs=resolve_refs and not only_updates,
                resolve_doc_changes_refs=resolve_doc_changes_refs or (only_updates and resolve_refs),
                countable=countable,
                ignore=ignore,
            )
            return await self._collection_response(event, only_updates)

        return await self.execute(callback)

    async def get_by_id(self, id: str,
                        params: Optional[DataFieldParams] = None,
                        resolve_refs: bool = False,
                        countable: bool = False,
                        ignore: Collection[str] = ()) -> Response[T]:
        if not id:
            return Response(status=Status.INVALID_ID)

        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.GET_BY_ID, id)
            event = await self.operation.get_by_id(path, resolve_refs=resolve_refs, countable=countable, ignore=ignore)
            if not event.exists:
                return Response(status=Status.NOT_FOUND, snapshot=event.snapshot)
            return Response(status=Status.OK, data=self.build(await self._decode(event.doc)), snapshot=event.snapshot)

        return await self.execute(callback)

    async def get_by_ids(self, ids: Iterable[str],
                         params: Optional[DataFieldParams] = None,
                         resolve_refs: bool = False,
                         resolve_doc_changes_refs: bool = False,
                         countable: bool = False,
                         ignore: Collection[str] = ()) -> Response[T]:
        ids = list(ids)
        if not ids:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            if self._exceeds_where_in(ids):
                self._logger.debug(f"Fetching {len(ids)} ids one by one (where_in limit {self.limitations.where_in})")
                responses = await asyncio.gather(*(
                    self.get_by_id(id, params=params, resolve_refs=resolve_refs, countable=countable, ignore=ignore)
                    for id in ids
                ))
                return Response(
                    status=self._fan_out_status(responses, len(ids)),
                    result=[response.data for response in responses if response.data is not None],
                    snapshot=list(responses),
                )
            path = self.ref(params, DataModifiers.GET_BY_IDS)
            event = await self.operation.get_by_query(
                path,
                queries=[where_id_in(ids)],
                resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs,
                countable=countable,
                ignore=ignore,
            )
            if not event.docs:
                return Response(status=Status.NOT_FOUND)
            result = await self._build_all(event.docs)
            if not result:
                return Response(status=Status.NOT_FOUND)
            return Response(status=Status.OK, result=result, snapshot=event)

        return await self.execute(callback)

    async def get_by_query(self, params: Optional[DataFieldParams] = None,
                           queries: Iterable[DataQuery] = (),
                           selections: Iterable[DataSelection] = (),
                           sorts: Iterable[DataSorting] = (),
                           options: DataFetchOptions = DataFetchOptions(),
                           only_updates: bool = False,
                           resolve_refs: bool = False,
                           resolve_doc_changes_refs: bool = False,
                           countable: bool = False,
                           ignore: Collection[str] = ()) -> Response[T]:
        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.GET_BY_QUERY)
            event = await self.operation.get_by_query(
                path,
                queries=list(queries),
                selections=list(selections),
                sorts=list(sorts),
                options=options,
                resolve_refs=resolve_refs and not only_updates,
                resolve_doc_changes_refs=resolve_doc_changes_refs or (only_updates and resolve_refs),
                countable=countable,
                ignore=ignore,
            )
            return await self._collection_response(event, only_updates)

        return await self.execute(callback)

    async def search(self, checker: Checker,
                     params: Optional[DataFieldParams] = None,
                     resolve_refs: bool = False,
                     resolve_doc_changes_refs: bool = False,
                     countable: bool = False,
                     ignore: Collection[str] = ()) -> Response[T]:
        if not checker.field:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.SEARCH)
            event = await self.operation.search(
                path,
                checker,
                resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs,
                countable=countable,
                ignore=ignore,
            )
            if not event.docs:
                return Response(status=Status.NOT_FOUND)
            result = await self._build_all(event.docs)
            if not result:
                return Response(status=Status.NOT_FOUND)
            return Response(status=Status.OK, result=result, snapshot=event)

        return await self.execute(callback)

    # Writes

    async def create(self, id: str, data: Mapping[str, Any],
                     params: Optional[DataFieldParams] = None,
                     merge: bool = True,
                     create_refs: bool = False) -> Response[T]:
        if not id:
            return Response(status=Status.INVALID_ID)
        if not data:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.CREATE, id)
            raw = dict(data)
            if self.is_encryptor:
                raw = await self.encryptor.input(raw)
                if not raw:
                    return Response(status=Status.ERROR, error=ENCRYPTION_ERROR)
            await self.operation.create(path, raw, merge=merge, create_refs=create_refs)
            return Response(status=Status.OK, data=self.build(dict(data)))

        return await self.execute(callback)

    async def creates(self, writers: Iterable[DataWriter],
                      params: Optional[DataFieldParams] = None,
                      merge: bool = True,
                      create_refs: bool = False) -> Response[T]:
        writers = list(writers)
        if not writers:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            responses = await asyncio.gather(*(
                self.create(writer.id, writer.data, params=params, merge=merge, create_refs=create_refs)
                for writer in writers
            ))
            return Response(
                status=self._fan_out_status(responses, len(writers)),
                result=[response.data for response in responses if response.data is not None],
                snapshot=list(responses),
            )

        return await self.execute(callback)

    async def delete_by_id(self, id: str,
                           params: Optional[DataFieldParams] = None,
                           resolve_refs: Optional[bool] = None,
                           ignore: Collection[str] = (),
                           delete_refs: bool = False,
                           counter: bool = False,
                           batch_limit: Optional[int] = None,
                           batch_max_limit: Optional[int] = None) -> Response[T]:
        if not id:
            return Response(status=Status.INVALID_ID)

        async def callback() -> Response[T]:
            old = await self.get_by_id(
                id, params=params, resolve_refs=delete_refs if resolve_refs is None else resolve_refs, ignore=ignore
            )
            if not old.is_valid:
                return old
            path = self.ref(params, DataModifiers.DELETE_BY_ID, id)
            report = await self.operation.delete(
                path,
                delete_refs=delete_refs,
                counter=counter,
                batch_limit=batch_limit or self.limitations.batch_limit,
                batch_max_limit=batch_max_limit or self.limitations.maximum_delete_limit,
            )
            status = Status.CANCELED if report.truncated else Status.OK
            return Response(status=status, backups=[old.data], snapshot=report)

        return await self.execute(callback)

    async def delete_by_ids(self, ids: Iterable[str],
                            params: Optional[DataFieldParams] = None,
                            resolve_refs: Optional[bool] = None,
                            ignore: Collection[str] = (),
                            delete_refs: bool = False,
                            counter: bool = False,
                            batch_limit: Optional[int] = None,
                            batch_max_limit: Optional[int] = None) -> Response[T]:
        ids = list(ids)
        if not ids:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            responses = await asyncio.gather(*(
                self.delete_by_id(
                    id,
                    params=params,
                    resolve_refs=resolve_refs,
                    ignore=ignore,
                    delete_refs=delete_refs,
                    counter=counter,
                    batch_limit=batch_limit,
                    batch_max_limit=batch_max_limit,
                )
                for id in ids
            ))
            return Response(
                status=self._fan_out_status(responses, len(ids)),
                backups=[backup for response in responses for backup in response.backups],
                snapshot=list(responses),
            )

        return await self.execute(callback)

    async def clear(self, params: Optional[DataFieldParams] = None,
                    resolve_refs: Optional[bool] = None,
                    ignore: Collection[str] = (),
                    delete_refs: bool = False,
                    counter: bool = False) -> Response[T]:
        """Delete every document of the collection"""
        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.CLEAR)
            event = await self.operation.get(
                path, resolve_refs=delete_refs if resolve_refs is None else resolve_refs, ignore=ignore
            )
            if not event.exists:
                return Response(status=Status.NOT_FOUND)
            ids = [str(doc["id"]) for doc in event.docs if doc.get("id")]
            if not ids:
                return Response(status=Status.NOT_FOUND)
            deleted = await self.delete_by_ids(
                ids, params=params, ignore=ignore, delete_refs=delete_refs, counter=counter
            )
            return deleted.copy_with(backups=await self._build_all(event.docs), snapshot=event.snapshot)

        return await self.execute(callback)

    async def update_by_id(self, id: str, data: Mapping[str, Any],
                           params: Optional[DataFieldParams] = None,
                           resolve_refs: Optional[bool] = None,
                           ignore: Collection[str] = (),
                           update_refs: bool = False) -> Response[T]:
        if not id:
            return Response(status=Status.INVALID_ID)
        if not data:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            path = self.ref(params, DataModifiers.UPDATE_BY_ID, id)
            changes: Dict[str, Any] = {k: self.delegate.updating_field_value(v) for k, v in data.items()}
            if not self.is_encryptor:
                await self.operation.update(path, changes, update_refs=update_refs)
                return Response(status=Status.OK)
            current = await self.get_by_id(
                id, params=params, resolve_refs=update_refs if resolve_refs is None else resolve_refs, ignore=ignore
            )
            merged = dict(current.data.filtered) if current.data is not None else {}
            merged.update(changes)
            raw = await self.encryptor.input(merged)
            if not raw:
                return Response(status=Status.NULLABLE, error=ENCRYPTION_ERROR)
            await self.operation.update(path, raw, update_refs=update_refs)
            return Response(status=Status.OK)

        return await self.execute(callback)

    async def update_by_ids(self, writers: Iterable[DataWriter],
                            params: Optional[DataFieldParams] = None,
                            resolve_refs: Optional[bool] = None,
                            ignore: Collection[str] = (),
                            update_refs: bool = False) -> Response[T]:
        writers = list(writers)
        if not writers:
            return Response(status=Status.INVALID)

        async def callback() -> Response[T]:
            responses = await asyncio.gather(*(
                self.update_by_id(
                    writer.id, writer.data,
                    params=params, resolve_refs=resolve_refs, ignore=ignore, update_refs=update_refs,
                )
                for writer in writers
            ))
            return Response(status=self._fan_out_status(responses, len(writers)), snapshot=list(responses))

        return await self.execute(callback)

    # Listeners

    def listen(self, params: Optional[DataFieldParams] = None,
               only_updates: bool = False,
               resolve_refs: bool = False,
               resolve_doc_changes_refs: bool = False,
               countable: bool = False,
               ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        async def stream() -> AsyncIterator[Response[T]]:
            path = self.ref(params, DataModifiers.LISTEN)
            events = self.operation.listen(
                path,
                resolve_refs=resolve_refs and not only_updates,
                resolve_doc_changes_refs=resolve_doc_changes_refs or (only_updates and resolve_refs),
                countable=countable,
                ignore=ignore,
            )
            async with aclosing(events) as items:
                async for event in items:
                    yield await self._collection_response(event, only_updates)

        return self.execute_stream(stream)

    def listen_count(self, params: Optional[DataFieldParams] = None,
                     interval: float = 10.0) -> AsyncIterator[Response[int]]:
        """Periodically emit the collection size"""
        async def stream() -> AsyncIterator[Response[int]]:
            path = self.ref(params, DataModifiers.LISTEN_COUNT)
            while True:
                await asyncio.sleep(interval)
                yield Response(status=Status.OK, data=await self.operation.count(path))

        return self.execute_stream(stream)

    def listen_by_id(self, id: str,
                     params: Optional[DataFieldParams] = None,
                     resolve_refs: bool = False,
                     countable: bool = False,
                     ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        async def stream() -> AsyncIterator[Response[T]]:
            if not id:
                yield Response(status=Status.INVALID_ID)
                return
            path = self.ref(params, DataModifiers.LISTEN_BY_ID, id)
            events = self.operation.listen_by_id(path, resolve_refs=resolve_refs, countable=countable, ignore=ignore)
            async with aclosing(events) as items:
                async for event in items:
                    if not event.exists:
                        yield Response(status=Status.NOT_FOUND)
                    else:
                        yield Response(status=Status.OK, data=self.build(await self._decode(event.doc)), snapshot=event)

        return self.execute_stream(stream)

    def listen_by_ids(self, ids: Iterable[str],
                      params: Optional[DataFieldParams] = None,
                      resolve_refs: bool = False,
                      resolve_doc_changes_refs: bool = False,
                      countable: bool = False,
                      ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        ids = list(ids)

        async def merged() -> AsyncIterator[Response[T]]:
            latest: Dict[str, T] = {}
            streams = [
                self.listen_by_id(id, params=params, resolve_refs=resolve_refs, countable=countable, ignore=ignore)
                for id in ids
            ]
            async with aclosing(merge_streams(streams)) as items:
                async for event in items:
                    if event.data is not None:
                        latest[event.data.id] = event.data
                    if not latest:
                        yield Response(status=Status.NOT_FOUND)
                    else:
                        yield Response(status=Status.OK, result=list(latest.values()), snapshot=event.snapshot)

        async def queried() -> AsyncIterator[Response[T]]:
            path = self.ref(params, DataModifiers.LISTEN_BY_IDS)
            events = self.operation.listen_by_query(
                path,
                queries=[where_id_in(ids)],
                resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs,
                countable=countable,
                ignore=ignore,
            )
            async with aclosing(events) as items:
                async for event in items:
                    result = await self._build_all(event.docs)
                    if not result:
                        yield Response(status=Status.NOT_FOUND, snapshot=event.snapshot)
                    else:
                        yield Response(status=Status.OK, result=result, snapshot=event.snapshot)

        async def stream() -> AsyncIterator[Response[T]]:
            if not ids:
                yield Response(status=Status.INVALID)
                return
            source = merged() if self._exceeds_where_in(ids) else queried()
            async with aclosing(source) as items:
                async for response in items:
                    yield response

        return self.execute_stream(stream)

    def listen_by_query(self, params: Optional[DataFieldParams] = None,
                        queries: Iterable[DataQuery] = (),
                        selections: Iterable[DataSelection] = (),
                        sorts: Iterable[DataSorting] = (),
                        options: DataFetchOptions = DataFetchOptions(),
                        only_updates: bool = False,
                        resolve_refs: bool = False,
                        resolve_doc_changes_refs: bool = False,
                        countable: bool = False,
                        ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        async def stream() -> AsyncIterator[Response[T]]:
            path = self.ref(params, DataModifiers.LISTEN_BY_QUERY)
            events = self.operation.listen_by_query(
                path,
                queries=list(queries),
                selections=list(selections),
                sorts=list(sorts),
                options=options,
                resolve_refs=resolve_refs and not only_updates,
                resolve_doc_changes_refs=resolve_doc_changes_refs or (only_updates and resolve_refs),
                countable=countable,
                ignore=ignore,
            )
            async with aclosing(events) as items:
                async for event in items:
                    yield await self._collection_response(event, only_updates)

        return self.execute_stream(stream)


class RemoteDataSource(DataSource[T], ABC):
    """Data source backed by a remote document store"""
    pass


class LocalDataSource(DataSource[T], ABC):
    """Data source backed by a local store"""
    pass


class EntityDataSource(DataSource[T]):
    """Data source building entities with ``entity_type.from_source``"""

    def __init__(self, path: str, delegate: DataDelegate, entity_type: Type[T], **kwargs: Any):
        super().__init__(path, delegate, **kwargs)
        self.entity_type = entity_type

    def build(self, source: Any) -> T:
        return self.entity_type.from_source(source)


class RemoteEntityDataSource(EntityDataSource[T], RemoteDataSource[T]):
    pass


class LocalEntityDataSource(EntityDataSource[T], LocalDataSource[T]):
    pass


# Export main components
__all__ = [
    "DataSource", "RemoteDataSource", "LocalDataSource", "EntityDataSource",
    "RemoteEntityDataSource", "LocalEntityDataSource", "merge_streams",
    "ENCRYPTION_ERROR"
]
