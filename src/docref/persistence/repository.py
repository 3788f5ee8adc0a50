"""
Data Repository - Primary/Backup Orchestration

🔁 Dual-Backend Repository:
Coordinates a primary data source with an optional backup source:

- Reads try the primary first, fall back to the backup and write the
  backup's result back into the primary.
- Writes go to the backup first, then to the primary.
- The remote side is gated by a connectivity hook.
- Reads can be served from the single-flight result cache.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Collection, Generic, Iterable,
    List, Optional, Set, TypeVar
)

from ..config import RepositoryConfig, RepositoryRole
from ..core.configs import DataFieldParams, DataModifiers, DataWriter
from ..core.entity import Entity
from ..core.query import (
    Checker, DataFetchOptions, DataQuery, DataSelection, DataSorting
)
from ..core.response import Response, Status
from .cache import DataCacheManager
from .source import DataSource

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Entity)

ConnectivityCallback = Callable[[], Awaitable[bool]]
SourceCall = Callable[[DataSource], Awaitable[Response]]


@dataclass(frozen=True)
class RoleBinding(Generic[T]):
    """Which source is primary, which is backup and which one is remote"""
    primary: DataSource[T]
    backup: Optional[DataSource[T]] = None
    remote: Optional[DataSource[T]] = None

    @classmethod
    def resolve(cls, role: RepositoryRole, source: DataSource[T],
                backup: Optional[DataSource[T]] = None) -> "RoleBinding[T]":
        if role is RepositoryRole.REMOTE_FIRST:
            return cls(primary=source, backup=backup, remote=source)
        return cls(primary=source, backup=backup, remote=backup)

    @property
    def is_local_first(self) -> bool:
        return self.remote is not self.primary


class DataRepository(Generic[T]):
    """
    Repository over a primary and an optional backup data source.

    Modes (each overridable per call):
    - ``backup_mode``: use the backup source for fallback and mirrored writes
    - ``lazy_mode``: backup writes and writebacks run in the background
    - ``restore_mode``: ``restore()`` copies backup contents into primary
    - ``singleton_mode``: primary reads go through the result cache
    """

    def __init__(self, source: DataSource[T],
                 backup: Optional[DataSource[T]] = None,
                 role: RepositoryRole = RepositoryRole.REMOTE_FIRST,
                 id: Optional[str] = None,
                 backup_mode: bool = True,
                 lazy_mode: bool = True,
                 restore_mode: bool = True,
                 singleton_mode: bool = True,
                 connectivity: Optional[ConnectivityCallback] = None,
                 cache: Optional[DataCacheManager] = None):
        self.binding: RoleBinding[T] = RoleBinding.resolve(role, source, backup)
        self.role = role
        self.id = id
        self.backup_mode = backup_mode
        self.lazy_mode = lazy_mode
        self.restore_mode = restore_mode
        self.singleton_mode = singleton_mode
        self._connectivity = connectivity
        self.cache = cache or DataCacheManager.instance()
        self._pending: Set[asyncio.Future] = set()
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @classmethod
    def remote(cls, source: DataSource[T], backup: Optional[DataSource[T]] = None,
               singleton_mode: bool = True, **kwargs: Any) -> "DataRepository[T]":
        """Remote source as primary, local source as backup"""
        return cls(source, backup, role=RepositoryRole.REMOTE_FIRST, singleton_mode=singleton_mode, **kwargs)

    @classmethod
    def local(cls, source: DataSource[T], backup: Optional[DataSource[T]] = None,
              singleton_mode: bool = False, **kwargs: Any) -> "DataRepository[T]":
        """Local source as primary, remote source as backup"""
        return cls(source, backup, role=RepositoryRole.LOCAL_FIRST, singleton_mode=singleton_mode, **kwargs)

    @classmethod
    def from_config(cls, config: RepositoryConfig, source: DataSource[T],
                    backup: Optional[DataSource[T]] = None, **kwargs: Any) -> "DataRepository[T]":
        return cls(
            source,
            backup,
            role=config.role,
            backup_mode=config.backup_mode,
            lazy_mode=config.lazy_mode,
            restore_mode=config.restore_mode,
            singleton_mode=config.singleton_mode,
            **kwargs,
        )

    @property
    def primary(self) -> DataSource[T]:
        return self.binding.primary

    @property
    def backup(self) -> Optional[DataSource[T]]:
        return self.binding.backup

    @property
    def entity_type(self) -> Any:
        return getattr(self.primary, "entity_type", type(self.primary))

    # Modes

    async def is_connected(self) -> bool:
        if self._connectivity is None:
            return False
        return await self._connectivity()

    def is_backup_mode(self, backup_mode: Optional[bool] = None) -> bool:
        return self.backup is not None and (self.backup_mode if backup_mode is None else backup_mode)

    def is_lazy_mode(self, lazy_mode: Optional[bool] = None) -> bool:
        return self.lazy_mode if lazy_mode is None else lazy_mode

    def is_singleton_mode(self, singleton_mode: Optional[bool] = None) -> bool:
        return self.singleton_mode if singleton_mode is None else singleton_mode

    # Execution helpers

    async def _call(self, source: DataSource[T], callback: SourceCall) -> Response:
        if source is self.binding.remote and not await self.is_connected():
            return Response(status=Status.NETWORK_ERROR)
        return await callback(source)

    async def _execute(self, callback: SourceCall) -> Response:
        try:
            return await self._call(self.primary, callback)
        except Exception as e:
            self._logger.error(f"Primary call failed: {e}")
            return Response(status=Status.FAILURE, error=str(e))

    async def _backup(self, callback: SourceCall) -> Response:
        if self.backup is None:
            return Response(status=Status.UNDEFINED)
        try:
            return await self._call(self.backup, callback)
        except Exception as e:
            self._logger.error(f"Backup call failed: {e}")
            return Response(status=Status.FAILURE, error=str(e))

    def _spawn(self, awaitable: Awaitable[Response], label: str):
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def done(finished: asyncio.Future):
            self._pending.discard(finished)
            if finished.cancelled():
                return
            response = finished.result()
            if not response.is_successful:
                self._logger.warning(f"Background {label} ended with {response.status.value}: {response.error}")

        task.add_done_callback(done)

    async def _run(self, awaitable: Awaitable[Response], label: str, lazy_mode: Optional[bool]):
        if self.is_lazy_mode(lazy_mode):
            self._spawn(awaitable, label)
            return
        response = await awaitable
        if not response.is_successful:
            self._logger.warning(f"{label} ended with {response.status.value}: {response.error}")

    async def wait_pending(self):
        """Await background backup writes and writebacks"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def modifier(self, response: Response[T], modifier: DataModifiers) -> Response[T]:
        """Hook for subclasses to post-process every result"""
        return response

    async def _modified(self, modifier: DataModifiers, callback: Callable[[], Awaitable[Response[T]]]) -> Response[T]:
        try:
            return await self.modifier(await callback(), modifier)
        except Exception as e:
            self._logger.error(f"{modifier.value} failed: {e}")
            return Response(status=Status.FAILURE, error=str(e))

    async def _stream(self, modifier: DataModifiers,
                      callback: Callable[[DataSource[T]], AsyncIterator[Response[T]]]) -> AsyncIterator[Response[T]]:
        try:
            async with aclosing(callback(self.primary)) as stream:
                async for response in stream:
                    yield await self.modifier(response, modifier)
        except Exception as e:
            self._logger.error(f"{modifier.value} stream failed: {e}")
            yield Response(status=Status.FAILURE, error=str(e))

    def _write_back(self, backup: Response[T], params: Optional[DataFieldParams],
                    create_refs: bool, merge: bool) -> Awaitable[Response]:
        writers = [DataWriter(item.id, item.filtered) for item in backup.items]
        return self._execute(
            lambda source: source.creates(writers, params=params, merge=merge, create_refs=create_refs)
        )

    async def _read(self, name: str, call: SourceCall, key_props: List[Any],
                    params: Optional[DataFieldParams], resolve_refs: bool,
                    create_refs: Optional[bool], merge: bool,
                    lazy_mode: Optional[bool], backup_mode: Optional[bool],
                    singleton_mode: Optional[bool]) -> Response[T]:
        feedback = await self.cache.cache(
            name,
            lambda: self._execute(call),
            type=self.entity_type,
            enabled=self.is_singleton_mode(singleton_mode),
            key_props=[self.id or self.primary.path, params, *key_props],
        )
        if feedback.is_valid or not self.is_backup_mode(backup_mode):
            return feedback
        backup = await self._backup(call)
        if backup.is_valid and backup.items:
            refs = resolve_refs if create_refs is None else create_refs
            await self._run(self._write_back(backup, params, refs, merge), "writeback", lazy_mode)
        return backup

    async def _write(self, call: SourceCall, lazy_mode: Optional[bool], backup_mode: Optional[bool]) -> Response[T]:
        if self.is_backup_mode(backup_mode):
            await self._run(self._backup(call), "backup write", lazy_mode)
        return await self._execute(call)

    # Reads

    async def check_by_id(self, id: str,
                          params: Optional[DataFieldParams] = None,
                          resolve_refs: bool = False,
                          ignore: Collection[str] = (),
                          create_refs: Optional[bool] = None,
                          merge: bool = True,
                          lazy_mode: Optional[bool] = None,
                          backup_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.check_by_id(id, params=params, resolve_refs=resolve_refs, ignore=ignore)
            return await self._read("CHECK_BY_ID", call, [id, resolve_refs, *ignore], params, resolve_refs,
                                    create_refs, merge, lazy_mode, backup_mode, False)

        return await self._modified(DataModifiers.CHECK_BY_ID, callback)

    async def count(self, params: Optional[DataFieldParams] = None,
                    backup_mode: Optional[bool] = None) -> Response[int]:
        call = lambda source: source.count(params=params)
        feedback = await self._execute(call)
        if feedback.is_valid or not self.is_backup_mode(backup_mode):
            return feedback
        backup = await self._backup(call)
        return feedback.copy_with(data=backup.data)

    async def get(self, params: Optional[DataFieldParams] = None,
                  only_updates: bool = False,
                  resolve_refs: bool = False,
                  resolve_doc_changes_refs: bool = False,
                  countable: bool = False,
                  ignore: Collection[str] = (),
                  create_refs: Optional[bool] = None,
                  merge: bool = True,
                  lazy_mode: Optional[bool] = None,
                  backup_mode: Optional[bool] = None,
                  singleton_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.get(
                params=params, only_updates=only_updates, resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
            )
            key_props = [countable, only_updates, resolve_refs, resolve_doc_changes_refs, *ignore]
            return await self._read("GET", call, key_props, params, resolve_refs,
                                    create_refs, merge, lazy_mode, backup_mode, singleton_mode)

        return await self._modified(DataModifiers.GET, callback)

    async def get_by_id(self, id: str,
                        params: Optional[DataFieldParams] = None,
                        resolve_refs: bool = False,
                        countable: bool = False,
                        ignore: Collection[str] = (),
                        create_refs: Optional[bool] = None,
                        merge: bool = True,
                        lazy_mode: Optional[bool] = None,
                        backup_mode: Optional[bool] = None,
                        singleton_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.get_by_id(
                id, params=params, resolve_refs=resolve_refs, countable=countable, ignore=ignore
            )
            key_props = [id, countable, resolve_refs, *ignore]
            return await self._read("GET_BY_ID", call, key_props, params, resolve_refs,
                                    create_refs, merge, lazy_mode, backup_mode, singleton_mode)

        return await self._modified(DataModifiers.GET_BY_ID, callback)

    async def get_by_ids(self, ids: Iterable[str],
                         params: Optional[DataFieldParams] = None,
                         resolve_refs: bool = False,
                         resolve_doc_changes_refs: bool = False,
                         countable: bool = False,
                         ignore: Collection[str] = (),
                         create_refs: Optional[bool] = None,
                         merge: bool = True,
                         lazy_mode: Optional[bool] = None,
                         backup_mode: Optional[bool] = None,
                         singleton_mode: Optional[bool] = None) -> Response[T]:
        ids = list(ids)

        async def callback() -> Response[T]:
            call = lambda source: source.get_by_ids(
                ids, params=params, resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
            )
            key_props = [*ids, countable, resolve_refs, resolve_doc_changes_refs, *ignore]
            return await self._read("GET_BY_IDS", call, key_props, params, resolve_refs,
                                    create_refs, merge, lazy_mode, backup_mode, singleton_mode)

        return await self._modified(DataModifiers.GET_BY_IDS, callback)

    async def get_by_query(self, params: Optional[DataFieldParams] = None,
                           queries: Iterable[DataQuery] = (),
                           selections: Iterable[DataSelection] = (),
                           sorts: Iterable[DataSorting] = (),
                           options: DataFetchOptions = DataFetchOptions(),
                           only_updates: bool = False,
                           resolve_refs: bool = False,
                           resolve_doc_changes_refs: bool = False,
                           countable: bool = False,
                           ignore: Collection[str] = (),
                           create_refs: Optional[bool] = None,
                           merge: bool = True,
                           lazy_mode: Optional[bool] = None,
                           backup_mode: Optional[bool] = None,
                           singleton_mode: Optional[bool] = None) -> Response[T]:
        queries, selections, sorts = list(queries), list(selections), list(sorts)

        async def callback() -> Response[T]:
            call = lambda source: source.get_by_query(
                params=params, queries=queries, selections=selections, sorts=sorts, options=options,
                only_updates=only_updates, resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
            )
            key_props = [*queries, *selections, *sorts, options, countable, only_updates,
                         resolve_refs, resolve_doc_changes_refs, *ignore]
            return await self._read("GET_BY_QUERY", call, key_props, params, resolve_refs,
                                    create_refs, merge, lazy_mode, backup_mode, singleton_mode)

        return await self._modified(DataModifiers.GET_BY_QUERY, callback)

    async def search(self, checker: Checker,
                     params: Optional[DataFieldParams] = None,
                     resolve_refs: bool = False,
                     resolve_doc_changes_refs: bool = False,
                     countable: bool = False,
                     ignore: Collection[str] = (),
                     create_refs: Optional[bool] = None,
                     merge: bool = True,
                     lazy_mode: Optional[bool] = None,
                     backup_mode: Optional[bool] = None,
                     singleton_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.search(
                checker, params=params, resolve_refs=resolve_refs,
                resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
            )
            key_props = [checker, countable, resolve_refs, resolve_doc_changes_refs, *ignore]
            return await self._read("SEARCH", call, key_props, params, resolve_refs,
                                    create_refs, merge, lazy_mode, backup_mode, singleton_mode)

        return await self._modified(DataModifiers.SEARCH, callback)

    # Writes

    async def create(self, data: T,
                     params: Optional[DataFieldParams] = None,
                     merge: bool = True,
                     create_refs: bool = False,
                     lazy_mode: Optional[bool] = None,
                     backup_mode: Optional[bool] = None) -> Response[T]:
        return await self.create_by_id(
            data.id, data.filtered, params=params, merge=merge, create_refs=create_refs,
            lazy_mode=lazy_mode, backup_mode=backup_mode,
        )

    async def create_by_id(self, id: str, data: dict,
                           params: Optional[DataFieldParams] = None,
                           merge: bool = True,
                           create_refs: bool = False,
                           lazy_mode: Optional[bool] = None,
                           backup_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.create(id, data, params=params, merge=merge, create_refs=create_refs)
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.CREATE, callback)

    async def creates(self, data: Iterable[T],
                      params: Optional[DataFieldParams] = None,
                      merge: bool = True,
                      create_refs: bool = False,
                      lazy_mode: Optional[bool] = None,
                      backup_mode: Optional[bool] = None) -> Response[T]:
        return await self.create_by_writers(
            [DataWriter(item.id, item.filtered) for item in data],
            params=params, merge=merge, create_refs=create_refs,
            lazy_mode=lazy_mode, backup_mode=backup_mode,
        )

    async def create_by_writers(self, writers: Iterable[DataWriter],
                                params: Optional[DataFieldParams] = None,
                                merge: bool = True,
                                create_refs: bool = False,
                                lazy_mode: Optional[bool] = None,
                                backup_mode: Optional[bool] = None) -> Response[T]:
        writers = list(writers)

        async def callback() -> Response[T]:
            call = lambda source: source.creates(writers, params=params, merge=merge, create_refs=create_refs)
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.CREATES, callback)

    async def delete_by_id(self, id: str,
                           params: Optional[DataFieldParams] = None,
                           resolve_refs: Optional[bool] = None,
                           ignore: Collection[str] = (),
                           delete_refs: bool = False,
                           counter: bool = False,
                           lazy_mode: Optional[bool] = None,
                           backup_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.delete_by_id(
                id, params=params, resolve_refs=resolve_refs, ignore=ignore,
                delete_refs=delete_refs, counter=counter,
            )
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.DELETE_BY_ID, callback)

    async def delete_by_ids(self, ids: Iterable[str],
                            params: Optional[DataFieldParams] = None,
                            resolve_refs: Optional[bool] = None,
                            ignore: Collection[str] = (),
                            delete_refs: bool = False,
                            counter: bool = False,
                            lazy_mode: Optional[bool] = None,
                            backup_mode: Optional[bool] = None) -> Response[T]:
        ids = list(ids)

        async def callback() -> Response[T]:
            call = lambda source: source.delete_by_ids(
                ids, params=params, resolve_refs=resolve_refs, ignore=ignore,
                delete_refs=delete_refs, counter=counter,
            )
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.DELETE_BY_IDS, callback)

    async def clear(self, params: Optional[DataFieldParams] = None,
                    resolve_refs: Optional[bool] = None,
                    ignore: Collection[str] = (),
                    delete_refs: bool = False,
                    counter: bool = False,
                    lazy_mode: Optional[bool] = None,
                    backup_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.clear(
                params=params, resolve_refs=resolve_refs, ignore=ignore,
                delete_refs=delete_refs, counter=counter,
            )
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.CLEAR, callback)

    async def update_by_id(self, id: str, data: dict,
                           params: Optional[DataFieldParams] = None,
                           resolve_refs: Optional[bool] = None,
                           ignore: Collection[str] = (),
                           update_refs: bool = False,
                           lazy_mode: Optional[bool] = None,
                           backup_mode: Optional[bool] = None) -> Response[T]:
        async def callback() -> Response[T]:
            call = lambda source: source.update_by_id(
                id, data, params=params, resolve_refs=resolve_refs, ignore=ignore, update_refs=update_refs,
            )
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.UPDATE_BY_ID, callback)

    async def update_by_ids(self, updates: Iterable[DataWriter],
                            params: Optional[DataFieldParams] = None,
                            resolve_refs: Optional[bool] = None,
                            ignore: Collection[str] = (),
                            update_refs: bool = False,
                            lazy_mode: Optional[bool] = None,
                            backup_mode: Optional[bool] = None) -> Response[T]:
        updates = list(updates)

        async def callback() -> Response[T]:
            call = lambda source: source.update_by_ids(
                updates, params=params, resolve_refs=resolve_refs, ignore=ignore, update_refs=update_refs,
            )
            return await self._write(call, lazy_mode, backup_mode)

        return await self._modified(DataModifiers.UPDATE_BY_IDS, callback)

    async def restore(self, params: Optional[DataFieldParams] = None,
                      only_updates: bool = False,
                      resolve_refs: Optional[bool] = None,
                      resolve_doc_changes_refs: bool = False,
                      countable: bool = False,
                      ignore: Collection[str] = (),
                      create_refs: bool = False,
                      merge: bool = True,
                      lazy_mode: Optional[bool] = None,
                      backup_mode: Optional[bool] = None) -> Optional[Response[T]]:
        """Copy the backup collection into the primary source"""
        if not self.restore_mode or not self.is_backup_mode(backup_mode):
            return None
        backup = await self._backup(lambda source: source.get(
            params=params, only_updates=only_updates,
            resolve_refs=create_refs if resolve_refs is None else resolve_refs,
            resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
        ))
        if not backup.is_valid:
            self._logger.info(f"Nothing restored: backup returned {backup.status.value}")
            return backup
        if self.is_lazy_mode(lazy_mode):
            self._spawn(self._write_back(backup, params, create_refs, merge), "restore")
            return backup
        restored = await self._write_back(backup, params, create_refs, merge)
        self._logger.info(f"Restored {len(backup.items)} document(s) into primary: {restored.status.value}")
        return restored

    # Listeners

    def listen(self, params: Optional[DataFieldParams] = None,
               only_updates: bool = False,
               resolve_refs: bool = False,
               resolve_doc_changes_refs: bool = False,
               countable: bool = False,
               ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        return self._stream(DataModifiers.LISTEN, lambda source: source.listen(
            params=params, only_updates=only_updates, resolve_refs=resolve_refs,
            resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
        ))

    def listen_count(self, params: Optional[DataFieldParams] = None,
                     interval: float = 10.0) -> AsyncIterator[Response[int]]:
        return self.primary.listen_count(params=params, interval=interval)

    def listen_by_id(self, id: str,
                     params: Optional[DataFieldParams] = None,
                     resolve_refs: bool = False,
                     countable: bool = False,
                     ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        return self._stream(DataModifiers.LISTEN_BY_ID, lambda source: source.listen_by_id(
            id, params=params, resolve_refs=resolve_refs, countable=countable, ignore=ignore,
        ))

    def listen_by_ids(self, ids: Iterable[str],
                      params: Optional[DataFieldParams] = None,
                      resolve_refs: bool = False,
                      resolve_doc_changes_refs: bool = False,
                      countable: bool = False,
                      ignore: Collection[str] = ()) -> AsyncIterator[Response[T]]:
        ids = list(ids)
        return self._stream(DataModifiers.LISTEN_BY_IDS, lambda source: source.listen_by_ids(
            ids, params=params, resolve_refs=resolve_refs,
            resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
        ))

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
        queries, selections, sorts = list(queries), list(selections), list(sorts)
        return self._stream(DataModifiers.LISTEN_BY_QUERY, lambda source: source.listen_by_query(
            params=params, queries=queries, selections=selections, sorts=sorts, options=options,
            only_updates=only_updates, resolve_refs=resolve_refs,
            resolve_doc_changes_refs=resolve_doc_changes_refs, countable=countable, ignore=ignore,
        ))


class RemoteDataRepository(DataRepository[T]):
    """Repository with a remote primary source"""

    def __init__(self, source: DataSource[T], backup: Optional[DataSource[T]] = None, **kwargs: Any):
        kwargs.setdefault("singleton_mode", True)
        super().__init__(source, backup, role=RepositoryRole.REMOTE_FIRST, **kwargs)


class LocalDataRepository(DataRepository[T]):
    """Repository with a local primary source"""

    def __init__(self, source: DataSource[T], backup: Optional[DataSource[T]] = None, **kwargs: Any):
        kwargs.setdefault("singleton_mode", False)
        super().__init__(source, backup, role=RepositoryRole.LOCAL_FIRST, **kwargs)


# Export main components
__all__ = [
    "ConnectivityCallback", "RoleBinding", "DataRepository",
    "RemoteDataRepository", "LocalDataRepository"
]
