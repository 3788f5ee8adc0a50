"""
SQL Delegate - SQLAlchemy Document Backend

🗃️ Local Key-Value Document Cache:
Stores each document as a JSON value keyed by its path in a single SQL
table, using SQLAlchemy's async engine (aiosqlite by default). Queries are
evaluated in process over the collection's rows; batches run inside one
database transaction.
"""

import asyncio
import contextvars
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import JSON, Column, DateTime, MetaData, String, Table, delete, func, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from ...config import SQLDelegateConfig
from ...core import paths
from ...core.field_value import Document
from .interface import BatchOperation
from .base import StoredDocumentDelegate

logger = logging.getLogger(__name__)

_active_connection: contextvars.ContextVar[Optional[AsyncConnection]] = contextvars.ContextVar(
    "docref_sql_connection", default=None
)


def documents_table(metadata: MetaData, name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("path", String, primary_key=True),
        Column("collection", String, nullable=False, index=True),
        Column("doc_id", String, nullable=False),
        Column("data", JSON, nullable=False),
        Column("updated_at", DateTime, nullable=False),
    )


class SQLDelegate(StoredDocumentDelegate):
    """
    SQL delegate implementation using SQLAlchemy async.

    Access is serialized through a lock; operations inside a batch reuse
    the batch's transaction.
    """

    def __init__(self, config: Optional[SQLDelegateConfig] = None, **options: Any):
        super().__init__(**options)
        self.sql_config = config or SQLDelegateConfig()
        self.metadata = MetaData()
        self.table = documents_table(self.metadata, self.sql_config.table_name)
        self.engine: AsyncEngine = self._create_engine(self.sql_config)
        self._lock = asyncio.Lock()
        self.queries_executed = 0

    @staticmethod
    def _create_engine(config: SQLDelegateConfig) -> AsyncEngine:
        if ":memory:" in config.database_url or config.database_url.endswith("://"):
            # one shared connection keeps an in-memory database alive
            return create_async_engine(
                config.database_url,
                echo=config.echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(
            config.database_url,
            echo=config.echo,
            pool_recycle=config.pool_recycle,
            connect_args=dict(config.connect_args),
        )

    async def _do_initialize(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)
        logger.info(f"SQLDelegate initialized on table '{self.table.name}'")

    async def _do_shutdown(self):
        await self.engine.dispose()

    async def _ensure_initialized(self):
        if not self._is_initialized:
            await self.initialize()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        active = _active_connection.get()
        if active is not None:
            yield active
            return
        await self._ensure_initialized()
        async with self._lock:
            async with self.engine.begin() as conn:
                yield conn

    async def apply_batch(self, operations: List[BatchOperation]):
        if _active_connection.get() is not None:
            await super().apply_batch(operations)
            return
        await self._ensure_initialized()
        async with self._lock:
            async with self.engine.begin() as conn:
                token = _active_connection.set(conn)
                try:
                    await super().apply_batch(operations)
                finally:
                    _active_connection.reset(token)

    async def _read(self, path: str) -> Optional[Document]:
        async with self._connect() as conn:
            result = await conn.execute(select(self.table.c.data).where(self.table.c.path == path))
            self.queries_executed += 1
            row = result.first()
        return dict(row.data) if row is not None else None

    async def _write(self, path: str, data: Document):
        values = {
            "collection": paths.parent(path),
            "doc_id": paths.document_id(path),
            "data": data,
            "updated_at": datetime.now(),
        }
        async with self._connect() as conn:
            exists = await conn.execute(select(self.table.c.path).where(self.table.c.path == path))
            if exists.first() is None:
                await conn.execute(self.table.insert().values(path=path, **values))
            else:
                await conn.execute(self.table.update().where(self.table.c.path == path).values(**values))
            self.queries_executed += 2

    async def _remove(self, path: str) -> bool:
        async with self._connect() as conn:
            result = await conn.execute(delete(self.table).where(self.table.c.path == path))
            self.queries_executed += 1
        return bool(result.rowcount)

    async def _children(self, collection: str) -> List[Tuple[str, Document]]:
        stmt = (
            select(self.table.c.doc_id, self.table.c.data)
            .where(self.table.c.collection == collection)
            .order_by(self.table.c.doc_id)
        )
        async with self._connect() as conn:
            result = await conn.execute(stmt)
            self.queries_executed += 1
            rows = result.all()
        return [(row.doc_id, dict(row.data)) for row in rows]

    async def count(self, path: str) -> Optional[int]:
        async with self._operation("count", path):
            collection = self._collection_path(path)
            stmt = select(func.count()).select_from(self.table).where(self.table.c.collection == collection)
            async with self._connect() as conn:
                result = await conn.execute(stmt)
                self.queries_executed += 1
                return int(result.scalar_one())

    async def get_metrics(self) -> Dict[str, Any]:
        metrics = await super().get_metrics()
        metrics["queries_executed"] = self.queries_executed
        metrics["table"] = self.table.name
        return metrics


__all__ = ["SQLDelegate", "documents_table"]
