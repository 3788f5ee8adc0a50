"""
Persistence - Operations, Sources and Repositories

🏗️ Layered Data Access:
- Delegates: backend capability contract and implementations
- Operation engine: reference-aware create/read/update/delete
- Data sources: entity operations with status results
- Repositories: primary/backup orchestration with a result cache
"""

from .cache import DataCacheManager
from .delegates import (
    DataDelegate, DataGetSnapshot, DataGetsSnapshot, DataWriteBatch,
    FieldTransform, InMemoryDelegate, SQLDelegate, StoredDocumentDelegate
)
from .operation import CountPolicy, DataOperation, DeleteReport
from .query_builder import MemoryQuery, MemoryQueryBuilder, QueryBuilder
from .repository import (
    DataRepository, LocalDataRepository, RemoteDataRepository, RoleBinding
)
from .source import (
    DataSource, EntityDataSource, LocalDataSource, LocalEntityDataSource,
    RemoteDataSource, RemoteEntityDataSource
)

__all__ = [
    # Delegates
    "DataDelegate", "DataWriteBatch", "DataGetSnapshot", "DataGetsSnapshot",
    "StoredDocumentDelegate", "FieldTransform", "InMemoryDelegate", "SQLDelegate",

    # Queries
    "QueryBuilder", "MemoryQuery", "MemoryQueryBuilder",

    # Engine
    "DataOperation", "CountPolicy", "DeleteReport",

    # Sources and repositories
    "DataSource", "RemoteDataSource", "LocalDataSource", "EntityDataSource",
    "RemoteEntityDataSource", "LocalEntityDataSource",
    "DataRepository", "RemoteDataRepository", "LocalDataRepository", "RoleBinding",
    "DataCacheManager",
]
