"""
docref - Reference-Aware Document Data Layer

A backend-agnostic data access layer for document stores. Documents may
hold reference fields (``@key``) and count fields (``#key``); writes fan
nested reference writes out into one batch, reads resolve references and
counts, and deletes can cascade through the reference graph. Repositories
pair a remote and a local source with fallback, writeback and a result
cache.
"""

from .config import (
    CacheConfig, DocRefConfig, Environment, LimitationsConfig, LoggingConfig,
    RepositoryConfig, RepositoryRole, SQLDelegateConfig, configure_logging
)
from .core import *  # noqa: F401,F403
from .core import __all__ as _core_all
from .persistence import *  # noqa: F401,F403
from .persistence import __all__ as _persistence_all

__version__ = "0.1.0"

__all__ = [
    "Environment", "RepositoryRole", "LoggingConfig", "LimitationsConfig",
    "RepositoryConfig", "CacheConfig", "SQLDelegateConfig", "DocRefConfig",
    "configure_logging",
] + list(_core_all) + list(_persistence_all)
