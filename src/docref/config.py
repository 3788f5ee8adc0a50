"""
Configuration Management for docref

🔧 Unified Configuration System:
Dataclass configuration for the data layer: backend limitations,
repository modes, result cache, SQL delegate and logging, with presets per
environment.
"""

import logging
import logging.handlers
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .core.configs import DataLimitations


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class RepositoryRole(Enum):
    """Which backend a repository reads and writes first"""
    REMOTE_FIRST = "remote_first"
    LOCAL_FIRST = "local_first"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class LimitationsConfig:
    """Backend limitations"""
    where_in: int = 10
    batch_limit: int = 500
    maximum_delete_limit: Optional[int] = None

    def build(self) -> DataLimitations:
        return DataLimitations(
            where_in=self.where_in,
            batch_limit=self.batch_limit,
            maximum_delete_limit=self.maximum_delete_limit,
        )


@dataclass
class RepositoryConfig:
    """Repository modes"""
    role: RepositoryRole = RepositoryRole.REMOTE_FIRST
    backup_mode: bool = True
    lazy_mode: bool = True
    restore_mode: bool = True
    singleton_mode: bool = True


@dataclass
class CacheConfig:
    """Result cache configuration"""
    enabled: bool = True
    ttl_seconds: Optional[float] = None


@dataclass
class SQLDelegateConfig:
    """SQL delegate connection configuration"""
    database_url: str = "sqlite+aiosqlite:///:memory:"
    echo: bool = False
    table_name: str = "documents"
    pool_recycle: int = 3600
    connect_args: Dict[str, Any] = field(default_factory=dict)


def _update(target: Any, values: Optional[Dict[str, Any]]):
    for key, value in (values or {}).items():
        if hasattr(target, key):
            setattr(target, key, value)


@dataclass
class DocRefConfig:
    """Complete data layer configuration"""
    environment: Environment = Environment.DEVELOPMENT
    limitations: LimitationsConfig = field(default_factory=LimitationsConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    sql: SQLDelegateConfig = field(default_factory=SQLDelegateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> "DocRefConfig":
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.logging.level = "DEBUG"
            config.sql.database_url = "sqlite+aiosqlite:///docref.db"

        elif environment == Environment.TESTING:
            config.logging.level = "WARNING"
            config.cache.enabled = False
            config.repository.lazy_mode = False

        elif environment == Environment.STAGING:
            config.sql.database_url = "sqlite+aiosqlite:///docref.db"

        elif environment == Environment.PRODUCTION:
            config.logging.level = "INFO"
            config.logging.file_path = "/var/log/docref/docref.log"
            config.sql.database_url = "sqlite+aiosqlite:///docref.db"
            config.repository.lazy_mode = True

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "DocRefConfig":
        """Create configuration from dictionary"""
        environment = Environment(config_dict.get("environment", Environment.DEVELOPMENT.value))
        config = cls.for_environment(environment)

        repository = dict(config_dict.get("repository") or {})
        if "role" in repository:
            repository["role"] = RepositoryRole(repository["role"])

        _update(config.limitations, config_dict.get("limitations"))
        _update(config.repository, repository)
        _update(config.cache, config_dict.get("cache"))
        _update(config.sql, config_dict.get("sql"))
        _update(config.logging, config_dict.get("logging"))
        return config

    @classmethod
    def from_environment(cls) -> "DocRefConfig":
        """Create configuration from environment variables"""
        config = cls.for_environment(Environment(os.getenv("DOCREF_ENV", "development")))

        if os.getenv("DOCREF_DATABASE_URL"):
            config.sql.database_url = os.getenv("DOCREF_DATABASE_URL")

        if os.getenv("DOCREF_LOG_LEVEL"):
            config.logging.level = os.getenv("DOCREF_LOG_LEVEL")

        if os.getenv("DOCREF_LAZY_MODE"):
            config.repository.lazy_mode = os.getenv("DOCREF_LAZY_MODE").lower() == "true"

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "environment": self.environment.value,
            "limitations": {
                "where_in": self.limitations.where_in,
                "batch_limit": self.limitations.batch_limit,
                "maximum_delete_limit": self.limitations.maximum_delete_limit,
            },
            "repository": {
                "role": self.repository.role.value,
                "backup_mode": self.repository.backup_mode,
                "lazy_mode": self.repository.lazy_mode,
                "restore_mode": self.repository.restore_mode,
                "singleton_mode": self.repository.singleton_mode,
            },
            "cache": {
                "enabled": self.cache.enabled,
                "ttl_seconds": self.cache.ttl_seconds,
            },
            "sql": {
                "database_url": self.sql.database_url,
                "echo": self.sql.echo,
                "table_name": self.sql.table_name,
                "pool_recycle": self.sql.pool_recycle,
                "connect_args": self.sql.connect_args,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "file_path": self.logging.file_path,
                "max_file_size": self.logging.max_file_size,
                "backup_count": self.logging.backup_count,
            },
        }


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Install a handler on the ``docref`` logger"""
    root = logging.getLogger("docref")
    root.setLevel(config.level.upper())

    if config.file_path:
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(config.format))

    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    return root


# Global configuration management
_current_config: Optional[DocRefConfig] = None


def set_config(config: DocRefConfig):
    """Set the global configuration"""
    global _current_config
    _current_config = config


def get_config() -> DocRefConfig:
    """Get the current global configuration"""
    global _current_config

    if _current_config is None:
        _current_config = DocRefConfig.from_environment()

    return _current_config


# Export main components
__all__ = [
    "Environment", "RepositoryRole", "LoggingConfig", "LimitationsConfig",
    "RepositoryConfig", "CacheConfig", "SQLDelegateConfig", "DocRefConfig",
    "configure_logging", "set_config", "get_config"
]
