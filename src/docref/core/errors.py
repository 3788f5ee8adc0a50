"""
Errors - Exception Hierarchy

Exceptions raised by delegates and the operation engine. They never cross
the DataSource boundary: ``DataSource.execute`` turns them into a
``Response`` with ``Status.FAILURE``.
"""

from typing import Optional


class DataError(Exception):
    """Base exception for data layer operations"""
    pass


class DelegateError(DataError):
    """Raised when a backend delegate call fails"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is not None:
            return f"{base}: {self.cause}"
        return base


class InvalidPathError(DataError):
    """Raised when a document or collection path is empty or malformed"""
    pass


class BatchError(DataError):
    """Raised when a write batch is misused (e.g. reused after commit)"""
    pass


class EncryptionError(DataError):
    """Raised when the encryption hook cannot transform a document"""
    pass


class CacheError(DataError):
    """Raised on invalid cache usage"""
    pass


__all__ = [
    "DataError", "DelegateError", "InvalidPathError", "BatchError",
    "EncryptionError", "CacheError"
]
