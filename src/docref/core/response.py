"""
Response - Uniform Operation Result

Every DataSource and Repository operation returns a ``Response`` carrying a
``Status`` instead of raising.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")

_UNSET: Any = object()


class Status(Enum):
    """Status codes for data operations"""
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    INVALID_ID = "invalid_id"
    NETWORK_ERROR = "network_error"
    FAILURE = "failure"
    CANCELED = "canceled"
    UNDEFINED = "undefined"
    ERROR = "error"
    NULLABLE = "nullable"

    @property
    def is_ok(self) -> bool:
        return self is Status.OK


@dataclass
class Response(Generic[T]):
    """Result of a data operation"""
    status: Status = Status.OK
    data: Optional[T] = None
    result: List[T] = field(default_factory=list)
    backups: List[T] = field(default_factory=list)
    snapshot: Any = None
    error: Optional[str] = None

    @property
    def is_successful(self) -> bool:
        return self.status is Status.OK

    @property
    def is_valid(self) -> bool:
        """Successful and carrying data (or at least not a miss)"""
        return self.is_successful

    @property
    def items(self) -> List[T]:
        """``result`` when present, otherwise ``[data]``"""
        if self.result:
            return list(self.result)
        if self.data is not None:
            return [self.data]
        return []

    def copy_with(self, status: Status = _UNSET, data: Any = _UNSET, result: Any = _UNSET,
                  backups: Any = _UNSET, snapshot: Any = _UNSET, error: Any = _UNSET) -> "Response[T]":
        changes = {}
        for name, value in (("status", status), ("data", data), ("result", result),
                            ("backups", backups), ("snapshot", snapshot), ("error", error)):
            if value is not _UNSET:
                changes[name] = value
        return replace(self, **changes)

    def __repr__(self) -> str:
        return (f"Response(status={self.status.value}, data={self.data!r}, "
                f"result={len(self.result)} item(s), error={self.error!r})")


__all__ = ["Status", "Response"]
