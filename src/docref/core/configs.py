"""
Shared value objects: backend limitations, writers, path parameters and
operation identifiers.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .field_value import Document
from .paths import join

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


@dataclass(frozen=True)
class DataLimitations:
    """Backend limits honoured by the data source and the delete cascade"""
    where_in: int = 10
    batch_limit: int = 500
    maximum_delete_limit: Optional[int] = None


@dataclass
class DataWriter:
    """Document id plus the data to write under it"""
    id: str
    data: Document = field(default_factory=dict)


@dataclass
class DataFieldParams:
    """
    Placeholder values for parameterised entity paths.

    ``DataFieldParams({"uid": "u1"}).generate("users/{uid}/posts")``
    yields ``"users/u1/posts"``. Unknown placeholders are left untouched.
    """
    values: Dict[str, Any] = field(default_factory=dict)

    def generate(self, path: str) -> str:
        def replace(match: "re.Match[str]") -> str:
            key = match.group(1)
            if key in self.values and self.values[key] is not None:
                return str(self.values[key])
            return match.group(0)

        return _PLACEHOLDER.sub(replace, path)


def generate_path(params: Optional[DataFieldParams], path: str) -> str:
    if params is None:
        return path
    return params.generate(path)


def child_path(base: str, id: Optional[str] = None) -> str:
    if not id:
        return base
    return join(base, id)


class DataModifiers(Enum):
    """Identifies the operation a path/result belongs to"""
    CHECK_BY_ID = "check_by_id"
    CLEAR = "clear"
    COUNT = "count"
    CREATE = "create"
    CREATES = "creates"
    DELETE_BY_ID = "delete_by_id"
    DELETE_BY_IDS = "delete_by_ids"
    GET = "get"
    GET_BY_ID = "get_by_id"
    GET_BY_IDS = "get_by_ids"
    GET_BY_QUERY = "get_by_query"
    LISTEN = "listen"
    LISTEN_COUNT = "listen_count"
    LISTEN_BY_ID = "listen_by_id"
    LISTEN_BY_IDS = "listen_by_ids"
    LISTEN_BY_QUERY = "listen_by_query"
    RESTORE = "restore"
    SEARCH = "search"
    UPDATE_BY_ID = "update_by_id"
    UPDATE_BY_IDS = "update_by_ids"


__all__ = [
    "DataLimitations", "DataWriter", "DataFieldParams", "generate_path",
    "child_path", "DataModifiers"
]
