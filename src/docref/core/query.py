"""
Query Model - Backend-Agnostic Query Description

🔎 Abstract Query Contract:
Filters, sorting, cursor selections and paging options describing a
collection query. Delegates translate them into their native query object
through a ``QueryBuilder``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence


class DataFieldPath(Enum):
    """Special field references"""
    DOCUMENT_ID = "__name__"


@dataclass(frozen=True)
class DataQuery:
    """Represents a single filter condition on one field"""
    field: Any
    is_equal_to: Any = None
    is_not_equal_to: Any = None
    is_less_than: Any = None
    is_less_than_or_equal_to: Any = None
    is_greater_than: Any = None
    is_greater_than_or_equal_to: Any = None
    array_contains: Any = None
    array_not_contains: Any = None
    array_contains_any: Optional[Sequence[Any]] = None
    array_not_contains_any: Optional[Sequence[Any]] = None
    where_in: Optional[Sequence[Any]] = None
    where_not_in: Optional[Sequence[Any]] = None
    is_null: Optional[bool] = None

    def conditions(self) -> Dict[str, Any]:
        """Operators that carry a value, keyed by attribute name"""
        names = (
            "is_equal_to", "is_not_equal_to", "is_less_than",
            "is_less_than_or_equal_to", "is_greater_than",
            "is_greater_than_or_equal_to", "array_contains",
            "array_not_contains", "array_contains_any",
            "array_not_contains_any", "where_in", "where_not_in", "is_null",
        )
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


@dataclass(frozen=True)
class DataSorting:
    """Represents sorting criteria"""
    field: str
    descending: bool = False


class DataSelections(Enum):
    """Cursor selection types"""
    END_AT = "end_at"
    END_AT_DOCUMENT = "end_at_document"
    END_BEFORE = "end_before"
    END_BEFORE_DOCUMENT = "end_before_document"
    START_AFTER = "start_after"
    START_AFTER_DOCUMENT = "start_after_document"
    START_AT = "start_at"
    START_AT_DOCUMENT = "start_at_document"
    NONE = "none"

    @property
    def is_document(self) -> bool:
        return self.value.endswith("_document")

    @property
    def is_none(self) -> bool:
        return self is DataSelections.NONE


@dataclass(frozen=True)
class DataSelection:
    """
    Cursor position for paging.

    ``values`` holds field values matching the active orderings; ``value``
    holds a document snapshot for the ``*_DOCUMENT`` variants.
    """
    type: DataSelections = DataSelections.NONE
    value: Any = None
    values: Optional[Sequence[Any]] = None

    @classmethod
    def start_at(cls, *values: Any) -> "DataSelection":
        return cls(DataSelections.START_AT, values=list(values))

    @classmethod
    def start_after(cls, *values: Any) -> "DataSelection":
        return cls(DataSelections.START_AFTER, values=list(values))

    @classmethod
    def end_at(cls, *values: Any) -> "DataSelection":
        return cls(DataSelections.END_AT, values=list(values))

    @classmethod
    def end_before(cls, *values: Any) -> "DataSelection":
        return cls(DataSelections.END_BEFORE, values=list(values))

    @classmethod
    def from_document(cls, type: DataSelections, snapshot: Any) -> "DataSelection":
        return cls(type, value=snapshot)


@dataclass(frozen=True)
class DataFetchOptions:
    """Paging options: initial page size, following page size, direction"""
    fetching_size: Optional[int] = None
    initial_size: Optional[int] = None
    fetch_from_last: bool = False

    def __post_init__(self):
        if self.initial_size is None and self.fetching_size is not None:
            object.__setattr__(self, "initial_size", self.fetching_size)

    @classmethod
    def limit(cls, value: int, fetch_from_last: bool = False) -> "DataFetchOptions":
        return cls(fetching_size=value, fetch_from_last=fetch_from_last)

    @classmethod
    def single(cls, fetch_from_last: bool = False) -> "DataFetchOptions":
        return cls.limit(1, fetch_from_last)

    def copy(self, fetching_size: Optional[int] = None, initial_size: Optional[int] = None,
             fetch_from_last: Optional[bool] = None) -> "DataFetchOptions":
        return DataFetchOptions(
            fetching_size=fetching_size if fetching_size is not None else self.fetching_size,
            initial_size=initial_size if initial_size is not None else self.initial_size,
            fetch_from_last=self.fetch_from_last if fetch_from_last is None else fetch_from_last,
        )


DataPagingOptions = DataFetchOptions


class CheckerType(Enum):
    EQUALS = "equals"
    CONTAINS = "contains"

    @property
    def is_contains(self) -> bool:
        return self is CheckerType.CONTAINS


@dataclass(frozen=True)
class Checker:
    """Single-field search condition"""
    field: str
    value: Any = None
    type: CheckerType = CheckerType.EQUALS

    @classmethod
    def contains(cls, field: str, value: str) -> "Checker":
        return cls(field, value, CheckerType.CONTAINS)

    @classmethod
    def equals(cls, field: str, value: Any) -> "Checker":
        return cls(field, value, CheckerType.EQUALS)


@dataclass
class QueryRequest:
    """Everything a collection query needs, bundled"""
    queries: List[DataQuery] = field(default_factory=list)
    selections: List[DataSelection] = field(default_factory=list)
    sorts: List[DataSorting] = field(default_factory=list)
    options: DataFetchOptions = field(default_factory=DataFetchOptions)

    @classmethod
    def of(cls, queries: Iterable[DataQuery] = (), selections: Iterable[DataSelection] = (),
           sorts: Iterable[DataSorting] = (), options: Optional[DataFetchOptions] = None) -> "QueryRequest":
        return cls(list(queries), list(selections), list(sorts), options or DataFetchOptions())


# Convenience functions
def where(field: Any, **conditions: Any) -> DataQuery:
    """Create a filter"""
    return DataQuery(field, **conditions)


def where_id_in(ids: Iterable[str]) -> DataQuery:
    """Create a document-id ``IN`` filter"""
    return DataQuery(DataFieldPath.DOCUMENT_ID, where_in=list(ids))


__all__ = [
    "DataFieldPath", "DataQuery", "DataSorting", "DataSelections",
    "DataSelection", "DataFetchOptions", "DataPagingOptions", "CheckerType",
    "Checker", "QueryRequest", "where", "where_id_in"
]
