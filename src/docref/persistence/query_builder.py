"""
Query Builder - Abstract Query Translation

🏗️ Backend Query Construction:
Translates a backend-agnostic query request (filters, sorting, cursor
selections, paging) into a backend-specific query object. Subclasses
provide the primitive hooks; the order in which they are applied and the
paging rules live here so every backend pages the same way.
"""

import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar

from ..core.field_value import Document
from ..core.query import (
    Checker, DataFetchOptions, DataFieldPath, DataQuery, DataSelection,
    DataSelections, DataSorting
)

Q = TypeVar("Q")

# highest private-use code point, closes a prefix range
PREFIX_END = "\uf8ff"


class QueryBuilder(ABC, Generic[Q]):
    """Builder for backend query objects"""

    def build(self, ref: Q,
              queries: Iterable[DataQuery] = (),
              selections: Iterable[DataSelection] = (),
              sorts: Iterable[DataSorting] = (),
              options: DataFetchOptions = DataFetchOptions()) -> Q:
        fetching_mode = True
        initial_size = options.initial_size or 0
        fetching_size = options.fetching_size or initial_size

        for query in queries:
            ref = self.where(ref, query)

        for sorting in sorts:
            ref = self.order_by(ref, sorting.field, sorting.descending)

        for selection in selections:
            values = list(selection.values) if selection.values else []
            snapshot = selection.value
            fetching_mode = (bool(values) or snapshot is not None) and not selection.type.is_none
            if selection.type.is_none:
                continue
            if values and not selection.type.is_document:
                ref = self._apply_cursor(ref, selection.type, values)
            elif snapshot is not None and selection.type.is_document:
                ref = self._apply_document_cursor(ref, selection.type, snapshot)

        size = fetching_size if fetching_mode else initial_size
        if size and size > 0:
            if options.fetch_from_last:
                ref = self.limit_to_last(ref, size)
            else:
                ref = self.limit(ref, size)
        return ref

    def search(self, ref: Q, checker: Checker) -> Q:
        """Prefix range when ``contains`` is requested, equality otherwise"""
        value = checker.value
        if not isinstance(value, str):
            return self.where(ref, DataQuery(checker.field, is_equal_to=value))
        if checker.type.is_contains:
            ref = self.order_by(ref, checker.field, False)
            ref = self.start_at(ref, [value])
            return self.end_at(ref, [value + PREFIX_END])
        return self.where(ref, DataQuery(checker.field, is_equal_to=value))

    def _apply_cursor(self, ref: Q, type: DataSelections, values: List[Any]) -> Q:
        if type is DataSelections.END_AT:
            return self.end_at(ref, values)
        if type is DataSelections.END_BEFORE:
            return self.end_before(ref, values)
        if type is DataSelections.START_AFTER:
            return self.start_after(ref, values)
        return self.start_at(ref, values)

    def _apply_document_cursor(self, ref: Q, type: DataSelections, snapshot: Any) -> Q:
        if type is DataSelections.END_AT_DOCUMENT:
            return self.end_at_document(ref, snapshot)
        if type is DataSelections.END_BEFORE_DOCUMENT:
            return self.end_before_document(ref, snapshot)
        if type is DataSelections.START_AFTER_DOCUMENT:
            return self.start_after_document(ref, snapshot)
        return self.start_at_document(ref, snapshot)

    @abstractmethod
    def where(self, ref: Q, query: DataQuery) -> Q:
        pass

    @abstractmethod
    def order_by(self, ref: Q, field: str, descending: bool = False) -> Q:
        pass

    @abstractmethod
    def start_at(self, ref: Q, values: List[Any]) -> Q:
        pass

    @abstractmethod
    def start_after(self, ref: Q, values: List[Any]) -> Q:
        pass

    @abstractmethod
    def end_at(self, ref: Q, values: List[Any]) -> Q:
        pass

    @abstractmethod
    def end_before(self, ref: Q, values: List[Any]) -> Q:
        pass

    @abstractmethod
    def limit(self, ref: Q, count: int) -> Q:
        pass

    @abstractmethod
    def limit_to_last(self, ref: Q, count: int) -> Q:
        pass

    def start_at_document(self, ref: Q, snapshot: Any) -> Q:
        return self.start_at(ref, self.cursor_values(ref, snapshot))

    def start_after_document(self, ref: Q, snapshot: Any) -> Q:
        return self.start_after(ref, self.cursor_values(ref, snapshot))

    def end_at_document(self, ref: Q, snapshot: Any) -> Q:
        return self.end_at(ref, self.cursor_values(ref, snapshot))

    def end_before_document(self, ref: Q, snapshot: Any) -> Q:
        return self.end_before(ref, self.cursor_values(ref, snapshot))

    def cursor_values(self, ref: Q, snapshot: Any) -> List[Any]:
        """Values of the active orderings taken from a document snapshot"""
        raise NotImplementedError(f"{self.__class__.__name__} does not support document cursors")


# ---------------------------------------------------------------------------
# In-process query object shared by the memory and SQL delegates
# ---------------------------------------------------------------------------

_MISSING = object()


def field_value(doc: Mapping[str, Any], field_name: Any) -> Any:
    """Read a (dotted) field; ``DOCUMENT_ID`` reads the document id"""
    if field_name is DataFieldPath.DOCUMENT_ID or field_name == DataFieldPath.DOCUMENT_ID.value:
        return doc.get("id")
    current: Any = doc
    for part in str(field_name).split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _compare(a: Any, b: Any) -> int:
    """Total order over mixed values: None first, then by type name on mismatch"""
    if a is _MISSING:
        a = None
    if b is _MISSING:
        b = None
    if a is None or b is None:
        return (a is not None) - (b is not None)
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        ta, tb = type(a).__name__, type(b).__name__
        return (ta > tb) - (ta < tb)


def _matches(value: Any, operator: str, expected: Any) -> bool:
    present = value is not _MISSING
    if operator == "is_null":
        return (not present or value is None) if expected else (present and value is not None)
    if not present:
        return operator in ("is_not_equal_to", "where_not_in", "array_not_contains",
                            "array_not_contains_any")
    if operator == "is_equal_to":
        return value == expected
    if operator == "is_not_equal_to":
        return value != expected
    if operator == "is_less_than":
        return value is not None and _compare(value, expected) < 0
    if operator == "is_less_than_or_equal_to":
        return value is not None and _compare(value, expected) <= 0
    if operator == "is_greater_than":
        return value is not None and _compare(value, expected) > 0
    if operator == "is_greater_than_or_equal_to":
        return value is not None and _compare(value, expected) >= 0
    if operator == "array_contains":
        return isinstance(value, list) and expected in value
    if operator == "array_not_contains":
        return not (isinstance(value, list) and expected in value)
    if operator == "array_contains_any":
        return isinstance(value, list) and any(item in value for item in expected)
    if operator == "array_not_contains_any":
        return not (isinstance(value, list) and any(item in value for item in expected))
    if operator == "where_in":
        return value in list(expected)
    if operator == "where_not_in":
        return value not in list(expected)
    return False


@dataclass(frozen=True)
class Cursor:
    values: Tuple[Any, ...]
    inclusive: bool


@dataclass(frozen=True)
class MemoryQuery:
    """
    Backend query object for delegates that evaluate queries in process.

    Immutable; every builder hook returns a modified copy.
    """
    path: str
    predicates: Tuple[Tuple[Any, str, Any], ...] = ()
    orderings: Tuple[Tuple[Any, bool], ...] = ()
    start: Optional[Cursor] = None
    end: Optional[Cursor] = None
    limit: Optional[int] = None
    from_last: bool = False

    def _ordering_values(self, doc: Document) -> List[Any]:
        return [field_value(doc, name) for name, _ in self._effective_orderings()]

    def _effective_orderings(self) -> Tuple[Tuple[Any, bool], ...]:
        # document id breaks ties, matching common document-store ordering
        if any(name is DataFieldPath.DOCUMENT_ID for name, _ in self.orderings):
            return self.orderings
        return self.orderings + ((DataFieldPath.DOCUMENT_ID, False),)

    def _cursor_compare(self, doc: Document, cursor: Cursor) -> int:
        orderings = self._effective_orderings()
        values = self._ordering_values(doc)
        for index, expected in enumerate(cursor.values):
            if index >= len(orderings):
                break
            result = _compare(values[index], expected)
            if orderings[index][1]:
                result = -result
            if result:
                return result
        return 0

    def _sorted(self, docs: List[Document]) -> List[Document]:
        orderings = self._effective_orderings()

        def compare(a: Document, b: Document) -> int:
            for name, descending in orderings:
                result = _compare(field_value(a, name), field_value(b, name))
                if result:
                    return -result if descending else result
            return 0

        return sorted(docs, key=functools.cmp_to_key(compare))

    def matches(self, doc: Document) -> bool:
        for name, operator, expected in self.predicates:
            if not _matches(field_value(doc, name), operator, expected):
                return False
        return True

    def apply(self, docs: Iterable[Document]) -> List[Document]:
        """Evaluate the query over a collection's documents"""
        result = [doc for doc in docs if self.matches(doc)]
        # ordering on a field drops documents missing it
        for name, _ in self.orderings:
            if name is not DataFieldPath.DOCUMENT_ID:
                result = [doc for doc in result if field_value(doc, name) is not _MISSING]
        result = self._sorted(result)
        if self.start is not None:
            threshold = 0 if self.start.inclusive else 1
            result = [doc for doc in result if self._cursor_compare(doc, self.start) >= threshold]
        if self.end is not None:
            threshold = 0 if self.end.inclusive else -1
            result = [doc for doc in result if self._cursor_compare(doc, self.end) <= threshold]
        if self.limit is not None and self.limit > 0:
            result = result[-self.limit:] if self.from_last else result[:self.limit]
        return result


class MemoryQueryBuilder(QueryBuilder[MemoryQuery]):
    """Builds ``MemoryQuery`` objects"""

    def where(self, ref: MemoryQuery, query: DataQuery) -> MemoryQuery:
        predicates = tuple((query.field, op, value) for op, value in query.conditions().items())
        return replace(ref, predicates=ref.predicates + predicates)

    def order_by(self, ref: MemoryQuery, field: str, descending: bool = False) -> MemoryQuery:
        return replace(ref, orderings=ref.orderings + ((field, descending),))

    def start_at(self, ref: MemoryQuery, values: List[Any]) -> MemoryQuery:
        return replace(ref, start=Cursor(tuple(values), True))

    def start_after(self, ref: MemoryQuery, values: List[Any]) -> MemoryQuery:
        return replace(ref, start=Cursor(tuple(values), False))

    def end_at(self, ref: MemoryQuery, values: List[Any]) -> MemoryQuery:
        return replace(ref, end=Cursor(tuple(values), True))

    def end_before(self, ref: MemoryQuery, values: List[Any]) -> MemoryQuery:
        return replace(ref, end=Cursor(tuple(values), False))

    def limit(self, ref: MemoryQuery, count: int) -> MemoryQuery:
        return replace(ref, limit=count, from_last=False)

    def limit_to_last(self, ref: MemoryQuery, count: int) -> MemoryQuery:
        return replace(ref, limit=count, from_last=True)

    def cursor_values(self, ref: MemoryQuery, snapshot: Any) -> List[Any]:
        doc = getattr(snapshot, "doc", snapshot)
        if not isinstance(doc, Mapping):
            return []
        values = []
        for name, _ in ref._effective_orderings():
            value = field_value(doc, name)
            values.append(None if value is _MISSING else value)
        return values


__all__ = [
    "QueryBuilder", "MemoryQuery", "MemoryQueryBuilder", "Cursor",
    "field_value", "PREFIX_END"
]
