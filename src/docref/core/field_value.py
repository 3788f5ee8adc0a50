"""
Field Values - Tagged Document Values

🏷️ Explicit Field Variants:
A document value is either plain data, a reference (path / write directive
to another document) or a count marker (collection path whose size is
substituted on read). On the wire references and counts are stored under
``@``- and ``#``-prefixed keys; at the API boundary they may also be tagged
explicitly with ``ReferenceMarker`` / ``CountMarker`` so a literal string
starting with ``@`` is never mistaken for a reference.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

REFERENCE_PREFIX = "@"
COUNT_PREFIX = "#"

Document = Dict[str, Any]


class DataFieldValues(Enum):
    """Abstract field-update markers understood by every delegate"""
    ARRAY_UNION = "array_union"
    ARRAY_REMOVE = "array_remove"
    DELETE = "delete"
    SERVER_TIMESTAMP = "server_timestamp"
    INCREMENT = "increment"
    NONE = "none"


@dataclass(frozen=True)
class DataFieldWriteRef:
    """
    Reference-write directive.

    Instructs the engine to create (merge-set), update or delete the
    document at ``path`` in the same batch as the parent write. ``create``
    and ``update`` may be a single document or a list of documents applied
    in order.
    """
    path: str
    create: Optional[Union[Document, List[Document]]] = None
    update: Optional[Union[Document, List[Document]]] = None
    delete: bool = False

    @property
    def is_directive(self) -> bool:
        if not isinstance(self.path, str) or not self.path:
            return False
        return bool(self.create) or bool(self.update) or bool(self.delete)

    @property
    def metadata(self) -> Document:
        data: Document = {"path": self.path}
        if self.create:
            data["create"] = self.create
        if self.update:
            data["update"] = self.update
        if self.delete:
            data["delete"] = True
        return data


@dataclass(frozen=True)
class DataFieldValue:
    """A value paired with the update marker that applies to it"""
    value: Any = None
    type: DataFieldValues = DataFieldValues.NONE

    @classmethod
    def array_union(cls, elements: List[Any]) -> "DataFieldValue":
        return cls(list(elements), DataFieldValues.ARRAY_UNION)

    @classmethod
    def array_remove(cls, elements: List[Any]) -> "DataFieldValue":
        return cls(list(elements), DataFieldValues.ARRAY_REMOVE)

    @classmethod
    def delete(cls) -> "DataFieldValue":
        return cls(None, DataFieldValues.DELETE)

    @classmethod
    def server_timestamp(cls) -> "DataFieldValue":
        return cls(None, DataFieldValues.SERVER_TIMESTAMP)

    @classmethod
    def increment(cls, value: Union[int, float]) -> "DataFieldValue":
        return cls(value, DataFieldValues.INCREMENT)

    @classmethod
    def write(cls, path: str, create: Optional[Union[Document, List[Document]]] = None,
              update: Optional[Union[Document, List[Document]]] = None,
              delete: bool = False) -> "DataFieldValue":
        """Reference-write directive wrapped as a field value"""
        return cls(DataFieldWriteRef(path, create=create, update=update, delete=delete))


@dataclass(frozen=True)
class ReferenceMarker:
    """Explicitly tagged reference: a path, directive, list or map of them"""
    value: Any


@dataclass(frozen=True)
class CountMarker:
    """Explicitly tagged count field: a collection path, list or map of them"""
    value: Any


class FieldKind(Enum):
    PLAIN = "plain"
    REFERENCE = "reference"
    COUNT = "count"


def classify(key: str, value: Any = None) -> Tuple[FieldKind, str]:
    """
    Classify a document field.

    Tagged values win over key prefixes; otherwise only the first character
    of the key is inspected. Returns the kind and the key without prefix.
    """
    if isinstance(value, ReferenceMarker):
        return FieldKind.REFERENCE, strip_prefix(key)
    if isinstance(value, CountMarker):
        return FieldKind.COUNT, strip_prefix(key)
    if key.startswith(REFERENCE_PREFIX):
        return FieldKind.REFERENCE, key[1:]
    if key.startswith(COUNT_PREFIX):
        return FieldKind.COUNT, key[1:]
    return FieldKind.PLAIN, key


def strip_prefix(key: str) -> str:
    if key[:1] in (REFERENCE_PREFIX, COUNT_PREFIX):
        return key[1:]
    return key


def storage_key(kind: FieldKind, key: str) -> str:
    """Key under which a field of the given kind is persisted"""
    bare = strip_prefix(key)
    if kind is FieldKind.REFERENCE:
        return REFERENCE_PREFIX + bare
    if kind is FieldKind.COUNT:
        return COUNT_PREFIX + bare
    return key


def unwrap(value: Any) -> Any:
    """Drop an explicit Reference/Count tag"""
    if isinstance(value, (ReferenceMarker, CountMarker)):
        return value.value
    return value


def parse_directive(value: Any) -> Optional[DataFieldWriteRef]:
    """
    Interpret a value as a reference-write directive.

    Accepts a ``DataFieldWriteRef``, a ``DataFieldValue`` wrapping one, or a
    mapping with a ``path`` and at least one of ``create``/``update``/
    ``delete``. Returns None for anything else.
    """
    if isinstance(value, DataFieldValue):
        value = value.value
    if isinstance(value, DataFieldWriteRef):
        return value if value.is_directive else None
    if isinstance(value, Mapping):
        path = value.get("path")
        if not isinstance(path, str) or not path:
            return None
        directive = DataFieldWriteRef(
            path,
            create=value.get("create") or None,
            update=value.get("update") or None,
            delete=bool(value.get("delete", False)),
        )
        return directive if directive.is_directive else None
    return None


__all__ = [
    "REFERENCE_PREFIX", "COUNT_PREFIX", "Document", "DataFieldValues",
    "DataFieldWriteRef", "DataFieldValue", "ReferenceMarker", "CountMarker",
    "FieldKind", "classify", "strip_prefix", "storage_key", "unwrap",
    "parse_directive"
]
