"""
Path helpers for ``collection/id[/collection/id...]`` document paths.
"""

import uuid
from typing import List

from .errors import InvalidPathError

SEPARATOR = "/"


def segments(path: str) -> List[str]:
    """Split a path into its non-empty segments"""
    if not isinstance(path, str):
        raise InvalidPathError(f"Path must be a string, got {type(path).__name__}")
    return [part for part in path.split(SEPARATOR) if part]


def normalize(path: str) -> str:
    """Strip duplicate and surrounding separators"""
    parts = segments(path)
    if not parts:
        raise InvalidPathError("Path cannot be empty")
    return SEPARATOR.join(parts)


def join(*parts: str) -> str:
    """Join path parts, ignoring empty ones"""
    return normalize(SEPARATOR.join(str(p) for p in parts if p))


def is_document_path(path: str) -> bool:
    parts = segments(path)
    return bool(parts) and len(parts) % 2 == 0


def is_collection_path(path: str) -> bool:
    parts = segments(path)
    return bool(parts) and len(parts) % 2 == 1


def document_id(path: str) -> str:
    """Last segment of a path"""
    parts = segments(path)
    if not parts:
        raise InvalidPathError("Path cannot be empty")
    return parts[-1]


def parent(path: str) -> str:
    """Path without its last segment ('' for a top-level collection)"""
    parts = segments(path)
    return SEPARATOR.join(parts[:-1])


def generate_id() -> str:
    return uuid.uuid4().hex


__all__ = [
    "SEPARATOR", "segments", "normalize", "join", "is_document_path",
    "is_collection_path", "document_id", "parent", "generate_id"
]
