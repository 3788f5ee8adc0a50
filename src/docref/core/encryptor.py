"""
Encryption hook.

The engine treats encryption as an opaque document transform: ``input``
runs before a write, ``output`` after a read.
"""

import base64
import json
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .errors import EncryptionError
from .field_value import Document

ENCRYPTED_FIELD = "__encrypted__"


class DataEncryptor(ABC):
    """Transforms documents on their way to and from a backend"""

    @abstractmethod
    async def input(self, data: Document) -> Document:
        """Transform a document before it is persisted"""
        pass

    @abstractmethod
    async def output(self, data: Document) -> Document:
        """Transform a document after it is read"""
        pass


class PassthroughEncryptor(DataEncryptor):
    async def input(self, data: Document) -> Document:
        return dict(data)

    async def output(self, data: Document) -> Document:
        return dict(data)


class JsonEncryptor(DataEncryptor):
    """
    Packs the whole document into a single opaque field.

    The document is serialized to JSON, passed through ``transform`` as
    bytes and stored base64-encoded under ``__encrypted__``. ``reverse``
    undoes ``transform``. Keys listed in ``visible_fields`` are copied to
    the stored document in clear so the backend can still query them.
    """

    def __init__(self, transform: Callable[[bytes], bytes], reverse: Callable[[bytes], bytes],
                 visible_fields: Optional[list] = None):
        self.transform = transform
        self.reverse = reverse
        self.visible_fields = list(visible_fields or ["id"])

    async def input(self, data: Document) -> Document:
        if not data:
            return {}
        try:
            raw = json.dumps(data, default=str, sort_keys=True).encode("utf-8")
            packed = base64.b64encode(self.transform(raw)).decode("ascii")
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Cannot encrypt document: {e}") from e
        stored = {k: data[k] for k in self.visible_fields if k in data}
        stored[ENCRYPTED_FIELD] = packed
        return stored

    async def output(self, data: Document) -> Document:
        packed = data.get(ENCRYPTED_FIELD)
        if not isinstance(packed, str):
            return dict(data)
        try:
            raw = self.reverse(base64.b64decode(packed.encode("ascii")))
            decoded = json.loads(raw.decode("utf-8"))
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Cannot decrypt document: {e}") from e
        # resolved references live outside the packed payload
        extra = {k: v for k, v in data.items() if k != ENCRYPTED_FIELD}
        return {**extra, **decoded}


__all__ = ["ENCRYPTED_FIELD", "DataEncryptor", "PassthroughEncryptor", "JsonEncryptor"]
