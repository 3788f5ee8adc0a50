"""
Entity base class.

Entities are typed projections of raw documents. A DataSource builds them
from documents (``build``) and persists their ``filtered`` subset.
"""

import time
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .paths import generate_id


def _now_millis() -> int:
    return int(time.time() * 1000)


class Entity(BaseModel):
    """Base class for all entity classes."""
    model_config = ConfigDict(populate_by_name=True,
                              extra="ignore",
                              arbitrary_types_allowed=True)

    id: str = Field(default_factory=generate_id)
    time_mills: int = Field(default_factory=_now_millis)

    @classmethod
    def from_source(cls, source: Any) -> "Entity":
        """Default ``build`` hook: validate a raw document into the entity"""
        if not isinstance(source, Mapping):
            return cls()
        data = {k: v for k, v in source.items() if v is not None}
        return cls.model_validate(data)

    def is_insertable(self, key: str, value: Any) -> bool:
        """Whether a field belongs to the persisted document"""
        return value is not None

    @property
    def source(self) -> Dict[str, Any]:
        """Full document form of the entity"""
        return self.model_dump(by_alias=True)

    @property
    def filtered(self) -> Dict[str, Any]:
        """Persistable subset of ``source``"""
        return {k: v for k, v in self.source.items() if self.is_insertable(k, v)}


__all__ = ["Entity"]
