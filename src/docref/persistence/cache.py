"""
Data Cache Manager - Process-Scoped Result Cache

🗂️ Single-Flight Read Cache:
Caches successful operation results keyed by operation name, result type
and argument list. Concurrent identical calls share one in-flight task.
Writes never invalidate entries; they live until ``invalidate``/``clear``
or until their time-to-live expires.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..config import CacheConfig
from ..core.errors import CacheError
from ..core.response import Response

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    response: Response
    stored_at: float


class DataCacheManager:
    """Process-scoped single-flight cache of ``Response`` objects"""

    _instance: Optional["DataCacheManager"] = None

    def __init__(self, clock: Callable[[], float] = time.monotonic, ttl: Optional[float] = None,
                 enabled: bool = True):
        if ttl is not None and ttl <= 0:
            raise CacheError(f"Cache ttl must be positive, got {ttl}")
        self.clock = clock
        self.ttl = ttl
        self.enabled = enabled
        self._db: Dict[str, CacheEntry] = {}
        self._pending: Dict[str, "asyncio.Future[Response]"] = {}
        self.hits = 0
        self.misses = 0

    @classmethod
    def instance(cls) -> "DataCacheManager":
        """Shared process-wide cache"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Callable[[], float] = time.monotonic) -> "DataCacheManager":
        return cls(clock=clock, ttl=config.ttl_seconds, enabled=config.enabled)

    @property
    def keys(self) -> List[str]:
        return list(self._db.keys())

    @property
    def values(self) -> List[Response]:
        return [entry.response for entry in self._db.values()]

    @staticmethod
    def hash_key(type: Any, name: str, props: Iterable[Any] = ()) -> str:
        """``name:type#hash`` where the hash covers name, type and non-null props"""
        type_name = getattr(type, "__name__", None) or str(type)
        raw = ":".join([name, type_name] + [str(p) for p in props if p is not None])
        units = raw.encode("utf-16-le")
        value = 0
        for index in range(0, len(units), 2):
            unit = units[index] | (units[index + 1] << 8)
            value = (31 * value + unit) & 0x7FFFFFFF
        return f"{name}:{type_name}#{value}"

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self.ttl is None or self.clock() - entry.stored_at < self.ttl

    async def cache(self, name: str,
                    callback: Callable[[], Awaitable[Response]],
                    type: Any = None,
                    enabled: bool = False,
                    key_props: Iterable[Any] = ()) -> Response:
        """
        Return a cached valid response or run ``callback``.

        Only valid responses are stored. While a call for a key is running,
        identical calls await the same task instead of starting another.
        """
        if not enabled or not self.enabled:
            return await callback()

        key = self.hash_key(type, name, key_props)
        entry = self._db.get(key)
        if entry is not None:
            if self._is_fresh(entry) and entry.response.is_valid:
                self.hits += 1
                logger.debug(f"Cache hit for {key}")
                return entry.response
            self._db.pop(key, None)

        pending = self._pending.get(key)
        if pending is not None:
            self.hits += 1
            logger.debug(f"Joining in-flight call for {key}")
            return await pending

        self.misses += 1
        task = asyncio.ensure_future(callback())
        self._pending[key] = task
        try:
            response = await task
        finally:
            self._pending.pop(key, None)

        if response.is_valid:
            self._db[key] = CacheEntry(response, self.clock())
        return response

    def pick(self, key: str) -> Optional[Response]:
        entry = self._db.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.response

    def invalidate(self, key: str) -> bool:
        return self._db.pop(key, None) is not None

    remove = invalidate

    def clear(self):
        count = len(self._db)
        self._db.clear()
        logger.info(f"Cleared {count} cached response(s)")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._db),
            "in_flight": len(self._pending),
            "hits": self.hits,
            "misses": self.misses,
            "ttl": self.ttl,
        }


__all__ = ["CacheEntry", "DataCacheManager"]
