"""
Namespaced TTL Cache
====================
In-memory cache segmented into a fixed set of namespaces, each an
independent key -> CacheEntry mapping.

Expiry is lazy: an entry older than the TTL supplied at read time is
treated as absent but stays in place until the next full clear. The cache
has no size bound of its own; report_memory_pressure() clears it when the
process crosses the critical memory threshold.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from loguru import logger

from mongolens.core.config import CacheConfig
from mongolens.utils.process import read_memory_usage, request_garbage_collection


class CacheNamespace(str, Enum):
    SCHEMAS = "schemas"
    COLLECTIONS = "collections"
    STATS = "stats"
    INDEXES = "indexes"
    SERVER_STATUS = "serverStatus"
    FIELDS = "fields"


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    stored_at: float  # milliseconds


@dataclass(frozen=True)
class MemoryStatus:
    used_mb: int
    total_mb: int
    warning: bool
    critical: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used_mb": self.used_mb,
            "total_mb": self.total_mb,
            "warning": self.warning,
            "critical": self.critical,
        }


def _now_ms() -> float:
    return time.time() * 1000


def _resolve_namespace(namespace: Union[str, CacheNamespace]) -> Optional[CacheNamespace]:
    if isinstance(namespace, CacheNamespace):
        return namespace
    try:
        return CacheNamespace(namespace)
    except ValueError:
        return None


class MemoryCache:
    """
    Namespaced cache with lazy TTL expiry.

    Reads never mutate state; only set(), clear() and the critical branch of
    report_memory_pressure() do.

    Args:
        config: TTL defaults per namespace.
        clock: Returns the current time in milliseconds.
        memory_reader: Returns (used_bytes, total_bytes) for the process.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = _now_ms,
        memory_reader: Callable[[], Tuple[int, int]] = read_memory_usage,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._memory_reader = memory_reader
        self._namespaces: Dict[CacheNamespace, Dict[str, CacheEntry]] = {
            ns: {} for ns in CacheNamespace
        }

    def ttl_for(self, namespace: Union[str, CacheNamespace]) -> int:
        """Default TTL (ms) for a namespace."""
        ns = _resolve_namespace(namespace)
        return {
            CacheNamespace.SCHEMAS: self.config.schemas_ttl_ms,
            CacheNamespace.COLLECTIONS: self.config.collections_ttl_ms,
            CacheNamespace.STATS: self.config.stats_ttl_ms,
            CacheNamespace.INDEXES: self.config.indexes_ttl_ms,
            CacheNamespace.SERVER_STATUS: self.config.server_status_ttl_ms,
            CacheNamespace.FIELDS: self.config.fields_ttl_ms,
        }.get(ns, 0)

    def get(
        self,
        namespace: Union[str, CacheNamespace],
        key: str,
        ttl_ms: Optional[float] = None,
    ) -> Optional[Any]:
        """
        Return cached data, or None on a miss.

        Unknown namespaces, missing keys and entries older than ttl_ms are
        all misses. When ttl_ms is None the namespace default applies.
        """
        ns = _resolve_namespace(namespace)
        if ns is None:
            return None

        entry = self._namespaces[ns].get(key)
        if entry is None:
            return None

        ttl = self.ttl_for(ns) if ttl_ms is None else ttl_ms
        if self._clock() - entry.stored_at >= ttl:
            return None
        return entry.data

    def set(self, namespace: Union[str, CacheNamespace], key: str, data: Any) -> bool:
        """Store data under key, replacing any previous entry. False for unknown namespaces."""
        ns = _resolve_namespace(namespace)
        if ns is None:
            return False

        self._namespaces[ns][key] = CacheEntry(data=data, stored_at=self._clock())
        return True

    def clear(self) -> None:
        """Empty every namespace."""
        for entries in self._namespaces.values():
            entries.clear()

    def size(self, namespace: Optional[Union[str, CacheNamespace]] = None) -> int:
        """Number of stored entries (stale ones included)."""
        if namespace is None:
            return sum(len(entries) for entries in self._namespaces.values())
        ns = _resolve_namespace(namespace)
        return len(self._namespaces[ns]) if ns is not None else 0

    def report_memory_pressure(
        self,
        critical_threshold_mb: int = 2000,
        warning_threshold_mb: int = 1500,
    ) -> MemoryStatus:
        """
        Classify current process memory and relieve pressure if critical.

        Over the warning threshold a warning is logged. Over the critical
        threshold the cache is cleared and a garbage collection pass is
        requested.
        """
        used_bytes, total_bytes = self._memory_reader()
        used_mb = round(used_bytes / 1024 / 1024)
        total_mb = round(total_bytes / 1024 / 1024)

        status = MemoryStatus(
            used_mb=used_mb,
            total_mb=total_mb,
            warning=used_mb > warning_threshold_mb,
            critical=used_mb > critical_threshold_mb,
        )

        if status.warning:
            logger.warning(f"High memory usage: {used_mb}MB used of {total_mb}MB")

        if status.critical:
            logger.warning("Critical memory pressure. Clearing caches...")
            self.clear()
            request_garbage_collection()

        return status
