"""
NERON GRAPH CACHE - Keyed store of graph snapshots

Maps a key (a CacheKey value or a content hash of a raw payload) to a
GraphData snapshot so repeated queries for the same logical graph skip the
transformer.

Stored values are isolated copies: entries are kept as msgpack bytes and
decoded on every read, so mutating a returned snapshot never reaches the
cached one. An optional TTL expires entries lazily on access.
"""
import threading
import time
from typing import Any, Callable, Dict, Optional, Union

import msgspec

from core.ontology import CacheKey
from core.schemas import GraphData, pack_graph, unpack_graph, compute_hash


class CacheEntry(msgspec.Struct, kw_only=True):
    data: bytes
    stored_at: float
    version: int


class CacheMetrics(msgspec.Struct, kw_only=True):
    """Counters exposed for diagnostics."""
    hits: int = 0
    misses: int = 0
    updates: int = 0
    last_access: float = 0.0
    size: int = 0
    version: int = 0


KeyLike = Union[str, CacheKey]


def _key(key: KeyLike) -> str:
    return key.value if isinstance(key, CacheKey) else key


def content_key(payload: Any) -> str:
    """
    Content address of a reload payload.

    Keys are order-sensitive: the same entities in a different order hash
    differently, which only costs a cache miss.
    """
    return "content:" + compute_hash(msgspec.json.encode(payload))


class GraphCache:
    """
    Thread-safe snapshot cache.

    get() never raises: an absent or expired key is a miss and returns None.
    """

    def __init__(
        self,
        ttl_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._metrics = CacheMetrics()
        self._version = 0
        self._lock = threading.Lock()

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return self.ttl_seconds > 0 and now - entry.stored_at > self.ttl_seconds

    def set(self, key: KeyLike, value: GraphData) -> None:
        """Store a copy of value under key, overwriting any previous entry."""
        data = pack_graph(value)
        with self._lock:
            self._version += 1
            self._entries[_key(key)] = CacheEntry(
                data=data,
                stored_at=self._clock(),
                version=self._version,
            )
            self._metrics.updates += 1

    def get(self, key: KeyLike) -> Optional[GraphData]:
        """Return a fresh copy of the stored snapshot, or None."""
        with self._lock:
            now = self._clock()
            self._metrics.last_access = now
            entry = self._entries.get(_key(key))
            if entry is None:
                self._metrics.misses += 1
                return None
            if self._expired(entry, now):
                del self._entries[_key(key)]
                self._metrics.misses += 1
                return None
            self._metrics.hits += 1
            data = entry.data
        return unpack_graph(data)

    def has(self, key: KeyLike) -> bool:
        with self._lock:
            entry = self._entries.get(_key(key))
            if entry is None:
                return False
            if self._expired(entry, self._clock()):
                del self._entries[_key(key)]
                return False
            return True

    def invalidate(self, key: Optional[KeyLike] = None) -> None:
        """Drop one key, or every key when none is given."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(_key(key), None)
            self._version += 1

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._entries.items() if self._expired(entry, now)]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def clear(self) -> None:
        """Drop everything and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._metrics = CacheMetrics()
            self._version = 0

    def metrics(self) -> CacheMetrics:
        with self._lock:
            return msgspec.structs.replace(
                self._metrics,
                size=len(self._entries),
                version=self._version,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_graph_cache: Optional[GraphCache] = None


def get_graph_cache() -> GraphCache:
    """Get the global graph cache instance (TTL from config)."""
    global _graph_cache
    if _graph_cache is None:
        from infrastructure.config import get_config
        _graph_cache = GraphCache(ttl_seconds=get_config().cache.ttl_seconds)
    return _graph_cache


def reset_graph_cache() -> None:
    """Forget the global cache (tests)."""
    global _graph_cache
    _graph_cache = None
