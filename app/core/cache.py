"""
Process-wide cache port.

The cache is an optimization only: callers must be able to recompute
anything stored here from the database. A single instance is created at
startup (app.state.cache) and handed to services through get_cache.

Key namespace:
    rbac.permission-graph              materialized role -> permission graph
    rbac.permission-graph.generation   token replaced on every invalidation
"""
import threading
from typing import Any, Optional, Protocol

from starlette.requests import Request

from app.core.database.base import generate_ulid
from app.utils import get_logger


log = get_logger(__name__)

PERMISSION_GRAPH_KEY = "rbac.permission-graph"
PERMISSION_GRAPH_GENERATION_KEY = "rbac.permission-graph.generation"


class CacheError(Exception):
    """Raised by cache backends when the store cannot be reached."""


class CachePort(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def invalidate(self, key: str) -> None: ...


class InMemoryCache:
    """Dictionary-backed cache; single-key operations are atomic under a lock."""

    def __init__(self):
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data


def invalidate_permission_graph(cache: Optional[CachePort]) -> None:
    """
    Evict the cached permission graph.

    Must only be called after the write transaction has committed. Store
    failures are logged and swallowed; the next read rebuilds from the database.
    """
    if cache is None:
        return
    try:
        # Readers rebuilding concurrently compare this before storing their graph
        cache.set(PERMISSION_GRAPH_GENERATION_KEY, generate_ulid())
        cache.invalidate(PERMISSION_GRAPH_KEY)
        log.debug("Permission graph cache invalidated")
    except CacheError as e:
        log.warning("Failed to invalidate %s: %s", PERMISSION_GRAPH_KEY, e)


def get_cache(request: Request) -> CachePort:
    """FastAPI dependency returning the cache created at startup."""
    return request.app.state.cache
