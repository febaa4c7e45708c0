"""
Caching utilities.

Provides centralized cache key/TTL definitions and an in-process TTL map
for hot, read-mostly lookups that must be controllable from tests.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    PERMISSION_EXISTS = "rbac:catalog:{key}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    PERMISSION_CATALOG = 60  # 1 minute


class TTLCache:
    """
    Thread-safe in-process map whose entries expire after a fixed TTL.

    The clock is injectable so tests can advance time deterministically.
    Entries are evicted lazily on read.

    Usage:
        cache = TTLCache(ttl=60)
        cache.set('project.manage', True)
        cache.get('project.manage')  # True until 60s have passed
    """

    def __init__(self, ttl: float, clock: Optional[Callable[[], float]] = None):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value, or default when missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                logger.debug(f"Cache MISS: {key}")
                return default
            value, expires_at = entry
            if expires_at <= now:
                del self._entries[key]
                logger.debug(f"Cache EXPIRED: {key}")
                return default
        logger.debug(f"Cache HIT: {key}")
        return value

    def set(self, key: Hashable, value: Any) -> None:
        """Store value until now + ttl."""
        expires_at = self._clock() + self.ttl
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for _, expires_at in self._entries.values() if expires_at > now)
