"""
Permission catalog: answers "is this a known permission key?".

Authorization checks consult the catalog before anything else, so a typo in
a permission key denies instead of being satisfied by a wildcard grant.
"""
import logging
from typing import Callable, Optional
from django.conf import settings
from django.db import DatabaseError

from apps.core.cache import CacheKeys, CacheTTL, TTLCache
from apps.rbac.models import Permission

logger = logging.getLogger(__name__)


class PermissionCatalog:
    """
    Catalog lookups backed by the Permission table and an in-process TTL cache.

    Positive and negative answers are cached per key for `ttl` seconds.
    Database failures answer False and are not cached, so the next call
    retries the lookup.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Optional[Callable[[], float]] = None):
        if ttl is None:
            ttl = getattr(settings, 'PERMISSION_CATALOG_TTL', CacheTTL.PERMISSION_CATALOG)
        self.cache = TTLCache(ttl=ttl, clock=clock)

    def exists(self, key: str) -> bool:
        """Return True when `key` is a registered permission."""
        if not key:
            return False

        cache_key = CacheKeys.format(CacheKeys.PERMISSION_EXISTS, key=key)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            found = Permission.objects.filter(key=key).exists()
        except DatabaseError:
            logger.error(
                f"Permission catalog lookup failed for {key}",
                exc_info=True
            )
            return False

        self.cache.set(cache_key, found)
        return found

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one cached key, or the whole cache when key is None."""
        if key is None:
            self.cache.clear()
        else:
            self.cache.delete(CacheKeys.format(CacheKeys.PERMISSION_EXISTS, key=key))


_default_catalog = None


def get_permission_catalog() -> PermissionCatalog:
    """Return the process-wide catalog, creating it on first use."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = PermissionCatalog()
    return _default_catalog
