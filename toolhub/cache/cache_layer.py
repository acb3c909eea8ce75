"""
TTL cache for read-heavy registry data.
Holds public collection snapshots served to MCP clients and the /stats/health
aggregate. Writers drop whole namespaces after a sweep, rescore or schema
refresh, so a stale read never outlives the next write.

Built once in the app lifespan and passed to consumers; there is no module-level
cache instance.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


# Default TTLs per namespace (seconds)
DEFAULT_TTLS = {
    "collections": 30,      # public collection + tool list served to MCP clients
    "health_stats": 60,     # /stats/health aggregate
    "default": 30,
}


class CacheLayer:
    """
    In-process namespaced TTL cache.

    Usage:
        cache = CacheLayer(default_ttl=30)

        await cache.set("collections", "alice/dev-tools", snapshot)
        snapshot = await cache.get("collections", "alice/dev-tools")
        await cache.invalidate_namespace("collections")
    """

    def __init__(self, default_ttl: Optional[float] = None, max_entries: int = 1000,
                 ttls: Optional[Dict[str, float]] = None):
        self._ttls = dict(DEFAULT_TTLS)
        if default_ttl is not None:
            self._ttls["default"] = default_ttl
        if ttls:
            self._ttls.update(ttls)
        self.max_entries = max_entries
        # namespace -> key -> (expires_at, value)
        self._namespaces: Dict[str, Dict[str, Tuple[float, Any]]] = {}

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._namespaces.values())

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        entries = self._namespaces.get(namespace, {})
        hit = entries.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if time.monotonic() >= expires_at:
            del entries[key]
            return None
        return value

    async def set(self, namespace: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self._ttls.get(namespace, self._ttls["default"])
        self._namespaces.setdefault(namespace, {})[key] = (time.monotonic() + ttl, value)
        if len(self) > self.max_entries:
            self._evict()

    async def invalidate_namespace(self, namespace: str) -> int:
        dropped = len(self._namespaces.pop(namespace, {}))
        if dropped:
            logger.debug(f"[CACHE] Invalidated {dropped} entries in '{namespace}'")
        return dropped

    def _evict(self) -> None:
        """Drop expired entries, then the ones closest to expiry until under the limit."""
        now = time.monotonic()
        for entries in self._namespaces.values():
            for key in [k for k, (expires_at, _) in entries.items() if expires_at <= now]:
                del entries[key]

        overflow = len(self) - self.max_entries
        if overflow > 0:
            by_expiry = sorted(
                (expires_at, namespace, key)
                for namespace, entries in self._namespaces.items()
                for key, (expires_at, _) in entries.items()
            )
            for _, namespace, key in by_expiry[:overflow]:
                del self._namespaces[namespace][key]
