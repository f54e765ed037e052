"""
Result Cache Module

Keyed TTL caching for fetched collections and generated page insights:
- In-process memory backend or Redis backend (redis.asyncio)
- JSON serialization
- Namespaced keys built from canonical filter parameters
- Namespace invalidation
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import structlog
from redis.asyncio import ConnectionPool, Redis

from commerce_insights.config import get_settings

logger = structlog.get_logger(__name__)

_backend: Optional[Union["MemoryCacheBackend", "RedisCacheBackend"]] = None


def make_cache_key(*parts: str, **params: Any) -> str:
    """
    Build a cache key from name parts and filter parameters.

    Parameters are rendered as canonical JSON (sorted keys, no whitespace) so
    equal filters always produce equal keys and different windows never
    collide.

    Example:
        make_cache_key("orders", start="2025-01-01T00:00:00Z", end=None)
        -> 'orders:{"end":null,"start":"2025-01-01T00:00:00Z"}'
    """
    key = ":".join(str(part) for part in parts)
    if params:
        key = f"{key}:{json.dumps(params, sort_keys=True, separators=(',', ':'), default=str)}"
    return key


class MemoryCacheBackend:
    """In-process TTL store; entries expire on monotonic time and are swept on every write."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._store: Dict[str, Tuple[Optional[float], str]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._store.pop(key, None)
            return None
        return value

    def entry_count(self) -> int:
        return len(self._store)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._store.items() if expires_at is not None and now >= expires_at]
        for key in expired:
            del self._store[key]

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        now = self._clock()
        self._sweep(now)
        self._store[key] = (now + ttl if ttl else None, value)

    async def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self._store if key.startswith(prefix)]
        for key in keys:
            del self._store[key]
        return len(keys)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._store.clear()


class RedisCacheBackend:
    """Redis-backed store using a shared connection pool."""

    def __init__(self, client: Redis, pool: Optional[ConnectionPool] = None):
        self._client = client
        self._pool = pool

    @classmethod
    def from_settings(cls) -> "RedisCacheBackend":
        redis_settings = get_settings().redis
        pool = ConnectionPool.from_url(
            redis_settings.get_url(),
            max_connections=redis_settings.max_connections,
            socket_timeout=redis_settings.socket_timeout,
            decode_responses=True,
        )
        return cls(Redis(connection_pool=pool), pool)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self._client.setex(key, ttl, value)
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> bool:
        return await self._client.delete(key) > 0

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key async for key in self._client.scan_iter(match=f"{prefix}*")]
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()


async def init_cache() -> Union[MemoryCacheBackend, RedisCacheBackend]:
    """Initialize the configured cache backend"""
    global _backend

    if _backend is not None:
        return _backend

    backend_name = get_settings().cache.backend
    if backend_name == "redis":
        backend = RedisCacheBackend.from_settings()
        try:
            await backend.ping()
            logger.info("Redis cache connection established")
        except Exception as e:
            logger.error("Redis cache connection failed", error=str(e))
            raise
    else:
        backend = MemoryCacheBackend()
        logger.info("Memory cache initialized")

    _backend = backend
    return _backend


async def close_cache() -> None:
    """Close the cache backend"""
    global _backend

    if _backend is not None:
        await _backend.close()
        _backend = None
        logger.info("Cache closed")


def get_cache_backend() -> Union[MemoryCacheBackend, RedisCacheBackend]:
    """Get the cache backend instance"""
    if _backend is None:
        raise RuntimeError("Cache not initialized. Call init_cache() first.")
    return _backend


class CacheManager:
    """
    Cache manager with namespace support and JSON serialization.

    Example:
        cache = CacheManager("collections", default_ttl=300)
        await cache.set("orders", payload)
        payload = await cache.get("orders")
    """

    def __init__(
        self,
        namespace: str,
        default_ttl: int = 300,
        backend: Optional[Union[MemoryCacheBackend, RedisCacheBackend]] = None,
    ):
        self.namespace = namespace
        self.default_ttl = default_ttl
        self._backend = backend

    @property
    def backend(self) -> Union[MemoryCacheBackend, RedisCacheBackend]:
        return self._backend if self._backend is not None else get_cache_backend()

    def _key(self, key: str) -> str:
        """Generate namespaced key"""
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        value = await self.backend.get(self._key(key))
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry", key=self._key(key))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache"""
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", key=self._key(key), error=str(e))
            return False
        await self.backend.set(self._key(key), serialized, ttl if ttl is not None else self.default_ttl)
        return True

    async def delete(self, key: str) -> bool:
        """Delete key from cache"""
        return await self.backend.delete(self._key(key))

    async def invalidate_all(self) -> int:
        """Invalidate all keys in namespace"""
        removed = await self.backend.delete_prefix(f"{self.namespace}:")
        logger.info("Cache namespace invalidated", namespace=self.namespace, removed=removed)
        return removed

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Get from cache or compute and cache.

        A factory that raises leaves the cache untouched.
        """
        value = await self.get(key)

        if value is not None:
            logger.debug("Cache hit", namespace=self.namespace, key=key)
            return value

        value = await factory()
        await self.set(key, value, ttl)

        return value


@dataclass
class InsightEntry:
    content: str
    timestamp: datetime


class InsightCache:
    """
    Generated insight text per dashboard page, kept for a fixed TTL.

    Example:
        insights = InsightCache()
        await insights.put("customers", text)
        entry = await insights.get("customers")
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        backend: Optional[Union[MemoryCacheBackend, RedisCacheBackend]] = None,
    ):
        ttl = ttl_seconds if ttl_seconds is not None else get_settings().cache.insight_ttl_seconds
        self._cache = CacheManager("insights", default_ttl=ttl, backend=backend)

    async def get(self, page: str) -> Optional[InsightEntry]:
        data = await self._cache.get(page)
        if data is None:
            return None
        return InsightEntry(content=data["content"], timestamp=datetime.fromisoformat(data["timestamp"]))

    async def put(self, page: str, content: str) -> InsightEntry:
        entry = InsightEntry(content=content, timestamp=datetime.now(timezone.utc))
        await self._cache.set(page, {"content": content, "timestamp": entry.timestamp.isoformat()})
        return entry

    async def clear(self, page: Optional[str] = None) -> int:
        """Drop one page's insight, or all of them."""
        if page is not None:
            return int(await self._cache.delete(page))
        return await self._cache.invalidate_all()
