import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from nexusdash.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier cache for read-mostly lookups.

    L1: Process-local TTLCache (fast, limited size)
    L2: Redis (shared, optional)

    Features:
    - Stampede protection with per-key locks
    - Graceful degradation to L1 when Redis is unavailable
    - Prefix invalidation across both layers
    - Automatic key namespacing
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings
        self._redis: Redis | None = None
        self.l1: TTLCache | None = None
        self._initialized = False
        self.stats = {"l1_hits": 0, "l2_hits": 0, "misses": 0, "errors": 0}

    async def init_cache(self):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()
        settings = self._settings

        if self.l1 is None:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        if self._redis is None and settings.redis_dsn:
            redis = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            try:
                await redis.ping()
                self._redis = redis
                logger.info("Redis connection established")
            except (RedisError, OSError) as e:
                # Degraded operation: L1 only
                logger.error(f"Redis initialization failed: {e}")
                await redis.aclose()

        self._initialized = True
        logger.info("Cache layer initialized", extra={"metadata": {"redis": bool(self._redis)}})

    def _key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}{key}"

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def _l2_get(self, key: str) -> Any:
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as e:
            logger.error(f"Redis GET error: {e}", extra={"metadata": {"key": key}})
            self.stats["errors"] += 1
            return None
        return None if raw is None else self._deserialize(raw)

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Awaitable[Any]]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            loader: Async function to load value on cache miss
            l2_ttl: TTL for L2 cache in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()
        namespaced = self._key(key)

        if namespaced in self.l1:
            self.stats["l1_hits"] += 1
            return self.l1[namespaced]

        value = await self._l2_get(key)
        if value is not None:
            self.stats["l2_hits"] += 1
            self.l1[namespaced] = value
            return value

        if loader is None:
            self.stats["misses"] += 1
            return None

        async with _get_lock_for_key(namespaced):
            # Double-check after acquiring the lock
            if namespaced in self.l1:
                return self.l1[namespaced]
            value = await self._l2_get(key)
            if value is not None:
                self.l1[namespaced] = value
                return value

            self.stats["misses"] += 1
            value = await loader()
            if value is None:
                return None

            await self._set_both_layers(key, value, l2_ttl)
            return value

    async def _set_both_layers(self, key: str, value: Any, l2_ttl: int | None = None):
        self.l1[self._key(key)] = value

        if self._redis:
            try:
                ttl = l2_ttl or self._settings.l2_ttl_seconds
                await self._redis.set(self._key(key), self._serialize(value), ex=ttl)
            except RedisError as e:
                logger.error(f"Redis SET error: {e}", extra={"metadata": {"key": key}})
                self.stats["errors"] += 1

    async def delete(self, key: str):
        """Delete a key from both cache layers."""
        await self.init_cache()
        self.l1.pop(self._key(key), None)

        if self._redis:
            try:
                await self._redis.delete(self._key(key))
            except RedisError as e:
                logger.error(f"Redis DELETE error: {e}", extra={"metadata": {"key": key}})
                self.stats["errors"] += 1

    async def delete_prefix(self, prefix: str):
        """Delete every key starting with prefix from both layers."""
        await self.init_cache()
        namespaced = self._key(prefix)

        for cached_key in [k for k in list(self.l1.keys()) if k.startswith(namespaced)]:
            self.l1.pop(cached_key, None)

        if not self._redis:
            return

        try:
            cursor = 0
            deleted_count = 0
            while True:
                cursor, keys = await self._redis.scan(
                    cursor, match=f"{namespaced}*", count=100
                )
                if keys:
                    await self._redis.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break
            logger.debug(
                "Prefix delete completed",
                extra={"metadata": {"prefix": prefix, "deleted": deleted_count}},
            )
        except RedisError as e:
            logger.error(f"Prefix delete error: {e}", extra={"metadata": {"prefix": prefix}})
            self.stats["errors"] += 1

    async def clear(self):
        """Drop every L1 entry and reset statistics."""
        if self.l1 is not None:
            self.l1.clear()
        for name in self.stats:
            self.stats[name] = 0

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")
            self._redis = None
        self._initialized = False

    def get_stats(self) -> dict:
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 else 0,
            "redis": self._redis is not None,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total else 0
            ),
        }


# Per-key locks so only one coroutine loads a missing key while the others
# wait for its result. Bounded and expiring so idle keys do not accumulate.
_locks = TTLCache(maxsize=10_000, ttl=300)


def _get_lock_for_key(key: str) -> asyncio.Lock:
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


# Cache layer instance (singleton per worker)
cache_layer = CacheLayer()
