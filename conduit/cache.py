import json
import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)

TAGS_KEY = "tags:all"
TAGS_GENERATION_KEY = "tags:gen"


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    Only derived, viewer-independent data is cached (the global tag list).
    Every method is safe to call when Redis is unavailable: reads miss and
    writes are skipped, so a Redis outage costs latency, not correctness.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._redis: redis.Redis | None = None
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called from the app lifespan."""
        self._redis = redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", self.url)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        """Return the cached value for *key*, or None on a miss / error."""
        if not self._redis:
            self._misses += 1
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            logger.warning("Cache GET error for key=%r: %s", key, exc)
            self._misses += 1
            return None
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(data)

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl)
        except Exception as exc:
            logger.warning("Cache SET error for key=%r: %s", key, exc)

    async def delete(self, key: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.delete(key)
        except Exception as exc:
            logger.warning("Cache DELETE error for key=%r: %s", key, exc)

    async def generation(self, key: str) -> int | None:
        """Current value of the counter *key* (0 when unset), or None if Redis is unusable."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
        except Exception as exc:
            logger.warning("Cache GET error for key=%r: %s", key, exc)
            return None
        return int(value or 0)

    async def bump(self, key: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.incr(key)
        except Exception as exc:
            logger.warning("Cache INCR error for key=%r: %s", key, exc)

    async def set_if_generation(
        self,
        key: str,
        value: dict | list,
        generation_key: str,
        generation: int | None,
        ttl: int | None = None,
    ) -> bool:
        """
        Store *value* only while *generation_key* still reads *generation*.

        Writers bump the counter before deleting the cached value, so a
        reader whose query started before an invalidation sees a changed
        counter either before its write (skipped) or right after it (the
        write is undone).  Returns True when the value was left in place.
        """
        if generation is None or await self.generation(generation_key) != generation:
            logger.debug("Skipping stale cache write for key=%r", key)
            return False
        await self.set(key, value, ttl=ttl)
        if await self.generation(generation_key) != generation:
            logger.debug("Undoing stale cache write for key=%r", key)
            await self.delete(key)
            return False
        return True

    # ------------------------------------------------------------------
    # Domain-level helpers
    # ------------------------------------------------------------------

    async def invalidate_tags(self) -> None:
        """Drop the tag list after any write that can change the tag union."""
        await self.bump(TAGS_GENERATION_KEY)
        await self.delete(TAGS_KEY)

    @property
    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "enabled": self._redis is not None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }
