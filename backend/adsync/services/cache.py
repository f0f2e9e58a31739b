"""Read-through cache for dashboard data: Redis with an in-process fallback.

The cache is never a source of truth: every operation logs and swallows
backend errors and returns a safe default, so a broken cache can only make a
request slower, never make it fail.
"""

import asyncio
import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
INSIGHTS_TTL = 15 * 60
ACCOUNT_TTL = 60 * 60
CAMPAIGNS_TTL = 30 * 60

# Only a lost connection moves the manager to the in-memory map; a command
# rejected by a healthy server fails just that operation.
_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)
_REDIS_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


# -- Logical key names ---------------------------------------------------------

def insights_key(account_id: str, level: str, day: str) -> str:
    return f"insights:{account_id}:{level}:{day}"


def account_key(account_id: str) -> str:
    return f"account:{account_id}"


def campaigns_key(account_id: str) -> str:
    return f"campaigns:{account_id}"


def rate_limit_key(identifier: str, bucket: int) -> str:
    return f"rate_limit:{identifier}:{bucket}"


class MemoryBackend:
    """Process-local key/value map with the same TTL semantics as Redis."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        item = self._data.get(key)
        if item is None:
            return None
        if item[1] is not None and item[1] <= self._clock():
            del self._data[key]
            return None
        return item

    def get(self, key: str) -> str | None:
        item = self._live(key)
        return item[0] if item else None

    def set(self, key: str, value: str, ttl: int | None) -> None:
        expires = self._clock() + ttl if ttl else None
        self._data[key] = (value, expires)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        return self._live(key) is not None

    def incr(self, key: str, amount: int = 1) -> int:
        item = self._live(key)
        if item is None:
            # New counters default to a one hour lifetime
            value, expires = amount, self._clock() + DEFAULT_TTL
        else:
            value, expires = int(item[0]) + amount, item[1]
        self._data[key] = (str(value), expires)
        return value

    def expire(self, key: str, ttl: int) -> bool:
        item = self._live(key)
        if item is None:
            return False
        self._data[key] = (item[0], self._clock() + ttl)
        return True

    def cleanup(self) -> int:
        now = self._clock()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for k in expired:
            del self._data[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class CacheManager:
    """Key/value cache with TTLs.

    Keys are namespaced and hashed: ``<prefix><md5(logical key)>``. Values are
    JSON-serialized. When Redis is unreachable (at connect time or later) the
    manager switches to :class:`MemoryBackend` for the rest of its life.
    """

    def __init__(
        self,
        redis_url: str = "",
        prefix: str = "meta-ads:",
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], str] | None = None,
        redis_client=None,
    ):
        self.redis_url = redis_url
        self.prefix = prefix
        self._redis = redis_client
        self._memory = MemoryBackend(clock)
        self._today = today or (lambda: datetime.now(timezone.utc).date().isoformat())

    @property
    def connected(self) -> bool:
        return self._redis is not None

    @property
    def memory(self) -> MemoryBackend:
        return self._memory

    async def connect(self) -> bool:
        """Ping Redis; on any failure fall back to memory. Returns True when Redis is in use."""
        if self._redis is None:
            if not self.redis_url:
                logger.warning("No REDIS_URL configured, cache using in-memory fallback")
                return False
            self._redis = redis.from_url(self.redis_url, decode_responses=True, socket_connect_timeout=5)
        try:
            await self._redis.ping()
            logger.info("Cache connected to Redis")
            return True
        except _REDIS_ERRORS as e:
            logger.warning("Redis unavailable (%s), cache using in-memory fallback", e)
            await self._drop_redis()
            return False

    async def close(self) -> None:
        await self._drop_redis()

    async def _drop_redis(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            try:
                await client.aclose()
            except _REDIS_ERRORS:
                pass

    def make_key(self, key: str) -> str:
        return self.prefix + hashlib.md5(key.encode()).hexdigest()

    async def _run(self, op: str, on_redis, on_memory, default):
        if self._redis is not None:
            try:
                return await on_redis(self._redis)
            except _CONNECTION_ERRORS as e:
                logger.warning("Redis %s failed (%s), switching to in-memory cache", op, e)
                await self._drop_redis()
            except RedisError as e:
                logger.error("Redis %s rejected: %s", op, e)
                return default
        try:
            return on_memory(self._memory)
        except Exception as e:
            logger.error("Cache %s failed: %s", op, e)
            return default

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def _load(raw: str | None) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry")
            return None

    # -- Core operations -----------------------------------------------------

    async def get(self, key: str) -> Any:
        k = self.make_key(key)
        raw = await self._run(
            "get",
            lambda r: r.get(k),
            lambda m: m.get(k),
            None,
        )
        return self._load(raw)

    async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        k = self.make_key(key)
        try:
            raw = self._dump(value)
        except (TypeError, ValueError) as e:
            logger.error("Cache set failed, value not serializable: %s", e)
            return False

        async def _redis_set(r):
            return bool(await r.set(k, raw, ex=ttl))

        def _memory_set(m):
            m.set(k, raw, ttl)
            return True

        return await self._run("set", _redis_set, _memory_set, False)

    async def delete(self, key: str) -> bool:
        k = self.make_key(key)

        async def _redis_delete(r):
            return await r.delete(k) > 0

        return await self._run("delete", _redis_delete, lambda m: m.delete(k), False)

    async def exists(self, key: str) -> bool:
        k = self.make_key(key)

        async def _redis_exists(r):
            return await r.exists(k) > 0

        return await self._run("exists", _redis_exists, lambda m: m.exists(k), False)

    async def mget(self, keys: list[str]) -> list[Any]:
        if not keys:
            return []
        hashed = [self.make_key(k) for k in keys]
        raws = await self._run(
            "mget",
            lambda r: r.mget(hashed),
            lambda m: [m.get(k) for k in hashed],
            [None] * len(keys),
        )
        return [self._load(raw) for raw in raws]

    async def mset(self, items: dict[str, Any], ttl: int = DEFAULT_TTL) -> bool:
        if not items:
            return True
        try:
            payload = {self.make_key(k): self._dump(v) for k, v in items.items()}
        except (TypeError, ValueError) as e:
            logger.error("Cache mset failed, value not serializable: %s", e)
            return False

        async def _redis_mset(r):
            pipe = r.pipeline()
            for k, raw in payload.items():
                pipe.set(k, raw, ex=ttl)
            await pipe.execute()
            return True

        def _memory_mset(m):
            for k, raw in payload.items():
                m.set(k, raw, ttl)
            return True

        return await self._run("mset", _redis_mset, _memory_mset, False)

    async def incr(self, key: str, amount: int = 1) -> int | None:
        """Atomically increment a counter. Returns None if the cache is broken."""
        k = self.make_key(key)
        return await self._run(
            "incr",
            lambda r: r.incrby(k, amount),
            lambda m: m.incr(k, amount),
            None,
        )

    async def expire(self, key: str, ttl: int) -> bool:
        k = self.make_key(key)

        async def _redis_expire(r):
            return bool(await r.expire(k, ttl))

        return await self._run("expire", _redis_expire, lambda m: m.expire(k, ttl), False)

    # -- Domain helpers ------------------------------------------------------

    async def cache_insights(self, account_id: str, level: str, data: Any, ttl: int = INSIGHTS_TTL) -> bool:
        return await self.set(insights_key(account_id, level, self._today()), data, ttl)

    async def get_cached_insights(self, account_id: str, level: str) -> Any:
        return await self.get(insights_key(account_id, level, self._today()))

    async def invalidate_insights(self, account_id: str, level: str = "campaign") -> bool:
        return await self.delete(insights_key(account_id, level, self._today()))

    async def cache_account_data(self, account_id: str, data: Any, ttl: int = ACCOUNT_TTL) -> bool:
        return await self.set(account_key(account_id), data, ttl)

    async def get_cached_account_data(self, account_id: str) -> Any:
        return await self.get(account_key(account_id))

    async def cache_campaigns(self, account_id: str, data: Any, ttl: int = CAMPAIGNS_TTL) -> bool:
        return await self.set(campaigns_key(account_id), data, ttl)

    async def get_cached_campaigns(self, account_id: str) -> Any:
        return await self.get(campaigns_key(account_id))

    async def invalidate_account(self, account_id: str) -> None:
        """Drop every cached view of one account."""
        await self.delete(account_key(account_id))
        await self.delete(campaigns_key(account_id))
        for level in ("account", "campaign", "adset", "ad"):
            await self.invalidate_insights(account_id, level)

    # -- Housekeeping --------------------------------------------------------

    async def cleanup_expired_keys(self) -> int:
        """Sweep expired in-memory entries. Redis expires keys on its own."""
        removed = self._memory.cleanup()
        if removed:
            logger.info("Cache cleanup removed %d expired entries", removed)
        return removed

    async def get_stats(self) -> dict:
        async def _redis_stats(r):
            info = await r.info("memory")
            return {
                "keys": await r.dbsize(),
                "memory": info.get("used_memory_human", "unknown"),
                "connected": True,
            }

        def _memory_stats(m):
            return {"keys": len(m), "memory": "in-process", "connected": False}

        return await self._run(
            "stats", _redis_stats, _memory_stats, {"keys": 0, "memory": "unknown", "connected": False}
        )

    async def ping(self) -> bool:
        """Health probe: round-trip a throwaway key."""
        ok = await self.set("health:ping", "ok", 10)
        return ok and await self.get("health:ping") == "ok"
