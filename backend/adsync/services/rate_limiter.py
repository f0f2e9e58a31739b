"""Fixed-window request counting on the cache or the database; fails open."""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from adsync.services.cache import CacheManager, rate_limit_key
from adsync.services.store import AdStore

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_at: int  # epoch seconds when the current window ends
    retry_after: int
    degraded: bool = False

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """Fixed-window request counter.

    The window bucket is ``floor(now / window)``, embedded in the counter key,
    so old buckets expire on their own. Adjacent buckets are independent, which
    lets up to ``2 * max`` requests through around a boundary. Counter store
    failures fail open.
    """

    def __init__(
        self,
        cache: CacheManager | None = None,
        store: AdStore | None = None,
        backend: str = "cache",
        clock: Callable[[], float] = time.time,
    ):
        if backend == "database" and store is None:
            raise ValueError("database rate limit backend requires a store")
        if backend == "cache" and cache is None:
            raise ValueError("cache rate limit backend requires a cache")
        self.cache = cache
        self.store = store
        self.backend = backend
        self._clock = clock

    async def _increment(self, identifier: str, bucket: int, window_seconds: int, now: float) -> int:
        if self.backend == "database":
            return await self.store.increment_rate_limit(
                identifier, window_seconds // 60, now=datetime.fromtimestamp(now, tz=timezone.utc)
            )
        key = rate_limit_key(identifier, bucket)
        count = await self.cache.incr(key)
        if count is None:
            raise RuntimeError("cache counter unavailable")
        await self.cache.expire(key, window_seconds)
        return count

    async def check_rate_limit(self, identifier: str, max_requests: int, window_minutes: int = 15) -> RateLimitDecision:
        now = self._clock()
        window_seconds = window_minutes * 60
        bucket = int(now // window_seconds)
        reset_at = (bucket + 1) * window_seconds
        retry_after = max(math.ceil(reset_at - now), 1)

        try:
            count = await self._increment(identifier, bucket, window_seconds, now)
        except Exception as e:
            logger.warning("Rate limit store unavailable, allowing request for %s: %s", identifier, e)
            return RateLimitDecision(
                allowed=True,
                count=0,
                limit=max_requests,
                remaining=max_requests,
                reset_at=reset_at,
                retry_after=0,
                degraded=True,
            )

        return RateLimitDecision(
            allowed=count <= max_requests,
            count=count,
            limit=max_requests,
            remaining=max(max_requests - count, 0),
            reset_at=reset_at,
            retry_after=retry_after,
        )
