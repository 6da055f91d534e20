from __future__ import annotations

import logging
import math
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Protocol

import redis.asyncio as redis_asyncio

from laborline.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RateLimitState:
    limit: int
    count: int
    reset_at: float | None

    @property
    def blocked(self) -> bool:
        return self.count >= self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def retry_after_seconds(self, now: float) -> int:
        if self.reset_at is None:
            return 0
        return max(0, math.ceil(self.reset_at - now))

    def headers(self, now: float, *, retry_after: bool = False) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if self.reset_at is not None:
            reset = datetime.fromtimestamp(self.reset_at, tz=timezone.utc)
            headers["X-RateLimit-Reset"] = reset.isoformat().replace("+00:00", "Z")
        if retry_after:
            headers["Retry-After"] = str(self.retry_after_seconds(now))
        return headers


class FailedAttemptLimiter(Protocol):
    """Counts failed authorization attempts per client key inside a fixed window.

    The first failure opens the window; later failures inside it only bump the
    count, they never push the reset time out.
    """

    limit: int

    def now(self) -> float: ...

    async def check(self, key: str) -> RateLimitState: ...

    async def record_failure(self, key: str) -> RateLimitState: ...

    async def reset(self) -> None: ...


@dataclass(slots=True)
class _Attempt:
    count: int
    reset_at: float


class InMemoryFailedAttemptLimiter:
    def __init__(
        self,
        *,
        limit: int = 5,
        window_seconds: float = 15 * 60,
        cleanup_probability: float = 0.1,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.limit = max(1, limit)
        self.window_seconds = window_seconds
        self.cleanup_probability = cleanup_probability
        self._clock = clock
        self._rng = rng
        self._attempts: dict[str, _Attempt] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    async def check(self, key: str) -> RateLimitState:
        now = self._clock()
        with self._lock:
            if self._rng() < self.cleanup_probability:
                self._evict_expired(now)
            attempt = self._attempts.get(key)
            if attempt is None or attempt.reset_at <= now:
                return RateLimitState(limit=self.limit, count=0, reset_at=None)
            return RateLimitState(limit=self.limit, count=attempt.count, reset_at=attempt.reset_at)

    async def record_failure(self, key: str) -> RateLimitState:
        now = self._clock()
        with self._lock:
            attempt = self._attempts.get(key)
            if attempt is None or attempt.reset_at <= now:
                attempt = _Attempt(count=1, reset_at=now + self.window_seconds)
                self._attempts[key] = attempt
            else:
                attempt.count += 1
            return RateLimitState(limit=self.limit, count=attempt.count, reset_at=attempt.reset_at)

    async def reset(self) -> None:
        with self._lock:
            self._attempts.clear()

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._attempts)

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, attempt in self._attempts.items() if attempt.reset_at <= now]
        for key in expired:
            del self._attempts[key]


class RedisFailedAttemptLimiter:
    """Shared counter for multi-instance deployments (INCR, EXPIRE on first failure)."""

    def __init__(
        self,
        client: redis_asyncio.Redis,
        *,
        limit: int = 5,
        window_seconds: int = 15 * 60,
        prefix: str = "ratelimit:monitoring",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.limit = max(1, limit)
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    async def check(self, key: str) -> RateLimitState:
        redis_key = self._key(key)
        raw_count = await self.client.get(redis_key)
        if raw_count is None:
            return RateLimitState(limit=self.limit, count=0, reset_at=None)
        ttl_ms = await self.client.pttl(redis_key)
        return RateLimitState(limit=self.limit, count=int(raw_count), reset_at=self._reset_at(ttl_ms))

    async def record_failure(self, key: str) -> RateLimitState:
        redis_key = self._key(key)
        count = int(await self.client.incr(redis_key))
        if count == 1:
            await self.client.expire(redis_key, self.window_seconds)
        ttl_ms = await self.client.pttl(redis_key)
        if ttl_ms < 0:
            # Key lost its expiry (INCR raced a crash before EXPIRE); reopen the window.
            await self.client.expire(redis_key, self.window_seconds)
            ttl_ms = self.window_seconds * 1000
        return RateLimitState(limit=self.limit, count=count, reset_at=self._reset_at(ttl_ms))

    async def reset(self) -> None:
        async for redis_key in self.client.scan_iter(match=f"{self.prefix}:*"):
            await self.client.delete(redis_key)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _reset_at(self, ttl_ms: int) -> float | None:
        if ttl_ms < 0:
            return None
        return self._clock() + ttl_ms / 1000.0


@lru_cache
def get_rate_limiter() -> FailedAttemptLimiter:
    settings = get_settings()
    if settings.redis_url:
        logger.info("using redis-backed failed attempt limiter")
        return RedisFailedAttemptLimiter(
            redis_asyncio.from_url(settings.redis_url, decode_responses=True),
            limit=settings.rate_limit_max_failed_attempts,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryFailedAttemptLimiter(
        limit=settings.rate_limit_max_failed_attempts,
        window_seconds=settings.rate_limit_window_seconds,
        cleanup_probability=settings.rate_limit_cleanup_probability,
    )
