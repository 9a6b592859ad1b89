"""Fixed-window request counters keyed by client.

A window opens on the first hit for a key and closes exactly ``window_seconds``
later; the next hit after that starts a fresh window with a count of one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Protocol

import redis

from app.core.config import settings

_LOG = logging.getLogger("app.rate_limit")

# Expired windows are swept once the table grows past this many keys.
PRUNE_THRESHOLD = 10_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _window_length(window_seconds: int) -> int:
    return max(int(window_seconds), 1)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    current_value: int

    def remaining(self, limit: int) -> int:
        return max(int(limit) - self.current_value, 0)


class RateLimiter(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        ...


@dataclass
class _Window:
    count: int
    closes_at: datetime


class InMemoryRateLimiter:
    """Process-local counters. Increment and compare happen under one lock."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow, prune_threshold: int = PRUNE_THRESHOLD):
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()
        self._clock = clock
        self._prune_threshold = int(prune_threshold)

    def _prune(self, now: datetime) -> None:
        closed = [key for key, window in self._windows.items() if window.closes_at <= now]
        for key in closed:
            del self._windows[key]

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.closes_at <= now:
                if len(self._windows) >= self._prune_threshold:
                    self._prune(now)
                window = _Window(count=0, closes_at=now + timedelta(seconds=_window_length(window_seconds)))
                self._windows[key] = window
            window.count += 1
            count = window.count
            retry_after = max(0, int((window.closes_at - now).total_seconds()))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=retry_after, current_value=count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RedisRateLimiter:
    """Shared counters in Redis.

    The window key is created with its expiry in the same transaction that
    increments it, so a counter never exists without a TTL. A key found without
    one (left behind by an older writer or a failed call) gets a fresh window.
    """

    def __init__(self, client: redis.Redis, prefix: str = "rate-limit:"):
        self.client = client
        self.prefix = prefix

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        redis_key = f"{self.prefix}{key}"
        window = _window_length(window_seconds)
        with self.client.pipeline(transaction=True) as pipe:
            pipe.set(redis_key, 0, ex=window, nx=True)
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            _, count, ttl = pipe.execute()
        count, ttl = int(count), int(ttl)
        if ttl < 0:
            _LOG.warning("Rate limit key %s had no expiry; restoring it", redis_key)
            self.client.expire(redis_key, window)
            ttl = window
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=ttl, current_value=count)


def _connect_redis(redis_url: str) -> RedisRateLimiter:
    client = redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=0.4,
        socket_connect_timeout=0.4,
    )
    client.ping()
    return RedisRateLimiter(client)


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    redis_url = str(settings.REDIS_URL or "").strip()
    if not redis_url:
        return InMemoryRateLimiter()
    try:
        return _connect_redis(redis_url)
    except (redis.RedisError, ValueError):
        _LOG.warning("Redis at %s unavailable; counting requests in memory", redis_url.split("@")[-1])
        return InMemoryRateLimiter()


def reset_rate_limiter_for_tests() -> None:
    get_rate_limiter.cache_clear()
