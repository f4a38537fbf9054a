from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol

import redis

from onboarding.core.config import settings
from onboarding.core.errors import RateLimitError

_LOG = logging.getLogger("onboarding.rate_limit")


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    current_value: int


class RateLimiter(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        ...


class InMemoryRateLimiter:
    def __init__(self):
        self._data: dict[str, tuple[int, datetime]] = {}
        self._lock = Lock()

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = datetime.now(timezone.utc)
        with self._lock:
            count, expires_at = self._data.get(key, (0, now))
            if expires_at <= now:
                count = 0
                expires_at = now + timedelta(seconds=max(int(window_seconds), 1))
            count += 1
            self._data[key] = (count, expires_at)
            retry_after = max(0, int((expires_at - now).total_seconds()))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=retry_after, current_value=count)


class RedisRateLimiter:
    def __init__(self, client: redis.Redis):
        self.client = client

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = pipe.execute()
        count = int(count)
        if count == 1 or int(ttl) < 0:
            self.client.expire(key, int(max(window_seconds, 1)))
            ttl = int(max(window_seconds, 1))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=int(ttl), current_value=count)


def connect_redis() -> redis.Redis | None:
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=0.4,
            socket_connect_timeout=0.4,
        )
        client.ping()
        return client
    except redis.RedisError:
        return None


_cached_limiter: RateLimiter | None = None


def _build_limiter() -> RateLimiter:
    client = connect_redis()
    if client is None:
        _LOG.warning("Redis limiter unavailable; fallback to in-memory limiter")
        return InMemoryRateLimiter()
    return RedisRateLimiter(client)


def get_rate_limiter() -> RateLimiter:
    global _cached_limiter
    if _cached_limiter is None:
        _cached_limiter = _build_limiter()
    return _cached_limiter


def _hash_key_part(value: str | None) -> str:
    raw = str(value or "").strip()
    if not raw:
        return "-"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:20]


def enforce_challenge_request_limit(
    *,
    session_key: str,
    phone_number: str,
    limiter: RateLimiter | None = None,
) -> None:
    limiter = limiter or get_rate_limiter()
    window = int(max(settings.OTP_RATE_LIMIT_WINDOW_SECONDS, 1))
    limit = int(max(settings.OTP_REQUEST_RATE_LIMIT, 1))
    keys = [
        f"otp:request:session:{_hash_key_part(session_key)}",
        f"otp:request:phone:{_hash_key_part(phone_number)}",
    ]
    for key in keys:
        result = limiter.hit(key, limit=limit, window_seconds=window)
        if not result.allowed:
            _LOG.warning("otp_request_rate_limited key=%s count=%s", key, result.current_value)
            raise RateLimitError(
                f"Too many OTP requests. Retry in {max(result.retry_after_seconds, 1)} s.",
                retry_after_seconds=max(result.retry_after_seconds, 1),
            )
