from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol

import redis

from onboarding.services.rate_limit import connect_redis

_LOG = logging.getLogger("onboarding.code_vault")

_KEY_PREFIX = "otp:code:"


class CodeVault(Protocol):
    def put(self, key: str, code_hash: str, *, ttl_seconds: int) -> None:
        ...

    def get(self, key: str) -> str | None:
        ...

    def discard(self, key: str) -> None:
        ...


class InMemoryCodeVault:
    def __init__(self):
        self._data: dict[str, tuple[str, datetime]] = {}
        self._lock = Lock()

    def put(self, key: str, code_hash: str, *, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=max(int(ttl_seconds), 1))
        with self._lock:
            self._data[key] = (code_hash, expires_at)

    def get(self, key: str) -> str | None:
        now = datetime.now(timezone.utc)
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            code_hash, expires_at = item
            if expires_at <= now:
                self._data.pop(key, None)
                return None
            return code_hash

    def discard(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class RedisCodeVault:
    def __init__(self, client: redis.Redis):
        self.client = client

    def put(self, key: str, code_hash: str, *, ttl_seconds: int) -> None:
        self.client.set(_KEY_PREFIX + key, code_hash, ex=max(int(ttl_seconds), 1))

    def get(self, key: str) -> str | None:
        value = self.client.get(_KEY_PREFIX + key)
        return str(value) if value is not None else None

    def discard(self, key: str) -> None:
        self.client.delete(_KEY_PREFIX + key)


_cached_vault: CodeVault | None = None


def get_code_vault() -> CodeVault:
    global _cached_vault
    if _cached_vault is None:
        client = connect_redis()
        if client is None:
            _LOG.warning("Redis code vault unavailable; fallback to in-memory vault")
            _cached_vault = InMemoryCodeVault()
        else:
            _cached_vault = RedisCodeVault(client)
    return _cached_vault
