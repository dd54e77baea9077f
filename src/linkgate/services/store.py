"""Ephemeral key/value store for rate limits, replay guards and dedupe windows.

Two backends share one contract: an in-process store guarded by a lock for
single-instance deployments and tests, and a Redis store so the guarantees
hold across several server instances. Both are created once per process by
``get_store`` and can be replaced through dependency overrides.
"""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from collections import deque
from threading import Lock

import redis

from linkgate.core.settings import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "linkgate:"


class EphemeralStore(ABC):
    """Time-bounded keys and sliding-window counters."""

    @abstractmethod
    def claim(self, key: str, ttl_ms: int, now_ms: int, value: str = "1") -> bool:
        """Set `key` if absent. Return True if this call created it."""

    @abstractmethod
    def exists(self, key: str, now_ms: int) -> bool:
        """Return True if `key` is present and not expired."""

    @abstractmethod
    def allow(self, key: str, limit: int, window_ms: int, now_ms: int) -> bool:
        """Record a hit in a sliding window unless `limit` hits already fall inside it."""

    @abstractmethod
    def purge_expired(self, now_ms: int) -> int:
        """Drop expired keys and empty windows. Return the number removed."""

    @abstractmethod
    def size(self, prefix: str = "") -> int:
        """Return how many live keys start with `prefix`."""


class MemoryStore(EphemeralStore):
    """Process-local store. Expired entries stay until ``purge_expired`` runs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._keys: dict[str, tuple[str, int]] = {}
        self._windows: dict[str, tuple[int, deque[int]]] = {}

    def claim(self, key: str, ttl_ms: int, now_ms: int, value: str = "1") -> bool:
        with self._lock:
            entry = self._keys.get(key)
            if entry is not None and entry[1] > now_ms:
                return False
            self._keys[key] = (value, now_ms + ttl_ms)
            return True

    def exists(self, key: str, now_ms: int) -> bool:
        with self._lock:
            entry = self._keys.get(key)
            return entry is not None and entry[1] > now_ms

    def allow(self, key: str, limit: int, window_ms: int, now_ms: int) -> bool:
        with self._lock:
            _, hits = self._windows.setdefault(key, (window_ms, deque()))
            self._windows[key] = (window_ms, hits)
            while hits and hits[0] <= now_ms - window_ms:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now_ms)
            return True

    def purge_expired(self, now_ms: int) -> int:
        removed = 0
        with self._lock:
            for key in [k for k, (_, expiry) in self._keys.items() if expiry <= now_ms]:
                del self._keys[key]
                removed += 1
            for key in list(self._windows):
                window_ms, hits = self._windows[key]
                while hits and hits[0] <= now_ms - window_ms:
                    hits.popleft()
                if not hits:
                    del self._windows[key]
                    removed += 1
        return removed

    def size(self, prefix: str = "") -> int:
        with self._lock:
            return sum(1 for key in self._keys if key.startswith(prefix))


class RedisStore(EphemeralStore):
    """Redis-backed store. Expiry is delegated to key TTLs."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    def claim(self, key: str, ttl_ms: int, now_ms: int, value: str = "1") -> bool:
        return bool(self._redis.set(KEY_PREFIX + key, value, nx=True, px=max(1, ttl_ms)))

    def exists(self, key: str, now_ms: int) -> bool:
        return bool(self._redis.exists(KEY_PREFIX + key))

    def allow(self, key: str, limit: int, window_ms: int, now_ms: int) -> bool:
        redis_key = f"{KEY_PREFIX}window:{key}"
        member = f"{now_ms}:{secrets.token_hex(4)}"
        # Add and count in one MULTI so concurrent instances see each other's hits.
        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now_ms - window_ms)
        pipe.zadd(redis_key, {member: now_ms})
        pipe.zcard(redis_key)
        pipe.pexpire(redis_key, window_ms)
        _, _, count, _ = pipe.execute()
        if int(count) > limit:
            self._redis.zrem(redis_key, member)
            return False
        return True

    def purge_expired(self, now_ms: int) -> int:
        return 0

    def size(self, prefix: str = "") -> int:
        return sum(1 for _ in self._redis.scan_iter(match=f"{KEY_PREFIX}{prefix}*"))


_STORE: EphemeralStore | None = None
_STORE_LOCK = Lock()


def build_store() -> EphemeralStore:
    """Create the store selected by ``STORE_BACKEND``."""
    if settings.store_backend == "redis":
        logger.info("Using Redis ephemeral store at %s", settings.redis_url)
        return RedisStore(redis.from_url(settings.redis_url))
    return MemoryStore()


def get_store() -> EphemeralStore:
    """Return the process-wide ephemeral store, creating it on first use."""
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = build_store()
        return _STORE
