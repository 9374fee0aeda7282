# Overview: Cache port with an in-process backend and a Redis backend.

"""
Cache Backends

The authorization cache and the revocation store only talk to CacheBackend:

    get(key) -> value | None
    set(key, value, ttl_seconds)
    delete(key)
    tag(key, *tags)
    remove_by_tag(tag) -> removed count
    remove_by_pattern(glob) -> removed count
    ping() -> bool

Values must be JSON-serializable; both backends store the JSON text so a
cached value can never be mutated through a shared reference.

Backends raise on failure. Callers decide whether that fails open (the
authorization cache) or is reported (revocation on logout).
"""

from __future__ import annotations

import fnmatch
import json
import threading
from datetime import timedelta

import redis


# Tag index outlives every entry it points to (longest entry TTL is 1 hour)
TAG_TTL_SECONDS = 2 * 60 * 60

# In-memory backend: minimum spacing between expiry sweeps
SWEEP_INTERVAL_SECONDS = 60


class CacheBackend:
    def get(self, key: str):
        raise NotImplementedError

    def set(self, key: str, value, ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def tag(self, key: str, *tags: str) -> None:
        raise NotImplementedError

    def remove_by_tag(self, tag: str) -> int:
        raise NotImplementedError

    def remove_by_pattern(self, pattern: str) -> int:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


class InMemoryCacheBackend(CacheBackend):
    """
    Single-process backend. Thread-safe; expiry follows the injected clock so
    tests can step past a TTL without sleeping.

    Expired entries are dropped on read and by a sweep that set() runs at most
    once per sweep_interval_seconds. The sweep also prunes tag members whose
    entries are gone, so memory stays bounded by the live key set.

    Not shared between processes: revocations recorded by one worker are
    invisible to the others (use the Redis backend for multi-worker servers).
    """

    def __init__(self, clock, *, sweep_interval_seconds: int = SWEEP_INTERVAL_SECONDS):
        self.clock = clock
        self.sweep_interval = timedelta(seconds=sweep_interval_seconds)
        self._lock = threading.RLock()
        self._entries = {}
        self._tags = {}
        self._next_sweep = None

    def _live(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at <= self.clock.now():
            del self._entries[key]
            return None
        return raw

    def get(self, key: str):
        with self._lock:
            raw = self._live(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value, ttl_seconds: int) -> None:
        raw = json.dumps(value)
        expires_at = self.clock.now() + timedelta(seconds=ttl_seconds)
        with self._lock:
            self._entries[key] = (raw, expires_at)
            self._maybe_sweep()

    def _maybe_sweep(self) -> None:
        now = self.clock.now()
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        self.purge_expired()

    def purge_expired(self) -> int:
        """Drop expired entries and dangling tag members. Returns entries removed."""
        with self._lock:
            now = self.clock.now()
            expired = [key for key, (_raw, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            for tag in list(self._tags):
                live = {key for key in self._tags[tag] if key in self._entries}
                if live:
                    self._tags[tag] = live
                else:
                    del self._tags[tag]
            return len(expired)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def tag(self, key: str, *tags: str) -> None:
        with self._lock:
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def remove_by_tag(self, tag: str) -> int:
        with self._lock:
            keys = self._tags.pop(tag, set())
            removed = 0
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
            return removed

    def remove_by_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._entries[key]
            return len(matched)

    def ping(self) -> bool:
        return True

    def __len__(self):
        with self._lock:
            return sum(1 for key in list(self._entries) if self._live(key) is not None)


class RedisCacheBackend(CacheBackend):
    """
    Shared backend for multi-process deployments.

    Tags are Redis sets ({prefix}tag:{tag}) holding the full keys they cover.
    Socket timeouts bound every call; a slow Redis surfaces as an exception
    rather than a hung request.
    """

    def __init__(self, client, key_prefix: str = "venue-auth:"):
        if client is None:
            raise ValueError("Redis client is required")
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "venue-auth:", socket_timeout: float = 0.5):
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.key_prefix}tag:{tag}"

    def get(self, key: str):
        raw = self.client.get(self._key(key))
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value, ttl_seconds: int) -> None:
        self.client.set(self._key(key), json.dumps(value), ex=max(1, int(ttl_seconds)))

    def delete(self, key: str) -> bool:
        return bool(self.client.delete(self._key(key)))

    def tag(self, key: str, *tags: str) -> None:
        if not tags:
            return
        full_key = self._key(key)
        pipe = self.client.pipeline()
        for tag in tags:
            tag_key = self._tag_key(tag)
            pipe.sadd(tag_key, full_key)
            pipe.expire(tag_key, TAG_TTL_SECONDS)
        pipe.execute()

    def remove_by_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)
        members = list(self.client.smembers(tag_key))
        removed = self.client.delete(*members) if members else 0
        self.client.delete(tag_key)
        return int(removed)

    def remove_by_pattern(self, pattern: str) -> int:
        removed = 0
        for full_key in self.client.scan_iter(match=self._key(pattern)):
            removed += int(self.client.delete(full_key))
        return removed

    def ping(self) -> bool:
        return bool(self.client.ping())


def build_cache_backend(config, clock) -> CacheBackend:
    backend = (config.get("CACHE_BACKEND") or "memory").lower()
    if backend == "redis":
        return RedisCacheBackend.from_url(
            config["REDIS_URL"],
            key_prefix=config.get("CACHE_KEY_PREFIX", "venue-auth:"),
            socket_timeout=config.get("CACHE_SOCKET_TIMEOUT_SECONDS", 0.5),
        )
    if backend == "memory":
        return InMemoryCacheBackend(clock)
    raise ValueError(f"Unknown CACHE_BACKEND: {backend}")
