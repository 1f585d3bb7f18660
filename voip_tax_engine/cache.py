"""
Result cache.

Calculation results and resolved jurisdiction ids are memoized in a
shared key-value store with a time-to-live. Writes are idempotent: two
workers computing the same key store equivalent values.

Pattern invalidation is best-effort. Backends that cannot delete by
pattern raise ``PatternInvalidationUnsupported`` and callers fall back
to ``flush``, which every backend must support.
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
import logging
import pickle
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol, runtime_checkable

try:
    import redis
except ImportError:  # optional extra
    redis = None

from voip_tax_engine.errors import CacheError

_REDIS_ERRORS = (redis.exceptions.RedisError,) if redis is not None else ()

CALCULATION_PREFIX = "voip_tax"
JURISDICTION_PREFIX = "jurisdictions"

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def delete_pattern(self, pattern: str) -> int: ...

    def flush(self) -> None: ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class InMemoryCache:
    """Process-local TTL cache with glob-style pattern invalidation."""

    def __init__(self, clock=time.monotonic) -> None:
        self._store: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._store[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def flush(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


def stable_hash(data: Any) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    blob = json.dumps(
        data,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    ).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


def make_cache_key(company_id: int, key_data: dict[str, Any]) -> str:
    return f"{CALCULATION_PREFIX}:{company_id}:{stable_hash(key_data)}"


def make_jurisdiction_key(company_id: int, address: dict[str, str]) -> str:
    return f"{JURISDICTION_PREFIX}:{company_id}:{stable_hash(address)}"


def safe_get(backend: Optional[CacheBackend], key: str) -> Optional[Any]:
    """Read from the cache, treating an unavailable backend as a miss."""
    if backend is None:
        return None
    try:
        return backend.get(key)
    except CacheError as e:
        logger.warning("Cache read failed for %s: %s", key, e)
        return None


def safe_set(backend: Optional[CacheBackend], key: str, value: Any, ttl: int) -> None:
    """Write to the cache; failures leave the value unmemoized."""
    if backend is None:
        return
    try:
        backend.set(key, value, ttl)
    except CacheError as e:
        logger.warning("Cache write failed for %s: %s", key, e)


class RedisCache:
    """
    Shared cache backed by a Redis server.

    Values are pickled and written with ``SETEX`` so Redis expires them.
    Pattern deletion walks matching keys with ``SCAN``; ``flush`` only
    removes keys under the engine's own prefixes and leaves the rest of
    the database alone. Any ``RedisError`` surfaces as ``CacheError``.
    """

    prefixes = (CALCULATION_PREFIX, JURISDICTION_PREFIX)

    def __init__(self, client: Any) -> None:
        self._r = client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisCache":
        if redis is None:
            raise CacheError("redis is not installed; pip install voip-tax-engine[redis]")
        return cls(redis.Redis.from_url(url, **kwargs))

    def get(self, key: str) -> Optional[Any]:
        with _redis_errors("get", key):
            blob = self._r.get(key)
        if blob is None:
            return None
        try:
            return pickle.loads(blob)
        except (pickle.UnpicklingError, EOFError, TypeError, ValueError) as e:
            raise CacheError(f"unreadable cache entry {key}: {e}") from e

    def set(self, key: str, value: Any, ttl: int) -> None:
        blob = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        with _redis_errors("set", key):
            self._r.setex(key, ttl, blob)

    def delete_pattern(self, pattern: str) -> int:
        with _redis_errors("delete_pattern", pattern):
            keys = list(self._r.scan_iter(match=pattern))
            if keys:
                self._r.delete(*keys)
        return len(keys)

    def flush(self) -> None:
        for prefix in self.prefixes:
            self.delete_pattern(f"{prefix}:*")


@contextmanager
def _redis_errors(operation: str, key: str) -> Iterator[None]:
    try:
        yield
    except _REDIS_ERRORS as e:
        raise CacheError(f"redis {operation} failed for {key}: {e}") from e
