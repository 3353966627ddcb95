"""Response cache over Redis with an in-process fallback.

Values are JSON-serialized. Redis failures are logged and treated as cache
misses so a cache outage never fails a request.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any

import redis

from app.core.redis_client import get_sync_redis_client

logger = logging.getLogger(__name__)

KEY_PREFIX = "license-dashboard:"
DASHBOARD_METRICS_PREFIX = "metrics:dashboard:"
DEFAULT_TTL_SECONDS = 60


class MemoryCache:
    """Thread-safe TTL dict."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at < time.monotonic():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (time.monotonic() + ttl, value)

    def delete(self, keys: list[str]) -> int:
        with self._lock:
            return sum(1 for key in keys if self._data.pop(key, None) is not None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._data if key.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


_memory = MemoryCache()


def _key(key: str) -> str:
    return f"{KEY_PREFIX}{key}"


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _loads(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def get(key: str) -> Any:
    client = get_sync_redis_client()
    if client is None:
        return _loads(_memory.get(_key(key)))
    try:
        return _loads(client.get(_key(key)))
    except redis.RedisError as exc:
        logger.warning("Cache get failed for %s: %s", key, exc)
        return None


def set(key: str, value: Any, ttl: int = DEFAULT_TTL_SECONDS) -> None:
    payload = _dumps(value)
    client = get_sync_redis_client()
    if client is None:
        _memory.set(_key(key), payload, ttl)
        return
    try:
        client.set(_key(key), payload, ex=ttl)
    except redis.RedisError as exc:
        logger.warning("Cache set failed for %s: %s", key, exc)


def delete(*keys: str) -> int:
    full = [_key(k) for k in keys]
    if not full:
        return 0
    client = get_sync_redis_client()
    if client is None:
        return _memory.delete(full)
    try:
        return int(client.delete(*full))
    except redis.RedisError as exc:
        logger.warning("Cache delete failed: %s", exc)
        return 0


def mget(keys: list[str]) -> list[Any]:
    full = [_key(k) for k in keys]
    if not full:
        return []
    client = get_sync_redis_client()
    if client is None:
        return [_loads(_memory.get(k)) for k in full]
    try:
        return [_loads(raw) for raw in client.mget(full)]
    except redis.RedisError as exc:
        logger.warning("Cache mget failed: %s", exc)
        return [None] * len(full)


def mset(mapping: dict[str, Any], ttl: int = DEFAULT_TTL_SECONDS) -> None:
    if not mapping:
        return
    client = get_sync_redis_client()
    if client is None:
        for key, value in mapping.items():
            _memory.set(_key(key), _dumps(value), ttl)
        return
    try:
        pipe = client.pipeline()
        for key, value in mapping.items():
            pipe.set(_key(key), _dumps(value), ex=ttl)
        pipe.execute()
    except redis.RedisError as exc:
        logger.warning("Cache mset failed: %s", exc)


def invalidate_prefix(prefix: str) -> int:
    """Delete every key under ``prefix``."""
    full = _key(prefix)
    client = get_sync_redis_client()
    if client is None:
        return _memory.delete_prefix(full)
    try:
        keys = list(client.scan_iter(match=f"{full}*", count=500))
        return int(client.delete(*keys)) if keys else 0
    except redis.RedisError as exc:
        logger.warning("Cache invalidation failed for %s: %s", prefix, exc)
        return 0


def invalidate_dashboard_metrics() -> int:
    return invalidate_prefix(DASHBOARD_METRICS_PREFIX)


def clear_memory_cache() -> None:
    _memory.clear()
