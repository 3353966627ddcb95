"""Pooled Redis client for the dashboard cache.

``REDIS_URL`` unset or ``memory://`` disables Redis; the cache then lives in
process and each API replica keeps its own copy.
"""

from __future__ import annotations

import logging
import os

import redis

logger = logging.getLogger(__name__)

REDIS_DISABLED_URL = "memory://"
DEFAULT_REDIS_MAX_CONNECTIONS = 20
# Cache reads sit on the request path; a slow Redis must not stall /licenses
DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_HEALTH_CHECK_SECONDS = 30

_sync_client: redis.Redis | None = None


def get_redis_url() -> str | None:
    url = (os.getenv("REDIS_URL") or "").strip()
    if not url or url.lower() == REDIS_DISABLED_URL:
        return None
    return url


def _redis_max_connections() -> int:
    raw = os.getenv("REDIS_MAX_CONNECTIONS", "").strip()
    if raw.isdigit() and int(raw) > 0:
        return int(raw)
    return DEFAULT_REDIS_MAX_CONNECTIONS


def get_sync_redis_client() -> redis.Redis | None:
    """Shared pooled client, or None when Redis is disabled."""
    global _sync_client
    url = get_redis_url()
    if not url:
        return None
    if _sync_client is None:
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=_redis_max_connections(),
            socket_connect_timeout=DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS,
            socket_timeout=DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS,
            health_check_interval=DEFAULT_REDIS_HEALTH_CHECK_SECONDS,
            retry_on_timeout=True,
            decode_responses=True,
        )
        _sync_client = redis.Redis(connection_pool=pool)
    return _sync_client


def cache_backend_status() -> str:
    """``memory`` when Redis is disabled, else ``redis`` or ``redis-unavailable``."""
    client = get_sync_redis_client()
    if client is None:
        return "memory"
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis ping failed: %s", exc.__class__.__name__)
        return "redis-unavailable"
    return "redis"


def reset_client() -> None:
    """Drop the cached client (used after REDIS_URL changes)."""
    global _sync_client
    _sync_client = None
