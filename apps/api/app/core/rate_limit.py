"""Rate limiting configuration for the license API."""

import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)
SYNC_TRIGGER_LIMIT = f"{max(settings.RATE_LIMIT_SYNC_TRIGGER, 1)}/minute"


def _storage_uri() -> str:
    """Redis when configured and reachable (multi-worker), else in-memory."""
    if IS_TESTING or not settings.REDIS_URL or settings.REDIS_URL == "memory://":
        return "memory://"
    try:
        import redis

        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except Exception as e:
        logging.warning(f"Redis unavailable for rate limiting, using in-memory: {e}")
        return "memory://"
    return settings.REDIS_URL


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)
