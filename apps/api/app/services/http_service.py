"""HTTP helpers with retry/backoff for outbound integrations."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for a zero-based attempt, capped, with up to 50% jitter."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
    log_context: dict[str, Any] | None = None,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Transport errors (including timeouts) are re-raised once the budget is
    spent; a retryable status on the last attempt is returned to the caller.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    extra = log_context or {}
    response: httpx.Response | None = None

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "HTTP request failed (attempt %s/%s), retrying in %.2fs: %s",
                attempt + 1,
                max_attempts,
                delay,
                exc.__class__.__name__,
                extra=extra,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "HTTP request returned %s (attempt %s/%s), retrying in %.2fs",
                response.status_code,
                attempt + 1,
                max_attempts,
                delay,
                extra=extra,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response
