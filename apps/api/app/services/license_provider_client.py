"""Client for the external license provider API.

Pages through ``GET /api/v1/licenses?page=N&limit=M`` and yields raw records.
A page that still fails after the retry budget raises ``ProviderFetchError``;
the iterator is not restartable, so the caller aborts the run and the next
scheduled run starts again from page 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries
from app.services.license_sync_errors import ProviderConfigError, ProviderFetchError
from app.types import JsonObject, RawProviderRecord

logger = logging.getLogger(__name__)

LICENSES_PATH = "/api/v1/licenses"
# Upper bound when the provider reports neither totalPages nor total
MAX_UNBOUNDED_PAGES = 1000


@dataclass
class ProviderPage:
    """One page of raw provider records."""

    page: int
    items: list[RawProviderRecord] = field(default_factory=list)
    total_pages: int | None = None
    total: int | None = None


def _positive_int(value: Any) -> int | None:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def parse_page(payload: Any, page: int) -> ProviderPage:
    """Accept ``{"data": [...], "meta": {...}}`` or a bare list."""
    if isinstance(payload, list):
        return ProviderPage(page=page, items=payload)
    if not isinstance(payload, dict):
        raise ProviderFetchError(f"Unexpected provider payload type: {type(payload).__name__}", page=page)

    items = payload.get("data")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise ProviderFetchError("Provider payload 'data' is not a list", page=page)

    meta = payload.get("meta") or {}
    if not isinstance(meta, dict):
        meta = {}
    return ProviderPage(
        page=page,
        items=items,
        total_pages=_positive_int(meta.get("totalPages")),
        total=_positive_int(meta.get("total")),
    )


class LicenseProviderClient:
    """Async paginated client with bounded retries per page."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        page_size: int = 50,
        max_licenses: int = 10000,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
        retry_max_delay: float = 10.0,
        user_agent: str = "license-dashboard-sync/1.0",
        correlation_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not api_key:
            raise ProviderConfigError("External license API URL and key must be configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.page_size = page_size
        self.max_licenses = max_licenses
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.retry_max_delay = retry_max_delay
        self.user_agent = user_agent
        self.correlation_id = correlation_id
        self._transport = transport

    @classmethod
    def from_settings(cls, **overrides: Any) -> "LicenseProviderClient":
        """Build a client from application settings."""
        options: dict[str, Any] = {
            "timeout": settings.EXTERNAL_LICENSE_API_TIMEOUT_SECONDS,
            "page_size": settings.LICENSE_SYNC_PAGE_SIZE,
            "max_licenses": settings.LICENSE_SYNC_MAX_LICENSES,
            "retry_attempts": settings.LICENSE_SYNC_RETRY_ATTEMPTS,
            "retry_delay": settings.LICENSE_SYNC_RETRY_DELAY_SECONDS,
            "retry_max_delay": settings.LICENSE_SYNC_RETRY_MAX_DELAY_SECONDS,
            "user_agent": settings.EXTERNAL_LICENSE_USER_AGENT,
        }
        options.update(overrides)
        return cls(
            settings.EXTERNAL_LICENSE_API_URL,
            settings.EXTERNAL_LICENSE_API_KEY,
            **options,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "x-api-key": self.api_key,
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }
        if self.correlation_id:
            headers["X-Correlation-ID"] = self.correlation_id
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get_page(self, client: httpx.AsyncClient, page: int, limit: int) -> ProviderPage:
        log_extra = build_log_context(correlation_id=self.correlation_id, page=page)

        async def request_fn() -> httpx.Response:
            return await client.get(LICENSES_PATH, params={"page": page, "limit": limit})

        try:
            response = await request_with_retries(
                request_fn,
                max_attempts=self.retry_attempts,
                base_delay=self.retry_delay,
                max_delay=self.retry_max_delay,
                retry_statuses=DEFAULT_RETRY_STATUSES,
                log_context=log_extra,
            )
        except httpx.TimeoutException as exc:
            raise ProviderFetchError(
                f"Provider request timed out on page {page} after {self.retry_attempts} attempts",
                page=page,
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderFetchError(
                f"Provider request failed on page {page}: {exc.__class__.__name__}",
                page=page,
            ) from exc

        if response.status_code >= 400:
            raise ProviderFetchError(
                f"Provider returned HTTP {response.status_code} on page {page}",
                status_code=response.status_code,
                page=page,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderFetchError(
                f"Provider returned a non-JSON body on page {page}",
                status_code=response.status_code,
                page=page,
            ) from exc

        return parse_page(payload, page)

    async def fetch_page(self, page: int, limit: int | None = None) -> ProviderPage:
        """Fetch a single page (1-indexed)."""
        async with self._client() as client:
            return await self._get_page(client, page, limit or self.page_size)

    async def iter_pages(self) -> AsyncIterator[ProviderPage]:
        """
        Yield pages until the provider runs out or ``max_licenses`` is reached.

        Stops on: page >= totalPages, running total >= meta.total, a short or
        empty page, or the license cap (the last page is truncated to fit).
        """
        fetched = 0
        page_number = 1
        last_page = MAX_UNBOUNDED_PAGES

        async with self._client() as client:
            while page_number <= last_page:
                page = await self._get_page(client, page_number, self.page_size)

                if page_number == 1:
                    if page.total_pages:
                        last_page = page.total_pages
                    elif page.total:
                        last_page = -(-page.total // self.page_size)

                if not page.items:
                    break

                remaining = self.max_licenses - fetched
                if len(page.items) > remaining:
                    logger.warning(
                        "Reached maximum license limit (%s), truncating results",
                        self.max_licenses,
                        extra=build_log_context(correlation_id=self.correlation_id, page=page_number),
                    )
                    page.items = page.items[:remaining]

                fetched += len(page.items)
                yield page

                if fetched >= self.max_licenses:
                    break
                if len(page.items) < self.page_size:
                    break
                if page.total and fetched >= page.total:
                    break
                page_number += 1

        logger.info(
            "Fetched %s licenses from provider in %s page(s)",
            fetched,
            page_number,
            extra=build_log_context(correlation_id=self.correlation_id),
        )

    async def iter_licenses(self) -> AsyncIterator[RawProviderRecord]:
        """Lazy sequence of raw provider records across all pages."""
        async for page in self.iter_pages():
            for item in page.items:
                yield item

    async def health_check(self) -> JsonObject:
        """Probe the provider with a one-record request; never raises."""
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            await self.fetch_page(1, limit=1)
        except ProviderFetchError as exc:
            logger.warning("License provider health check failed: %s", exc)
            return {"healthy": False, "checked_at": checked_at, "error": str(exc)}
        return {"healthy": True, "checked_at": checked_at, "error": None}
