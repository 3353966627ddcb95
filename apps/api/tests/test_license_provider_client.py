"""Tests for the paginated license provider client."""

import httpx
import pytest

from app.services.license_provider_client import LicenseProviderClient, parse_page
from app.services.license_sync_errors import ProviderConfigError, ProviderFetchError


async def _collect(client: LicenseProviderClient) -> list:
    return [item async for item in client.iter_licenses()]


async def test_iterates_all_pages(fake_provider, make_record):
    fake_provider.records = [make_record(f"A{i}") for i in range(120)]

    items = await _collect(fake_provider.client())

    assert [item["appid"] for item in items] == [f"A{i}" for i in range(120)]
    assert fake_provider.page_requests == [1, 2, 3]
    assert all(r.url.params["limit"] == "50" for r in fake_provider.requests)


async def test_sends_api_key_and_correlation_id(fake_provider, make_record):
    fake_provider.records = [make_record("A1")]

    await _collect(fake_provider.client(correlation_id="run-42"))

    request = fake_provider.requests[0]
    assert request.headers["x-api-key"] == "test-provider-key"
    assert request.headers["X-Correlation-ID"] == "run-42"
    assert request.headers["User-Agent"].startswith("license-dashboard-sync/")


async def test_stops_on_short_page_without_meta(fake_provider, make_record):
    fake_provider.records = [make_record(f"A{i}") for i in range(60)]
    fake_provider.include_meta = False

    items = await _collect(fake_provider.client())

    assert len(items) == 60
    assert fake_provider.page_requests == [1, 2]


async def test_empty_provider_yields_nothing(fake_provider):
    items = await _collect(fake_provider.client())

    assert items == []
    assert fake_provider.page_requests == [1]


async def test_truncates_at_max_licenses(fake_provider, make_record):
    fake_provider.records = [make_record(f"A{i}") for i in range(150)]

    items = await _collect(fake_provider.client(max_licenses=70))

    assert len(items) == 70
    assert fake_provider.page_requests == [1, 2]


async def test_retries_server_error_then_succeeds(fake_provider, make_record):
    fake_provider.records = [make_record(f"A{i}") for i in range(60)]
    fake_provider.fail_pages = {2: 503}
    fake_provider.fail_times = 1

    items = await _collect(fake_provider.client())

    assert len(items) == 60
    assert fake_provider.page_requests == [1, 2, 2]


async def test_persistent_server_error_raises_fetch_error(fake_provider, make_record):
    fake_provider.records = [make_record(f"A{i}") for i in range(60)]
    fake_provider.fail_pages = {2: 500}

    seen = []
    with pytest.raises(ProviderFetchError) as exc_info:
        async for item in fake_provider.client().iter_licenses():
            seen.append(item)

    assert exc_info.value.status_code == 500
    assert exc_info.value.page == 2
    assert len(seen) == 50
    assert fake_provider.page_requests == [1, 2, 2, 2]


async def test_auth_failure_is_not_retried(fake_provider):
    client = LicenseProviderClient(
        "https://provider.test",
        "wrong-key",
        transport=httpx.MockTransport(fake_provider.handler),
        retry_delay=0,
        retry_max_delay=0,
    )

    with pytest.raises(ProviderFetchError) as exc_info:
        await _collect(client)

    assert exc_info.value.status_code == 401
    assert len(fake_provider.requests) == 1


async def test_non_json_body_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = LicenseProviderClient(
        "https://provider.test", "key", transport=httpx.MockTransport(handler)
    )

    with pytest.raises(ProviderFetchError, match="non-JSON"):
        await client.fetch_page(1)


async def test_transport_error_raises_after_retries():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("refused", request=request)

    client = LicenseProviderClient(
        "https://provider.test",
        "key",
        transport=httpx.MockTransport(handler),
        retry_attempts=2,
        retry_delay=0,
        retry_max_delay=0,
    )

    with pytest.raises(ProviderFetchError, match="ConnectError"):
        await client.fetch_page(1)
    assert calls["count"] == 2


def test_missing_configuration_raises():
    with pytest.raises(ProviderConfigError):
        LicenseProviderClient("", "key")
    with pytest.raises(ProviderConfigError):
        LicenseProviderClient("https://provider.test", "")


def test_parse_page_shapes():
    assert parse_page([{"appid": "A1"}], 1).items == [{"appid": "A1"}]

    page = parse_page({"data": [], "meta": {"total": "120", "totalPages": 3}}, 2)
    assert page.total == 120
    assert page.total_pages == 3

    with pytest.raises(ProviderFetchError):
        parse_page({"data": {"appid": "A1"}}, 1)
    with pytest.raises(ProviderFetchError):
        parse_page("nope", 1)


async def test_health_check(fake_provider, make_record):
    fake_provider.records = [make_record("A1")]
    healthy = await fake_provider.client().health_check()
    assert healthy["healthy"] is True
    assert healthy["error"] is None
    assert fake_provider.requests[-1].url.params["limit"] == "1"

    fake_provider.fail_pages = {1: 503}
    unhealthy = await fake_provider.client().health_check()
    assert unhealthy["healthy"] is False
    assert "503" in unhealthy["error"]
