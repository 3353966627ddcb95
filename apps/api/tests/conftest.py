"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test (file-backed, WAL, so background sync
  sessions and the test session can interleave)
- ``db`` session and ``session_factory`` bound to it
- A fake license provider served through ``httpx.MockTransport``
- HTTPX AsyncClient over the app with all dependencies overridden
"""
import os
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Generator

os.environ["TESTING"] = "1"
os.environ["REDIS_URL"] = "memory://"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from app.core.deps import get_db, get_license_provider_factory, get_session_factory
from app.db.base import Base
from app.db.session import build_engine
from app.main import app
from app.services import cache_service, enrichment_service
from app.services.license_provider_client import LICENSES_PATH, LicenseProviderClient

PROVIDER_URL = "https://provider.test"
PROVIDER_KEY = "test-provider-key"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'licenses.db'}")

    @event.listens_for(engine, "connect")
    def _pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def _reset_process_state():
    cache_service.clear_memory_cache()
    enrichment_service.reset_fallback_count()
    yield
    cache_service.clear_memory_cache()


# =============================================================================
# Fake provider
# =============================================================================

@dataclass
class FakeProvider:
    """
    In-memory provider API.

    ``records`` are served in pages per the ``page``/``limit`` query params.
    ``fail_pages`` maps a page number to a status code returned for it;
    ``fail_times`` limits how many times each failure is returned.
    """

    records: list[Any] = field(default_factory=list)
    fail_pages: dict[int, int] = field(default_factory=dict)
    fail_times: int | None = None
    include_meta: bool = True
    requests: list[httpx.Request] = field(default_factory=list)
    _failures: dict[int, int] = field(default_factory=dict)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path != LICENSES_PATH:
            return httpx.Response(404, json={"error": "not found"})
        if request.headers.get("x-api-key") != PROVIDER_KEY:
            return httpx.Response(401, json={"error": "unauthorized"})

        page = int(request.url.params.get("page", "1"))
        limit = int(request.url.params.get("limit", "50"))

        if page in self.fail_pages:
            seen = self._failures.get(page, 0)
            if self.fail_times is None or seen < self.fail_times:
                self._failures[page] = seen + 1
                return httpx.Response(self.fail_pages[page], json={"error": "boom"})

        start = (page - 1) * limit
        items = self.records[start : start + limit]
        if not self.include_meta:
            return httpx.Response(200, json={"data": items})
        total_pages = max(1, -(-len(self.records) // limit))
        return httpx.Response(
            200,
            json={"data": items, "meta": {"total": len(self.records), "totalPages": total_pages, "page": page}},
        )

    def client(self, **overrides: Any) -> LicenseProviderClient:
        options: dict[str, Any] = {
            "page_size": 50,
            "max_licenses": 10000,
            "retry_attempts": 3,
            "retry_delay": 0,
            "retry_max_delay": 0,
        }
        options.update(overrides)
        return LicenseProviderClient(
            PROVIDER_URL,
            PROVIDER_KEY,
            transport=httpx.MockTransport(self.handler),
            **options,
        )

    @property
    def page_requests(self) -> list[int]:
        return [int(r.url.params.get("page", "1")) for r in self.requests]


@pytest.fixture(scope="function")
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(scope="function")
def provider_factory(fake_provider: FakeProvider) -> Callable[..., LicenseProviderClient]:
    def factory(**overrides: Any) -> LicenseProviderClient:
        return fake_provider.client(**overrides)

    return factory


def build_provider_record(appid: str | None, **fields: Any) -> dict[str, Any]:
    """A raw provider record in the provider's own key casing."""
    record: dict[str, Any] = {
        "countid": 1,
        "mid": f"MID-{appid}",
        "dba": f"Store {appid}",
        "zip": "94016",
        "status": 1,
        "license_type": "standard",
        "ActivateDate": "01/15/2025",
        "Coming_expired": "01/15/2026",
        "monthlyFee": 49.99,
        "smsBalance": 8.9,
        "smsPurchased": 1000,
        "smsSent": 120,
        "Package": {"basic": True},
        "Note": "seeded note",
        "lastActive": "2025-06-01T10:00:00Z",
    }
    if appid is not None:
        record["appid"] = appid
    record.update(fields)
    return record


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(
    db: Session,
    session_factory: sessionmaker,
    provider_factory: Callable[..., LicenseProviderClient],
) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_license_provider_factory] = lambda: provider_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    return build_provider_record
