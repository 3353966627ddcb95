"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.core.async_utils import run_in_thread
from app.core.config import settings
from app.core.redis_client import cache_backend_status
from app.core.telemetry import configure_telemetry
from app.db.session import SessionLocal, engine

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # provider records carry business names and emails
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.core.rate_limit import IS_TESTING, limiter

from app.jobs.license_sync_scheduler import LicenseSyncScheduler
from app.services import sync_state_service


# ============================================================================
# Lifespan
# ============================================================================


def _prepare_sync_state() -> None:
    """Create the status row and clear a running state left by a crashed process."""
    with SessionLocal() as db:
        sync_state_service.ensure_state(db, enabled=settings.LICENSE_SYNC_ENABLED)
        sync_state_service.recover_stale(db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if not IS_TESTING:
        await run_in_thread(_prepare_sync_state)
        if settings.LICENSE_SYNC_ENABLED:
            scheduler = LicenseSyncScheduler(SessionLocal)
            scheduler.start()
        else:
            logger.info("License sync scheduler disabled (LICENSE_SYNC_ENABLED=false)")
    app.state.license_sync_scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="License Dashboard API",
    description="External license sync, reconciliation and dashboard API",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Correlation-ID"],
    expose_headers=["X-Request-ID"],
)

configure_telemetry(app, engine)

# ============================================================================
# Routers
# ============================================================================

# Sync router first: /licenses/sync must not be captured by /licenses/{license_id}
from app.routers import license_sync
app.include_router(license_sync.router)

from app.routers import licenses
app.include_router(licenses.router)

# Staging table (read-only)
from app.routers import external_licenses
app.include_router(external_licenses.router)

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
from app.routers import internal
app.include_router(internal.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": settings.VERSION,
        "cache": cache_backend_status(),
    }
