"""Application configuration with environment variables."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (dashboard origin)
    FRONTEND_URL: str = "http://localhost:3000"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Cache / rate limit storage ("memory://" disables Redis)
    REDIS_URL: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60  # General API
    RATE_LIMIT_SYNC_TRIGGER: int = 6  # POST /licenses/sync

    # OpenTelemetry
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "license-dashboard-api"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_EXPORTER_OTLP_HEADERS: str = ""
    OTEL_SAMPLE_RATE: float = 0.1

    # External license provider
    EXTERNAL_LICENSE_API_URL: str = ""
    EXTERNAL_LICENSE_API_KEY: str = ""
    EXTERNAL_LICENSE_API_TIMEOUT_SECONDS: float = 30.0
    EXTERNAL_LICENSE_USER_AGENT: str = "license-dashboard-sync/1.0"

    # License sync
    LICENSE_SYNC_ENABLED: bool = True
    LICENSE_SYNC_SCHEDULE: str = "*/30 * * * *"  # crontab, every 30 minutes
    LICENSE_SYNC_TIMEZONE: str = "UTC"
    LICENSE_SYNC_PAGE_SIZE: int = 50
    LICENSE_SYNC_RETRY_ATTEMPTS: int = 3
    LICENSE_SYNC_RETRY_DELAY_SECONDS: float = 2.0
    LICENSE_SYNC_RETRY_MAX_DELAY_SECONDS: float = 10.0
    LICENSE_SYNC_MAX_LICENSES: int = 10000
    LICENSE_SYNC_DB_BATCH_SIZE: int = 100
    LICENSE_SYNC_STALE_MINUTES: int = 60
    LICENSE_SYNC_MAX_FIELD_LENGTH: int = 1000

    # Dashboard metrics cache
    DASHBOARD_CACHE_TTL_SECONDS: int = 60

    @field_validator("LICENSE_SYNC_PAGE_SIZE")
    @classmethod
    def _check_page_size(cls, value: int) -> int:
        if not 1 <= value <= 1000:
            raise ValueError("LICENSE_SYNC_PAGE_SIZE must be between 1 and 1000")
        return value

    @field_validator("LICENSE_SYNC_MAX_LICENSES")
    @classmethod
    def _check_max_licenses(cls, value: int) -> int:
        if not 100 <= value <= 50000:
            raise ValueError("LICENSE_SYNC_MAX_LICENSES must be between 100 and 50000")
        return value

    @field_validator(
        "LICENSE_SYNC_RETRY_ATTEMPTS",
        "LICENSE_SYNC_DB_BATCH_SIZE",
        "LICENSE_SYNC_STALE_MINUTES",
    )
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def license_provider_configured(self) -> bool:
        """True when both the provider URL and API key are set."""
        return bool(self.EXTERNAL_LICENSE_API_URL and self.EXTERNAL_LICENSE_API_KEY)


settings = Settings()
