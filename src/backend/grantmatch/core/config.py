"""
Service configuration.

Every knob (crawler politeness, scheduler windows, queue retry budget,
extraction tiers, match thresholds) is read from the environment or
`.env` once and cached by `get_settings`.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values should be stored in .env file (not committed to git).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Grant Match Core"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False, description="Enable debug mode")

    # API Configuration
    api_prefix: str = "/api/v1"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)"
    )

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    # Database
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/grantmatch",
        description="PostgreSQL connection string"
    )
    database_pool_size: int = Field(default=5, ge=1, le=100)
    database_max_overflow: int = Field(default=10, ge=0, le=100)
    database_pool_timeout: int = Field(default=30, ge=5, le=120)
    database_echo: bool = Field(default=False, description="Echo SQL queries")
    database_ssl: bool = Field(default=False, description="Require SSL for database connections")

    # Azure OpenAI (Tier 2 extraction)
    azure_openai_endpoint: str | None = Field(
        default=None,
        description="Azure OpenAI endpoint URL (e.g., https://your-resource.openai.azure.com/)"
    )
    azure_openai_api_key: str | None = Field(
        default=None,
        description="Azure OpenAI API key"
    )
    azure_openai_deployment: str = Field(
        default="gpt-4o-mini",
        description="Azure OpenAI deployment used for eligibility extraction"
    )
    azure_openai_api_version: str = "2024-08-01-preview"

    # Azure Document Intelligence (Tier 3 extraction)
    azure_doc_intelligence_endpoint: str | None = Field(
        default=None,
        description="Azure Document Intelligence endpoint URL"
    )
    azure_doc_intelligence_key: str | None = Field(
        default=None,
        description="Azure Document Intelligence API key"
    )
    document_page_limit: int = Field(
        default=10,
        ge=0,
        description="Maximum attachment pages converted (0 = all)"
    )

    # Organization profile service
    organization_service_url: str | None = Field(
        default=None,
        description="Base URL of the organization-profile service"
    )
    organization_service_api_key: str | None = None
    organization_service_timeout: float = Field(default=10.0, ge=1.0)

    # Notification service
    notification_webhook_url: str | None = Field(
        default=None,
        description="Endpoint receiving match/deadline/alert events"
    )

    # Crawler politeness
    crawler_user_agent: str = Field(
        default="GrantMatchBot/1.0 (+https://grantmatch.example/bot)",
        description="User agent for crawling"
    )
    crawler_requests_per_minute: int = Field(
        default=10,
        ge=1,
        le=120,
        description="Default per-source request budget"
    )
    crawler_min_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Minimum delay between requests to one source (seconds)"
    )
    crawler_max_delay: float = Field(
        default=8.0,
        ge=0.0,
        description="Upper bound of the jittered inter-request delay (seconds)"
    )
    crawler_timeout: int = Field(
        default=30,
        ge=5,
        le=120,
        description="Request timeout in seconds"
    )
    crawler_max_pages: int = Field(default=5, ge=1, le=100)
    crawler_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="In-fetch retry attempts for throttling responses"
    )
    crawler_retry_min_wait: float = Field(default=2.0, ge=0.0)
    crawler_retry_max_wait: float = Field(default=60.0, ge=0.0)
    crawler_cooldown_minutes: int = Field(
        default=180,
        ge=1,
        description="Suspension window after repeated access denials"
    )
    crawler_stealth_mode: bool = True
    crawler_proxy_url: str | None = Field(
        default=None,
        description="HTTP/HTTPS proxy URL for crawling (e.g., http://proxy:8080)"
    )
    crawler_respect_robots: bool = True

    # Scheduler
    scheduler_enabled: bool = False
    scheduler_timezone: str = "Asia/Seoul"
    scheduler_peak_months: str = Field(
        default="1,2,3",
        description="Months (comma-separated) that run in PEAK mode"
    )
    scheduler_normal_runs_per_day: int = Field(default=2, ge=1, le=24)
    scheduler_peak_runs_per_day: int = Field(default=4, ge=1, le=24)
    scheduler_housekeeping_hour: int = Field(
        default=6,
        ge=0,
        le=23,
        description="Local hour of the daily deadline housekeeping job"
    )
    scheduler_misfire_grace_seconds: int = Field(default=600, ge=1)

    @property
    def peak_months(self) -> set[int]:
        """Get peak months as a set of month numbers."""
        return {int(m) for m in self.scheduler_peak_months.split(",") if m.strip()}

    # Work queue
    worker_count: int = Field(default=4, ge=1, le=64)
    worker_per_source_concurrency: int = Field(default=2, ge=1, le=10)
    job_timeout_seconds: float = Field(default=600.0, ge=1.0)
    job_max_attempts: int = Field(default=3, ge=1, le=20)
    job_retry_base_delay: float = Field(default=60.0, ge=0.0)
    job_retry_max_delay: float = Field(default=3600.0, ge=0.0)

    # Extraction
    extraction_tier2_enabled: bool = True
    extraction_tier3_enabled: bool = True
    extraction_tier2_timeout: float = Field(default=20.0, ge=1.0)
    extraction_tier2_calls_per_minute: int = Field(default=30, ge=1)
    extraction_tier2_max_chars: int = Field(default=6000, ge=500)
    extraction_tier3_documents_per_minute: int = Field(default=10, ge=1)

    # Matching
    match_min_score_active: int = Field(default=45, ge=0, le=100)
    match_min_score_historical: int = Field(default=50, ge=0, le=100)
    match_min_score_notification: int = Field(default=60, ge=0, le=100)
    match_historical_trl_tolerance: int = Field(default=3, ge=0, le=8)
    match_cache_ttl_seconds: int = Field(default=86400, ge=0)
    match_locale: Literal["en", "ko"] = "en"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    @field_validator("database_url", mode="before")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL uses asyncpg driver."""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
