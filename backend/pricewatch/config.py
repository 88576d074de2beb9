"""Application configuration via Pydantic Settings."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_EXTRA_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}


class Viewport(BaseModel):
    width: int = 1920
    height: int = 1080


class PoolSettings(BaseModel):
    """Browser pool limits and timings. All durations are in seconds."""

    max_browsers: int = Field(default=2, ge=1)
    max_pages_per_browser: int = Field(default=5, ge=1)
    page_timeout: float = 120.0
    browser_idle_timeout: float = 300.0  # browsers idle longer than this are closed
    acquire_timeout: float = 30.0  # max wait for a free page
    max_memory_mb: float = 2048.0
    check_interval: float = 30.0
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Viewport = Field(default_factory=Viewport)
    extra_headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_EXTRA_HEADERS))


class ScraperOptions(BaseModel):
    """Per-scraper cache and retry policy. Durations are in seconds."""

    cache_enabled: bool = True
    cache_ttl: float = 30 * 60
    cache_high_water_mark: int = 1000
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = 1.0
    timeout: float = 120.0


class BatchConfig(BaseModel):
    """Batch pacing and concurrency. Delays are in seconds."""

    batch_size: int = Field(default=10, ge=1)
    concurrency: int = Field(default=3, ge=1)
    delay_between_batches: float = 2.0
    delay_between_items: float = 0.5
    max_retries: int = Field(default=2, ge=0)
    retry_backoff: float = 1.0

    def with_overrides(self, **overrides: Any) -> "BatchConfig":
        """Validated copy with ``overrides`` applied; None values are ignored.

        Raises:
            pydantic.ValidationError: an override is out of range
        """
        updates = {k: v for k, v in overrides.items() if v is not None}
        return self.model_validate({**self.model_dump(), **updates})


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    SHUTDOWN_DRAIN_TIMEOUT: float = 30.0  # max wait for in-flight batch items on shutdown

    # Browser pool
    POOL_MAX_BROWSERS: int = 2
    POOL_MAX_PAGES_PER_BROWSER: int = 5
    POOL_PAGE_TIMEOUT: float = 120.0
    POOL_BROWSER_IDLE_TIMEOUT: float = 300.0
    POOL_ACQUIRE_TIMEOUT: float = 30.0
    POOL_MAX_MEMORY_MB: float = 2048.0
    POOL_CHECK_INTERVAL: float = 30.0
    POOL_HEADLESS: bool = True
    POOL_USER_AGENT: str = DEFAULT_USER_AGENT

    # Batch processing
    BATCH_SIZE: int = 10
    BATCH_CONCURRENCY: int = 3
    BATCH_DELAY_BETWEEN_BATCHES: float = 2.0
    BATCH_DELAY_BETWEEN_ITEMS: float = 0.5
    BATCH_MAX_RETRIES: int = 2

    # DM account (DM scraper runs with an authenticated session)
    DM_EMAIL: str = ""
    DM_PASSWORD: str = ""

    # Scheduled price refresh campaigns
    CAMPAIGN_RETAILERS: str = ""  # Comma-separated retailer slugs
    CAMPAIGN_INTERVAL_MINUTES: int = 60 * 24 * 7
    CAMPAIGN_ITEMS_FILE: str = ""  # JSON or CSV list of GTINs to refresh

    def pool_settings(self) -> PoolSettings:
        """Build the browser pool configuration from environment values."""
        return PoolSettings(
            max_browsers=self.POOL_MAX_BROWSERS,
            max_pages_per_browser=self.POOL_MAX_PAGES_PER_BROWSER,
            page_timeout=self.POOL_PAGE_TIMEOUT,
            browser_idle_timeout=self.POOL_BROWSER_IDLE_TIMEOUT,
            acquire_timeout=self.POOL_ACQUIRE_TIMEOUT,
            max_memory_mb=self.POOL_MAX_MEMORY_MB,
            check_interval=self.POOL_CHECK_INTERVAL,
            headless=self.POOL_HEADLESS,
            user_agent=self.POOL_USER_AGENT,
        )

    def batch_config(self) -> BatchConfig:
        """Build the default batch processor configuration."""
        return BatchConfig(
            batch_size=self.BATCH_SIZE,
            concurrency=self.BATCH_CONCURRENCY,
            delay_between_batches=self.BATCH_DELAY_BETWEEN_BATCHES,
            delay_between_items=self.BATCH_DELAY_BETWEEN_ITEMS,
            max_retries=self.BATCH_MAX_RETRIES,
        )

    def get_campaign_retailers(self) -> List[str]:
        """Parse CAMPAIGN_RETAILERS into a list of retailer slugs.

        Returns:
            List of slugs, empty if CAMPAIGN_RETAILERS is not set
        """
        if not self.CAMPAIGN_RETAILERS:
            return []
        return [r.strip() for r in self.CAMPAIGN_RETAILERS.split(",") if r.strip()]


settings = Settings()
