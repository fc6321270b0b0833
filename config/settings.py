"""Global configuration management using pydantic-settings.

This module implements the 12-factor app methodology for configuration,
loading values from environment variables with strict type validation.
The Singleton pattern ensures consistent configuration state across the application.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GlobalConfig(BaseSettings):
    """Centralized configuration with environment variable binding.

    All configuration values are loaded from environment variables,
    with sensible defaults for development. Production deployments
    should override these via .env or environment injection.

    Attributes:
        app_name: Application identifier for logging and telemetry.
        environment: Deployment environment.
        debug: Enable verbose debugging output.
        headless: Run the browser without a visible window.
        log_level: Minimum log level for output filtering.
        log_dir: Directory path for structured JSON log files.
        navigation_timeout_ms: Timeout for the initial listing navigation.
        readiness_timeout_ms: Timeout for the content-readiness heuristic.
        click_timeout_ms: Timeout for a single click interaction.
        proxy_api_url: Proxy provisioning service endpoint.
        proxy_api_token: Bearer token for the provisioning service.
        proxy_hostname: Proxy gateway hostname used in provisioning requests.
        proxy_username: Proxy account username.
        proxy_password: Proxy account password.
        proxy_default_country: Country requested in the larger batch.
        proxy_default_batch: Number of proxies requested for the default country.
        proxy_candidate_countries: Number of random candidate countries.
        proxy_retry_attempts: Attempts per provisioning call.
        proxy_retry_wait_sec: Fixed wait between provisioning attempts.
        refetch_max_attempts: Attempts for the flaky reviews endpoint re-fetch.
        refetch_base_delay_sec: Base backoff delay for re-fetch attempts.
        refetch_max_delay_sec: Backoff cap for re-fetch attempts.
        refetch_jitter_sec: Upper bound of the random jitter added to each backoff.
        aggregator_queue_size: Bound of the per-run response channel.
        reviews_inline_threshold: Review count rendered inline without the modal.
        reviews_no_growth_limit: Pagination rounds without growth before stopping.
        reviews_max_rounds: Hard cap on modal pagination rounds.
        run_retry_attempts: Attempts of the run-level retry wrapper.
        data_dir: Directory for intermediate JSON artifacts.
        supabase_url: Supabase project URL.
        supabase_key: Supabase service key.
        openai_api_key: API key for the text-generation collaborator.
        openai_model: Model used by the text-generation collaborator.
        google_places_api_key: API key for the attractions lookup.
        attractions_max_results: Maximum attractions returned per listing.
        user_agents: Rotating user-agent strings for stealth.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Metadata
    app_name: str = Field(default="ListingHarvester", description="Application identifier")
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Browser Configuration
    headless: bool = Field(default=True, description="Run browser in headless mode")
    navigation_timeout_ms: int = Field(
        default=60000, ge=5000, le=180000, description="Listing navigation timeout"
    )
    readiness_timeout_ms: int = Field(
        default=30000, ge=1000, le=120000, description="Content readiness timeout"
    )
    click_timeout_ms: int = Field(
        default=5000, ge=500, le=30000, description="Single click timeout"
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )
    log_dir: Path = Field(default=Path("logs"), description="Log output directory")
    log_rotation: str = Field(default="1 week", description="Log rotation interval")
    log_retention: str = Field(default="1 month", description="Log retention period")

    # Proxy Provisioning
    proxy_api_url: str = Field(
        default="https://resi-api.iproyal.com/v1/access/generate-proxy-list",
        description="Proxy provisioning endpoint",
    )
    proxy_api_token: str = Field(default="", description="Provisioning bearer token")
    proxy_hostname: str = Field(default="", description="Proxy gateway hostname")
    proxy_username: str = Field(default="", description="Proxy account username")
    proxy_password: str = Field(default="", description="Proxy account password")
    proxy_default_country: str = Field(default="us", description="Default proxy country")
    proxy_default_batch: int = Field(default=6, ge=1, le=50)
    proxy_candidate_countries: int = Field(default=4, ge=0, le=10)
    proxy_retry_attempts: int = Field(default=4, ge=1, le=10)
    proxy_retry_wait_sec: float = Field(default=2.0, ge=0.0, le=30.0)

    # Response Aggregation
    refetch_max_attempts: int = Field(default=3, ge=1, le=10)
    refetch_base_delay_sec: float = Field(default=1.0, ge=0.0, le=10.0)
    refetch_max_delay_sec: float = Field(default=10.0, ge=0.0, le=60.0)
    refetch_jitter_sec: float = Field(default=1.0, ge=0.0, le=10.0)
    aggregator_queue_size: int = Field(default=64, ge=1, le=1024)

    # Reviews Pagination
    reviews_inline_threshold: int = Field(default=24, ge=0)
    reviews_no_growth_limit: int = Field(default=4, ge=1, le=20)
    reviews_max_rounds: int = Field(default=200, ge=1)

    # Run Boundary
    run_retry_attempts: int = Field(default=3, ge=1, le=10)
    data_dir: Path = Field(default=Path("data"), description="Intermediate JSON artifacts")

    # Persistence
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_key: str = Field(default="", description="Supabase service key")

    # Text Generation Collaborator
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model name")

    # Points-of-Interest Collaborator
    google_places_api_key: str = Field(default="", description="Google Places API key")
    attractions_max_results: int = Field(default=5, ge=1, le=20)

    # Stealth Configuration - User Agent Rotation Pool
    user_agents: list[str] = Field(
        default=[
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
        ],
        description="User-agent rotation pool for stealth",
    )

    @field_validator("log_dir", "data_dir", mode="before")
    @classmethod
    def ensure_path(cls, value: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(value) if isinstance(value, str) else value

    @field_validator("proxy_default_country")
    @classmethod
    def normalize_country(cls, value: str) -> str:
        """Country codes are compared lower-case against the country table."""
        return value.strip().lower()

    @property
    def persistence_enabled(self) -> bool:
        """True when Supabase credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)


@lru_cache(maxsize=1)
def get_config() -> GlobalConfig:
    """Retrieve the singleton GlobalConfig instance.

    Uses LRU cache to ensure single instantiation across the application lifecycle.

    Returns:
        GlobalConfig: The validated configuration instance.
    """
    return GlobalConfig()
