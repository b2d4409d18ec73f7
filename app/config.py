from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Angel Investor Search"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    store_read_cache_ttl_seconds: float = 5.0

    # Redis
    redis_url: str | None = None
    redis_connect_timeout_seconds: float = 10.0

    # Providers
    openai_api_key: str | None = None
    investor_search_model: str = "gpt-4o-mini"
    investor_search_temperature: float = 0.7
    enrichment_model: str = "gpt-4o-mini"
    enrichment_temperature: float = 0.7
    match_model: str = "gpt-4o-mini"
    match_temperature: float = 0.3
    match_max_investors: int = 100
    interest_model: str = "gpt-4o-mini"
    interest_temperature: float = 0.3
    interest_batch_size: int = 5
    interest_batch_delay_seconds: float = 1.0

    # Cache / coordination
    query_cache_ttl_seconds: int = 3600
    job_lock_ttl_seconds: int = 300
    stale_lock_seconds: float = 120.0
    lock_wait_poll_interval_seconds: float = 1.0
    lock_wait_max_attempts: int = 60
    progress_clear_delay_seconds: float = 0.5

    # Search
    search_page_size: int = 50
    search_background_refresh: bool = False

    # Security
    cors_origins: list[str] = []  # Empty by default for security

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "investor_search"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
