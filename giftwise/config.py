"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # Static scraper configuration files
    # ==========================================================================
    scraper_config_dir: str = "config"
    proxies_file: str = "proxies.txt"  # host:port:protocol:user:pass per line
    user_agents_file: str = "user-agents.txt"

    # ==========================================================================
    # Proxy Rotation Settings
    # ==========================================================================
    proxy_min_available: int = 10  # Refuse to start with fewer proxies than this
    proxy_max_failures: int = 3  # Excluded from rotation at this fail count
    proxy_rotation_interval_ms: int = 60_000  # Minimum idle time before reuse
    proxy_response_timeout_ms: int = 10_000  # Health check timeout
    proxy_health_check_interval_ms: int = 300_000  # 5 minutes
    proxy_retry_attempts: int = 3
    proxy_backoff_factor: float = 1.5
    proxy_health_check_url: str = "https://www.amazon.com/robots.txt"

    # Proxy / user-agent pools are re-read from Redis once older than this
    pool_sync_seconds: float = 60.0

    # ==========================================================================
    # Scraping Settings
    # ==========================================================================
    scrape_connect_timeout: float = 10.0
    scrape_read_timeout: float = 30.0
    scrape_write_timeout: float = 30.0
    scrape_max_retries: int = 3
    scrape_retry_initial_delay: float = 1.0
    scrape_retry_max_delay: float = 30.0
    scrape_retry_backoff_factor: float = 2.0
    scrape_retry_jitter: bool = True
    scrape_retryable_status_codes: list[int] = [408, 429, 500, 502, 503, 504]
    scrape_search_url: str = "https://www.amazon.com/s?k={query}"

    # Per-host / per-proxy scraping rate limit
    scrape_rate_limit_max_requests: int = 30
    scrape_rate_limit_window_ms: int = 60_000
    scrape_rate_limit_block_ms: int = 300_000

    # Inbound API rate limit (caller level, fails open)
    api_rate_limit_max_requests: int = 20
    api_rate_limit_window_ms: int = 60_000
    api_rate_limit_block_ms: int = 300_000

    # ==========================================================================
    # Cache Settings (seconds)
    # ==========================================================================
    cache_product_ttl: int = 3600
    cache_search_ttl: int = 1800
    cache_price_ttl: int = 7200
    cache_strategy: str = "lru"  # Declarative, enforced by Redis maxmemory-policy
    sentiment_cache_ttl: int = 7 * 24 * 60 * 60
    enrichment_cache_ttl: int = 24 * 60 * 60
    category_metrics_ttl: int = 24 * 60 * 60
    category_analysis_ttl: int = 6 * 60 * 60

    # ==========================================================================
    # Gift Price Analysis
    # ==========================================================================
    price_history_days: int = 30
    price_min_sample_size: int = 5
    price_confidence_threshold: float = 0.7
    price_volatility_threshold: float = 0.2
    price_cache_expiry: int = 7 * 24 * 60 * 60
    price_outlier_iqr_multiplier: float = 1.5
    price_tracker_history_days: int = 90

    # ==========================================================================
    # AI & LLM Configuration
    # ==========================================================================
    openai_api_key: str = ""
    llm_model: str = "gpt-4"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 2000
    llm_timeout_seconds: float = 30.0
    llm_cache_enabled: bool = True
    llm_cache_ttl_seconds: int = 3600
    track_llm_costs: bool = True
    llm_cost_limit_per_day: float = 100.0

    # ==========================================================================
    # Optional external data sources
    # ==========================================================================
    serpapi_api_key: str = ""  # Google Shopping / Walmart backup sources
    keepa_api_key: str = ""  # Third-party Amazon price history

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
