from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "StockWatch"
    app_env: str = "development"
    cors_origins: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite+aiosqlite:///./stockwatch.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Redis (Celery broker for notification delivery)
    redis_url: str = "redis://localhost:6379/0"

    # Stock detection
    detector_keyword: str = "Add to Bag"
    detector_selector: str = ""
    unavailable_phrases: list[str] = ["out of stock", "sold out", "notify me", "unavailable"]

    # Scheduling
    dispatch_interval_seconds: float = 60.0
    tier_unit_seconds: float = 60.0
    worker_count: int = 5
    shutdown_drain_timeout: float = 30.0

    # Browser session pool
    session_pool_size: int = 3
    session_warm_size: int | None = None
    session_acquire_timeout: float = 15.0
    browser_headless: bool = True
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    )
    browser_proxy_url: str = ""

    # Rendering
    page_load_timeout: float = 10.0
    smart_wait_timeout: float = 5.0
    settle_delay: float = 0.5
    short_page_threshold: int = 5000
    short_page_extra_wait: float = 2.0

    # Caches
    snapshot_cache_ttl: float = 30.0
    reachability_cache_ttl: float = 60.0
    cache_max_entries: int = 100
    http_check_timeout: float = 3.0

    # Notifications
    notification_type: str = "log"
    discord_webhook_url: str = ""

    # Product URL validation (empty = any host)
    product_url_host: str = ""

    # Sentry (optional, only set in staging/production)
    sentry_dsn: str = ""

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def log_level(self) -> str:
        return "INFO" if self.is_production else "DEBUG"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]


settings = Settings()

# ---------------------------------------------------------------------------
# Application constants (not env-configurable, change in code)
# ---------------------------------------------------------------------------

# Tier intervals, in multiples of tier_unit_seconds
TIER_INTERVAL_UNITS = {
    "high": 1,
    "medium": 3,
    "low": 5,
    "cold": 10,
}

# Consecutive unavailable results before demotion
LOW_TIER_THRESHOLD = 10
COLD_TIER_THRESHOLD = 20

# Flip count above which a target is considered volatile
VOLATILE_FLIP_THRESHOLD = 3

# Markup window (chars either side of a keyword hit) searched for unavailable phrasing
UNAVAILABLE_PHRASE_WINDOW = 300

# Notification delivery
NOTIFICATION_MAX_RETRIES = 3
NOTIFICATION_RETRY_DELAY = 30  # seconds
HTTP_TIMEOUT = 15.0  # Discord webhook calls

# Manual check history page size
RECENT_CHECKS_LIMIT = 10
