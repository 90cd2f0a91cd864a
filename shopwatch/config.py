"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./shopwatch.db"

    # Telegram (notification delivery only)
    telegram_bot_token: str = ""
    telegram_api_base: str = "https://api.telegram.org"

    # Upstream shop API
    shop_base_url: str = "https://shop.saidiait.top"
    upstream_timeout_seconds: float = 10.0  # Bounded timeout for every upstream call
    max_keepalive_connections: int = 20

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    app_host: str = "0.0.0.0"
    app_port: int = 3000

    # ==========================================================================
    # Catalog Cache
    # ==========================================================================
    cache_ttl_seconds: float = 1.5  # Short TTL keeps restock detection fast
    cache_sweep_interval_seconds: int = 60

    # ==========================================================================
    # Scheduler
    # ==========================================================================
    scan_interval_seconds: int = 2  # Global monitor scan tick
    watchlist_interval_seconds: int = 15  # Watch-list delta report tick
    watchlist_product_ids: list[str] = ["21", "108"]
    quick_setup_product_ids: list[str] = ["21", "78", "108"]

    # Wall-clock reference for schedule_time (HH:mm)
    timezone: str = "Asia/Ho_Chi_Minh"

    # ==========================================================================
    # Auto-buy
    # ==========================================================================
    # Lowercased substrings of an upstream purchase rejection that mean the
    # account balance is too low.
    low_balance_phrases: list[str] = ["số dư", "không đủ tiền", "balance"]

    # ==========================================================================
    # Activity log
    # ==========================================================================
    activity_log_keep: int = 50  # Rows kept per user
    activity_log_page: int = 20  # Rows returned per read

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
