"""Pydantic settings for Sparkwatch configuration."""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Flashnet swap feed
    flashnet_base_url: str = Field(
        default="https://api.flashnet.xyz/v1",
        description="Flashnet REST API base URL"
    )
    flashnet_jwt: Optional[str] = Field(
        default=None,
        description="Flashnet bearer token (JWT)"
    )
    flashnet_jwt_file: Optional[str] = Field(
        default="data/flashnet_token.txt",
        description="File the bearer token is read from when flashnet_jwt is unset"
    )

    # Luminex enrichment / balances
    luminex_base_url: str = Field(
        default="https://api.luminex.io",
        description="Luminex API base URL"
    )

    # Resilient retrieval
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Deadline for a single outbound HTTP attempt"
    )
    http_max_response_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Responses larger than this are rejected"
    )
    rate_limit_per_second: float = Field(
        default=10.0,
        description="Token bucket refill rate per client"
    )
    rate_limit_burst: int = Field(
        default=20,
        description="Token bucket capacity per client"
    )
    breaker_failure_threshold: int = Field(
        default=5,
        description="Consecutive failures before the circuit opens"
    )
    breaker_reset_seconds: float = Field(
        default=30.0,
        description="Time an open circuit waits before admitting trial calls"
    )
    breaker_half_open_max_calls: int = Field(
        default=3,
        description="Trial calls admitted while half-open"
    )
    retry_max_retries: int = Field(
        default=3,
        description="Retries after the first attempt"
    )
    retry_base_delay: float = Field(
        default=0.3,
        description="Base backoff delay in seconds"
    )
    retry_max_delay: float = Field(
        default=5.0,
        description="Backoff delay cap in seconds"
    )
    retry_backoff: float = Field(
        default=2.0,
        description="Backoff multiplier"
    )

    # Storage
    state_backend: str = Field(
        default="file",
        description="Persisted state backend: 'file' or 'redis'"
    )
    data_dir: str = Field(
        default="data",
        description="Directory for JSON state files"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (redis backend only)"
    )
    redis_key_prefix: str = Field(
        default="sparkwatch:",
        description="Prefix for every Redis state key"
    )

    # Swap ingestion
    swap_poll_interval_seconds: float = Field(
        default=5.0,
        description="Delay between swap feed polls"
    )
    swap_poll_limit: int = Field(
        default=100,
        description="Swap window size fetched per poll"
    )

    # Holders
    tracked_tickers: List[str] = Field(
        default=["ASTY", "SOON", "BITTY"],
        description="Tickers whose holders are reconciled"
    )
    holder_min_balance: float = Field(
        default=10.0,
        description="Minimum balance for an address to be tracked as a holder"
    )
    holder_epsilon: float = Field(
        default=0.0001,
        description="Balance differences at or below this are ignored"
    )
    holder_sweep_interval_seconds: int = Field(
        default=86400,
        description="Interval of the full holder balance sweep"
    )
    display_timezone: str = Field(
        default="Europe/Moscow",
        description="Timezone for ledger dates and displayed timestamps"
    )

    # Hot tokens
    hot_min_swaps: int = Field(
        default=6,
        description="Swaps a pool needs inside the window to be hot"
    )
    hot_min_unique: int = Field(
        default=3,
        description="Distinct swappers needed among those swaps"
    )
    hot_cooldown_seconds: int = Field(
        default=3600,
        description="Per-pool hot notification cooldown"
    )
    hot_check_interval_seconds: float = Field(
        default=60.0,
        description="Delay between hot token checks"
    )

    # Alerting
    telegram_bot_token: Optional[str] = Field(
        default=None,
        description="Telegram bot token"
    )
    discord_webhook_url: Optional[str] = Field(
        default=None,
        description="Discord webhook URL for alerts"
    )
    sinks_file: str = Field(
        default="config/sinks.yaml",
        description="YAML file describing notification sinks"
    )
    soon_pool_id: str = Field(
        default="021cda97a28df127f41e480ebede196f6f7d46dd6754feab7c228d8273dce6d39e",
        description="Pool whose swap alerts carry a photo"
    )
    soon_buy_photo_url: Optional[str] = Field(
        default="https://i.ibb.co/VsXVSdx/soongreen.jpg",
        description="Photo attached to SOON buy alerts"
    )
    soon_sell_photo_url: Optional[str] = Field(
        default="https://i.ibb.co/hRN5G3qn/Gemini-Generated-Image-rzyanmrzyanmrzya.png",
        description="Photo attached to SOON sell alerts"
    )
    daily_report_time: str = Field(
        default="23:55",
        description="Local time (HH:MM, display timezone) of the daily flow report"
    )
    report_sink: Optional[str] = Field(
        default="filtered",
        description="Sink name that receives daily flow reports"
    )

    # Management API
    api_host: str = Field(
        default="127.0.0.1",
        description="Management API bind host"
    )
    api_port: int = Field(
        default=8080,
        description="Management API bind port"
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Token required on mutating API requests"
    )
    api_cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed to call the management API from a browser"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# Global settings instance
settings = Settings()
