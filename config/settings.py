"""
Pydantic Settings Configuration
================================

All paper trader configuration is loaded from environment variables.
Put overrides in a local .env file.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """Main configuration settings loaded from environment."""

    # ==========================================
    # KRAKEN MARKET DATA
    # ==========================================
    kraken_base_url: str = Field(
        default="https://api.kraken.com",
        description="Kraken public REST API host"
    )
    kraken_pair: str = Field(
        default="XBTUSD",
        description="Trading pair used for candles and ticker"
    )
    candle_window_minutes: int = Field(
        default=15,
        description="Default candle granularity in minutes"
    )
    candle_history_limit: int = Field(
        default=100,
        description="Number of candles fetched on warmup"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for a single market data request"
    )

    # ==========================================
    # RUNNER
    # ==========================================
    poll_interval_seconds: float = Field(
        default=5.0,
        description="Delay between last-price polls"
    )
    summary_interval_seconds: float = Field(
        default=60.0,
        description="How often the running summary is logged"
    )
    market_window_minutes: int = Field(
        default=15,
        description="Length of one up/down market window"
    )
    market_slug_prefix: str = Field(
        default="btc-updown-15m",
        description="Slug prefix, the window start (epoch seconds) is appended"
    )

    # ==========================================
    # PAPER TRADE LOG
    # ==========================================
    paper_log_path: str = Field(
        default="./logs/paper_trades.csv",
        description="CSV file receiving one row per closed paper trade"
    )

    # ==========================================
    # LOGGING
    # ==========================================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_logs: bool = Field(
        default=False,
        description="Emit JSON log lines instead of console output"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional file receiving a copy of the logs"
    )

    # ==========================================
    # DASHBOARD
    # ==========================================
    dashboard_host: str = Field(
        default="0.0.0.0",
        description="Dashboard bind address"
    )
    dashboard_port: int = Field(
        default=8080,
        description="Dashboard port"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
