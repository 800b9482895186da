"""
Configuration management via environment variables.
All configuration with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Backend and ingestion configuration from environment variables."""

    # Kite Connect
    kite_api_key: str = field(default_factory=lambda: os.getenv("KITE_API_KEY", ""))
    kite_api_secret: str = field(
        default_factory=lambda: os.getenv("KITE_API_SECRET", "")
    )
    kite_access_token: str = field(
        default_factory=lambda: os.getenv("KITE_ACCESS_TOKEN", "")
    )

    # Supabase
    supabase_url: str = field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_service_key: str = field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    )

    # Groq
    groq_api_key: str = field(default_factory=lambda: os.getenv("GROQ_API_KEY", ""))
    groq_model: str = field(
        default_factory=lambda: os.getenv("GROQ_MODEL", "llama-3.1-70b-versatile")
    )

    # Web app
    app_url: str = field(
        default_factory=lambda: os.getenv(
            "APP_URL", os.getenv("NEXT_PUBLIC_APP_URL", "http://localhost:3000")
        )
    )

    # Spreadsheet inputs
    spreadsheet_path: str = field(
        default_factory=lambda: os.getenv("SPREADSHEET_PATH", "./symbols.csv")
    )
    top_symbols_excel_path: str = field(
        default_factory=lambda: os.getenv(
            "TOP_SYMBOLS_EXCEL_PATH", "./top_nse_1000_stocks.xlsx"
        )
    )

    # Historical fetch windows
    history_interval: str = field(
        default_factory=lambda: os.getenv("HISTORY_INTERVAL", "5minute")
    )
    history_days: int = field(
        default_factory=lambda: int(os.getenv("HISTORY_DAYS", "90"))
    )
    rolling_window_days: int = field(
        default_factory=lambda: int(os.getenv("ROLLING_WINDOW_DAYS", "20"))
    )
    swing_days: int = field(default_factory=lambda: int(os.getenv("SWING_DAYS", "30")))
    top_stocks_limit: int = field(
        default_factory=lambda: int(os.getenv("TOP_STOCKS_LIMIT", "1000"))
    )

    # Batching and pacing
    batch_size: int = field(default_factory=lambda: int(os.getenv("BATCH_SIZE", "50")))
    delay_between_batches_sec: float = field(
        default_factory=lambda: float(os.getenv("DELAY_BETWEEN_BATCHES_SEC", "2.0"))
    )
    delay_between_requests_sec: float = field(
        default_factory=lambda: float(os.getenv("DELAY_BETWEEN_REQUESTS_SEC", "0.1"))
    )
    max_requests_per_second: int = field(
        default_factory=lambda: int(os.getenv("MAX_REQUESTS_PER_SECOND", "2"))
    )
    rate_limit_backoff_sec: float = field(
        default_factory=lambda: float(os.getenv("RATE_LIMIT_BACKOFF_SEC", "10"))
    )
    insert_batch_size: int = field(
        default_factory=lambda: int(os.getenv("INSERT_BATCH_SIZE", "500"))
    )

    # F&O housekeeping
    fo_retention_days: int = field(
        default_factory=lambda: int(os.getenv("FO_RETENTION_DAYS", "90"))
    )

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def validate(self) -> None:
        """Validate configuration."""
        if self.batch_size <= 0:
            raise ValueError("Batch size must be positive")
        if self.insert_batch_size <= 0:
            raise ValueError("Insert batch size must be positive")
        if self.top_stocks_limit <= 0:
            raise ValueError("Top stocks limit must be positive")
        if self.max_requests_per_second <= 0:
            raise ValueError("Max requests per second must be positive")
        if min(self.history_days, self.rolling_window_days, self.swing_days) <= 0:
            raise ValueError("Fetch windows must be positive")
        if (
            self.delay_between_batches_sec < 0
            or self.delay_between_requests_sec < 0
            or self.rate_limit_backoff_sec < 0
        ):
            raise ValueError("Delays cannot be negative")


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = Config()
        _config.validate()
    return _config


def reset_config() -> None:
    """Reset config for testing."""
    global _config
    _config = None
