"""Configuration management for Hookline."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS_SECONDS: tuple[int, ...] = (30, 60, 300, 900, 3600)


class Settings(BaseSettings):
    """Hookline configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKLINE_ prefix. For example:
        HOOKLINE_RETRY_SCAN_INTERVAL_SECONDS=10
        HOOKLINE_RETRY_DELAYS_SECONDS='[5, 10, 20]'
        HOOKLINE_LOG_FORMAT=text
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Retry scheduling
    retry_delays_seconds: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_DELAYS_SECONDS),
        description=(
            "Backoff table indexed by zero-based attempt count. "
            "Attempts beyond the table reuse the last entry."
        ),
    )
    retry_scan_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How often the retry queue is scanned for due deliveries",
    )

    # History
    cleanup_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How often old deliveries are evicted",
    )
    delivery_retention_hours: float = Field(
        default=24.0,
        gt=0,
        description="Deliveries older than this are evicted unless still retrying",
    )

    # Delivery defaults
    default_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="HTTP timeout for webhooks that don't set their own",
    )
    default_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum delivery attempts for webhooks that don't set their own",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Maximum HTTP attempts in flight at once",
    )
    user_agent: str = Field(
        default="Hookline-Webhook/1.0",
        description="User-Agent header sent with every delivery",
    )
    envelope_version: str = Field(
        default="1.0.0",
        description="Version tag written into envelope metadata",
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        description="Response bodies longer than this are truncated in attempt records",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    model_config = {
        "env_prefix": "HOOKLINE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "Settings":
        """Reject an empty or non-positive backoff table.

        Delays must also be non-decreasing so that successive retries of a
        delivery never come sooner than the previous one.
        """
        delays = self.retry_delays_seconds
        if not delays:
            raise ValueError("retry_delays_seconds must contain at least one delay")
        if any(delay <= 0 for delay in delays):
            raise ValueError(f"retry_delays_seconds must be positive, got {delays}")
        if any(later < earlier for earlier, later in zip(delays, delays[1:], strict=False)):
            raise ValueError(f"retry_delays_seconds must be non-decreasing, got {delays}")
        if self.env == "production" and self.log_format == "text":
            logger.warning("Text log format in production; JSON is recommended for ingestion")
        return self


# Global settings instance
settings = Settings()
