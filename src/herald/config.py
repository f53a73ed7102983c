"""Configuration management for Herald."""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Retry ceiling and backoff constants for durable deliveries.

    After the n-th failed attempt the next one is scheduled
    ``min(backoff_base_seconds * 2**n, backoff_max_seconds)`` seconds later,
    plus up to ``jitter_ratio`` of that delay at random.

    Attributes:
        max_attempts: Attempts before a record is marked exhausted.
        backoff_base_seconds: Base delay for the exponential schedule.
        backoff_max_seconds: Upper bound on the un-jittered delay.
        jitter_ratio: Fraction of the delay added as random jitter.
    """

    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum delivery attempts per record",
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=3600.0,
        description="Base delay for exponential backoff",
    )
    backoff_max_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Cap on the backoff delay before jitter",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Random jitter as a fraction of the delay",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "RetryPolicy":
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError(
                f"backoff_max_seconds ({self.backoff_max_seconds}) must be >= "
                f"backoff_base_seconds ({self.backoff_base_seconds})"
            )
        return self


class Settings(BaseSettings):
    """Herald configuration loaded from environment variables.

    All settings can be overridden with the HERALD_ prefix, for example:
        HERALD_QDRANT_URL=http://localhost:6333
        HERALD_RETRY__MAX_ATTEMPTS=8
        HERALD_DELIVERY_RETENTION=cascade
    """

    model_config = SettingsConfigDict(
        env_prefix="HERALD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="herald",
        description="Prefix for Qdrant collection names",
    )

    # Delivery
    retry: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Retry ceiling and backoff constants",
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=30.0,
        description="Timeout for a single outbound POST",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Upper bound on attempts in flight at once",
    )
    scheduler_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="How often the scheduler sweeps the store for due records",
    )
    response_excerpt_chars: int = Field(
        default=1000,
        ge=0,
        le=10000,
        description="Characters of the subscriber response kept per attempt",
    )
    user_agent: str = Field(
        default="Herald-Webhooks/0.1",
        description="User-Agent header on outbound deliveries",
    )

    # Retention
    delivery_retention: Literal["keep", "cascade"] = Field(
        default="keep",
        description=(
            "What happens to delivery records when their subscription is deleted: "
            "'keep' retains them for audit, 'cascade' deletes them"
        ),
    )

    # Statistics
    stats_default_window_days: int = Field(
        default=30,
        ge=1,
        le=366,
        description="Window used by stats reads when no dates are given",
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

    @model_validator(mode="after")
    def _warn_on_slow_first_retry(self) -> "Settings":
        if self.env == "production" and self.retry.max_attempts < 3:
            logger.warning(
                "Retry ceiling of %d attempts is low for production deliveries",
                self.retry.max_attempts,
            )
        return self


settings = Settings()
