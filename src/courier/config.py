"""Configuration management for Courier."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from courier.models.backoff import coerce_backoff
from courier.models.subscription import DEFAULT_EVENT_TYPES, MAX_BATCH_SIZE, MAX_RETRIES_LIMIT

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_QDRANT_URL=http://localhost:6333
        COURIER_REDIS_URL=redis://localhost:6379/0
        COURIER_WORKER_CONCURRENCY=16
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL (':memory:' for an in-process store)",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="courier",
        description="Prefix for Qdrant collection names",
    )
    storage_max_scroll_limit: int = Field(
        default=10000,
        ge=100,
        le=100000,
        description="Maximum records fetched by a single scroll (subscription and ledger reads)",
    )

    # Delivery queue
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the delivery queue",
    )
    queue_prefix: str = Field(
        default="webhooks:deliveries",
        description="Key prefix for delivery queue structures in Redis",
    )

    # Worker pool
    worker_concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Concurrent claim loops per worker process",
    )
    delivery_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for one outbound HTTP call (expiry is a retryable failure)",
    )
    visibility_overhead_seconds: float = Field(
        default=15.0,
        description=(
            "Slack added to the request timeout before a claimed task is considered "
            "abandoned and handed to another worker"
        ),
    )
    batch_linger_seconds: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Longest a worker waits to fill a batch for batch_size > 1 subscriptions",
    )
    claim_poll_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        le=30,
        description="Sleep between empty queue polls",
    )
    reclaim_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="How often expired claims are returned to the ready set",
    )
    retryable_status_codes: list[int] = Field(
        default_factory=lambda: [408, 425, 429],
        description="4xx responses treated as retryable (5xx are always retryable)",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Maximum random jitter added to a retry delay, as a fraction of it",
    )
    user_agent: str = Field(
        default="Courier-Webhooks/0.1",
        description="User-Agent header on outbound deliveries",
    )

    # Subscription defaults and limits
    default_event_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EVENT_TYPES),
        description="Event filter applied when a subscription is created without one",
    )
    default_max_retries: int = Field(
        default=5,
        ge=0,
        le=MAX_RETRIES_LIMIT,
        description="Retries allowed when a subscription doesn't specify max_retries",
    )
    default_retry_backoff: str = Field(
        default="exponential:2,60,3600",
        description="Backoff policy used when a subscription doesn't specify one",
    )
    max_batch_size: int = Field(
        default=MAX_BATCH_SIZE,
        ge=1,
        le=MAX_BATCH_SIZE,
        description="Largest batch_size a subscription may request",
    )

    # Delivery policies
    cancel_retries_on_disable: bool = Field(
        default=False,
        description=(
            "Abandon queued retries of a disabled subscription. "
            "By default disabling only stops future dispatch."
        ),
    )
    auto_disable_after_failures: int | None = Field(
        default=None,
        description=(
            "Disable a subscription after this many consecutive permanent failures. "
            "Off when unset."
        ),
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

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )
    cors_allow_credentials: bool = Field(
        default=False,
        description="Allow credentials in CORS requests",
    )
    cors_max_age: int = Field(
        default=600,
        ge=0,
        le=86400,
        description="Max age (seconds) for CORS preflight cache",
    )

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_delivery_settings(self) -> "Settings":
        """Validate cross-field delivery settings.

        - Claims must outlive the request timeout, so overhead is positive
        - Only 4xx codes can be configured as retryable
        - The auto-disable threshold, when set, is at least 1
        - The default backoff must parse
        """
        if self.visibility_overhead_seconds <= 0:
            raise ValueError(
                f"visibility_overhead_seconds ({self.visibility_overhead_seconds}) must be positive"
            )

        bad_codes = [code for code in self.retryable_status_codes if not 400 <= code <= 499]
        if bad_codes:
            raise ValueError(f"retryable_status_codes must be 4xx codes, got {bad_codes}")

        if self.auto_disable_after_failures is not None and self.auto_disable_after_failures < 1:
            raise ValueError("auto_disable_after_failures must be >= 1 when set")

        try:
            coerce_backoff(self.default_retry_backoff)
        except ValueError as e:
            raise ValueError(f"default_retry_backoff is invalid: {e}") from None

        if self.env == "production" and self.qdrant_url == ":memory:":
            logger.warning("In-memory Qdrant configured in production - ledger is not durable")

        return self

    @property
    def visibility_timeout_seconds(self) -> float:
        """How long a claimed task stays invisible to other workers."""
        return (
            self.delivery_timeout_seconds
            + self.batch_linger_seconds
            + self.visibility_overhead_seconds
        )


# Global settings instance
settings = Settings()
