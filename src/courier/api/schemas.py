"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from courier.models import DeliveryAttempt, Subscription


class SubscriptionCreateRequest(BaseModel):
    """Request body for registering a webhook subscription.

    Field values are validated by the subscription model so that bad URLs,
    filters and backoff specs come back as 400 validation errors.

    Attributes:
        url: HTTP(S) endpoint to deliver events to.
        event_filter: Event types to receive (default: platform catalog).
        secret: Signing secret (generated if omitted).
        batch_size: Events coalesced into one delivery call.
        max_retries: Retries after the first attempt.
        retry_backoff: Backoff policy, e.g. "exponential:2,60,3600" or {"kind": "fixed", "delay": 30}.
        status: Initial status.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1, description="HTTP(S) endpoint to receive events")
    event_filter: list[str] | None = Field(default=None, description="Event types to receive")
    secret: str | None = Field(default=None, description="Signing secret (generated if omitted)")
    batch_size: int = Field(default=1, description="Events per delivery call")
    max_retries: int | None = Field(default=None, description="Retries after the first attempt")
    retry_backoff: str | dict[str, Any] | None = Field(
        default=None, description="Backoff policy string or object"
    )
    status: Literal["active", "disabled"] = Field(default="active")


class SubscriptionUpdateRequest(BaseModel):
    """Request body for a partial subscription update.

    Attributes:
        rotate_secret: Generate a new secret; the response carries it.
    """

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    event_filter: list[str] | None = None
    batch_size: int | None = None
    max_retries: int | None = None
    retry_backoff: str | dict[str, Any] | None = None
    status: Literal["active", "disabled"] | None = None
    rotate_secret: bool = Field(default=False, description="Generate a new signing secret")


class SubscriptionResponse(BaseModel):
    """A subscription as returned by the API.

    ``secret`` is only present on creation and rotation responses.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    tenant_id: str
    url: str
    event_filter: list[str]
    status: Literal["active", "disabled"]
    batch_size: int
    max_retries: int
    retry_backoff: str
    consecutive_failures: int
    disabled_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    secret: str | None = None

    @classmethod
    def from_subscription(
        cls,
        subscription: Subscription,
        include_secret: bool = False,
    ) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            tenant_id=subscription.tenant_id,
            url=str(subscription.url),
            event_filter=subscription.event_filter,
            status=subscription.status,
            batch_size=subscription.batch_size,
            max_retries=subscription.max_retries,
            retry_backoff=subscription.retry_backoff.to_spec(),
            consecutive_failures=subscription.consecutive_failures,
            disabled_reason=subscription.disabled_reason,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
            secret=subscription.secret if include_secret else None,
        )


class SubscriptionListResponse(BaseModel):
    """Response for listing a tenant's subscriptions."""

    model_config = ConfigDict(extra="forbid")

    subscriptions: list[SubscriptionResponse]
    count: int


class DeliveryAttemptResponse(BaseModel):
    """One ledger row."""

    model_config = ConfigDict(extra="forbid")

    id: str
    delivery_id: str
    subscription_id: str
    event_id: str
    attempt_number: int
    status: Literal["pending", "sent", "failed_retryable", "failed_permanent"]
    http_status: int | None = None
    scheduled_at: datetime
    sent_at: datetime | None = None
    error: str | None = None
    duration_ms: int | None = None
    recorded_at: datetime

    @classmethod
    def from_attempt(cls, attempt: DeliveryAttempt) -> DeliveryAttemptResponse:
        return cls(**attempt.model_dump(exclude={"tenant_id"}))


class DeliveryListResponse(BaseModel):
    """Response for a subscription's delivery history."""

    model_config = ConfigDict(extra="forbid")

    subscription_id: str
    attempts: list[DeliveryAttemptResponse]
    count: int


class DeliveryDetailResponse(BaseModel):
    """Response for one delivery lineage.

    Attributes:
        delivery_id: Lineage identifier (also sent as X-Courier-Delivery-Id).
        status: Status of the latest row.
        attempts: Every row of the lineage, oldest first.
    """

    model_config = ConfigDict(extra="forbid")

    delivery_id: str
    subscription_id: str
    event_id: str
    status: Literal["pending", "sent", "failed_retryable", "failed_permanent"]
    attempts: list[DeliveryAttemptResponse]


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, degraded, unhealthy).
        version: API version.
        storage_connected: Whether storage is connected.
        queue_connected: Whether the delivery queue answers.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
    queue_connected: bool
