"""Webhook subscription model.

A subscription is one tenant's registered callback: where to POST, how to
sign, which event types to receive and how to retry.
"""

from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .backoff import DEFAULT_BACKOFF, BackoffPolicy, coerce_backoff
from .base import generate_id

SubscriptionStatus = Literal["active", "disabled"]

# Event catalog produced by the rest of the platform
DEFAULT_EVENT_TYPES: list[str] = [
    "message.delivered",
    "message.bounced",
    "tlsrpt.received",
    "dmarc.processed",
    "reputation.sampled",
]

# Explicit "all events" tag; only valid on its own
WILDCARD = "*"

EVENT_TYPE_PATTERN = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")

MAX_BATCH_SIZE = 100
MAX_RETRIES_LIMIT = 25


def generate_secret() -> str:
    """Generate a new signing secret (64 hex characters)."""
    return secrets.token_hex(32)


def normalize_event_type(value: Any) -> str:
    """Validate and canonicalize one event-type tag.

    Raises:
        ValueError: If the tag is not a dotted lowercase identifier.
    """
    if not isinstance(value, str):
        raise ValueError(f"event type must be a string, got {type(value).__name__}")
    tag = value.strip()
    if not EVENT_TYPE_PATTERN.fullmatch(tag):
        raise ValueError(f"invalid event type {value!r}")
    return tag


def normalize_event_filter(values: Any) -> list[str]:
    """Canonicalize an event filter into a sorted list of unique tags.

    The wildcard ``*`` is accepted only as the sole entry. Empty filters,
    bare strings and non-string entries are rejected rather than guessed at.
    """
    if isinstance(values, str) or not isinstance(values, list | tuple | set | frozenset):
        raise ValueError("event filter must be a list of event types")
    if not values:
        raise ValueError("event filter must name at least one event type")

    stripped = [v.strip() if isinstance(v, str) else v for v in values]
    if WILDCARD in stripped:
        if len(set(stripped)) != 1:
            raise ValueError("wildcard '*' cannot be combined with other event types")
        return [WILDCARD]

    return sorted({normalize_event_type(v) for v in stripped})


class Subscription(BaseModel):
    """A tenant's webhook endpoint plus its filter and retry policy.

    Attributes:
        id: Unique identifier (``whk_`` prefix).
        tenant_id: Owning tenant.
        url: Absolute HTTP(S) endpoint receiving deliveries.
        secret: Shared secret for HMAC-SHA256 signatures.
        event_filter: Canonical event-type tags, or ``["*"]`` for all.
        status: ``active`` or ``disabled``; disabled subscriptions get no new tasks.
        batch_size: Events that may be coalesced into one delivery body.
        max_retries: Retries allowed after the first attempt.
        retry_backoff: Tagged backoff policy.
        consecutive_failures: Permanent failures since the last success.
        disabled_reason: Why the subscription was disabled, if it was.
        created_at: When the subscription was registered.
        updated_at: When the subscription was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    tenant_id: str = Field(min_length=1, description="Owning tenant")
    url: HttpUrl = Field(description="HTTP(S) endpoint to receive events")
    secret: str = Field(
        default_factory=generate_secret,
        min_length=16,
        description="Shared secret for HMAC-SHA256 signatures",
    )
    event_filter: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EVENT_TYPES),
        validate_default=True,
        description="Event types this subscription receives",
    )
    status: SubscriptionStatus = Field(default="active")
    batch_size: int = Field(default=1, ge=1, le=MAX_BATCH_SIZE)
    max_retries: int = Field(default=5, ge=0, le=MAX_RETRIES_LIMIT)
    retry_backoff: BackoffPolicy = Field(default=DEFAULT_BACKOFF)
    consecutive_failures: int = Field(default=0, ge=0)
    disabled_reason: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            scheme = value.split(":", 1)[0].lower()
            if scheme not in ("http", "https"):
                raise ValueError("url must use http or https")
        return value

    @field_validator("event_filter", mode="before")
    @classmethod
    def _normalize_filter(cls, value: Any) -> list[str]:
        return normalize_event_filter(value)

    @field_validator("retry_backoff", mode="before")
    @classmethod
    def _parse_backoff(cls, value: Any) -> Any:
        return coerce_backoff(value)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def matches(self, event_type: str) -> bool:
        """Check whether ``event_type`` passes this subscription's filter."""
        return WILDCARD in self.event_filter or event_type in self.event_filter

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this subscription is active and wants the event type."""
        return self.is_active and self.matches(event_type)


__all__ = [
    "DEFAULT_EVENT_TYPES",
    "EVENT_TYPE_PATTERN",
    "MAX_BATCH_SIZE",
    "MAX_RETRIES_LIMIT",
    "WILDCARD",
    "Subscription",
    "SubscriptionStatus",
    "generate_secret",
    "normalize_event_filter",
    "normalize_event_type",
]
