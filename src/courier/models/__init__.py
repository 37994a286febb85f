"""Data models for Courier.

Models:
    - Subscription: A tenant's webhook endpoint, filter and retry policy
    - Event: Immutable platform event handed to the dispatcher
    - DeliveryTask: Queue message for one send of one event to one subscription
    - DeliveryAttempt: Append-only ledger row for one step of a delivery lineage

Backoff:
    - FixedBackoff, ExponentialBackoff: Tagged retry policies
    - parse_backoff, next_delay: Policy parsing and delay computation
"""

from .backoff import (
    DEFAULT_BACKOFF,
    BackoffPolicy,
    ExponentialBackoff,
    FixedBackoff,
    coerce_backoff,
    next_delay,
    parse_backoff,
)
from .base import generate_id, to_validation_error
from .delivery import TERMINAL_STATUSES, AttemptStatus, DeliveryAttempt, DeliveryTask
from .event import Event
from .subscription import (
    DEFAULT_EVENT_TYPES,
    WILDCARD,
    Subscription,
    SubscriptionStatus,
    generate_secret,
    normalize_event_filter,
    normalize_event_type,
)

__all__ = [
    # Base
    "generate_id",
    "to_validation_error",
    # Backoff
    "DEFAULT_BACKOFF",
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "coerce_backoff",
    "next_delay",
    "parse_backoff",
    # Subscriptions
    "DEFAULT_EVENT_TYPES",
    "WILDCARD",
    "Subscription",
    "SubscriptionStatus",
    "generate_secret",
    "normalize_event_filter",
    "normalize_event_type",
    # Events and deliveries
    "Event",
    "TERMINAL_STATUSES",
    "AttemptStatus",
    "DeliveryAttempt",
    "DeliveryTask",
]
