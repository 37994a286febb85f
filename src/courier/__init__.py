"""Courier: webhook event delivery for a multi-tenant mail platform.

Turns platform events into signed, retried HTTP deliveries to
tenant-registered endpoints, with an append-only delivery ledger.

Quick Start:
    from courier.service import CourierService

    async with CourierService.create() as courier:
        await courier.create_subscription(
            tenant_id="tnt_1",
            url="https://hooks.example.com/mail",
            event_filter=["message.delivered"],
        )
        await courier.dispatch("tnt_1", "message.delivered", {"message_id": "msg_1"})

Run the worker pool with ``python -m courier``.
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    CourierError,
    DeliveryError,
    NotFoundError,
    PermanentDeliveryError,
    QueueError,
    StorageError,
    TransientDeliveryError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    DeliveryTask,
    Event,
    ExponentialBackoff,
    FixedBackoff,
    Subscription,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "QueueError",
    "ConfigurationError",
    "DeliveryError",
    "TransientDeliveryError",
    "PermanentDeliveryError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "Subscription",
    "Event",
    "DeliveryTask",
    "DeliveryAttempt",
    "FixedBackoff",
    "ExponentialBackoff",
]
