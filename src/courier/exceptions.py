"""Courier exception hierarchy.

Every error raised by Courier derives from CourierError and renders itself
as the JSON error body the management API returns.
"""

from __future__ import annotations


class CourierError(Exception):
    """Root of the Courier error tree.

    Attributes:
        message: Text shown to API callers and written to logs.
        code: Stable identifier used in the API error body.
    """

    code: str = "courier_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Render as the API error body."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(CourierError):
    """A subscription field or dispatch argument is malformed.

    Raised synchronously when a subscription write or a dispatch call
    carries bad input (URL, filter, backoff spec, payload).
    Nothing is enqueued when this is raised.

    Attributes:
        field: Name of the offending field.
        message: What is wrong with it.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Render as the API error body."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(CourierError):
    """Resource not found.

    Raised when a subscription, event or delivery does not exist for the
    requesting tenant.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
        resource_id: Identifier that was looked up.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Render as the API error body."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(CourierError):
    """Storage operation failed."""

    code: str = "storage_error"


class QueueError(CourierError):
    """Delivery queue operation failed."""

    code: str = "queue_error"


class ConfigurationError(CourierError):
    """Configuration error.

    Settings are inconsistent or a required value is missing.
    """

    code: str = "configuration_error"


class DeliveryError(CourierError):
    """A webhook delivery attempt did not succeed.

    Attributes:
        http_status: Response status code, or None for transport failures.
        retry_after: Seconds requested by the receiver via Retry-After, if any.
    """

    code: str = "delivery_error"

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.http_status = http_status
        self.retry_after = retry_after
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Render as the API error body."""
        return {
            "error": {
                "code": self.code,
                "http_status": self.http_status,
                "message": self.message,
            }
        }


class TransientDeliveryError(DeliveryError):
    """Retryable delivery failure.

    Timeouts, transport errors (DNS, TLS, connection refused), 5xx
    responses and configured-retryable 4xx responses.
    """

    code: str = "transient_delivery_error"


class PermanentDeliveryError(DeliveryError):
    """Non-retryable delivery failure.

    Any other non-2xx response, e.g. a receiver rejecting the signature.
    """

    code: str = "permanent_delivery_error"
