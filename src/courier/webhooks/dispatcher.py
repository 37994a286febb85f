"""Event dispatcher: turns one platform event into delivery lineages.

The dispatcher never talks to subscriber endpoints. It resolves the
tenant's matching subscriptions, stores the event once, writes the first
ledger row of each lineage and enqueues one task per match.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import ValidationError
from courier.logging import get_logger
from courier.models import (
    DeliveryAttempt,
    DeliveryTask,
    Event,
    normalize_event_type,
    to_validation_error,
)

if TYPE_CHECKING:
    from courier.queue import RedisDeliveryQueue
    from courier.storage import CourierStorage

logger = get_logger(__name__)


def _validate_payload(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("payload", "must be a JSON object")
    try:
        json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationError("payload", f"must be JSON-serializable: {e}") from None
    return payload


class Dispatcher:
    """Fans events out to the subscriptions that want them.

    Example:
        ```python
        dispatcher = Dispatcher(storage, queue)
        await dispatcher.dispatch(
            "tnt_1",
            "message.delivered",
            {"message_id": "msg_1", "recipient": "a@example.com"},
        )
        ```
    """

    def __init__(self, storage: CourierStorage, queue: RedisDeliveryQueue) -> None:
        """Initialize the dispatcher.

        Args:
            storage: Storage for subscriptions, events and the ledger.
            queue: Delivery queue tasks are pushed to.
        """
        self._storage = storage
        self._queue = queue

    async def dispatch(
        self,
        tenant_id: str,
        event_type: str,
        payload: dict[str, Any],
        related_id: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Enqueue one delivery per active subscription matching the event.

        Returns without waiting on any subscriber. Zero matches is a no-op.
        Every call starts new lineages, so dispatching the same payload twice
        delivers it twice.

        Args:
            tenant_id: Tenant the event belongs to.
            event_type: Event-type tag, e.g. ``dmarc.processed``.
            payload: JSON object describing the event.
            related_id: Optional id of the platform record behind the event.
            now: Override for the event and task timestamps.

        Raises:
            ValidationError: If the tenant, type or payload is malformed.
        """
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError("tenant_id", "must be a non-empty string")
        try:
            event_type = normalize_event_type(event_type)
        except ValueError as e:
            raise ValidationError("event_type", str(e)) from None
        payload = _validate_payload(payload)

        subscriptions = await self._storage.find_active_for_tenant_and_type(tenant_id, event_type)
        if not subscriptions:
            logger.debug("No subscriptions for event", tenant_id=tenant_id, event_type=event_type)
            return

        timestamp = now or datetime.now(UTC)
        try:
            event = Event(
                tenant_id=tenant_id,
                type=event_type,
                payload=payload,
                related_id=related_id,
                created_at=timestamp,
            )
        except PydanticValidationError as e:
            raise to_validation_error(e) from None

        await self._storage.store_event(event)

        for subscription in subscriptions:
            task = DeliveryTask(
                subscription_id=subscription.id,
                event=event,
                attempt=1,
                enqueued_at=timestamp,
                not_before=timestamp,
            )
            await self._storage.append_attempt(DeliveryAttempt.for_pending(task, 1))
            await self._queue.push(task)

        logger.info(
            "Event dispatched",
            tenant_id=tenant_id,
            event_id=event.id,
            event_type=event_type,
            lineages=len(subscriptions),
        )


__all__ = ["Dispatcher"]
