"""Dispatch and delivery-history mixin for CourierService."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from courier.exceptions import NotFoundError

if TYPE_CHECKING:
    from courier.models import DeliveryAttempt
    from courier.storage import CourierStorage
    from courier.webhooks import Dispatcher


class DeliveryOpsMixin:
    """Mixin providing event dispatch and ledger reads.

    Expects these attributes from the base class:
    - storage: CourierStorage
    - dispatcher: Dispatcher
    """

    storage: CourierStorage
    dispatcher: Dispatcher

    async def dispatch(
        self,
        tenant_id: str,
        event_type: str,
        payload: dict[str, Any],
        related_id: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Hand an event to the dispatcher. See Dispatcher.dispatch."""
        await self.dispatcher.dispatch(tenant_id, event_type, payload, related_id, now=now)

    async def list_deliveries(
        self,
        subscription_id: str,
        tenant_id: str,
        status: str | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttempt]:
        """Get ledger rows for one of the tenant's subscriptions, newest first.

        Raises:
            NotFoundError: If the subscription doesn't belong to the tenant.
        """
        await self.storage.require_subscription(subscription_id, tenant_id)
        return await self.storage.list_deliveries_for_subscription(
            subscription_id, tenant_id, status=status, limit=limit
        )

    async def get_delivery(self, delivery_id: str, tenant_id: str) -> list[DeliveryAttempt]:
        """Get every row of a delivery lineage, oldest first.

        Raises:
            NotFoundError: If the tenant has no such lineage.
        """
        rows = await self.storage.list_attempts(delivery_id, tenant_id)
        if not rows:
            raise NotFoundError("delivery", delivery_id)
        return rows
