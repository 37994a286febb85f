"""Qdrant storage client for Courier.

This module provides the main CourierStorage class that combines
subscription, event and ledger operations through mixins.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        subscription = await storage.create_subscription(
            tenant_id="tnt_1",
            url="https://hooks.example.com/mail",
            event_filter=["message.delivered"],
        )
        matches = await storage.find_active_for_tenant_and_type("tnt_1", "message.delivered")
    ```
"""

from __future__ import annotations

from typing import Any

from .base import COLLECTION_NAMES, StorageBase
from .events import EventMixin
from .ledger import LedgerMixin
from .subscriptions import SubscriptionMixin


class CourierStorage(SubscriptionMixin, EventMixin, LedgerMixin, StorageBase):
    """Async Qdrant storage for subscriptions, events and the delivery ledger.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: create/update/disable/rotate, find_active_for_tenant_and_type
    - EventMixin: store_event, get_event
    - LedgerMixin: append_attempt, current_state, list_attempts,
      list_deliveries_for_subscription

    Attributes:
        client: Async Qdrant client instance.
    """

    async def __aenter__(self) -> CourierStorage:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


__all__ = [
    "CourierStorage",
    "COLLECTION_NAMES",
]
