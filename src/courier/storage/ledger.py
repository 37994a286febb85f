"""Delivery ledger operations for Courier.

The ledger is append-only: every step of a delivery lineage is its own row
and rows are never overwritten. The current state of a delivery is its
latest row, so concurrent workers only ever insert.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.models import DeliveryAttempt
from courier.storage.retry import storage_retry

if TYPE_CHECKING:
    from qdrant_client import models


class LedgerMixin:
    """Mixin providing delivery-ledger operations for CourierStorage.

    This mixin expects the following attributes/methods from the base class:
    - _build_key(record_id, tenant_id) -> str
    - _upsert_record(record_type, key, record)
    - _scroll_records(record_type, conditions, record_class, limit)
    - _match(key, value) -> FieldCondition
    """

    _build_key: Any
    _upsert_record: Any
    _scroll_records: Any
    _match: Any

    @storage_retry
    async def append_attempt(self, attempt: DeliveryAttempt) -> str:
        """Append a ledger row.

        Each row has its own ID, so two workers recording the same attempt
        produce two rows instead of clobbering each other.

        Args:
            attempt: DeliveryAttempt row to append.

        Returns:
            The row ID.
        """
        key = self._build_key(attempt.id, attempt.tenant_id)
        await self._upsert_record("delivery_attempts", key, attempt)
        return attempt.id

    @storage_retry
    async def list_attempts(
        self,
        delivery_id: str,
        tenant_id: str | None = None,
    ) -> list[DeliveryAttempt]:
        """Get every row of a delivery lineage in order (oldest first).

        Args:
            delivery_id: Lineage to read.
            tenant_id: Optional tenant filter for management reads.
        """
        conditions: list[models.FieldCondition] = [self._match("delivery_id", delivery_id)]
        if tenant_id is not None:
            conditions.append(self._match("tenant_id", tenant_id))

        rows: list[DeliveryAttempt] = await self._scroll_records(
            "delivery_attempts", conditions, DeliveryAttempt
        )
        rows.sort(key=lambda r: r.order_key())
        return rows

    async def current_state(
        self,
        delivery_id: str,
        tenant_id: str | None = None,
    ) -> DeliveryAttempt | None:
        """Get the row that decides a lineage's state, or None if it has none.

        A `sent` row settles the lineage even when a racing worker recorded a
        failure for the same attempt after it.
        """
        rows = await self.list_attempts(delivery_id, tenant_id)
        for row in rows:
            if row.status == "sent":
                return row
        return rows[-1] if rows else None

    @storage_retry
    async def list_deliveries_for_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        status: str | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttempt]:
        """Get ledger rows for a subscription, newest first.

        Args:
            subscription_id: Subscription to report on.
            tenant_id: Owning tenant.
            status: Optional row status filter.
            limit: Maximum rows to return.
        """
        conditions: list[models.FieldCondition] = [
            self._match("subscription_id", subscription_id),
            self._match("tenant_id", tenant_id),
        ]
        if status is not None:
            conditions.append(self._match("status", status))

        rows: list[DeliveryAttempt] = await self._scroll_records(
            "delivery_attempts", conditions, DeliveryAttempt
        )
        rows.sort(key=lambda r: (r.recorded_at, r.attempt_number), reverse=True)
        return rows[:limit]
