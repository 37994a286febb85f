"""Subscription storage operations for Courier.

The subscription store owns create/update/disable/rotate for webhook
subscriptions and the lookup the dispatcher runs for every event.
Subscriptions are soft-disabled, never deleted.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import NotFoundError, ValidationError
from courier.models import Subscription, generate_secret, to_validation_error
from courier.storage.retry import storage_retry

if TYPE_CHECKING:
    from qdrant_client import models

logger = logging.getLogger(__name__)

# Fields a caller may change through update_subscription
UPDATABLE_FIELDS = frozenset(
    {
        "url",
        "event_filter",
        "status",
        "batch_size",
        "max_retries",
        "retry_backoff",
        "secret",
        "disabled_reason",
        "consecutive_failures",
    }
)


class SubscriptionMixin:
    """Mixin providing subscription operations for CourierStorage.

    This mixin expects the following attributes/methods from the base class:
    - _build_key(record_id, tenant_id) -> str
    - _upsert_record(record_type, key, record)
    - _retrieve_record(record_type, key, record_class)
    - _scroll_records(record_type, conditions, record_class, limit)
    - _match(key, value) -> FieldCondition
    """

    _build_key: Any
    _upsert_record: Any
    _retrieve_record: Any
    _scroll_records: Any
    _match: Any

    @storage_retry
    async def store_subscription(self, subscription: Subscription) -> str:
        """Write a subscription record.

        Args:
            subscription: Subscription to store.

        Returns:
            The subscription ID.
        """
        key = self._build_key(subscription.id, subscription.tenant_id)
        await self._upsert_record("subscriptions", key, subscription)
        return subscription.id

    async def create_subscription(
        self,
        tenant_id: str,
        url: str,
        event_filter: list[str] | None = None,
        secret: str | None = None,
        batch_size: int = 1,
        max_retries: int | None = None,
        retry_backoff: Any = None,
        status: str = "active",
    ) -> Subscription:
        """Validate and store a new subscription.

        Omitted optional fields take the model defaults (platform event
        catalog, generated secret, default retry policy).

        Raises:
            ValidationError: If any field fails validation.
        """
        fields: dict[str, Any] = {
            "tenant_id": tenant_id,
            "url": url,
            "batch_size": batch_size,
            "status": status,
        }
        if event_filter is not None:
            fields["event_filter"] = event_filter
        if secret is not None:
            fields["secret"] = secret
        if max_retries is not None:
            fields["max_retries"] = max_retries
        if retry_backoff is not None:
            fields["retry_backoff"] = retry_backoff

        try:
            subscription = Subscription.model_validate(fields)
        except PydanticValidationError as e:
            raise to_validation_error(e) from None

        await self.store_subscription(subscription)
        logger.info(
            "Subscription created: %s for tenant %s (%s)",
            subscription.id,
            tenant_id,
            ",".join(subscription.event_filter),
        )
        return subscription

    @storage_retry
    async def get_subscription(self, subscription_id: str, tenant_id: str) -> Subscription | None:
        """Get a subscription by ID within a tenant.

        Args:
            subscription_id: ID of the subscription.
            tenant_id: Owning tenant.

        Returns:
            Subscription or None if it doesn't exist for this tenant.
        """
        key = self._build_key(subscription_id, tenant_id)
        subscription: Subscription | None = await self._retrieve_record(
            "subscriptions", key, Subscription
        )
        return subscription

    async def require_subscription(self, subscription_id: str, tenant_id: str) -> Subscription:
        """Get a subscription or raise NotFoundError."""
        subscription = await self.get_subscription(subscription_id, tenant_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    @storage_retry
    async def list_subscriptions(
        self,
        tenant_id: str,
        active_only: bool = False,
        limit: int | None = None,
    ) -> list[Subscription]:
        """List a tenant's subscriptions, newest first.

        Args:
            tenant_id: Tenant to list subscriptions for.
            active_only: If True, only return active subscriptions.
            limit: Maximum subscriptions to return.
        """
        conditions: list[models.FieldCondition] = [self._match("tenant_id", tenant_id)]
        if active_only:
            conditions.append(self._match("status", "active"))

        subscriptions: list[Subscription] = await self._scroll_records(
            "subscriptions", conditions, Subscription, limit
        )
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    async def find_active_for_tenant_and_type(
        self,
        tenant_id: str,
        event_type: str,
    ) -> list[Subscription]:
        """Get the tenant's active subscriptions whose filter matches the event type.

        Tenant and status are filtered by the store's payload indexes;
        the event type is matched in-process.
        """
        subscriptions = await self.list_subscriptions(tenant_id, active_only=True)
        return [s for s in subscriptions if s.subscribes_to(event_type)]

    async def update_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        /,
        **updates: Any,
    ) -> Subscription:
        """Apply a partial update and re-validate the whole subscription.

        Re-activating a disabled subscription clears its failure counter
        and disabled reason.

        Raises:
            NotFoundError: If the subscription doesn't belong to the tenant.
            ValidationError: If an update is unknown or invalid.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise ValidationError(field, "field cannot be updated")

        current = await self.require_subscription(subscription_id, tenant_id)

        merged = current.model_dump()
        merged.update(updates)
        if updates.get("status") == "active" and current.status == "disabled":
            merged["disabled_reason"] = None
            merged["consecutive_failures"] = 0
        merged["updated_at"] = datetime.now(UTC)

        try:
            subscription = Subscription.model_validate(merged)
        except PydanticValidationError as e:
            raise to_validation_error(e) from None

        await self.store_subscription(subscription)
        return subscription

    async def disable_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        reason: str | None = None,
    ) -> Subscription:
        """Soft-disable a subscription. Queued retries are not touched here."""
        subscription = await self.update_subscription(
            subscription_id,
            tenant_id,
            status="disabled",
            disabled_reason=reason,
        )
        logger.info("Subscription disabled: %s (%s)", subscription_id, reason or "requested")
        return subscription

    async def rotate_secret(self, subscription_id: str, tenant_id: str) -> Subscription:
        """Replace the signing secret; the next attempt signs with the new one."""
        return await self.update_subscription(
            subscription_id,
            tenant_id,
            secret=generate_secret(),
        )

    async def record_delivery_result(
        self,
        subscription: Subscription,
        succeeded: bool,
        auto_disable_after: int | None = None,
    ) -> Subscription:
        """Track consecutive permanent failures for the auto-disable policy.

        The counter is a read-modify-write on one record; concurrent workers
        may undercount, which only delays auto-disable.

        Args:
            subscription: Subscription the lineage ended on.
            succeeded: True for a sent lineage, False for a permanent failure.
            auto_disable_after: Threshold, or None to never disable.

        Returns:
            The stored (possibly unchanged) subscription.
        """
        if succeeded:
            if subscription.consecutive_failures == 0:
                return subscription
            return await self.update_subscription(
                subscription.id, subscription.tenant_id, consecutive_failures=0
            )

        failures = subscription.consecutive_failures + 1
        updates: dict[str, Any] = {"consecutive_failures": failures}
        if (
            auto_disable_after is not None
            and subscription.is_active
            and failures >= auto_disable_after
        ):
            updates["status"] = "disabled"
            updates["disabled_reason"] = f"{failures} consecutive permanent delivery failures"
            logger.warning(
                "Auto-disabling subscription %s after %d consecutive failures",
                subscription.id,
                failures,
            )
        return await self.update_subscription(subscription.id, subscription.tenant_id, **updates)
