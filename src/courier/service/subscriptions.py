"""Subscription management mixin for CourierService.

Applies platform defaults and limits on top of the storage-level
validation before subscriptions are written.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.exceptions import ValidationError
from courier.logging import get_logger
from courier.models import Subscription, parse_backoff

if TYPE_CHECKING:
    from courier.config import Settings
    from courier.storage import CourierStorage

logger = get_logger(__name__)


class SubscriptionOpsMixin:
    """Mixin providing subscription management.

    Expects these attributes from the base class:
    - storage: CourierStorage
    - settings: Settings
    """

    storage: CourierStorage
    settings: Settings

    def _check_batch_size(self, batch_size: Any) -> None:
        if isinstance(batch_size, int) and batch_size > self.settings.max_batch_size:
            raise ValidationError(
                "batch_size", f"must be <= {self.settings.max_batch_size}, got {batch_size}"
            )

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
        """Register a webhook subscription for a tenant.

        Args:
            tenant_id: Owning tenant.
            url: HTTP(S) endpoint to deliver to.
            event_filter: Event types to receive. Defaults to the platform catalog.
            secret: Signing secret. Generated when omitted.
            batch_size: Events coalesced into one call.
            max_retries: Retries after the first attempt. Defaults from settings.
            retry_backoff: Policy object, mapping or string like ``exponential:2,60,3600``.
            status: Initial status.

        Returns:
            The stored subscription, including its secret.

        Raises:
            ValidationError: If any field is invalid.
        """
        self._check_batch_size(batch_size)
        policy = parse_backoff(
            retry_backoff if retry_backoff is not None else self.settings.default_retry_backoff
        )

        return await self.storage.create_subscription(
            tenant_id=tenant_id,
            url=url,
            event_filter=(
                event_filter if event_filter is not None else list(self.settings.default_event_types)
            ),
            secret=secret,
            batch_size=batch_size,
            max_retries=max_retries if max_retries is not None else self.settings.default_max_retries,
            retry_backoff=policy,
            status=status,
        )

    async def get_subscription(self, subscription_id: str, tenant_id: str) -> Subscription:
        """Get a subscription, raising NotFoundError if the tenant doesn't own it."""
        return await self.storage.require_subscription(subscription_id, tenant_id)

    async def list_subscriptions(
        self,
        tenant_id: str,
        active_only: bool = False,
    ) -> list[Subscription]:
        return await self.storage.list_subscriptions(tenant_id, active_only=active_only)

    async def update_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        /,
        **updates: Any,
    ) -> Subscription:
        """Apply a partial update.

        ``None`` values are ignored so API payloads can pass every optional
        field through unchanged.

        Raises:
            NotFoundError: If the subscription doesn't belong to the tenant.
            ValidationError: If an update is invalid.
        """
        changes = {k: v for k, v in updates.items() if v is not None}
        if "batch_size" in changes:
            self._check_batch_size(changes["batch_size"])
        if "retry_backoff" in changes:
            changes["retry_backoff"] = parse_backoff(changes["retry_backoff"])

        subscription = await self.storage.update_subscription(
            subscription_id, tenant_id, **changes
        )
        logger.info(
            "Subscription updated",
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            fields=sorted(changes),
        )
        return subscription

    async def disable_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        reason: str | None = None,
    ) -> Subscription:
        """Soft-disable a subscription; it stops receiving new events.

        Retries already queued keep running unless
        ``cancel_retries_on_disable`` is set.
        """
        return await self.storage.disable_subscription(subscription_id, tenant_id, reason)

    async def rotate_secret(self, subscription_id: str, tenant_id: str) -> Subscription:
        """Generate a new signing secret for the subscription."""
        subscription = await self.storage.rotate_secret(subscription_id, tenant_id)
        logger.info(
            "Subscription secret rotated",
            tenant_id=tenant_id,
            subscription_id=subscription_id,
        )
        return subscription
