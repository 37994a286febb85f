"""Core Courier service layer.

This module provides the CourierService that wires storage, the delivery
queue and the outbound HTTP client into the dispatcher and worker.

Example:
    ```python
    from courier.service import CourierService

    async with CourierService.create() as courier:
        subscription = await courier.create_subscription(
            tenant_id="tnt_1",
            url="https://hooks.example.com/mail",
            event_filter=["message.delivered", "message.bounced"],
        )
        await courier.dispatch("tnt_1", "message.delivered", {"message_id": "msg_1"})
        await courier.worker.process_next()
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from courier.config import Settings
from courier.queue import RedisDeliveryQueue
from courier.storage import CourierStorage
from courier.webhooks import DeliveryWorker, Dispatcher, WorkerPool

from .deliveries import DeliveryOpsMixin
from .subscriptions import SubscriptionOpsMixin


@dataclass
class CourierService(SubscriptionOpsMixin, DeliveryOpsMixin):
    """High-level Courier service for subscriptions and event delivery.

    This service provides:
    - create/update/disable/rotate subscriptions
    - dispatch(): fan an event out to matching subscriptions
    - list_deliveries()/get_delivery(): read the delivery ledger
    - worker / pool(): process the delivery queue

    There is no global connection state: every collaborator is passed in
    (or built by ``create``) and released by ``close``.

    Attributes:
        storage: Qdrant storage for subscriptions, events and the ledger.
        queue: Redis delivery queue.
        http_client: Shared client for outbound deliveries.
        settings: Configuration settings.
    """

    storage: CourierStorage
    queue: RedisDeliveryQueue
    http_client: httpx.AsyncClient
    settings: Settings

    dispatcher: Dispatcher = field(init=False, repr=False)
    worker: DeliveryWorker = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the dispatcher and worker from the injected collaborators."""
        self.dispatcher = Dispatcher(self.storage, self.queue)
        self.worker = DeliveryWorker(self.storage, self.queue, self.http_client, self.settings)

    @classmethod
    def create(cls, settings: Settings | None = None) -> CourierService:
        """Create a CourierService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured CourierService instance (call ``initialize`` or use ``async with``).
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=CourierStorage(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
                max_scroll_limit=settings.storage_max_scroll_limit,
            ),
            queue=RedisDeliveryQueue.from_url(
                settings.redis_url,
                prefix=settings.queue_prefix,
                visibility_timeout=settings.visibility_timeout_seconds,
            ),
            http_client=httpx.AsyncClient(
                timeout=settings.delivery_timeout_seconds,
                follow_redirects=False,
            ),
            settings=settings,
        )

    def pool(self) -> WorkerPool:
        """Build a worker pool sized from settings."""
        return WorkerPool.from_settings(self.worker, self.queue, self.settings)

    async def initialize(self) -> None:
        """Initialize the service (storage collections, etc.)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Release the HTTP client, queue connection and storage client."""
        await self.http_client.aclose()
        await self.queue.close()
        await self.storage.close()

    async def __aenter__(self) -> CourierService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


__all__ = ["CourierService"]
