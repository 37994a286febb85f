"""Event storage operations for Courier."""

from __future__ import annotations

from typing import Any

from courier.models import Event
from courier.storage.retry import storage_retry


class EventMixin:
    """Mixin providing event operations for CourierStorage.

    Events are written once by the dispatcher and never mutated.
    """

    _build_key: Any
    _upsert_record: Any
    _retrieve_record: Any

    @storage_retry
    async def store_event(self, event: Event) -> str:
        """Materialize an event record.

        Args:
            event: Event to store.

        Returns:
            The event ID.
        """
        key = self._build_key(event.id, event.tenant_id)
        await self._upsert_record("events", key, event)
        return event.id

    @storage_retry
    async def get_event(self, event_id: str, tenant_id: str) -> Event | None:
        """Get an event by ID within a tenant."""
        key = self._build_key(event_id, tenant_id)
        event: Event | None = await self._retrieve_record("events", key, Event)
        return event
