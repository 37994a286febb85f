"""Domain events handed to the dispatcher by the rest of the platform."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import generate_id
from .subscription import normalize_event_type


class Event(BaseModel):
    """An immutable fact produced by the platform.

    Attributes:
        id: Unique identifier (``evt_`` prefix).
        tenant_id: Tenant the event belongs to.
        type: Event-type tag, e.g. ``message.delivered``.
        payload: Event-specific data.
        created_at: When the event occurred.
        related_id: Optional id of the platform record that caused the event.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("evt"))
    tenant_id: str = Field(min_length=1)
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    related_id: str | None = Field(default=None)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        return normalize_event_type(value)

    def to_wire(self) -> dict[str, Any]:
        """Render the event as it is sent to subscribers."""
        return {
            "id": self.id,
            "type": self.type,
            "tenantId": self.tenant_id,
            "payload": self.payload,
            "createdAt": self.created_at.isoformat(),
        }


__all__ = ["Event"]
