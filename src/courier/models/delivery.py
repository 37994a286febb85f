"""Delivery tasks (queue messages) and delivery attempts (ledger rows)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id
from .event import Event

AttemptStatus = Literal["pending", "sent", "failed_retryable", "failed_permanent"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"sent", "failed_permanent"})

# Order of rows within one attempt
STATUS_RANK = {"pending": 0, "failed_retryable": 1, "failed_permanent": 1, "sent": 2}

# Error strings are truncated before they reach the ledger
MAX_ERROR_LENGTH = 1000


class DeliveryTask(BaseModel):
    """One queued send of one event to one subscription.

    ``delivery_id`` is fixed on first enqueue and shared by every retry of
    the same (subscription, event) pair; receivers can dedup on it.
    ``task_id`` identifies this particular queue message.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    task_id: str = Field(default_factory=lambda: generate_id("tsk"))
    subscription_id: str
    event: Event
    attempt: int = Field(default=1, ge=1)
    delivery_id: str = Field(default_factory=lambda: generate_id("dlv"))
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    not_before: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def tenant_id(self) -> str:
        return self.event.tenant_id

    def retry(self, not_before: datetime, attempt: int | None = None) -> DeliveryTask:
        """Build the follow-up task for the next attempt of this lineage.

        Args:
            not_before: Earliest time the retry may run.
            attempt: Attempt that just failed; defaults to this task's attempt.
        """
        failed = attempt if attempt is not None else self.attempt
        return DeliveryTask(
            subscription_id=self.subscription_id,
            event=self.event,
            attempt=failed + 1,
            delivery_id=self.delivery_id,
            not_before=not_before,
        )


class DeliveryAttempt(BaseModel):
    """Append-only ledger row recording one step of a delivery lineage.

    Attributes:
        id: Unique row identifier (``att_`` prefix).
        delivery_id: Lineage this row belongs to.
        subscription_id: Target subscription.
        event_id: Event being delivered.
        tenant_id: Owning tenant.
        attempt_number: 1-based attempt number.
        status: pending, sent, failed_retryable or failed_permanent.
        http_status: Response status code, if one was received.
        scheduled_at: When the attempt became eligible to run.
        sent_at: When the HTTP call completed.
        error: Failure description (truncated).
        duration_ms: Duration of the HTTP call.
        recorded_at: When this row was written.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("att"))
    delivery_id: str
    subscription_id: str
    event_id: str
    tenant_id: str
    attempt_number: int = Field(ge=1)
    status: AttemptStatus
    http_status: int | None = None
    scheduled_at: datetime
    sent_at: datetime | None = None
    error: str | None = None
    duration_ms: int | None = Field(default=None, ge=0)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def order_key(self) -> tuple[int, int, datetime]:
        """Sort key placing the latest step of a lineage last.

        Within one attempt the outcome row always follows its pending row,
        even if both were recorded within the same clock tick, and `sent`
        ranks after any failure row of the same attempt.
        """
        return (self.attempt_number, STATUS_RANK[self.status], self.recorded_at)

    @classmethod
    def for_pending(
        cls,
        task: DeliveryTask,
        attempt_number: int,
        scheduled_at: datetime | None = None,
    ) -> DeliveryAttempt:
        """Row written before an attempt's network call."""
        return cls(
            delivery_id=task.delivery_id,
            subscription_id=task.subscription_id,
            event_id=task.event.id,
            tenant_id=task.tenant_id,
            attempt_number=attempt_number,
            status="pending",
            scheduled_at=scheduled_at or task.not_before,
        )

    @classmethod
    def for_outcome(
        cls,
        task: DeliveryTask,
        attempt_number: int,
        status: AttemptStatus,
        scheduled_at: datetime,
        http_status: int | None = None,
        error: str | None = None,
        sent_at: datetime | None = None,
        duration_ms: int | None = None,
    ) -> DeliveryAttempt:
        """Row recording how an attempt ended."""
        return cls(
            delivery_id=task.delivery_id,
            subscription_id=task.subscription_id,
            event_id=task.event.id,
            tenant_id=task.tenant_id,
            attempt_number=attempt_number,
            status=status,
            http_status=http_status,
            scheduled_at=scheduled_at,
            sent_at=sent_at,
            error=error[:MAX_ERROR_LENGTH] if error else None,
            duration_ms=duration_ms,
        )


__all__ = [
    "TERMINAL_STATUSES",
    "AttemptStatus",
    "DeliveryAttempt",
    "DeliveryTask",
]
