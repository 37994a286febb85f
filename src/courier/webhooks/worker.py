"""Delivery workers: claim tasks, POST signed bodies, advance the ledger.

Every lineage moves through the same state machine::

    pending --(2xx)--> sent
    pending --(timeout, transport error, 5xx, retryable 4xx)--> failed_retryable --> pending
    pending --(retries exhausted or other response)--> failed_permanent

The worker trusts the ledger over the queue message: the attempt number
is derived from the lineage's latest row, so redelivered and duplicated
tasks never start an attempt that has already finished.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import httpx

from courier.config import Settings
from courier.config import settings as default_settings
from courier.exceptions import (
    DeliveryError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from courier.logging import bind_context, get_logger, unbind_context
from courier.models import DeliveryAttempt, DeliveryTask, Subscription, next_delay

from .signing import canonical_body, signature_headers

if TYPE_CHECKING:
    from courier.queue import RedisDeliveryQueue
    from courier.storage import CourierStorage

logger = get_logger(__name__)

# Responses whose Retry-After header is honored
RETRY_AFTER_STATUSES = frozenset({429, 503})


def parse_retry_after(value: str | None, now: datetime) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - now).total_seconds())


@dataclass
class SendResult:
    """Outcome of one HTTP call."""

    http_status: int | None
    duration_ms: int
    sent_at: datetime
    error: DeliveryError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class DeliveryWorker:
    """Processes delivery tasks from the queue one claim at a time.

    The HTTP client is injected and shared; the worker never creates or
    closes it.

    Example:
        ```python
        async with httpx.AsyncClient() as client:
            worker = DeliveryWorker(storage, queue, client)
            while await worker.process_next():
                pass
        ```
    """

    def __init__(
        self,
        storage: CourierStorage,
        queue: RedisDeliveryQueue,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            storage: Storage for subscriptions and the ledger.
            queue: Delivery queue to claim from.
            http_client: Shared client for outbound calls.
            settings: Delivery settings. Defaults to the global settings.
            rng: Random source for retry jitter.
        """
        self._storage = storage
        self._queue = queue
        self._client = http_client
        self._settings = settings or default_settings
        self._rng = rng or random.Random()

    async def process_next(self, now: datetime | None = None) -> int:
        """Claim and process the next ready task (plus its batch).

        Args:
            now: Clock override used for claiming and retry scheduling.

        Returns:
            Number of tasks taken off the queue, 0 if nothing was ready.
        """
        claim_time = now or datetime.now(UTC)
        task = await self._queue.claim(
            now=claim_time,
            visibility_timeout=self._settings.visibility_timeout_seconds,
        )
        if task is None:
            return 0

        subscription = await self._storage.get_subscription(task.subscription_id, task.tenant_id)
        tasks = [task]
        if subscription is not None and subscription.batch_size > 1:
            tasks.extend(await self._fill_batch(subscription, subscription.batch_size - 1, now))

        bind_context(subscription_id=task.subscription_id, tenant_id=task.tenant_id)
        try:
            await self._process(subscription, tasks, now)
        finally:
            unbind_context("subscription_id", "tenant_id")
        return len(tasks)

    async def _fill_batch(
        self,
        subscription: Subscription,
        wanted: int,
        now: datetime | None,
    ) -> list[DeliveryTask]:
        """Claim more ready tasks of the same subscription, lingering briefly."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.batch_linger_seconds
        batch: list[DeliveryTask] = []

        while len(batch) < wanted:
            batch.extend(
                await self._queue.claim_for_subscription(
                    subscription.id,
                    wanted - len(batch),
                    now=now or datetime.now(UTC),
                    visibility_timeout=self._settings.visibility_timeout_seconds,
                )
            )
            remaining = deadline - loop.time()
            if len(batch) >= wanted or remaining <= 0:
                break
            await asyncio.sleep(min(self._settings.claim_poll_interval_seconds, remaining))

        return batch

    async def _resolve_attempt(self, task: DeliveryTask) -> tuple[int, bool] | None:
        """Derive the attempt to run from the ledger, or None to drop the task.

        Returns:
            (attempt number, whether its pending row is already recorded).
        """
        latest = await self._storage.current_state(task.delivery_id)
        if latest is None:
            return task.attempt, False
        if latest.is_terminal:
            logger.info(
                "Dropping task for finished lineage",
                delivery_id=task.delivery_id,
                task_attempt=task.attempt,
                status=latest.status,
            )
            return None

        if latest.status == "failed_retryable":
            derived = latest.attempt_number + 1
        else:
            # A pending row means a previous claim crashed or is still running
            derived = latest.attempt_number

        if task.attempt < derived:
            logger.info(
                "Dropping stale task",
                delivery_id=task.delivery_id,
                task_attempt=task.attempt,
                attempt=derived,
            )
            return None
        if task.attempt > derived:
            logger.warning(
                "Task attempt ahead of ledger, using ledger",
                delivery_id=task.delivery_id,
                task_attempt=task.attempt,
                attempt=derived,
            )

        recorded = latest.status == "pending" and latest.attempt_number == derived
        return derived, recorded

    async def _process(
        self,
        subscription: Subscription | None,
        tasks: list[DeliveryTask],
        now: datetime | None,
    ) -> None:
        live: list[tuple[DeliveryTask, int]] = []
        unrecorded: list[tuple[DeliveryTask, int]] = []

        for task in tasks:
            resolved = await self._resolve_attempt(task)
            if resolved is None:
                await self._queue.ack(task.task_id)
                continue
            attempt, recorded = resolved

            if subscription is None:
                await self._abandon(task, attempt, "subscription not found")
                continue
            if not subscription.is_active and self._settings.cancel_retries_on_disable:
                await self._abandon(task, attempt, "subscription disabled")
                continue

            live.append((task, attempt))
            if not recorded:
                unrecorded.append((task, attempt))

        if not live or subscription is None:
            return

        for task, attempt in unrecorded:
            await self._storage.append_attempt(DeliveryAttempt.for_pending(task, attempt))

        result = await self._send(subscription, live)
        finished_at = now or datetime.now(UTC)

        for task, attempt in live:
            subscription = await self._record_outcome(
                subscription, task, attempt, result, finished_at
            )

    async def _abandon(self, task: DeliveryTask, attempt: int, reason: str) -> None:
        """Close a lineage without sending."""
        await self._storage.append_attempt(
            DeliveryAttempt.for_outcome(
                task,
                attempt,
                "failed_permanent",
                scheduled_at=task.not_before,
                error=reason,
            )
        )
        await self._queue.ack(task.task_id)
        logger.warning(
            "Delivery abandoned",
            delivery_id=task.delivery_id,
            attempt=attempt,
            reason=reason,
        )

    def build_request(
        self,
        subscription: Subscription,
        live: list[tuple[DeliveryTask, int]],
        timestamp: int | None = None,
    ) -> tuple[bytes, dict[str, str]]:
        """Render the body and headers of one delivery call.

        A single task is sent as one event object; a batch as an array of
        event objects in claim order.
        """
        events = [task.event.to_wire() for task, _ in live]
        body = canonical_body(events[0] if len(events) == 1 else events)

        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._settings.user_agent,
            "X-Courier-Event": ",".join(dict.fromkeys(task.event.type for task, _ in live)),
            "X-Courier-Delivery-Id": ",".join(task.delivery_id for task, _ in live),
            "X-Courier-Webhook-Id": subscription.id,
            "X-Courier-Attempt": str(max(attempt for _, attempt in live)),
        }
        headers.update(signature_headers(body, subscription.secret, timestamp))
        return body, headers

    def classify(self, response: httpx.Response, now: datetime) -> DeliveryError | None:
        """Map a response to None (acknowledged) or a delivery error."""
        status = response.status_code
        if 200 <= status < 300:
            return None

        retry_after = None
        if status in RETRY_AFTER_STATUSES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"), now)

        message = f"HTTP {status}"
        if status >= 500 or status in self._settings.retryable_status_codes:
            return TransientDeliveryError(message, http_status=status, retry_after=retry_after)
        return PermanentDeliveryError(message, http_status=status)

    async def _send(
        self,
        subscription: Subscription,
        live: list[tuple[DeliveryTask, int]],
    ) -> SendResult:
        body, headers = self.build_request(subscription, live)
        timeout = self._settings.delivery_timeout_seconds

        started = time.monotonic()
        http_status: int | None = None
        error: DeliveryError | None
        try:
            response = await self._client.post(
                str(subscription.url),
                content=body,
                headers=headers,
                timeout=timeout,
            )
            http_status = response.status_code
            error = self.classify(response, datetime.now(UTC))
        except httpx.TimeoutException:
            error = TransientDeliveryError(f"Request timeout after {timeout:g}s")
        except httpx.TransportError as e:
            error = TransientDeliveryError(f"{type(e).__name__}: {e}")
        except httpx.HTTPError as e:
            error = PermanentDeliveryError(f"{type(e).__name__}: {e}")

        return SendResult(
            http_status=http_status,
            duration_ms=int((time.monotonic() - started) * 1000),
            sent_at=datetime.now(UTC),
            error=error,
        )

    async def _record_outcome(
        self,
        subscription: Subscription,
        task: DeliveryTask,
        attempt: int,
        result: SendResult,
        now: datetime,
    ) -> Subscription:
        """Write the outcome row, schedule any retry and ack the claim."""
        bind_context(delivery_id=task.delivery_id)
        try:
            outcome: dict[str, Any] = {
                "scheduled_at": task.not_before,
                "http_status": result.http_status,
                "sent_at": result.sent_at,
                "duration_ms": result.duration_ms,
            }

            latest = await self._storage.current_state(task.delivery_id)
            if latest is not None and latest.status == "sent":
                logger.info(
                    "Lineage already sent by another worker",
                    attempt=attempt,
                    http_status=result.http_status,
                )
                await self._queue.ack(task.task_id)
                return subscription

            error = result.error
            if error is None:
                await self._storage.append_attempt(
                    DeliveryAttempt.for_outcome(task, attempt, "sent", **outcome)
                )
                logger.info("Delivery sent", attempt=attempt, http_status=result.http_status)
                await self._queue.ack(task.task_id)
                return await self._storage.record_delivery_result(subscription, succeeded=True)

            retryable = isinstance(error, TransientDeliveryError)

            if retryable and attempt <= subscription.max_retries:
                delay = next_delay(
                    subscription.retry_backoff,
                    attempt,
                    jitter_ratio=self._settings.jitter_ratio,
                    retry_after=error.retry_after,
                    rng=self._rng,
                )
                await self._storage.append_attempt(
                    DeliveryAttempt.for_outcome(
                        task, attempt, "failed_retryable", error=error.message, **outcome
                    )
                )
                retry = task.retry(now + timedelta(seconds=delay), attempt=attempt)
                await self._queue.push(retry)
                await self._queue.ack(task.task_id)
                logger.info(
                    "Delivery failed, retry scheduled",
                    attempt=attempt,
                    http_status=result.http_status,
                    error=error.message,
                    delay_seconds=round(delay, 3),
                )
                return subscription

            reason = error.message
            if retryable:
                reason = f"retries exhausted: {reason}"
            await self._storage.append_attempt(
                DeliveryAttempt.for_outcome(task, attempt, "failed_permanent", error=reason, **outcome)
            )
            await self._queue.ack(task.task_id)
            logger.warning(
                "Delivery failed permanently",
                attempt=attempt,
                http_status=result.http_status,
                error=reason,
            )
            return await self._storage.record_delivery_result(
                subscription,
                succeeded=False,
                auto_disable_after=self._settings.auto_disable_after_failures,
            )
        finally:
            unbind_context("delivery_id")


class WorkerPool:
    """Runs concurrent claim loops plus the expired-claim reclaimer.

    Example:
        ```python
        pool = WorkerPool(worker, queue, concurrency=8)
        runner = asyncio.create_task(pool.run())
        ...
        pool.stop()
        await runner
        ```
    """

    def __init__(
        self,
        worker: DeliveryWorker,
        queue: RedisDeliveryQueue,
        concurrency: int = 8,
        poll_interval: float = 0.5,
        reclaim_interval: float = 5.0,
    ) -> None:
        self._worker = worker
        self._queue = queue
        self._concurrency = concurrency
        self._poll_interval = poll_interval
        self._reclaim_interval = reclaim_interval
        self._stopping = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        worker: DeliveryWorker,
        queue: RedisDeliveryQueue,
        settings: Settings,
    ) -> WorkerPool:
        return cls(
            worker,
            queue,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.claim_poll_interval_seconds,
            reclaim_interval=settings.reclaim_interval_seconds,
        )

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def stop(self) -> None:
        """Ask every loop to finish its current task and exit."""
        self._stopping.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _claim_loop(self, index: int) -> None:
        bind_context(worker=index)
        while not self.stopping:
            try:
                handled = await self._worker.process_next()
            except Exception:
                logger.exception("Worker iteration failed")
                handled = 0
            if not handled:
                await self._sleep(self._poll_interval)

    async def _reclaim_loop(self) -> None:
        while not self.stopping:
            try:
                await self._queue.reclaim_expired()
            except Exception:
                logger.exception("Reclaim failed")
            await self._sleep(self._reclaim_interval)

    async def run(self) -> None:
        """Run until ``stop()`` is called."""
        logger.info("Worker pool starting", concurrency=self._concurrency)
        loops = [
            asyncio.create_task(self._claim_loop(i), name=f"courier-worker-{i}")
            for i in range(self._concurrency)
        ]
        loops.append(asyncio.create_task(self._reclaim_loop(), name="courier-reclaimer"))
        try:
            await asyncio.gather(*loops)
        finally:
            for loop_task in loops:
                loop_task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            logger.info("Worker pool stopped")


__all__ = [
    "DeliveryWorker",
    "RETRY_AFTER_STATUSES",
    "SendResult",
    "WorkerPool",
    "parse_retry_after",
]
