"""Redis-backed delivery queue.

At-least-once queue for delivery tasks built from plain Redis structures:

- ``<prefix>:tasks``: hash of task_id -> serialized DeliveryTask
- ``<prefix>:ready``: sorted set of task_id scored by ``not_before``
- ``<prefix>:ready:<subscription_id>``: the same, per subscription, for batching
- ``<prefix>:processing``: sorted set of claimed task_id scored by visibility deadline

A worker owns a task only if its claim removed the id from the ready set.
Claimed tasks that are not acknowledged before their deadline are moved
back to ready by ``reclaim_expired``, so a crashed worker's task is
delivered again.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, ParamSpec, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from courier.exceptions import ConfigurationError, QueueError
from courier.models import DeliveryTask

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Candidates inspected per claim round; losers of a claim race move on to the next
CLAIM_SCAN_SIZE = 16

REDIS_SCHEMES = frozenset({"redis", "rediss", "unix"})


def _queue_errors(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Re-raise Redis failures as QueueError."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except RedisError as e:
            raise QueueError(f"{func.__name__} failed: {e}") from e

    return wrapper


def _timestamp(now: datetime | None) -> float:
    return now.timestamp() if now is not None else time.time()


class RedisDeliveryQueue:
    """Durable delivery queue on Redis sorted sets.

    Every method takes an optional ``now`` so callers (and tests) control
    the clock used for readiness and visibility deadlines.

    Example:
        ```python
        queue = RedisDeliveryQueue.from_url("redis://localhost:6379/0")
        await queue.push(task)
        claimed = await queue.claim(visibility_timeout=30)
        ...
        await queue.ack(claimed.task_id)
        ```
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "webhooks:deliveries",
        visibility_timeout: float = 30.0,
        owns_client: bool = False,
    ) -> None:
        """Initialize the queue.

        Args:
            client: Redis client created with ``decode_responses=True``.
            prefix: Key prefix for all queue structures.
            visibility_timeout: Default seconds a claim stays invisible.
            owns_client: Close the client in ``close()``.
        """
        self._redis = client
        self._prefix = prefix
        self._visibility_timeout = visibility_timeout
        self._owns_client = owns_client

    @classmethod
    def from_url(
        cls,
        url: str,
        prefix: str = "webhooks:deliveries",
        visibility_timeout: float = 30.0,
    ) -> RedisDeliveryQueue:
        """Create a queue with its own Redis connection pool.

        Raises:
            ConfigurationError: If the URL is not a redis://, rediss:// or unix:// URL.
        """
        scheme = url.partition("://")[0].lower()
        if scheme not in REDIS_SCHEMES:
            raise ConfigurationError(
                f"redis_url must use one of {sorted(REDIS_SCHEMES)}, got {url!r}"
            )
        client = redis.from_url(url, decode_responses=True)
        return cls(client, prefix=prefix, visibility_timeout=visibility_timeout, owns_client=True)

    @property
    def tasks_key(self) -> str:
        return f"{self._prefix}:tasks"

    @property
    def ready_key(self) -> str:
        return f"{self._prefix}:ready"

    @property
    def processing_key(self) -> str:
        return f"{self._prefix}:processing"

    def subscription_ready_key(self, subscription_id: str) -> str:
        return f"{self._prefix}:ready:{subscription_id}"

    @_queue_errors
    async def push(self, task: DeliveryTask) -> str:
        """Enqueue a task, visible to claims from ``task.not_before`` on.

        Returns:
            The task ID.
        """
        score = task.not_before.timestamp()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.tasks_key, task.task_id, task.model_dump_json())
            pipe.zadd(self.ready_key, {task.task_id: score})
            pipe.zadd(self.subscription_ready_key(task.subscription_id), {task.task_id: score})
            await pipe.execute()

        logger.debug(
            "Queued task %s (delivery %s, attempt %d)",
            task.task_id,
            task.delivery_id,
            task.attempt,
        )
        return task.task_id

    @_queue_errors
    async def claim(
        self,
        now: datetime | None = None,
        visibility_timeout: float | None = None,
    ) -> DeliveryTask | None:
        """Claim the oldest ready task, or None if nothing is due."""
        ts = _timestamp(now)
        deadline = ts + (visibility_timeout or self._visibility_timeout)

        while True:
            candidates = await self._redis.zrangebyscore(
                self.ready_key, "-inf", ts, start=0, num=CLAIM_SCAN_SIZE
            )
            if not candidates:
                return None
            for task_id in candidates:
                task = await self._try_claim(task_id, deadline)
                if task is not None:
                    return task

    @_queue_errors
    async def claim_for_subscription(
        self,
        subscription_id: str,
        limit: int,
        now: datetime | None = None,
        visibility_timeout: float | None = None,
    ) -> list[DeliveryTask]:
        """Claim up to ``limit`` ready tasks of one subscription, oldest first."""
        if limit <= 0:
            return []

        ts = _timestamp(now)
        deadline = ts + (visibility_timeout or self._visibility_timeout)
        candidates = await self._redis.zrangebyscore(
            self.subscription_ready_key(subscription_id), "-inf", ts, start=0, num=limit
        )

        claimed: list[DeliveryTask] = []
        for task_id in candidates:
            task = await self._try_claim(task_id, deadline)
            if task is not None:
                claimed.append(task)
        return claimed

    async def _try_claim(self, task_id: str, deadline: float) -> DeliveryTask | None:
        raw = await self._redis.hget(self.tasks_key, task_id)
        if raw is None:
            # Ready entry left behind by a reclaim racing an ack
            await self._redis.zrem(self.ready_key, task_id)
            return None

        task = DeliveryTask.model_validate_json(raw)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.ready_key, task_id)
            pipe.zrem(self.subscription_ready_key(task.subscription_id), task_id)
            pipe.zadd(self.processing_key, {task_id: deadline})
            removed, _, _ = await pipe.execute()

        if removed != 1:
            return None
        return task

    @_queue_errors
    async def ack(self, task_id: str) -> None:
        """Remove a claimed task for good."""
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_key, task_id)
            pipe.hdel(self.tasks_key, task_id)
            await pipe.execute()

    @_queue_errors
    async def reclaim_expired(self, now: datetime | None = None) -> int:
        """Return claims whose visibility deadline passed to the ready set.

        Returns:
            Number of tasks made ready again.
        """
        ts = _timestamp(now)
        expired = await self._redis.zrangebyscore(self.processing_key, "-inf", ts)

        reclaimed = 0
        for task_id in expired:
            raw = await self._redis.hget(self.tasks_key, task_id)
            if raw is None:
                await self._redis.zrem(self.processing_key, task_id)
                continue

            task = DeliveryTask.model_validate_json(raw)
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self.processing_key, task_id)
                pipe.zadd(self.ready_key, {task_id: ts})
                pipe.zadd(self.subscription_ready_key(task.subscription_id), {task_id: ts})
                removed, _, _ = await pipe.execute()
            if removed == 1:
                reclaimed += 1

        if reclaimed:
            logger.warning("Reclaimed %d expired delivery tasks", reclaimed)
        return reclaimed

    @_queue_errors
    async def ready_count(self, now: datetime | None = None) -> int:
        """Number of tasks ready to be claimed at ``now``."""
        count: int = await self._redis.zcount(self.ready_key, "-inf", _timestamp(now))
        return count

    @_queue_errors
    async def scheduled_count(self) -> int:
        """Number of queued tasks, due or not."""
        count: int = await self._redis.zcard(self.ready_key)
        return count

    @_queue_errors
    async def processing_count(self) -> int:
        """Number of claimed, unacknowledged tasks."""
        count: int = await self._redis.zcard(self.processing_key)
        return count

    @_queue_errors
    async def ping(self) -> bool:
        result: Any = await self._redis.ping()
        return bool(result)

    async def close(self) -> None:
        """Close the Redis connection if this queue created it."""
        if self._owns_client:
            await self._redis.aclose()


__all__ = ["RedisDeliveryQueue", "CLAIM_SCAN_SIZE"]
