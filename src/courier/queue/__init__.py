"""Delivery queue for Courier.

Example:
    ```python
    from courier.queue import RedisDeliveryQueue

    queue = RedisDeliveryQueue.from_url(settings.redis_url, prefix=settings.queue_prefix)
    await queue.push(task)
    ```
"""

from .redis_queue import RedisDeliveryQueue

__all__ = ["RedisDeliveryQueue"]
