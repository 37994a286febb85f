"""Storage backends for Courier.

This module provides the storage layer for persisting subscriptions,
events and delivery attempts to Qdrant with per-tenant isolation.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        await storage.append_attempt(attempt)
        latest = await storage.current_state(attempt.delivery_id)
    ```
"""

from .base import COLLECTION_NAMES
from .client import CourierStorage

__all__ = [
    "CourierStorage",
    "COLLECTION_NAMES",
]
