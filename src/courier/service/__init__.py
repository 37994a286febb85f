"""Courier service layer.

Provides the high-level CourierService for managing subscriptions and
delivering events.

Example:
    ```python
    from courier.service import CourierService

    async with CourierService.create() as courier:
        await courier.dispatch("tnt_1", "dmarc.processed", {"report_id": "r1"})
    ```
"""

from .base import CourierService

__all__ = ["CourierService"]
