"""Webhook dispatch, signing and delivery.

Example:
    ```python
    from courier.webhooks import Dispatcher, DeliveryWorker, verify_signature

    await Dispatcher(storage, queue).dispatch("tnt_1", "message.bounced", {"message_id": "m1"})
    await DeliveryWorker(storage, queue, http_client).process_next()
    ```
"""

from .dispatcher import Dispatcher
from .signing import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    canonical_body,
    compute_signature,
    signature_headers,
    verify_signature,
)
from .worker import DeliveryWorker, WorkerPool, parse_retry_after

__all__ = [
    "DeliveryWorker",
    "Dispatcher",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "WorkerPool",
    "canonical_body",
    "compute_signature",
    "parse_retry_after",
    "signature_headers",
    "verify_signature",
]
