"""tenacity policy for Qdrant calls made by the storage mixins.

A dropped connection or a 5xx from Qdrant is retried a few times with
exponential wait. Qdrant and transport errors that remain are raised as
StorageError; anything else propagates unchanged.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from courier.exceptions import StorageError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

STORAGE_ATTEMPTS = 3


def is_transient_storage_error(exc: BaseException) -> bool:
    """True for errors worth another attempt against Qdrant."""
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code is not None and exc.status_code >= 500
    return isinstance(exc, httpx.TransportError | ResponseHandlingException)


def _before_sleep(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Qdrant call %s failed (attempt %d/%d): %s",
        getattr(state.fn, "__name__", "?"),
        state.attempt_number,
        STORAGE_ATTEMPTS,
        exc,
    )


_retrying = retry(
    stop=stop_after_attempt(STORAGE_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient_storage_error),
    before_sleep=_before_sleep,
    reraise=True,
)

QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.TransportError)


def storage_retry(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry transient Qdrant failures, then surface them as StorageError."""
    retrying = _retrying(func)

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await retrying(*args, **kwargs)
        except QDRANT_ERRORS as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e

    return wrapper
