"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path

import fakeredis.aioredis
import httpx
import pytest
import structlog

import courier.logging

from courier.config import Settings
from courier.queue import RedisDeliveryQueue
from courier.storage import CourierStorage

# Add tests directory to path so helpers can be imported from conftest
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class Endpoint:
    """Scripted subscriber endpoint for httpx.MockTransport.

    Each call pops the next scripted outcome (an int status, an
    httpx.Response, or an exception instance); the last outcome repeats.
    Every request is recorded.
    """

    def __init__(self, *outcomes: int | httpx.Response | Exception) -> None:
        self.outcomes = list(outcomes) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return outcome
        return httpx.Response(outcome, json={"ok": 200 <= outcome < 300})

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture(autouse=True)
def _restore_logging_config() -> Iterator[None]:
    """Undo per-test configure_logging calls bound to a test-scoped stderr."""
    saved = structlog.get_config()
    configured = courier.logging._configured
    yield
    structlog.configure(**saved)
    courier.logging._configured = configured


@pytest.fixture
def settings() -> Settings:
    """Deterministic settings: no jitter, no batch linger, in-memory Qdrant."""
    return Settings(
        env="test",
        qdrant_url=":memory:",
        collection_prefix="test",
        jitter_ratio=0.0,
        batch_linger_seconds=0.0,
        delivery_timeout_seconds=2.0,
        claim_poll_interval_seconds=0.01,
        reclaim_interval_seconds=0.05,
    )


@pytest.fixture
async def storage() -> AsyncIterator[CourierStorage]:
    """In-memory Qdrant storage (qdrant-client local mode)."""
    store = CourierStorage(url=":memory:", prefix="test")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def queue() -> AsyncIterator[RedisDeliveryQueue]:
    """Delivery queue on an isolated fakeredis server."""
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield RedisDeliveryQueue(client, prefix="test:deliveries", visibility_timeout=30.0)
    await client.aclose()


@pytest.fixture
def make_http_client() -> Callable[[Endpoint], httpx.AsyncClient]:
    """Factory for AsyncClients routed to a scripted endpoint."""

    def _make(endpoint: Endpoint) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(endpoint))

    return _make
