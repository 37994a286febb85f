"""Tests for Courier Qdrant storage (in-memory local mode)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from qdrant_client.http.exceptions import UnexpectedResponse

from courier.exceptions import NotFoundError, StorageError, ValidationError
from courier.models import DeliveryAttempt, DeliveryTask, Event, FixedBackoff
from courier.storage import CourierStorage
from courier.storage.retry import is_transient_storage_error, storage_retry


async def make_subscription(storage: CourierStorage, tenant_id: str = "tnt_1", **fields):
    fields.setdefault("url", "https://hooks.example.com/mail")
    return await storage.create_subscription(tenant_id=tenant_id, **fields)


class TestStorageBase:
    """Tests for storage plumbing."""

    async def test_collections_created(self, storage: CourierStorage):
        collections = await storage.client.get_collections()
        names = {c.name for c in collections.collections}
        assert names == {"test_subscriptions", "test_events", "test_delivery_attempts"}

    def test_collection_name(self, storage: CourierStorage):
        assert storage._collection_name("subscriptions") == "test_subscriptions"
        assert storage._collection_name("delivery_attempts") == "test_delivery_attempts"

    def test_build_key(self):
        assert CourierStorage._build_key("whk_1", "tnt_1") == "tnt_1/whk_1"

    def test_point_id_deterministic(self):
        first = CourierStorage._key_to_point_id("tnt_1/whk_1")
        assert first == CourierStorage._key_to_point_id("tnt_1/whk_1")
        assert first != CourierStorage._key_to_point_id("tnt_2/whk_1")
        assert len(first) == 36

    def test_client_requires_initialize(self):
        with pytest.raises(RuntimeError, match="before initialize"):
            CourierStorage(url=":memory:").client

    async def test_context_manager(self):
        async with CourierStorage(url=":memory:", prefix="ctx") as store:
            assert store.is_connected
        assert not store.is_connected


class TestSubscriptions:
    """Tests for the subscription store."""

    async def test_create_and_get(self, storage: CourierStorage):
        sub = await make_subscription(storage, event_filter=["message.delivered"])
        fetched = await storage.get_subscription(sub.id, "tnt_1")
        assert fetched == sub

    async def test_get_is_tenant_scoped(self, storage: CourierStorage):
        """A subscription is invisible to other tenants."""
        sub = await make_subscription(storage)
        assert await storage.get_subscription(sub.id, "tnt_other") is None
        with pytest.raises(NotFoundError):
            await storage.require_subscription(sub.id, "tnt_other")

    async def test_create_defaults(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        assert "message.delivered" in sub.event_filter
        assert len(sub.secret) == 64

    @pytest.mark.parametrize(
        "fields,field",
        [
            ({"url": "ftp://x.example.com"}, "url"),
            ({"event_filter": []}, "event_filter"),
            ({"event_filter": ["BAD TYPE"]}, "event_filter"),
            ({"batch_size": 0}, "batch_size"),
            ({"max_retries": -1}, "max_retries"),
            ({"retry_backoff": "linear:1"}, "retry_backoff"),
        ],
    )
    async def test_create_rejects_invalid(self, storage: CourierStorage, fields, field):
        with pytest.raises(ValidationError) as exc_info:
            await make_subscription(storage, **fields)
        assert exc_info.value.field == field
        assert await storage.list_subscriptions("tnt_1") == []

    async def test_list_newest_first(self, storage: CourierStorage):
        first = await make_subscription(storage)
        second = await make_subscription(storage)
        await make_subscription(storage, tenant_id="tnt_2")

        listed = await storage.list_subscriptions("tnt_1")
        assert [s.id for s in listed] == [second.id, first.id]

    async def test_find_active_for_tenant_and_type(self, storage: CourierStorage):
        """Only active, matching subscriptions of the tenant are returned."""
        delivered = await make_subscription(storage, event_filter=["message.delivered"])
        everything = await make_subscription(storage, event_filter=["*"])
        await make_subscription(storage, event_filter=["dmarc.processed"])
        await make_subscription(storage, event_filter=["message.delivered"], status="disabled")
        await make_subscription(storage, tenant_id="tnt_2", event_filter=["*"])

        matches = await storage.find_active_for_tenant_and_type("tnt_1", "message.delivered")
        assert {s.id for s in matches} == {delivered.id, everything.id}

    async def test_update_revalidates(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        updated = await storage.update_subscription(
            sub.id, "tnt_1", url="https://new.example.com/hook", retry_backoff="fixed:10"
        )
        assert str(updated.url) == "https://new.example.com/hook"
        assert updated.retry_backoff == FixedBackoff(delay=10)
        assert updated.updated_at >= sub.updated_at
        assert updated.created_at == sub.created_at

        with pytest.raises(ValidationError) as exc_info:
            await storage.update_subscription(sub.id, "tnt_1", url="gopher://old")
        assert exc_info.value.field == "url"

    async def test_update_unknown_field(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        with pytest.raises(ValidationError) as exc_info:
            await storage.update_subscription(sub.id, "tnt_1", tenant_id="tnt_2")
        assert exc_info.value.field == "tenant_id"

    async def test_update_wrong_tenant(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        with pytest.raises(NotFoundError):
            await storage.update_subscription(sub.id, "tnt_2", batch_size=5)

    async def test_disable_is_soft(self, storage: CourierStorage):
        """Disabled subscriptions are kept but no longer matched."""
        sub = await make_subscription(storage, event_filter=["*"])
        disabled = await storage.disable_subscription(sub.id, "tnt_1", reason="endpoint retired")

        assert disabled.status == "disabled"
        assert disabled.disabled_reason == "endpoint retired"
        assert await storage.get_subscription(sub.id, "tnt_1") is not None
        assert await storage.find_active_for_tenant_and_type("tnt_1", "message.bounced") == []

    async def test_reenable_resets_failures(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        await storage.update_subscription(
            sub.id, "tnt_1", status="disabled", disabled_reason="x", consecutive_failures=4
        )
        enabled = await storage.update_subscription(sub.id, "tnt_1", status="active")
        assert enabled.consecutive_failures == 0
        assert enabled.disabled_reason is None

    async def test_rotate_secret(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        rotated = await storage.rotate_secret(sub.id, "tnt_1")
        assert rotated.secret != sub.secret
        assert rotated.url == sub.url
        assert (await storage.get_subscription(sub.id, "tnt_1")).secret == rotated.secret

    async def test_record_delivery_result_auto_disable(self, storage: CourierStorage):
        """Consecutive permanent failures disable at the threshold; success resets."""
        sub = await make_subscription(storage)

        sub = await storage.record_delivery_result(sub, succeeded=False, auto_disable_after=2)
        assert sub.consecutive_failures == 1
        assert sub.is_active

        sub = await storage.record_delivery_result(sub, succeeded=True, auto_disable_after=2)
        assert sub.consecutive_failures == 0

        sub = await storage.record_delivery_result(sub, succeeded=False, auto_disable_after=2)
        sub = await storage.record_delivery_result(sub, succeeded=False, auto_disable_after=2)
        assert sub.status == "disabled"
        assert "2 consecutive" in sub.disabled_reason

    async def test_record_delivery_result_without_threshold(self, storage: CourierStorage):
        sub = await make_subscription(storage)
        for _ in range(5):
            sub = await storage.record_delivery_result(sub, succeeded=False)
        assert sub.is_active
        assert sub.consecutive_failures == 5


class TestEvents:
    """Tests for event storage."""

    async def test_store_and_get(self, storage: CourierStorage):
        event = Event(tenant_id="tnt_1", type="dmarc.processed", payload={"report": {"id": 1}})
        await storage.store_event(event)
        assert await storage.get_event(event.id, "tnt_1") == event
        assert await storage.get_event(event.id, "tnt_2") is None


class TestLedger:
    """Tests for the append-only delivery ledger."""

    def task(self, **fields) -> DeliveryTask:
        event = Event(tenant_id="tnt_1", type="message.delivered", payload={})
        return DeliveryTask(subscription_id="whk_1", event=event, **fields)

    async def test_current_state_empty(self, storage: CourierStorage):
        assert await storage.current_state("dlv_missing") is None

    async def test_rows_are_appended(self, storage: CourierStorage):
        """Each row is stored separately; latest row is the current state."""
        task = self.task()
        now = datetime.now(UTC)
        await storage.append_attempt(DeliveryAttempt.for_pending(task, 1))
        await storage.append_attempt(
            DeliveryAttempt.for_outcome(task, 1, "failed_retryable", scheduled_at=now, http_status=500)
        )
        await storage.append_attempt(DeliveryAttempt.for_pending(task, 2))
        await storage.append_attempt(
            DeliveryAttempt.for_outcome(task, 2, "sent", scheduled_at=now, http_status=200)
        )

        rows = await storage.list_attempts(task.delivery_id)
        assert [(r.attempt_number, r.status) for r in rows] == [
            (1, "pending"),
            (1, "failed_retryable"),
            (2, "pending"),
            (2, "sent"),
        ]
        latest = await storage.current_state(task.delivery_id)
        assert latest.status == "sent"

    async def test_sent_row_settles_lineage(self, storage: CourierStorage):
        """A failure recorded after sent for the same attempt doesn't reopen the lineage."""
        task = self.task()
        now = datetime.now(UTC)
        await storage.append_attempt(DeliveryAttempt.for_pending(task, 1))
        await storage.append_attempt(
            DeliveryAttempt.for_outcome(task, 1, "sent", scheduled_at=now, http_status=200)
        )
        await storage.append_attempt(
            DeliveryAttempt.for_outcome(task, 1, "failed_retryable", scheduled_at=now, http_status=500)
        )

        latest = await storage.current_state(task.delivery_id)
        assert latest.status == "sent"
        assert latest.is_terminal

    async def test_list_attempts_tenant_filter(self, storage: CourierStorage):
        task = self.task()
        await storage.append_attempt(DeliveryAttempt.for_pending(task, 1))
        assert await storage.list_attempts(task.delivery_id, "tnt_1")
        assert await storage.list_attempts(task.delivery_id, "tnt_2") == []

    async def test_lineages_are_separate(self, storage: CourierStorage):
        first, second = self.task(), self.task()
        await storage.append_attempt(DeliveryAttempt.for_pending(first, 1))
        await storage.append_attempt(DeliveryAttempt.for_pending(second, 1))
        assert len(await storage.list_attempts(first.delivery_id)) == 1

    async def test_list_for_subscription_newest_first(self, storage: CourierStorage):
        base = datetime.now(UTC)
        rows = []
        for i in range(3):
            row = DeliveryAttempt.for_pending(self.task(), 1).model_copy(
                update={"recorded_at": base + timedelta(seconds=i)}
            )
            await storage.append_attempt(row)
            rows.append(row)

        listed = await storage.list_deliveries_for_subscription("whk_1", "tnt_1")
        assert [r.id for r in listed] == [r.id for r in reversed(rows)]

        limited = await storage.list_deliveries_for_subscription("whk_1", "tnt_1", limit=2)
        assert len(limited) == 2
        assert await storage.list_deliveries_for_subscription("whk_1", "tnt_1", status="sent") == []
        assert await storage.list_deliveries_for_subscription("whk_1", "tnt_2") == []


class TestStorageRetryPolicy:
    """Tests for which Qdrant errors are retried."""

    def test_server_errors_are_transient(self):
        error = UnexpectedResponse(503, "Service Unavailable", b"", httpx.Headers())
        assert is_transient_storage_error(error)

    def test_client_errors_are_not(self):
        error = UnexpectedResponse(400, "Bad Request", b"", httpx.Headers())
        assert not is_transient_storage_error(error)

    def test_connection_errors_are_transient(self):
        assert is_transient_storage_error(httpx.ConnectError("refused"))
        assert not is_transient_storage_error(ValueError("bad payload"))

    async def test_exhausted_qdrant_errors_become_storage_errors(self):
        calls = 0

        @storage_retry
        async def lookup() -> None:
            nonlocal calls
            calls += 1
            raise UnexpectedResponse(400, "Bad Request", b"", httpx.Headers())

        with pytest.raises(StorageError, match="lookup failed"):
            await lookup()
        assert calls == 1

    async def test_other_errors_propagate(self):
        @storage_retry
        async def lookup() -> None:
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await lookup()
