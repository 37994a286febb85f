"""Qdrant plumbing shared by the storage mixins.

Subscriptions, events and ledger rows are plain payload documents. Qdrant
still wants a vector per point, so each point carries a constant
one-dimensional placeholder; nothing is ever searched by similarity.
Point ids are derived from ``{tenant_id}/{record_id}`` so a lookup under
the wrong tenant simply misses.
"""

from __future__ import annotations

import uuid
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from courier.config import settings

RecordT = TypeVar("RecordT", bound=BaseModel)

# Record type -> collection suffix
COLLECTION_NAMES = {
    "subscriptions": "subscriptions",
    "events": "events",
    "delivery_attempts": "delivery_attempts",
}

# Keyword payload indexes backing the filters used by dispatch and the ledger
INDEXED_FIELDS = {
    "subscriptions": ("tenant_id", "status"),
    "events": ("tenant_id", "type"),
    "delivery_attempts": ("tenant_id", "delivery_id", "subscription_id", "status"),
}

PLACEHOLDER_VECTOR = [1.0]

IN_MEMORY_LOCATION = ":memory:"

POINT_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "courier.webhooks")


class StorageBase:
    """Connection, collections and record (de)serialization for CourierStorage."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        max_scroll_limit: int | None = None,
    ) -> None:
        """Remember connection parameters; ``initialize`` opens the client.

        Args:
            url: Qdrant URL, or ":memory:" for an in-process store.
            api_key: Qdrant Cloud API key.
            prefix: Prefix of the three collection names.
            max_scroll_limit: Largest page requested from a single scroll.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._max_scroll_limit = max_scroll_limit or settings.storage_max_scroll_limit
        self._client: AsyncQdrantClient | None = None

    @property
    def client(self) -> AsyncQdrantClient:
        if self._client is None:
            raise RuntimeError("CourierStorage used before initialize()")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Open the client and create missing collections and indexes."""
        if self._url == IN_MEMORY_LOCATION:
            client = AsyncQdrantClient(location=IN_MEMORY_LOCATION)
        else:
            client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        self._client = client
        await self._ensure_collections()

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.close()

    def _collection_name(self, record_type: str) -> str:
        return f"{self._prefix}_{COLLECTION_NAMES[record_type]}"

    @staticmethod
    def _build_key(record_id: str, tenant_id: str) -> str:
        return f"{tenant_id}/{record_id}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Deterministic UUID point id for a tenant-scoped key."""
        return str(uuid.uuid5(POINT_NAMESPACE, key))

    async def _ensure_collections(self) -> None:
        response = await self.client.get_collections()
        existing = {c.name for c in response.collections}

        for record_type in COLLECTION_NAMES:
            name = self._collection_name(record_type)
            if name in existing:
                continue
            await self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            for field_name in INDEXED_FIELDS[record_type]:
                await self.client.create_payload_index(
                    collection_name=name,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                )

    async def _upsert_record(self, record_type: str, key: str, record: BaseModel) -> None:
        """Write one record as a single point (atomic per point)."""
        await self.client.upsert(
            collection_name=self._collection_name(record_type),
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(key),
                    vector=PLACEHOLDER_VECTOR,
                    payload=self._record_to_payload(record),
                )
            ],
        )

    async def _retrieve_record(
        self, record_type: str, key: str, record_class: type[RecordT]
    ) -> RecordT | None:
        """Fetch one record by key, or None if absent."""
        results = await self.client.retrieve(
            collection_name=self._collection_name(record_type),
            ids=[self._key_to_point_id(key)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return self._payload_to_record(results[0].payload, record_class)

    async def _scroll_records(
        self,
        record_type: str,
        conditions: list[models.FieldCondition],
        record_class: type[RecordT],
        limit: int | None = None,
    ) -> list[RecordT]:
        """Fetch all records matching the conditions, following scroll pages."""
        remaining = limit if limit is not None else self._max_scroll_limit
        records: list[RecordT] = []
        offset: Any = None

        while remaining > 0:
            page, offset = await self.client.scroll(
                collection_name=self._collection_name(record_type),
                scroll_filter=models.Filter(must=conditions),
                limit=min(remaining, self._max_scroll_limit),
                offset=offset,
                with_payload=True,
            )
            records.extend(
                self._payload_to_record(p.payload, record_class)
                for p in page
                if p.payload is not None
            )
            remaining -= len(page)
            if offset is None or not page:
                break

        return records

    @staticmethod
    def _match(key: str, value: str) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))

    def _record_to_payload(self, record: BaseModel) -> dict[str, Any]:
        """Convert a record model to a Qdrant payload."""
        return record.model_dump(mode="json")

    def _payload_to_record(self, payload: dict[str, Any], record_class: type[RecordT]) -> RecordT:
        """Convert a Qdrant payload back to a record model."""
        return record_class.model_validate(payload)
