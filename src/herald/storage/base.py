"""Base storage class and helpers.

Contains client lifecycle, collection management, and payload conversion.
Subscriptions and delivery records are stored as Qdrant points with a
one-dimensional placeholder vector; all reads go through payload filters
backed by payload indexes.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

from qdrant_client import AsyncQdrantClient, models

from herald.config import settings
from herald.models import DeliveryRecord, WebhookSubscription

COLLECTION_NAMES = {
    "webhooks": "webhooks",
    "deliveries": "deliveries",
}

# Payload fields indexed per collection
PAYLOAD_INDEXES: dict[str, dict[str, models.PayloadSchemaType]] = {
    "webhooks": {
        "owner_id": models.PayloadSchemaType.KEYWORD,
        "events": models.PayloadSchemaType.KEYWORD,
        "active": models.PayloadSchemaType.BOOL,
    },
    "deliveries": {
        "webhook_id": models.PayloadSchemaType.KEYWORD,
        "owner_id": models.PayloadSchemaType.KEYWORD,
        "status": models.PayloadSchemaType.KEYWORD,
        "event_type": models.PayloadSchemaType.KEYWORD,
        "created_ts": models.PayloadSchemaType.FLOAT,
        "next_attempt_ts": models.PayloadSchemaType.FLOAT,
    },
}

# Derived fields written next to a delivery payload for filtering only
DELIVERY_INDEX_FIELDS = ("created_ts", "next_attempt_ts", "event_type")

PLACEHOLDER_VECTOR = [1.0]
SCROLL_BATCH_SIZE = 256


def to_timestamp(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


class StorageBase:
    """Base class for Herald storage with initialization and helpers."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            client: Pre-built client, e.g. ``AsyncQdrantClient(location=":memory:")``.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client: AsyncQdrantClient | None = client
        self._collections_initialized = False

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Connect (unless a client was injected) and ensure collections exist."""
        if self._client is None:
            self._client = AsyncQdrantClient(
                url=self._url,
                api_key=self._api_key,
            )
        await self._ensure_collections()
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(kind, kind)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert an entity id to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers, so the
        id is hashed into a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with their payload indexes."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            for field_name, schema in PAYLOAD_INDEXES[kind].items():
                await self.client.create_payload_index(
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )

    async def _upsert(self, kind: str, entity_id: str, payload: dict[str, Any]) -> None:
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(entity_id),
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    async def _retrieve(self, kind: str, entity_id: str) -> dict[str, Any] | None:
        results = await self.client.retrieve(
            collection_name=self._collection_name(kind),
            ids=[self._key_to_point_id(entity_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return dict(results[0].payload)

    async def _scroll_all(
        self,
        kind: str,
        scroll_filter: models.Filter,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect payloads of every point matching the filter."""
        payloads: list[dict[str, Any]] = []
        if limit is not None and limit <= 0:
            return payloads
        offset: Any = None
        while True:
            batch_size = SCROLL_BATCH_SIZE
            if limit is not None:
                batch_size = min(batch_size, limit - len(payloads))
            points, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=scroll_filter,
                limit=batch_size,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            payloads.extend(dict(p.payload) for p in points if p.payload is not None)
            if offset is None or (limit is not None and len(payloads) >= limit):
                return payloads

    async def _scroll_ordered(
        self,
        kind: str,
        scroll_filter: models.Filter,
        order_key: str,
        limit: int,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Collect at most ``limit`` payloads ordered by a range-indexed field."""
        if limit <= 0:
            return []
        direction = models.Direction.DESC if descending else models.Direction.ASC
        points, _ = await self.client.scroll(
            collection_name=self._collection_name(kind),
            scroll_filter=scroll_filter,
            limit=limit,
            order_by=models.OrderBy(key=order_key, direction=direction),
            with_payload=True,
            with_vectors=False,
        )
        return [dict(p.payload) for p in points if p.payload is not None]

    async def _count(self, kind: str, count_filter: models.Filter) -> int:
        counted = await self.client.count(
            collection_name=self._collection_name(kind),
            count_filter=count_filter,
            exact=True,
        )
        return int(counted.count)

    @staticmethod
    def _subscription_to_payload(subscription: WebhookSubscription) -> dict[str, Any]:
        return subscription.model_dump(mode="json")

    @staticmethod
    def _payload_to_subscription(payload: dict[str, Any]) -> WebhookSubscription:
        return WebhookSubscription.model_validate(payload)

    @staticmethod
    def _delivery_to_payload(record: DeliveryRecord) -> dict[str, Any]:
        data = record.model_dump(mode="json")
        data["created_ts"] = to_timestamp(record.created_at)
        data["next_attempt_ts"] = to_timestamp(record.next_attempt_at)
        data["event_type"] = record.event.type
        return data

    @staticmethod
    def _payload_to_delivery(payload: dict[str, Any]) -> DeliveryRecord:
        for field_name in DELIVERY_INDEX_FIELDS:
            payload.pop(field_name, None)
        return DeliveryRecord.model_validate(payload)
