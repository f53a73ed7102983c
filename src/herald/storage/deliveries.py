"""Delivery record storage operations.

Every record is written whole on each state change; the scheduler is the
only writer for a given record at any time, so no compare-and-set is needed.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from herald.models import DUE_STATUSES
from herald.storage.base import to_timestamp
from herald.storage.retry import storage_operation

if TYPE_CHECKING:
    from herald.models import DeliveryRecord


class DeliveryMixin:
    """Mixin providing delivery record operations for HeraldStorage.

    This mixin expects the following from the base class:
    - _collection_name(kind) -> str
    - _upsert / _retrieve / _scroll_all / _scroll_ordered / _count helpers
    - _delivery_to_payload / _payload_to_delivery converters
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _upsert: Any
    _retrieve: Any
    _scroll_all: Any
    _scroll_ordered: Any
    _count: Any
    _delivery_to_payload: Any
    _payload_to_delivery: Any
    client: Any

    @storage_operation
    async def store_delivery(self, record: DeliveryRecord) -> str:
        """Insert or replace a delivery record.

        Returns:
            The delivery ID.
        """
        await self._upsert("deliveries", record.id, self._delivery_to_payload(record))
        return record.id

    async def update_delivery(self, record: DeliveryRecord) -> str:
        """Persist a state change on an existing record."""
        return await self.store_delivery(record)

    @storage_operation
    async def get_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        """Get a delivery record by ID, or None if it does not exist."""
        payload = await self._retrieve("deliveries", delivery_id)
        if payload is None:
            return None
        record: DeliveryRecord = self._payload_to_delivery(payload)
        return record

    @staticmethod
    def _webhook_conditions(
        webhook_id: str,
        status: str | None = None,
        event_type: str | None = None,
    ) -> list[models.Condition]:
        filters: list[models.Condition] = [
            models.FieldCondition(key="webhook_id", match=models.MatchValue(value=webhook_id)),
        ]
        if status is not None:
            filters.append(
                models.FieldCondition(key="status", match=models.MatchValue(value=status))
            )
        if event_type is not None:
            filters.append(
                models.FieldCondition(key="event_type", match=models.MatchValue(value=event_type))
            )
        return filters

    @storage_operation
    async def list_deliveries(
        self,
        webhook_id: str,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
        event_type: str | None = None,
    ) -> tuple[list[DeliveryRecord], int]:
        """Get one page of a subscription's delivery records, newest first.

        Args:
            webhook_id: Owning subscription.
            page: 1-based page number.
            page_size: Records per page.
            status: Optional status filter.
            event_type: Optional event type filter.

        Returns:
            Tuple of (records on the page, total matching records).
        """
        conditions = self._webhook_conditions(webhook_id, status, event_type)
        scroll_filter = models.Filter(must=conditions)
        total = await self._count("deliveries", scroll_filter)
        start = (page - 1) * page_size
        if start >= total:
            return [], total

        # Ordered scrolls take no offset, so read up to the end of the page.
        payloads = await self._scroll_ordered(
            "deliveries", scroll_filter, "created_ts", limit=start + page_size, descending=True
        )
        return [self._payload_to_delivery(p) for p in payloads[start:]], total

    @storage_operation
    async def get_deliveries_in_window(
        self,
        webhook_id: str,
        start: datetime,
        end: datetime,
    ) -> list[DeliveryRecord]:
        """Get records created in ``[start, end)`` using the created_ts range index."""
        conditions = self._webhook_conditions(webhook_id)
        conditions.append(
            models.FieldCondition(
                key="created_ts",
                range=models.Range(gte=to_timestamp(start), lt=to_timestamp(end)),
            )
        )
        scroll_filter = models.Filter(must=conditions)
        payloads = await self._scroll_all("deliveries", scroll_filter)
        return [self._payload_to_delivery(p) for p in payloads]

    @storage_operation
    async def get_due_deliveries(self, now: datetime, limit: int = 100) -> list[DeliveryRecord]:
        """Get pending or retryable records whose next attempt is due, oldest first."""
        payloads = await self._scroll_ordered(
            "deliveries",
            models.Filter(
                must=[
                    models.FieldCondition(
                        key="status", match=models.MatchAny(any=list(DUE_STATUSES))
                    ),
                    models.FieldCondition(
                        key="next_attempt_ts", range=models.Range(lte=to_timestamp(now))
                    ),
                ]
            ),
            "next_attempt_ts",
            limit=limit,
        )
        return [self._payload_to_delivery(p) for p in payloads]

    @storage_operation
    async def get_deliveries_by_status(self, status: str) -> list[DeliveryRecord]:
        """Get every record currently in ``status`` (used for recovery of stranded attempts)."""
        payloads = await self._scroll_all(
            "deliveries",
            models.Filter(
                must=[models.FieldCondition(key="status", match=models.MatchValue(value=status))]
            ),
        )
        return [self._payload_to_delivery(p) for p in payloads]

    @storage_operation
    async def delete_deliveries_for_webhook(self, webhook_id: str) -> int:
        """Delete every record owned by a subscription.

        Returns:
            Number of records deleted.
        """
        scroll_filter = models.Filter(must=self._webhook_conditions(webhook_id))
        count = await self._count("deliveries", scroll_filter)
        if count:
            await self.client.delete(
                collection_name=self._collection_name("deliveries"),
                points_selector=models.FilterSelector(filter=scroll_filter),
            )
        return count
