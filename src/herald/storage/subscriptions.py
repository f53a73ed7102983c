"""Subscription storage operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from qdrant_client import models

from herald.storage.retry import storage_operation

if TYPE_CHECKING:
    from herald.models import WebhookSubscription


class SubscriptionMixin:
    """Mixin providing subscription operations for HeraldStorage.

    This mixin expects the following from the base class:
    - _collection_name(kind) -> str
    - _key_to_point_id(key) -> str
    - _upsert / _retrieve / _scroll_all helpers
    - _subscription_to_payload / _payload_to_subscription converters
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _key_to_point_id: Any
    _upsert: Any
    _retrieve: Any
    _scroll_all: Any
    _subscription_to_payload: Any
    _payload_to_subscription: Any
    client: Any

    @storage_operation
    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        """Insert or replace a subscription.

        Returns:
            The subscription ID.
        """
        await self._upsert("webhooks", subscription.id, self._subscription_to_payload(subscription))
        return subscription.id

    @storage_operation
    async def get_subscription(self, webhook_id: str) -> WebhookSubscription | None:
        """Get a subscription by ID, or None if it does not exist."""
        payload = await self._retrieve("webhooks", webhook_id)
        if payload is None:
            return None
        subscription: WebhookSubscription = self._payload_to_subscription(payload)
        return subscription

    @storage_operation
    async def list_subscriptions(
        self,
        owner_id: str,
        active: bool | None = None,
        event_type: str | None = None,
    ) -> list[WebhookSubscription]:
        """List one owner's subscriptions, newest first.

        Args:
            owner_id: Only this owner's subscriptions are returned.
            active: Optional filter on the active flag.
            event_type: Only subscriptions listing this event type.
        """
        filters: list[models.Condition] = [
            models.FieldCondition(key="owner_id", match=models.MatchValue(value=owner_id)),
        ]
        if active is not None:
            filters.append(
                models.FieldCondition(key="active", match=models.MatchValue(value=active))
            )
        if event_type is not None:
            filters.append(
                models.FieldCondition(key="events", match=models.MatchValue(value=event_type))
            )

        payloads = await self._scroll_all("webhooks", models.Filter(must=filters))
        subscriptions = [self._payload_to_subscription(p) for p in payloads]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    @storage_operation
    async def find_subscriptions_for_event(self, event_type: str) -> list[WebhookSubscription]:
        """Get every active subscription, across owners, that lists ``event_type``."""
        payloads = await self._scroll_all(
            "webhooks",
            models.Filter(
                must=[
                    models.FieldCondition(key="active", match=models.MatchValue(value=True)),
                    models.FieldCondition(
                        key="events", match=models.MatchValue(value=event_type)
                    ),
                ]
            ),
        )
        subscriptions = [self._payload_to_subscription(p) for p in payloads]
        subscriptions.sort(key=lambda s: s.created_at)
        return [s for s in subscriptions if s.subscribes_to(event_type)]

    @storage_operation
    async def delete_subscription(self, webhook_id: str) -> bool:
        """Hard-delete a subscription.

        Returns:
            True if it existed, False otherwise.
        """
        if await self._retrieve("webhooks", webhook_id) is None:
            return False
        await self.client.delete(
            collection_name=self._collection_name("webhooks"),
            points_selector=models.PointIdsList(points=[self._key_to_point_id(webhook_id)]),
        )
        return True
