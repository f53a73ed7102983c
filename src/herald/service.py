"""Herald service layer.

This module provides the WebhookService that wires storage, transport,
registry, dispatcher, scheduler and statistics behind one owner-facing
interface.

Example:
    ```python
    from herald.service import WebhookService

    async with WebhookService.create() as herald:
        sub = await herald.register_webhook(
            owner_id="biz_42",
            url="https://example.com/hooks",
            events=["bid.created"],
        )
        await herald.dispatch_event("bid.created", {"bid_id": "b_1"})
        stats = await herald.get_stats(sub.id, owner_id="biz_42")
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from herald.config import Settings
from herald.exceptions import AuthorizationError, NotFoundError, ValidationError
from herald.models import (
    TEST_EVENT_TYPE,
    AttemptOutcome,
    DeliveryPage,
    DeliveryRecord,
    DeliveryStats,
    DomainEvent,
    SubscriptionUpdate,
    WebhookSubscription,
    is_known_event,
    utc_now,
)
from herald.storage import HeraldStorage
from herald.webhooks import (
    RetryScheduler,
    StatsAggregator,
    WebhookDispatcher,
    WebhookRegistry,
    WebhookTransport,
)

logger = logging.getLogger(__name__)


@dataclass
class WebhookService:
    """High-level webhook service.

    This service provides:
    - register/get/list/update/activate/deactivate/delete webhooks
    - rotate_secret(): issue a new signing secret
    - dispatch()/dispatch_event(): fan an event out to subscribers
    - test_webhook(): one synchronous, unrecorded test delivery
    - redeliver(): re-trigger a finished delivery as a new record
    - get_deliveries()/get_stats(): delivery history and statistics

    Uses dependency injection for storage and transport, making it easy to
    test and configure.

    Attributes:
        storage: Storage backend (Qdrant).
        transport: Outbound HTTP transport.
        settings: Configuration settings.
    """

    storage: HeraldStorage
    transport: WebhookTransport
    settings: Settings

    registry: WebhookRegistry = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    dispatcher: WebhookDispatcher = field(init=False, repr=False)
    stats: StatsAggregator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the engine components over the injected storage and transport."""
        self.registry = WebhookRegistry(
            self.storage, delivery_retention=self.settings.delivery_retention
        )
        self.scheduler = RetryScheduler(
            self.storage,
            self.transport,
            policy=self.settings.retry,
            max_concurrent=self.settings.max_concurrent_deliveries,
            poll_interval_seconds=self.settings.scheduler_poll_interval_seconds,
        )
        self.dispatcher = WebhookDispatcher(self.storage, self.scheduler)
        self.stats = StatsAggregator(self.storage)

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses the environment if None.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=HeraldStorage(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
            ),
            transport=WebhookTransport(
                timeout_seconds=settings.request_timeout_seconds,
                user_agent=settings.user_agent,
                response_excerpt_chars=settings.response_excerpt_chars,
            ),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize the service (storage collections, etc.)."""
        await self.storage.initialize()

    async def start(self) -> None:
        """Recover interrupted deliveries and start the retry scheduler."""
        await self.scheduler.start()

    async def stop(self, grace_seconds: float = 10.0) -> None:
        await self.scheduler.stop(grace_seconds)

    async def close(self) -> None:
        """Stop the scheduler and release the transport and storage clients."""
        await self.stop()
        await self.transport.close()
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # -- subscriptions ------------------------------------------------------

    async def register_webhook(
        self,
        owner_id: str,
        url: str,
        events: list[str],
        secret: str | None = None,
        headers: dict[str, str] | None = None,
        description: str | None = None,
    ) -> WebhookSubscription:
        return await self.registry.register(
            owner_id=owner_id,
            url=url,
            events=events,
            secret=secret,
            headers=headers,
            description=description,
        )

    async def get_webhook(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        return await self.registry.get(webhook_id, owner_id)

    async def list_webhooks(
        self,
        owner_id: str,
        active: bool | None = None,
        event: str | None = None,
    ) -> list[WebhookSubscription]:
        return await self.registry.list_subscriptions(owner_id, active=active, event=event)

    async def update_webhook(
        self,
        webhook_id: str,
        owner_id: str,
        update: SubscriptionUpdate,
    ) -> WebhookSubscription:
        return await self.registry.update(webhook_id, owner_id, update)

    async def activate_webhook(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        return await self.registry.activate(webhook_id, owner_id)

    async def deactivate_webhook(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        return await self.registry.deactivate(webhook_id, owner_id)

    async def rotate_secret(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        return await self.registry.rotate_secret(webhook_id, owner_id)

    async def delete_webhook(self, webhook_id: str, owner_id: str) -> int:
        return await self.registry.delete(webhook_id, owner_id)

    # -- delivery -----------------------------------------------------------

    async def dispatch(self, event: DomainEvent) -> list[DeliveryRecord]:
        return await self.dispatcher.dispatch(event)

    async def dispatch_event(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        event_id: str | None = None,
    ) -> list[DeliveryRecord]:
        return await self.dispatcher.dispatch_event(event_type, data, event_id=event_id)

    async def test_webhook(
        self,
        webhook_id: str,
        owner_id: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AttemptOutcome:
        """Send one test delivery and return its outcome.

        The delivery record built for the attempt is never stored, scheduled
        or retried, so test traffic does not appear in history or statistics.

        Args:
            webhook_id: Subscription to test.
            owner_id: Calling owner.
            event_type: Event type to send. Defaults to ``test.ping``.
            data: Payload merged into the test event.

        Raises:
            ValidationError: If ``event_type`` is not a recognized event.
        """
        subscription = await self.registry.get(webhook_id, owner_id)

        if event_type is None or event_type == TEST_EVENT_TYPE:
            event = DomainEvent.test_ping(subscription.id, data)
        elif is_known_event(event_type):
            event = DomainEvent(type=event_type, data={**(data or {}), "test": True})
        else:
            raise ValidationError("event", f"unknown event type: {event_type}")

        record = DeliveryRecord.for_subscription(subscription, event)
        outcome = await self.transport.attempt(record)
        logger.info(
            "Test delivery to %s: %s",
            webhook_id,
            "success" if outcome.success else outcome.error_kind,
        )
        return outcome

    async def get_delivery(self, delivery_id: str, owner_id: str) -> DeliveryRecord:
        """Get one delivery record owned by ``owner_id``.

        Raises:
            NotFoundError: If the record does not exist.
            AuthorizationError: If it belongs to another owner.
        """
        record = await self.storage.get_delivery(delivery_id)
        if record is None:
            raise NotFoundError("delivery", delivery_id)
        if record.owner_id != owner_id:
            raise AuthorizationError("delivery", delivery_id)
        return record

    async def redeliver(
        self,
        delivery_id: str,
        owner_id: str,
        webhook_id: str | None = None,
    ) -> DeliveryRecord:
        """Re-trigger a finished delivery as a new record.

        The new record carries the original event snapshot, targets the
        subscription's current url, secret and headers, and links back via
        ``redelivery_of``. The original record is left untouched.

        Raises:
            NotFoundError: If the record (or its subscription) does not exist,
                or does not belong to ``webhook_id`` when one is given.
            AuthorizationError: If it belongs to another owner.
            ValidationError: If the original is still in progress.
        """
        original = await self.get_delivery(delivery_id, owner_id)
        if webhook_id is not None and original.webhook_id != webhook_id:
            raise NotFoundError("delivery", delivery_id)
        if not original.is_terminal:
            raise ValidationError(
                "delivery_id", f"delivery is still {original.status}; wait for it to finish"
            )

        subscription = await self.registry.get(original.webhook_id, owner_id)
        record = DeliveryRecord.for_subscription(
            subscription, original.event, redelivery_of=original.id
        )
        await self.storage.store_delivery(record)
        self.scheduler.submit(record.id)
        logger.info("Redelivering %s as %s", original.id, record.id)
        return record

    # -- reads --------------------------------------------------------------

    async def get_deliveries(
        self,
        webhook_id: str,
        owner_id: str,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
        event: str | None = None,
    ) -> DeliveryPage:
        await self.registry.get(webhook_id, owner_id)
        return await self.stats.get_deliveries(
            webhook_id, page=page, page_size=page_size, status=status, event=event
        )

    async def get_stats(
        self,
        webhook_id: str,
        owner_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> DeliveryStats:
        """Delivery statistics for records created in ``[start, end)``.

        Defaults to the last ``stats_default_window_days`` days.
        """
        await self.registry.get(webhook_id, owner_id)
        end = end or utc_now()
        start = start or end - timedelta(days=self.settings.stats_default_window_days)
        return await self.stats.get_stats(webhook_id, start, end)


__all__ = ["WebhookService"]
