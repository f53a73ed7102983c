"""Fan-out of domain events to matching subscriptions.

Dispatch only writes delivery records and hands them to the scheduler; it
never waits on a subscriber. Producers get control back as soon as the
records are persisted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from herald.exceptions import ValidationError
from herald.models import DeliveryRecord, DomainEvent, is_known_event

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

    from .scheduler import RetryScheduler

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Matches events to active subscriptions and creates delivery records.

    Every call creates fresh records, even for an event id seen before.
    Subscribers de-duplicate on ``X-Herald-Event-Id`` if they need to.

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage, scheduler)
        records = await dispatcher.dispatch_event(
            "bid.created", {"bid_id": "b_1", "amount": 1200}
        )
        ```
    """

    def __init__(self, storage: HeraldStorage, scheduler: RetryScheduler) -> None:
        self._storage = storage
        self._scheduler = scheduler

    async def dispatch(self, event: DomainEvent) -> list[DeliveryRecord]:
        """Create one pending record per matching subscription and submit it.

        Subscriptions are matched across all owners. Inactive ones, and ones
        that do not list the event type, are skipped.

        Args:
            event: Event to deliver.

        Returns:
            The pending delivery records created, one per matching subscription.
        """
        subscriptions = await self._storage.find_subscriptions_for_event(event.type)
        if not subscriptions:
            logger.debug("No webhooks subscribed to %s", event.type)
            return []

        records = [DeliveryRecord.for_subscription(sub, event) for sub in subscriptions]
        for record in records:
            await self._storage.store_delivery(record)
        for record in records:
            self._scheduler.submit(record.id)

        logger.info(
            "Dispatched %s (%s) to %d webhooks",
            event.type,
            event.id,
            len(records),
        )
        return records

    async def dispatch_event(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        event_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> list[DeliveryRecord]:
        """Build a DomainEvent and dispatch it.

        Raises:
            ValidationError: If ``event_type`` is not a recognized event.
        """
        if not is_known_event(event_type):
            raise ValidationError("event_type", f"unknown event type: {event_type}")

        fields: dict[str, Any] = {"type": event_type, "data": data or {}}
        if event_id is not None:
            fields["id"] = event_id
        if occurred_at is not None:
            fields["occurred_at"] = occurred_at
        return await self.dispatch(DomainEvent(**fields))
