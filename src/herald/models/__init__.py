"""Models for the Herald webhook engine.

Subscriptions:
    - WebhookSubscription: Registered endpoint, event set and signing secret
    - SubscriptionUpdate: Owner patch

Events:
    - DomainEvent: Event snapshot delivered to subscribers
    - ALL_EVENT_TYPES / EventType: The closed set of subscribable events

Deliveries:
    - DeliveryRecord: One event to one subscription, across retries
    - DeliveryAttempt / AttemptOutcome: Per-attempt results
    - DeliveryStats / DeliveryPage: Read models
"""

from .base import generate_id, utc_now
from .delivery import (
    ALL_DELIVERY_STATUSES,
    DUE_STATUSES,
    TERMINAL_STATUSES,
    AttemptOutcome,
    DeliveryAttempt,
    DeliveryRecord,
    DeliveryStatus,
)
from .events import (
    ALL_EVENT_TYPES,
    TEST_EVENT_TYPE,
    DomainEvent,
    EventType,
    is_known_event,
)
from .stats import DeliveryPage, DeliveryStats
from .subscription import SECRET_PREFIX, SubscriptionUpdate, WebhookSubscription, generate_secret

__all__ = [
    "ALL_DELIVERY_STATUSES",
    "ALL_EVENT_TYPES",
    "AttemptOutcome",
    "DUE_STATUSES",
    "DeliveryAttempt",
    "DeliveryPage",
    "DeliveryRecord",
    "DeliveryStats",
    "DeliveryStatus",
    "DomainEvent",
    "EventType",
    "SECRET_PREFIX",
    "SubscriptionUpdate",
    "TERMINAL_STATUSES",
    "TEST_EVENT_TYPE",
    "WebhookSubscription",
    "generate_id",
    "generate_secret",
    "is_known_event",
    "utc_now",
]
