"""Herald: signed, retried webhook delivery for marketplace events.

Owners register HTTP endpoints for the events they care about. Each event is
fanned out to every active matching subscription as a durable delivery record,
signed with the subscription's secret, and retried with exponential backoff
until it succeeds or runs out of attempts.

Quick Start:
    from herald import WebhookService

    async with WebhookService.create() as herald:
        sub = await herald.register_webhook(
            owner_id="biz_42",
            url="https://example.com/hooks",
            events=["bid.created", "rfq.awarded"],
        )
        await herald.dispatch_event("bid.created", {"bid_id": "b_1"})

Subscribers verify deliveries with ``herald.webhooks.verify_signature``.
"""

__version__ = "0.1.0"

# Configuration
from .config import RetryPolicy, Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ExhaustionError,
    HeraldError,
    NotFoundError,
    StorageError,
    TransportError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    bind_delivery_context,
    clear_context,
    configure_logging,
    get_logger,
)

# Models
from .models import (
    ALL_EVENT_TYPES,
    AttemptOutcome,
    DeliveryAttempt,
    DeliveryPage,
    DeliveryRecord,
    DeliveryStats,
    DomainEvent,
    SubscriptionUpdate,
    WebhookSubscription,
)

# Service
from .service import WebhookService

__all__ = [
    "ALL_EVENT_TYPES",
    "AttemptOutcome",
    "AuthenticationError",
    "AuthorizationError",
    "DeliveryAttempt",
    "DeliveryPage",
    "DeliveryRecord",
    "DeliveryStats",
    "DomainEvent",
    "ExhaustionError",
    "HeraldError",
    "NotFoundError",
    "RetryPolicy",
    "Settings",
    "StorageError",
    "SubscriptionUpdate",
    "TransportError",
    "ValidationError",
    "WebhookService",
    "WebhookSubscription",
    "__version__",
    "bind_context",
    "bind_delivery_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "settings",
]
