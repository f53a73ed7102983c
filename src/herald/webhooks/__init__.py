"""Webhook delivery engine.

Provides:
- Signing: HMAC-SHA256 signatures and outbound headers
- WebhookTransport: one signed POST, classified into an AttemptOutcome
- RetryScheduler: attempt execution, backoff and durable recovery
- WebhookRegistry: owner-scoped subscription management
- WebhookDispatcher: event fan-out to matching subscriptions
- StatsAggregator: delivery statistics and history
"""

from .backoff import backoff_delay, jittered_delay, next_attempt_time
from .dispatcher import WebhookDispatcher
from .registry import WebhookRegistry
from .scheduler import RetryScheduler
from .signing import (
    ATTEMPT_HEADER,
    DELIVERY_HEADER,
    EVENT_HEADER,
    EVENT_ID_HEADER,
    RESERVED_HEADERS,
    SIGNATURE_HEADER,
    build_headers,
    compute_signature,
    verify_signature,
)
from .stats import StatsAccumulator, StatsAggregator
from .transport import WebhookTransport

__all__ = [
    "ATTEMPT_HEADER",
    "DELIVERY_HEADER",
    "EVENT_HEADER",
    "EVENT_ID_HEADER",
    "RESERVED_HEADERS",
    "RetryScheduler",
    "SIGNATURE_HEADER",
    "StatsAccumulator",
    "StatsAggregator",
    "WebhookDispatcher",
    "WebhookRegistry",
    "WebhookTransport",
    "backoff_delay",
    "build_headers",
    "compute_signature",
    "jittered_delay",
    "next_attempt_time",
    "verify_signature",
]
