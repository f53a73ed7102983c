"""Domain events that can be delivered to webhook subscribers."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

# Event types a subscription may list
EventType = Literal[
    "bid.created",
    "bid.updated",
    "bid.accepted",
    "bid.rejected",
    "bid.withdrawn",
    "rfq.created",
    "rfq.updated",
    "rfq.closed",
    "rfq.awarded",
    "rfq.cancelled",
    "document.uploaded",
    "document.signed",
    "document.expired",
    "business.created",
    "business.updated",
    "business.verified",
    "business.verification_failed",
    "certification.added",
    "certification.expired",
]

ALL_EVENT_TYPES: tuple[str, ...] = get_args(EventType)

# Sent only by test deliveries; not subscribable
TEST_EVENT_TYPE = "test.ping"


def is_known_event(event_type: str) -> bool:
    return event_type in ALL_EVENT_TYPES


class DomainEvent(BaseModel):
    """An event produced by the marketplace, snapshotted for delivery.

    Attributes:
        id: Event identity. Producers that need de-duplication downstream
            should pass a stable id; otherwise one is generated.
        type: Recognized event type, or ``test.ping`` for test sends.
        occurred_at: When the producer observed the event.
        data: JSON-serializable payload.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("evt"))
    type: str = Field(description="Event type tag")
    occurred_at: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")

    def canonical_body(self) -> bytes:
        """Serialize to the exact bytes that are signed and sent.

        Keys are sorted and separators compact, so the same event always
        produces the same body and the same signature.
        """
        envelope = {
            "id": self.id,
            "type": self.type,
            "occurred_at": self.occurred_at.isoformat(),
            "data": self.data,
        }
        return json.dumps(
            envelope,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        ).encode("utf-8")

    @classmethod
    def test_ping(cls, webhook_id: str, data: dict[str, Any] | None = None) -> DomainEvent:
        """Build the ephemeral event used by test deliveries."""
        # Caller data cannot unset the markers.
        payload: dict[str, Any] = {**(data or {}), "webhook_id": webhook_id, "test": True}
        return cls(type=TEST_EVENT_TYPE, data=payload)


__all__ = [
    "ALL_EVENT_TYPES",
    "DomainEvent",
    "EventType",
    "TEST_EVENT_TYPE",
    "is_known_event",
]
