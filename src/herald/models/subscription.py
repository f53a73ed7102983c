"""Webhook subscription models."""

from __future__ import annotations

import secrets
import string
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from .base import generate_id, utc_now
from .events import EventType

SECRET_PREFIX = "whsec_"
SECRET_ALPHABET = string.ascii_letters + string.digits
SECRET_LENGTH = 32


def generate_secret() -> str:
    """Generate a signing secret in the ``whsec_`` + 32 alphanumerics format."""
    return SECRET_PREFIX + "".join(secrets.choice(SECRET_ALPHABET) for _ in range(SECRET_LENGTH))


class WebhookSubscription(BaseModel):
    """A registered endpoint that receives signed event deliveries.

    Attributes:
        id: Unique identifier for this subscription.
        owner_id: Principal who registered it; every per-id operation is
            checked against this.
        url: HTTP(S) endpoint that receives POSTs.
        secret: HMAC-SHA256 signing key. Never included in read responses.
        events: Event types this subscription receives.
        active: Inactive subscriptions receive no new deliveries.
        description: Optional human-readable description.
        headers: Extra headers sent with every delivery.
        created_at: When the subscription was registered.
        updated_at: When it was last edited by its owner.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    owner_id: str = Field(description="Principal who owns this subscription")
    url: HttpUrl = Field(description="Endpoint to receive events")
    secret: str = Field(default_factory=generate_secret, description="HMAC signing secret")
    events: list[EventType] = Field(min_length=1, description="Subscribed event types")
    active: bool = Field(default=True, description="Whether new events are delivered")
    description: str | None = Field(default=None, max_length=500)
    headers: dict[str, str] = Field(default_factory=dict, description="Custom delivery headers")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this subscription should receive the given event type."""
        return self.active and event_type in self.events

    def is_owned_by(self, owner_id: str) -> bool:
        return self.owner_id == owner_id


class SubscriptionUpdate(BaseModel):
    """Partial update applied by the owner. Unset fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    events: list[str] | None = None
    active: bool | None = None
    description: str | None = None
    headers: dict[str, str] | None = None

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


__all__ = [
    "SECRET_PREFIX",
    "SubscriptionUpdate",
    "WebhookSubscription",
    "generate_secret",
]
