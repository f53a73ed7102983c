"""Pydantic schemas for API request/response models.

Secrets appear only in the responses to create and rotate-secret; every other
response uses a schema without a secret field.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from herald.models import DeliveryAttempt, DeliveryPage, DeliveryRecord, WebhookSubscription


class CreateWebhookRequest(BaseModel):
    """Request body for registering a webhook.

    URL and event names are checked by the registry so that bad values
    surface as 400 validation errors.

    Attributes:
        url: HTTP(S) endpoint to receive events.
        events: Event types to subscribe to.
        description: Optional description.
        headers: Extra headers sent with every delivery.
        secret: Optional signing secret (generated if omitted).
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(description="Endpoint to receive events")
    events: list[str] = Field(description="Event types to subscribe to")
    description: str | None = Field(default=None, description="Optional description")
    headers: dict[str, str] | None = Field(default=None, description="Custom delivery headers")
    secret: str | None = Field(default=None, description="Signing secret (min 16 chars)")


class UpdateWebhookRequest(BaseModel):
    """Request body for a partial webhook update. Omitted fields are unchanged."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    events: list[str] | None = None
    active: bool | None = None
    description: str | None = None
    headers: dict[str, str] | None = None


class WebhookTestRequest(BaseModel):
    """Request body for a test delivery.

    Attributes:
        event: Event type to send (defaults to test.ping).
        data: Payload for the test event.
    """

    model_config = ConfigDict(extra="forbid")

    event: str | None = None
    data: dict[str, Any] | None = None


class WebhookResponse(BaseModel):
    """A webhook subscription as shown to its owner (secret redacted)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    owner_id: str
    url: str
    events: list[str]
    active: bool
    description: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> WebhookResponse:
        return cls(
            id=subscription.id,
            owner_id=subscription.owner_id,
            url=str(subscription.url),
            events=list(subscription.events),
            active=subscription.active,
            description=subscription.description,
            headers=dict(subscription.headers),
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class WebhookSecretResponse(WebhookResponse):
    """Returned by create and rotate-secret: the only responses carrying the secret."""

    secret: str

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> WebhookSecretResponse:
        base = WebhookResponse.from_subscription(subscription)
        return cls(**base.model_dump(), secret=subscription.secret)


class WebhookListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    webhooks: list[WebhookResponse]
    total: int


class DeleteWebhookResponse(BaseModel):
    """Response for webhook deletion.

    Attributes:
        id: Deleted webhook ID.
        deleted: Always True.
        deliveries_removed: Delivery records removed with it (cascade retention only).
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    deleted: bool = True
    deliveries_removed: int = 0


class DeliveryResponse(BaseModel):
    """A delivery record as shown to its owner (signing secret omitted)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    webhook_id: str
    event_id: str
    event_type: str
    target_url: str
    status: str
    attempt_count: int
    attempts: list[DeliveryAttempt]
    next_attempt_at: datetime | None = None
    created_at: datetime
    completed_at: datetime | None = None
    redelivery_of: str | None = None

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> DeliveryResponse:
        return cls(
            id=record.id,
            webhook_id=record.webhook_id,
            event_id=record.event.id,
            event_type=record.event.type,
            target_url=record.target_url,
            status=record.status,
            attempt_count=record.attempt_count,
            attempts=list(record.attempts),
            next_attempt_at=record.next_attempt_at,
            created_at=record.created_at,
            completed_at=record.completed_at,
            redelivery_of=record.redelivery_of,
        )


class DeliveryPageResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[DeliveryResponse]
    total: int
    page: int
    page_size: int
    has_more: bool

    @classmethod
    def from_page(cls, page: DeliveryPage) -> DeliveryPageResponse:
        return cls(
            items=[DeliveryResponse.from_record(r) for r in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            has_more=page.has_more,
        )


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, degraded, unhealthy).
        version: API version.
        storage_connected: Whether storage is connected.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
