"""FastAPI router for Herald webhook administration.

Every route acts on behalf of the principal in ``X-Principal-Id``. Herald
errors raised by the service propagate to the exception handlers registered
in :func:`herald.api.app.create_app`, which map them to HTTP statuses.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status

from herald import __version__
from herald.exceptions import ValidationError
from herald.models import AttemptOutcome, DeliveryStats, SubscriptionUpdate
from herald.service import WebhookService

from .auth import PrincipalDep
from .schemas import (
    CreateWebhookRequest,
    DeleteWebhookResponse,
    DeliveryPageResponse,
    DeliveryResponse,
    HealthResponse,
    UpdateWebhookRequest,
    WebhookListResponse,
    WebhookResponse,
    WebhookSecretResponse,
    WebhookTestRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is not None:
        return HealthResponse(status="healthy", version=__version__, storage_connected=True)
    return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)


@router.post(
    "/webhooks",
    response_model=WebhookSecretResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: CreateWebhookRequest,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> WebhookSecretResponse:
    """Register a webhook. The response is the only one that includes the secret."""
    subscription = await service.register_webhook(
        owner_id=owner_id,
        url=request.url,
        events=request.events,
        secret=request.secret,
        headers=request.headers,
        description=request.description,
    )
    return WebhookSecretResponse.from_subscription(subscription)


@router.get("/webhooks", response_model=WebhookListResponse, tags=["webhooks"])
async def list_webhooks(
    owner_id: PrincipalDep,
    service: ServiceDep,
    active: bool | None = None,
    event: str | None = None,
    status_filter: Annotated[
        Literal["active", "inactive"] | None, Query(alias="status")
    ] = None,
) -> WebhookListResponse:
    """List the caller's webhooks, newest first.

    ``status=active|inactive`` is shorthand for the ``active`` flag.
    """
    if status_filter is not None:
        wanted = status_filter == "active"
        if active is not None and active != wanted:
            raise ValidationError("status", "conflicts with the active filter")
        active = wanted

    subscriptions = await service.list_webhooks(owner_id, active=active, event=event)
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_subscription(s) for s in subscriptions],
        total=len(subscriptions),
    )


@router.get("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def get_webhook(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> WebhookResponse:
    subscription = await service.get_webhook(webhook_id, owner_id)
    return WebhookResponse.from_subscription(subscription)


@router.patch("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def update_webhook(
    webhook_id: str,
    request: UpdateWebhookRequest,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> WebhookResponse:
    """Partially update a webhook. Only fields present in the body change."""
    update = SubscriptionUpdate(**request.model_dump(exclude_unset=True))
    subscription = await service.update_webhook(webhook_id, owner_id, update)
    return WebhookResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/{webhook_id}", response_model=DeleteWebhookResponse, tags=["webhooks"]
)
async def delete_webhook(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> DeleteWebhookResponse:
    removed = await service.delete_webhook(webhook_id, owner_id)
    return DeleteWebhookResponse(id=webhook_id, deliveries_removed=removed)


@router.post(
    "/webhooks/{webhook_id}/deactivate", response_model=WebhookResponse, tags=["webhooks"]
)
async def deactivate_webhook(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> WebhookResponse:
    """Stop new events from matching. Already scheduled deliveries still run."""
    subscription = await service.deactivate_webhook(webhook_id, owner_id)
    return WebhookResponse.from_subscription(subscription)


@router.post(
    "/webhooks/{webhook_id}/activate", response_model=WebhookResponse, tags=["webhooks"]
)
async def activate_webhook(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> WebhookResponse:
    subscription = await service.activate_webhook(webhook_id, owner_id)
    return WebhookResponse.from_subscription(subscription)


@router.post(
    "/webhooks/{webhook_id}/rotate-secret",
    response_model=WebhookSecretResponse,
    tags=["webhooks"],
)
async def rotate_secret(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> WebhookSecretResponse:
    """Issue a new signing secret. Deliveries already created keep the old one."""
    subscription = await service.rotate_secret(webhook_id, owner_id)
    return WebhookSecretResponse.from_subscription(subscription)


@router.post("/webhooks/{webhook_id}/test", response_model=AttemptOutcome, tags=["deliveries"])
async def test_webhook(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
    request: WebhookTestRequest | None = None,
) -> AttemptOutcome:
    """Send one test delivery synchronously. Nothing is recorded or retried."""
    body = request or WebhookTestRequest()
    return await service.test_webhook(
        webhook_id, owner_id, event_type=body.event, data=body.data
    )


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=DeliveryPageResponse,
    tags=["deliveries"],
)
async def list_deliveries(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    event: str | None = None,
) -> DeliveryPageResponse:
    """Get a page of delivery history, newest first."""
    result = await service.get_deliveries(
        webhook_id,
        owner_id,
        page=page,
        page_size=page_size,
        status=status_filter,
        event=event,
    )
    return DeliveryPageResponse.from_page(result)


@router.post(
    "/webhooks/{webhook_id}/deliveries/{delivery_id}/redeliver",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["deliveries"],
)
async def redeliver(
    webhook_id: str,
    delivery_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
) -> DeliveryResponse:
    """Re-trigger a finished delivery as a new record."""
    record = await service.redeliver(delivery_id, owner_id, webhook_id=webhook_id)
    return DeliveryResponse.from_record(record)


@router.get("/webhooks/{webhook_id}/stats", response_model=DeliveryStats, tags=["deliveries"])
async def get_stats(
    webhook_id: str,
    owner_id: PrincipalDep,
    service: ServiceDep,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> DeliveryStats:
    """Delivery statistics for the window (default: the last 30 days)."""
    return await service.get_stats(
        webhook_id,
        owner_id,
        start=_as_utc(start_date),
        end=_as_utc(end_date),
    )
