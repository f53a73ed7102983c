"""Owner-scoped subscription management.

Every per-id operation takes the calling owner and refuses to touch a
subscription registered by someone else. A missing id raises NotFoundError;
an id owned by another principal raises AuthorizationError.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Literal

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from herald.exceptions import AuthorizationError, NotFoundError, ValidationError
from herald.models import (
    SubscriptionUpdate,
    WebhookSubscription,
    generate_secret,
    is_known_event,
    utc_now,
)

from .signing import is_reserved_header

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16
MAX_DESCRIPTION_LENGTH = 500

# RFC 9110 field-name token
_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

_url_adapter: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)


def validate_url(url: str) -> str:
    """Check that ``url`` is an absolute http(s) URL with a host.

    Returns:
        The normalized URL string.

    Raises:
        ValidationError: If the URL is malformed or uses another scheme.
    """
    try:
        parsed = _url_adapter.validate_python(url)
    except PydanticValidationError as e:
        raise ValidationError("url", f"invalid URL: {url!r}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError("url", f"URL must be http(s) with a host: {url!r}")
    return str(parsed)


def validate_events(events: list[str]) -> list[str]:
    """Check the event list is non-empty and fully recognized; drop duplicates."""
    if not events:
        raise ValidationError("events", "at least one event type is required")
    unknown = [e for e in events if not is_known_event(e)]
    if unknown:
        raise ValidationError("events", f"unknown event types: {', '.join(sorted(set(unknown)))}")
    return list(dict.fromkeys(events))


def validate_headers(headers: dict[str, str]) -> dict[str, str]:
    """Check custom header names and values."""
    for name, value in headers.items():
        if not _HEADER_NAME.match(name):
            raise ValidationError("headers", f"invalid header name: {name!r}")
        if is_reserved_header(name):
            raise ValidationError("headers", f"header is set by the delivery engine: {name}")
        if "\r" in value or "\n" in value:
            raise ValidationError("headers", f"header value for {name} contains a line break")
    return dict(headers)


def validate_secret(secret: str) -> str:
    if len(secret) < MIN_SECRET_LENGTH:
        raise ValidationError("secret", f"must be at least {MIN_SECRET_LENGTH} characters")
    return secret


def validate_description(description: str | None) -> str | None:
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            "description", f"must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


class WebhookRegistry:
    """Registers, edits and removes webhook subscriptions.

    Example:
        ```python
        registry = WebhookRegistry(storage)
        sub = await registry.register(
            owner_id="biz_42",
            url="https://example.com/hooks",
            events=["bid.created", "rfq.awarded"],
        )
        print(sub.secret)  # shown once; later reads are redacted by the API
        ```
    """

    def __init__(
        self,
        storage: HeraldStorage,
        delivery_retention: Literal["keep", "cascade"] = "keep",
    ) -> None:
        """Initialize the registry.

        Args:
            storage: Store for subscriptions (and delivery records on cascade).
            delivery_retention: What ``delete`` does with the subscription's
                delivery records: "keep" leaves them for audit, "cascade"
                removes them.
        """
        self._storage = storage
        self._retention = delivery_retention

    async def register(
        self,
        owner_id: str,
        url: str,
        events: list[str],
        secret: str | None = None,
        headers: dict[str, str] | None = None,
        description: str | None = None,
    ) -> WebhookSubscription:
        """Create an active subscription owned by ``owner_id``.

        Args:
            owner_id: Principal registering the subscription.
            url: HTTP(S) endpoint to POST events to.
            events: Event types to subscribe to.
            secret: Signing secret. Generated when omitted.
            headers: Extra headers sent with every delivery.
            description: Free-form description.

        Returns:
            The stored subscription, including its secret.

        Raises:
            ValidationError: If any input is invalid.
        """
        subscription = WebhookSubscription(
            owner_id=owner_id,
            url=validate_url(url),  # type: ignore[arg-type]
            events=validate_events(events),  # type: ignore[arg-type]
            secret=validate_secret(secret) if secret is not None else generate_secret(),
            headers=validate_headers(headers or {}),
            description=validate_description(description),
        )
        await self._storage.store_subscription(subscription)
        logger.info(
            "Registered webhook %s for %s (%d events)",
            subscription.id,
            owner_id,
            len(subscription.events),
        )
        return subscription

    async def get(self, webhook_id: str, owner_id: str | None = None) -> WebhookSubscription:
        """Get a subscription, optionally checking ownership.

        Raises:
            NotFoundError: If no subscription has this id.
            AuthorizationError: If ``owner_id`` is given and does not match.
        """
        subscription = await self._storage.get_subscription(webhook_id)
        if subscription is None:
            raise NotFoundError("webhook", webhook_id)
        if owner_id is not None and not subscription.is_owned_by(owner_id):
            logger.warning("Owner %s denied access to webhook %s", owner_id, webhook_id)
            raise AuthorizationError("webhook", webhook_id)
        return subscription

    async def list_subscriptions(
        self,
        owner_id: str,
        active: bool | None = None,
        event: str | None = None,
    ) -> list[WebhookSubscription]:
        """List the owner's subscriptions, newest first."""
        return await self._storage.list_subscriptions(owner_id, active=active, event_type=event)

    async def update(
        self,
        webhook_id: str,
        owner_id: str,
        update: SubscriptionUpdate,
    ) -> WebhookSubscription:
        """Apply the owner's partial update.

        Delivery records already created keep the url, secret and headers
        captured at fan-out; edits affect future events only.
        """
        subscription = await self.get(webhook_id, owner_id)
        changes = update.changes()
        if not changes:
            return subscription

        values: dict[str, Any] = {}
        if "url" in changes:
            if update.url is None:
                raise ValidationError("url", "cannot be null")
            values["url"] = validate_url(update.url)
        if "events" in changes:
            values["events"] = validate_events(update.events or [])
        if "active" in changes:
            if update.active is None:
                raise ValidationError("active", "cannot be null")
            values["active"] = update.active
        if "description" in changes:
            values["description"] = validate_description(update.description)
        if "headers" in changes:
            values["headers"] = validate_headers(update.headers or {})

        updated = WebhookSubscription.model_validate(
            {**subscription.model_dump(), **values, "updated_at": utc_now()}
        )
        await self._storage.store_subscription(updated)
        logger.info("Updated webhook %s (%s)", webhook_id, ", ".join(sorted(values)))
        return updated

    async def _set_active(
        self, webhook_id: str, owner_id: str, active: bool
    ) -> WebhookSubscription:
        subscription = await self.get(webhook_id, owner_id)
        if subscription.active == active:
            return subscription
        updated = subscription.model_copy(update={"active": active, "updated_at": utc_now()})
        await self._storage.store_subscription(updated)
        logger.info("Webhook %s %s", webhook_id, "activated" if active else "deactivated")
        return updated

    async def deactivate(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        """Stop matching new events. Deliveries already scheduled still run."""
        return await self._set_active(webhook_id, owner_id, False)

    async def activate(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        return await self._set_active(webhook_id, owner_id, True)

    async def rotate_secret(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        """Replace the signing secret with a freshly generated one."""
        subscription = await self.get(webhook_id, owner_id)
        updated = subscription.model_copy(
            update={"secret": generate_secret(), "updated_at": utc_now()}
        )
        await self._storage.store_subscription(updated)
        logger.info("Rotated secret for webhook %s", webhook_id)
        return updated

    async def delete(self, webhook_id: str, owner_id: str) -> int:
        """Delete a subscription.

        Returns:
            Number of delivery records removed with it (0 unless retention
            is "cascade").
        """
        await self.get(webhook_id, owner_id)
        await self._storage.delete_subscription(webhook_id)

        removed = 0
        if self._retention == "cascade":
            removed = await self._storage.delete_deliveries_for_webhook(webhook_id)
        logger.info("Deleted webhook %s (%d delivery records removed)", webhook_id, removed)
        return removed
