"""Delivery tracking models.

A DeliveryRecord follows one event to one subscription across every retry.
Its status only moves through the transitions below; the ``mark_*`` methods
are the single place those transitions happen:

    pending ──> delivering ──> succeeded            (terminal)
                    │  ^
                    v  │
                  failed ──> ... ──> exhausted      (terminal)
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from herald.exceptions import ExhaustionError

from .base import generate_id, utc_now
from .events import DomainEvent
from .subscription import WebhookSubscription

DeliveryStatus = Literal["pending", "delivering", "succeeded", "failed", "exhausted"]

ALL_DELIVERY_STATUSES: tuple[DeliveryStatus, ...] = (
    "pending",
    "delivering",
    "succeeded",
    "failed",
    "exhausted",
)
TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "exhausted"})
DUE_STATUSES: tuple[DeliveryStatus, ...] = ("pending", "failed")


class AttemptOutcome(BaseModel):
    """Result of one POST to a subscriber, as classified by the transport.

    Attributes:
        success: True only for a 2xx response.
        http_status: Response status code if a response was received.
        error_kind: Diagnostic tag for failures ("timeout", "non_2xx:500", ...).
        error_message: Free-form detail for failures.
        response_time_ms: Wall time of the request.
        response_excerpt: Leading slice of the response body.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    http_status: int | None = None
    error_kind: str | None = None
    error_message: str | None = None
    response_time_ms: float | None = Field(default=None, ge=0.0)
    response_excerpt: str | None = None


class DeliveryAttempt(AttemptOutcome):
    """One entry in a record's attempt history."""

    sequence: int = Field(ge=1, description="1-based attempt number within the record")
    attempted_at: datetime = Field(default_factory=utc_now)


class DeliveryRecord(BaseModel):
    """Durable tracking entity for one event delivered to one subscription.

    Attributes:
        id: Unique identifier for this record.
        webhook_id: Owning subscription.
        owner_id: Owner of that subscription (for authorization on reads).
        event: Immutable event snapshot; retries resend exactly this.
        target_url: Destination captured when the record was created.
        secret: Signing key captured when the record was created.
        headers: Custom headers captured when the record was created.
        status: Current state (see module docstring).
        attempt_count: Always equal to ``len(attempts)``.
        attempts: Ordered attempt history.
        next_attempt_at: When the next attempt is due; None once terminal.
        created_at: When the record was created at fan-out.
        completed_at: When the record reached a terminal state.
        redelivery_of: Record this one re-triggers, for manual redeliveries.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    webhook_id: str
    owner_id: str
    event: DomainEvent
    target_url: str
    secret: str
    headers: dict[str, str] = Field(default_factory=dict)
    status: DeliveryStatus = "pending"
    attempt_count: int = Field(default=0, ge=0)
    attempts: list[DeliveryAttempt] = Field(default_factory=list)
    next_attempt_at: datetime | None = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    redelivery_of: str | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> DeliveryRecord:
        if self.attempt_count != len(self.attempts):
            raise ValueError(
                f"attempt_count ({self.attempt_count}) must equal "
                f"number of attempts ({len(self.attempts)})"
            )
        terminal = self.status in TERMINAL_STATUSES
        if terminal == (self.next_attempt_at is not None):
            raise ValueError(
                f"next_attempt_at must be None exactly when status is terminal "
                f"(status={self.status})"
            )
        return self

    @classmethod
    def for_subscription(
        cls,
        subscription: WebhookSubscription,
        event: DomainEvent,
        redelivery_of: str | None = None,
    ) -> DeliveryRecord:
        """Create the pending record for one (event, subscription) pair."""
        now = utc_now()
        return cls(
            webhook_id=subscription.id,
            owner_id=subscription.owner_id,
            event=event,
            target_url=str(subscription.url),
            secret=subscription.secret,
            headers=dict(subscription.headers),
            created_at=now,
            next_attempt_at=now,
            redelivery_of=redelivery_of,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_attempt(self) -> DeliveryAttempt | None:
        return self.attempts[-1] if self.attempts else None

    def is_due(self, now: datetime) -> bool:
        return (
            self.status in DUE_STATUSES
            and self.next_attempt_at is not None
            and self.next_attempt_at <= now
        )

    def begin_attempt(self) -> int:
        """Move to ``delivering`` and return the sequence number of the attempt.

        Raises:
            ExhaustionError: If the record is already terminal.
        """
        if self.is_terminal:
            raise ExhaustionError(self.id, self.status)
        self.status = "delivering"
        return self.attempt_count + 1

    def _append(self, outcome: AttemptOutcome, attempted_at: datetime) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            sequence=self.attempt_count + 1,
            attempted_at=attempted_at,
            **outcome.model_dump(),
        )
        self.attempts.append(attempt)
        self.attempt_count = len(self.attempts)
        return attempt

    def mark_succeeded(
        self, outcome: AttemptOutcome, attempted_at: datetime | None = None
    ) -> DeliveryRecord:
        """Record a successful attempt and close the record."""
        self._append(outcome, attempted_at or utc_now())
        self.status = "succeeded"
        self.next_attempt_at = None
        self.completed_at = utc_now()
        return self

    def mark_failed(
        self,
        outcome: AttemptOutcome,
        next_attempt_at: datetime,
        attempted_at: datetime | None = None,
    ) -> DeliveryRecord:
        """Record a failed attempt that will be retried at ``next_attempt_at``."""
        self._append(outcome, attempted_at or utc_now())
        self.status = "failed"
        self.next_attempt_at = next_attempt_at
        return self

    def mark_exhausted(
        self, outcome: AttemptOutcome, attempted_at: datetime | None = None
    ) -> DeliveryRecord:
        """Record the final failed attempt; no further attempts will be made."""
        self._append(outcome, attempted_at or utc_now())
        self.status = "exhausted"
        self.next_attempt_at = None
        self.completed_at = utc_now()
        return self

    def reconcile_interrupted(self, now: datetime | None = None) -> DeliveryRecord:
        """Return a record stranded in ``delivering`` to the retry queue.

        Used after a restart, or when an attempt task died before persisting
        its outcome. No attempt is appended and the record is due immediately.
        """
        if self.status == "delivering":
            self.status = "failed"
            self.next_attempt_at = now or utc_now()
        return self


__all__ = [
    "ALL_DELIVERY_STATUSES",
    "AttemptOutcome",
    "DUE_STATUSES",
    "DeliveryAttempt",
    "DeliveryRecord",
    "DeliveryStatus",
    "TERMINAL_STATUSES",
]
