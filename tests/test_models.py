"""Unit tests for Herald models."""

import json
from datetime import timedelta

import pytest
from pydantic import ValidationError
from factories import TEST_SECRET, failed_outcome, make_event, make_record, make_subscription

from herald.exceptions import ExhaustionError
from herald.models import (
    ALL_EVENT_TYPES,
    SECRET_PREFIX,
    TEST_EVENT_TYPE,
    DeliveryPage,
    DeliveryRecord,
    DomainEvent,
    SubscriptionUpdate,
    WebhookSubscription,
    generate_id,
    generate_secret,
    is_known_event,
    utc_now,
)


class TestIds:
    """Tests for id generation."""

    def test_generate_id_prefix(self):
        assert generate_id("whk").startswith("whk_")
        assert len(generate_id("dlv")) == len("dlv_") + 12

    def test_generate_id_unique(self):
        ids = {generate_id("evt") for _ in range(100)}
        assert len(ids) == 100


class TestEvents:
    """Tests for the recognized event set and DomainEvent."""

    def test_event_set(self):
        assert "bid.created" in ALL_EVENT_TYPES
        assert "rfq.closed" in ALL_EVENT_TYPES
        assert "certification.expired" in ALL_EVENT_TYPES
        assert len(ALL_EVENT_TYPES) == 19

    def test_test_event_not_subscribable(self):
        assert not is_known_event(TEST_EVENT_TYPE)
        assert not is_known_event("bid.exploded")

    def test_canonical_body_is_sorted_and_compact(self):
        event = DomainEvent(id="evt_1", type="bid.created", data={"b": 2, "a": 1})
        body = event.canonical_body()

        decoded = json.loads(body)
        assert list(decoded) == ["data", "id", "occurred_at", "type"]
        assert list(decoded["data"]) == ["a", "b"]
        assert b", " not in body
        assert b": " not in body

    def test_canonical_body_is_stable(self):
        event = make_event()
        assert event.canonical_body() == event.canonical_body()

    def test_canonical_body_survives_round_trip(self):
        """A stored and reloaded event must produce identical bytes."""
        event = make_event()
        reloaded = DomainEvent.model_validate(event.model_dump(mode="json"))
        assert reloaded.canonical_body() == event.canonical_body()

    def test_event_is_frozen(self):
        event = make_event()
        with pytest.raises(ValidationError):
            event.type = "bid.updated"  # type: ignore[misc]

    def test_test_ping(self):
        event = DomainEvent.test_ping("whk_1", {"note": "hi"})
        assert event.type == TEST_EVENT_TYPE
        assert event.data == {"webhook_id": "whk_1", "test": True, "note": "hi"}

    def test_test_ping_markers_win_over_data(self):
        event = DomainEvent.test_ping("whk_1", {"test": False, "webhook_id": "whk_other"})
        assert event.data == {"webhook_id": "whk_1", "test": True}


class TestWebhookSubscription:
    """Tests for WebhookSubscription model."""

    def test_defaults(self):
        sub = WebhookSubscription(
            owner_id="biz_1",
            url="https://example.com/hook",  # type: ignore[arg-type]
            events=["bid.created"],
        )
        assert sub.id.startswith("whk_")
        assert sub.active is True
        assert sub.secret.startswith(SECRET_PREFIX)
        assert sub.headers == {}

    def test_requires_events(self):
        with pytest.raises(ValidationError):
            WebhookSubscription(
                owner_id="biz_1",
                url="https://example.com/hook",  # type: ignore[arg-type]
                events=[],
            )

    def test_rejects_unknown_event(self):
        with pytest.raises(ValidationError):
            WebhookSubscription(
                owner_id="biz_1",
                url="https://example.com/hook",  # type: ignore[arg-type]
                events=["nope.nope"],  # type: ignore[list-item]
            )

    def test_subscribes_to(self):
        sub = make_subscription(events=["bid.created", "rfq.closed"])
        assert sub.subscribes_to("bid.created")
        assert not sub.subscribes_to("bid.updated")

    def test_inactive_subscribes_to_nothing(self):
        sub = make_subscription(active=False)
        assert not sub.subscribes_to("bid.created")

    def test_is_owned_by(self):
        sub = make_subscription(owner_id="biz_7")
        assert sub.is_owned_by("biz_7")
        assert not sub.is_owned_by("biz_8")

    def test_generate_secret_format(self):
        secret = generate_secret()
        assert secret.startswith("whsec_")
        assert len(secret) == len("whsec_") + 32
        assert secret[len("whsec_") :].isalnum()
        assert generate_secret() != secret

    def test_update_changes_only_set_fields(self):
        update = SubscriptionUpdate(active=False)
        assert update.changes() == {"active": False}


class TestDeliveryRecord:
    """Tests for the delivery state machine."""

    def test_for_subscription_snapshots_target(self):
        sub = make_subscription(headers={"X-Tenant": "t1"})
        record = make_record(sub)

        assert record.id.startswith("dlv_")
        assert record.webhook_id == sub.id
        assert record.owner_id == sub.owner_id
        assert record.target_url == str(sub.url)
        assert record.secret == TEST_SECRET
        assert record.headers == {"X-Tenant": "t1"}
        assert record.status == "pending"
        assert record.attempt_count == 0
        assert record.next_attempt_at == record.created_at
        assert record.is_due(utc_now())

    def test_snapshot_independent_of_subscription(self):
        sub = make_subscription(headers={"X-Tenant": "t1"})
        record = make_record(sub)
        sub.headers["X-Tenant"] = "changed"
        assert record.headers == {"X-Tenant": "t1"}

    def test_failed_then_succeeded(self):
        record = make_record()
        retry_at = utc_now() + timedelta(seconds=2)

        assert record.begin_attempt() == 1
        assert record.status == "delivering"
        record.mark_failed(failed_outcome(), retry_at)

        assert record.status == "failed"
        assert record.attempt_count == 1
        assert record.next_attempt_at == retry_at
        assert not record.is_due(utc_now())
        assert record.is_due(retry_at)

        assert record.begin_attempt() == 2
        record.mark_succeeded(failed_outcome().model_copy(update={"success": True}))
        assert record.status == "succeeded"
        assert record.attempt_count == 2
        assert [a.sequence for a in record.attempts] == [1, 2]
        assert record.next_attempt_at is None
        assert record.completed_at is not None
        assert record.is_terminal

    def test_exhausted_is_terminal(self):
        record = make_record()
        record.begin_attempt()
        record.mark_exhausted(failed_outcome())

        assert record.status == "exhausted"
        assert record.next_attempt_at is None
        assert record.last_attempt is not None
        assert record.last_attempt.error_kind == "non_2xx:500"

    def test_begin_attempt_on_terminal_raises(self):
        record = make_record()
        record.begin_attempt()
        record.mark_exhausted(failed_outcome())

        with pytest.raises(ExhaustionError) as exc_info:
            record.begin_attempt()
        assert exc_info.value.delivery_id == record.id
        assert record.status == "exhausted"

    def test_attempt_count_invariant_enforced(self):
        data = make_record().model_dump()
        data["attempt_count"] = 2
        with pytest.raises(ValidationError):
            DeliveryRecord.model_validate(data)

    def test_terminal_requires_no_next_attempt(self):
        data = make_record().model_dump()
        data["status"] = "succeeded"
        with pytest.raises(ValidationError):
            DeliveryRecord.model_validate(data)

    def test_pending_requires_next_attempt(self):
        data = make_record().model_dump()
        data["next_attempt_at"] = None
        with pytest.raises(ValidationError):
            DeliveryRecord.model_validate(data)

    def test_reconcile_interrupted(self):
        record = make_record()
        record.begin_attempt()
        now = utc_now()

        record.reconcile_interrupted(now)

        assert record.status == "failed"
        assert record.attempt_count == 0
        assert record.next_attempt_at == now

    def test_reconcile_leaves_other_states_alone(self):
        record = make_record()
        record.reconcile_interrupted()
        assert record.status == "pending"


class TestDeliveryPage:
    def test_has_more(self):
        assert DeliveryPage(items=[], total=45, page=2, page_size=20).has_more
        assert not DeliveryPage(items=[], total=40, page=2, page_size=20).has_more
