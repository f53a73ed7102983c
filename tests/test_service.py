"""Integration tests for WebhookService over in-memory storage and a mock endpoint."""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest
from factories import failed_outcome, make_record, mock_http_client, wait_for_status

from herald.config import RetryPolicy, Settings
from herald.exceptions import AuthorizationError, NotFoundError, ValidationError
from herald.models import TEST_EVENT_TYPE, utc_now
from herald.service import WebhookService
from herald.storage import HeraldStorage
from herald.webhooks.signing import EVENT_HEADER, SIGNATURE_HEADER, verify_signature
from herald.webhooks.transport import WebhookTransport


class Endpoint:
    """Records requests and answers with a fixed status after ``failures`` 503s."""

    def __init__(self, status: int = 200, failures: int = 0) -> None:
        self.status = status
        self.failures = failures
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures > 0:
            self.failures -= 1
            return httpx.Response(503, text="busy")
        return httpx.Response(self.status, text="ack")


@pytest.fixture
def endpoint() -> Endpoint:
    return Endpoint()


def build_service(storage: HeraldStorage, endpoint: Endpoint, settings: Settings) -> WebhookService:
    return WebhookService(
        storage=storage,
        transport=WebhookTransport(client=mock_http_client(endpoint)),
        settings=settings,
    )


@pytest.fixture
async def service(storage, endpoint, test_settings):
    service = build_service(storage, endpoint, test_settings)
    await service.start()
    yield service
    await service.stop(grace_seconds=0.5)


async def register(service: WebhookService, owner_id: str = "biz_1", **kwargs):
    kwargs.setdefault("url", "https://example.com/hooks")
    kwargs.setdefault("events", ["bid.created"])
    return await service.register_webhook(owner_id=owner_id, **kwargs)


class TestEndToEnd:
    async def test_dispatch_delivers_signed_event(self, service, endpoint):
        sub = await register(service)

        [dispatched] = await service.dispatch_event("bid.created", {"bid_id": "b_7"})
        delivery_id = dispatched.id
        record = await wait_for_status(service.storage, delivery_id, {"succeeded"})

        assert record.attempt_count == 1
        request = endpoint.requests[0]
        assert request.headers[EVENT_HEADER] == "bid.created"
        assert verify_signature(request.content, sub.secret, request.headers[SIGNATURE_HEADER])
        assert json.loads(request.content)["data"] == {"bid_id": "b_7"}

    async def test_failing_endpoint_is_exhausted(self, service, endpoint, fast_policy):
        endpoint.status = 503
        await register(service)

        [dispatched] = await service.dispatch_event("bid.created", {})
        delivery_id = dispatched.id
        record = await wait_for_status(service.storage, delivery_id, {"exhausted"})

        assert record.attempt_count == fast_policy.max_attempts
        assert len(endpoint.requests) == fast_policy.max_attempts
        # Every retry resends the identical body.
        assert len({r.content for r in endpoint.requests}) == 1

    async def test_inactive_subscription_gets_nothing(self, service, endpoint):
        sub = await register(service)
        await service.deactivate_webhook(sub.id, "biz_1")

        assert await service.dispatch_event("bid.created", {}) == []
        assert endpoint.requests == []

    async def test_deactivation_keeps_scheduled_retries(self, storage, endpoint, test_settings):
        endpoint.failures = 1
        slow_retry = RetryPolicy(max_attempts=3, backoff_base_seconds=0.2, jitter_ratio=0.0)
        service = build_service(
            storage, endpoint, test_settings.model_copy(update={"retry": slow_retry})
        )
        await service.start()
        try:
            sub = await register(service)
            [dispatched] = await service.dispatch_event("bid.created", {})
            failed = await wait_for_status(storage, dispatched.id, {"failed"})
            assert failed.attempt_count == 1

            await service.deactivate_webhook(sub.id, "biz_1")
            done = await wait_for_status(storage, dispatched.id, {"succeeded"})
            assert await service.dispatch_event("bid.created", {}) == []
        finally:
            await service.stop(grace_seconds=0.5)

        assert done.attempt_count == 2
        assert len(endpoint.requests) == 2

    async def test_rotated_secret_signs_new_deliveries(self, service, endpoint):
        sub = await register(service)
        rotated = await service.rotate_secret(sub.id, "biz_1")

        [dispatched] = await service.dispatch_event("bid.created", {})
        delivery_id = dispatched.id
        await wait_for_status(service.storage, delivery_id, {"succeeded"})

        request = endpoint.requests[0]
        signature = request.headers[SIGNATURE_HEADER]
        assert verify_signature(request.content, rotated.secret, signature)
        assert not verify_signature(request.content, sub.secret, signature)


class TestTestWebhook:
    async def test_ping_is_not_recorded(self, service, endpoint):
        sub = await register(service)

        outcome = await service.test_webhook(sub.id, "biz_1")

        assert outcome.success is True
        assert outcome.http_status == 200
        body = json.loads(endpoint.requests[0].content)
        assert body["type"] == TEST_EVENT_TYPE
        assert body["data"]["webhook_id"] == sub.id
        page = await service.get_deliveries(sub.id, "biz_1")
        assert page.total == 0
        stats = await service.get_stats(sub.id, "biz_1")
        assert stats.total_attempts == 0

    async def test_failure_is_reported_not_retried(self, service, endpoint):
        endpoint.status = 500
        sub = await register(service)

        outcome = await service.test_webhook(sub.id, "biz_1")

        assert outcome.success is False
        assert outcome.error_kind == "non_2xx:500"
        assert len(endpoint.requests) == 1
        assert service.scheduler.pending_timers == {}

    async def test_known_event_type(self, service, endpoint):
        sub = await register(service)

        await service.test_webhook(sub.id, "biz_1", event_type="rfq.closed", data={"rfq_id": "r1"})

        body = json.loads(endpoint.requests[0].content)
        assert body["type"] == "rfq.closed"
        assert body["data"] == {"test": True, "rfq_id": "r1"}

    async def test_caller_data_cannot_clear_test_marker(self, service, endpoint):
        sub = await register(service)

        await service.test_webhook(sub.id, "biz_1", event_type="bid.created", data={"test": False})

        assert json.loads(endpoint.requests[0].content)["data"] == {"test": True}

    async def test_unknown_event_type(self, service):
        sub = await register(service)
        with pytest.raises(ValidationError):
            await service.test_webhook(sub.id, "biz_1", event_type="bid.exploded")

    async def test_other_owner(self, service):
        sub = await register(service)
        with pytest.raises(AuthorizationError):
            await service.test_webhook(sub.id, "biz_2")


class TestRedeliver:
    async def test_creates_linked_record(self, service, endpoint):
        endpoint.status = 500
        sub = await register(service)
        [dispatched] = await service.dispatch_event("bid.created", {"bid_id": "b_1"})
        original_id = dispatched.id
        original = await wait_for_status(service.storage, original_id, {"exhausted"})

        endpoint.status = 200
        record = await service.redeliver(original_id, "biz_1", webhook_id=sub.id)
        done = await wait_for_status(service.storage, record.id, {"succeeded"})

        assert done.id != original_id
        assert done.redelivery_of == original_id
        assert done.event == original.event
        assert done.attempt_count == 1
        assert await service.storage.get_delivery(original_id) == original

    async def test_in_progress_rejected(self, service, storage):
        sub = await register(service)
        waiting = make_record(sub)
        waiting.begin_attempt()
        waiting.mark_failed(failed_outcome(), utc_now() + timedelta(hours=1))
        await storage.store_delivery(waiting)

        with pytest.raises(ValidationError):
            await service.redeliver(waiting.id, "biz_1")

    async def test_wrong_webhook(self, service, storage):
        sub = await register(service)
        record = make_record(sub)
        await storage.store_delivery(record)

        with pytest.raises(NotFoundError):
            await service.redeliver(record.id, "biz_1", webhook_id="whk_other")

    async def test_other_owner(self, service, storage):
        sub = await register(service)
        record = make_record(sub)
        await storage.store_delivery(record)

        with pytest.raises(AuthorizationError):
            await service.redeliver(record.id, "biz_2")

    async def test_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.redeliver("dlv_missing", "biz_1")


class TestReads:
    async def test_stats_default_window(self, service, test_settings):
        sub = await register(service)
        [dispatched] = await service.dispatch_event("bid.created", {})
        delivery_id = dispatched.id
        await wait_for_status(service.storage, delivery_id, {"succeeded"})

        stats = await service.get_stats(sub.id, "biz_1")

        assert stats.total_deliveries == 1
        assert stats.success_rate == 1.0
        assert stats.window_end - stats.window_start == timedelta(
            days=test_settings.stats_default_window_days
        )

    async def test_reads_are_owner_scoped(self, service):
        sub = await register(service)
        with pytest.raises(AuthorizationError):
            await service.get_deliveries(sub.id, "biz_2")
        with pytest.raises(AuthorizationError):
            await service.get_stats(sub.id, "biz_2")

    async def test_get_delivery(self, service, storage):
        sub = await register(service)
        record = make_record(sub)
        await storage.store_delivery(record)

        assert (await service.get_delivery(record.id, "biz_1")).id == record.id
        with pytest.raises(AuthorizationError):
            await service.get_delivery(record.id, "biz_2")
        with pytest.raises(NotFoundError):
            await service.get_delivery("dlv_missing", "biz_1")


class TestLifecycle:
    async def test_delete_cascade_from_settings(self, storage, endpoint, test_settings):
        settings = test_settings.model_copy(update={"delivery_retention": "cascade"})
        service = build_service(storage, endpoint, settings)
        sub = await register(service)
        record = make_record(sub)
        await storage.store_delivery(record)

        assert await service.delete_webhook(sub.id, "biz_1") == 1
        assert await storage.get_delivery(record.id) is None

    async def test_start_recovers_interrupted(self, storage, endpoint, test_settings):
        sub = await register(build_service(storage, endpoint, test_settings))
        interrupted = make_record(sub)
        interrupted.begin_attempt()
        await storage.store_delivery(interrupted)

        service = build_service(storage, endpoint, test_settings)
        await service.start()
        try:
            done = await wait_for_status(storage, interrupted.id, {"succeeded"})
        finally:
            await service.stop()

        assert done.attempt_count == 1
