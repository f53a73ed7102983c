"""Unit tests for Herald storage layer.

These tests use qdrant-client's local in-memory mode for fast, isolated testing.
No external Qdrant server is required.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from factories import failed_outcome, make_event, make_record, make_subscription, ok_outcome

from herald.exceptions import StorageError
from herald.models import utc_now
from herald.storage import HeraldStorage


class TestHeraldStorageInit:
    """Tests for storage initialization."""

    async def test_initialize_creates_collections(self, storage: HeraldStorage):
        collections = await storage.client.get_collections()
        names = {c.name for c in collections.collections}

        assert "test_webhooks" in names
        assert "test_deliveries" in names

    async def test_initialize_is_idempotent(self, storage: HeraldStorage):
        await storage._ensure_collections()
        collections = await storage.client.get_collections()
        assert len(collections.collections) == 2

    def test_client_before_initialize_raises(self):
        with pytest.raises(RuntimeError):
            _ = HeraldStorage(prefix="test").client

    def test_point_ids_are_deterministic_uuids(self):
        first = HeraldStorage._key_to_point_id("whk_abc")
        assert first == HeraldStorage._key_to_point_id("whk_abc")
        assert first != HeraldStorage._key_to_point_id("whk_abd")
        assert [len(part) for part in first.split("-")] == [8, 4, 4, 4, 12]


class TestSubscriptionStorage:
    """Tests for subscription operations."""

    async def test_store_and_get(self, storage: HeraldStorage):
        sub = make_subscription(headers={"X-Tenant": "t1"}, description="main")
        await storage.store_subscription(sub)

        loaded = await storage.get_subscription(sub.id)

        assert loaded == sub

    async def test_get_missing(self, storage: HeraldStorage):
        assert await storage.get_subscription("whk_missing") is None

    async def test_list_is_owner_scoped(self, storage: HeraldStorage):
        mine = make_subscription(owner_id="biz_1")
        theirs = make_subscription(owner_id="biz_2")
        await storage.store_subscription(mine)
        await storage.store_subscription(theirs)

        listed = await storage.list_subscriptions("biz_1")

        assert [s.id for s in listed] == [mine.id]

    async def test_list_filters(self, storage: HeraldStorage):
        bids = make_subscription(events=["bid.created", "bid.updated"])
        rfqs = make_subscription(events=["rfq.closed"], active=False)
        await storage.store_subscription(bids)
        await storage.store_subscription(rfqs)

        assert [s.id for s in await storage.list_subscriptions("biz_1", active=True)] == [bids.id]
        assert [s.id for s in await storage.list_subscriptions("biz_1", active=False)] == [rfqs.id]
        by_event = await storage.list_subscriptions("biz_1", event_type="bid.updated")
        assert [s.id for s in by_event] == [bids.id]

    async def test_list_newest_first(self, storage: HeraldStorage):
        now = utc_now()
        older = make_subscription(created_at=now - timedelta(minutes=5))
        newer = make_subscription(created_at=now)
        await storage.store_subscription(older)
        await storage.store_subscription(newer)

        listed = await storage.list_subscriptions("biz_1")

        assert [s.id for s in listed] == [newer.id, older.id]

    async def test_find_for_event_spans_owners(self, storage: HeraldStorage):
        a = make_subscription(owner_id="biz_1", events=["bid.created"])
        b = make_subscription(owner_id="biz_2", events=["bid.created", "rfq.closed"])
        inactive = make_subscription(owner_id="biz_3", events=["bid.created"], active=False)
        other = make_subscription(owner_id="biz_4", events=["rfq.closed"])
        for sub in (a, b, inactive, other):
            await storage.store_subscription(sub)

        matched = await storage.find_subscriptions_for_event("bid.created")

        assert {s.id for s in matched} == {a.id, b.id}

    async def test_delete(self, storage: HeraldStorage):
        sub = make_subscription()
        await storage.store_subscription(sub)

        assert await storage.delete_subscription(sub.id) is True
        assert await storage.get_subscription(sub.id) is None
        assert await storage.delete_subscription(sub.id) is False


class TestDeliveryStorage:
    """Tests for delivery record operations."""

    async def test_store_and_get_round_trip(self, storage: HeraldStorage):
        record = make_record()
        record.begin_attempt()
        record.mark_failed(failed_outcome(), utc_now() + timedelta(seconds=5))
        await storage.store_delivery(record)

        loaded = await storage.get_delivery(record.id)

        assert loaded == record
        assert loaded is not None
        assert loaded.event.canonical_body() == record.event.canonical_body()

    async def test_get_missing(self, storage: HeraldStorage):
        assert await storage.get_delivery("dlv_missing") is None

    async def test_update_replaces(self, storage: HeraldStorage):
        record = make_record()
        await storage.store_delivery(record)
        record.begin_attempt()
        record.mark_succeeded(ok_outcome())
        await storage.update_delivery(record)

        loaded = await storage.get_delivery(record.id)
        assert loaded is not None
        assert loaded.status == "succeeded"
        assert loaded.attempt_count == 1

    async def test_list_paged_newest_first(self, storage: HeraldStorage):
        sub = make_subscription()
        now = utc_now()
        records = []
        for i in range(5):
            record = make_record(sub)
            record.created_at = now - timedelta(minutes=i)
            record.next_attempt_at = record.created_at
            records.append(record)
            await storage.store_delivery(record)
        await storage.store_delivery(make_record(make_subscription()))

        first, total = await storage.list_deliveries(sub.id, page=1, page_size=2)
        third, _ = await storage.list_deliveries(sub.id, page=3, page_size=2)

        assert total == 5
        assert [r.id for r in first] == [records[0].id, records[1].id]
        assert [r.id for r in third] == [records[4].id]

    async def test_list_reads_no_further_than_the_page(self, storage: HeraldStorage):
        sub = make_subscription()
        now = utc_now()
        for i in range(12):
            record = make_record(sub)
            record.created_at = now - timedelta(minutes=i)
            record.next_attempt_at = record.created_at
            await storage.store_delivery(record)
        storage._client.scroll = AsyncMock(wraps=storage._client.scroll)

        page, total = await storage.list_deliveries(sub.id, page=2, page_size=3)

        assert total == 12
        assert [r.created_at for r in page] == [
            now - timedelta(minutes=i) for i in (3, 4, 5)
        ]
        storage._client.scroll.assert_awaited_once()
        assert storage._client.scroll.await_args.kwargs["limit"] == 6
        assert storage._client.scroll.await_args.kwargs["order_by"].key == "created_ts"

    async def test_list_past_last_page(self, storage: HeraldStorage):
        sub = make_subscription()
        await storage.store_delivery(make_record(sub))

        page, total = await storage.list_deliveries(sub.id, page=4, page_size=20)

        assert page == []
        assert total == 1

    async def test_list_filters(self, storage: HeraldStorage):
        sub = make_subscription(events=["bid.created", "rfq.closed"])
        done = make_record(sub)
        done.begin_attempt()
        done.mark_succeeded(ok_outcome())
        closed = make_record(sub, make_event("rfq.closed"))
        for record in (done, closed):
            await storage.store_delivery(record)

        succeeded, total = await storage.list_deliveries(sub.id, status="succeeded")
        assert total == 1
        assert succeeded[0].id == done.id

        rfq, _ = await storage.list_deliveries(sub.id, event_type="rfq.closed")
        assert [r.id for r in rfq] == [closed.id]

    async def test_window_scan(self, storage: HeraldStorage):
        sub = make_subscription()
        now = utc_now()
        inside = make_record(sub)
        outside = make_record(sub)
        outside.created_at = now - timedelta(days=40)
        outside.next_attempt_at = outside.created_at
        other_sub = make_record(make_subscription())
        for record in (inside, outside, other_sub):
            await storage.store_delivery(record)

        found = await storage.get_deliveries_in_window(
            sub.id, now - timedelta(days=30), now + timedelta(seconds=1)
        )

        assert [r.id for r in found] == [inside.id]

    async def test_window_end_exclusive(self, storage: HeraldStorage):
        record = make_record()
        await storage.store_delivery(record)

        found = await storage.get_deliveries_in_window(
            record.webhook_id, record.created_at - timedelta(hours=1), record.created_at
        )

        assert found == []

    async def test_due_deliveries(self, storage: HeraldStorage):
        now = utc_now()
        pending = make_record()
        retry_due = make_record()
        retry_due.begin_attempt()
        retry_due.mark_failed(failed_outcome(), now - timedelta(seconds=1))
        retry_later = make_record()
        retry_later.begin_attempt()
        retry_later.mark_failed(failed_outcome(), now + timedelta(hours=1))
        done = make_record()
        done.begin_attempt()
        done.mark_succeeded(ok_outcome())
        for record in (pending, retry_due, retry_later, done):
            await storage.store_delivery(record)

        due = await storage.get_due_deliveries(now + timedelta(seconds=1))

        assert {r.id for r in due} == {pending.id, retry_due.id}

    async def test_due_deliveries_limit(self, storage: HeraldStorage):
        for _ in range(3):
            await storage.store_delivery(make_record())

        due = await storage.get_due_deliveries(utc_now() + timedelta(seconds=1), limit=2)

        assert len(due) == 2

    async def test_due_deliveries_oldest_first(self, storage: HeraldStorage):
        now = utc_now()
        records = []
        for minutes in (1, 5, 3):
            record = make_record()
            record.begin_attempt()
            record.mark_failed(failed_outcome(), now - timedelta(minutes=minutes))
            records.append(record)
            await storage.store_delivery(record)

        due = await storage.get_due_deliveries(now, limit=2)

        assert [r.id for r in due] == [records[1].id, records[2].id]

    async def test_by_status(self, storage: HeraldStorage):
        stuck = make_record()
        stuck.begin_attempt()
        await storage.store_delivery(stuck)
        await storage.store_delivery(make_record())

        found = await storage.get_deliveries_by_status("delivering")

        assert [r.id for r in found] == [stuck.id]

    async def test_delete_for_webhook(self, storage: HeraldStorage):
        sub = make_subscription()
        keep = make_record(make_subscription())
        for _ in range(3):
            await storage.store_delivery(make_record(sub))
        await storage.store_delivery(keep)

        removed = await storage.delete_deliveries_for_webhook(sub.id)

        assert removed == 3
        _, remaining = await storage.list_deliveries(sub.id)
        assert remaining == 0
        assert await storage.get_delivery(keep.id) is not None


class TestStorageErrors:
    """Tests for retry and error translation."""

    async def test_transport_failure_becomes_storage_error(self, storage: HeraldStorage):
        storage._client = AsyncMock()
        storage._client.retrieve = AsyncMock(side_effect=httpx.ReadError("connection reset"))

        with pytest.raises(StorageError):
            await storage.get_subscription("whk_1")
