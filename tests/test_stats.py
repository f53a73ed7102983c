"""Tests for delivery statistics and history reads."""

from datetime import timedelta

import pytest
from factories import failed_outcome, make_record, make_subscription, ok_outcome

from herald.exceptions import ValidationError
from herald.models import utc_now
from herald.storage import HeraldStorage
from herald.webhooks.stats import StatsAccumulator, StatsAggregator, nearest_rank


@pytest.fixture
def aggregator(storage: HeraldStorage) -> StatsAggregator:
    return StatsAggregator(storage)


def delivered(sub, latency: float, success: bool = True):
    record = make_record(sub)
    record.begin_attempt()
    if success:
        record.mark_succeeded(ok_outcome(latency))
    else:
        record.mark_exhausted(failed_outcome(latency=latency))
    return record


class TestNearestRank:
    def test_empty(self):
        assert nearest_rank([], 95) is None

    def test_single_value(self):
        assert nearest_rank([42.0], 95) == 42.0

    def test_twenty_values(self):
        values = [float(v) for v in range(1, 21)]
        assert nearest_rank(values, 95) == 19.0
        assert nearest_rank(values, 50) == 10.0
        assert nearest_rank(values, 100) == 20.0


class TestAccumulator:
    def test_known_distribution(self):
        sub = make_subscription()
        records = [delivered(sub, float(ms), success=ms > 2) for ms in range(1, 21)]

        stats = StatsAccumulator().add_all(records).result(sub.id, utc_now(), utc_now())

        assert stats.total_deliveries == 20
        assert stats.total_attempts == 20
        assert stats.success_count == 18
        assert stats.failure_count == 2
        assert stats.success_rate == pytest.approx(0.9)
        assert stats.average_latency_ms == pytest.approx(10.5)
        assert stats.p95_latency_ms == 19.0
        assert stats.status_counts == {"succeeded": 18, "exhausted": 2}

    def test_counts_every_attempt(self):
        sub = make_subscription()
        record = make_record(sub)
        record.begin_attempt()
        record.mark_failed(failed_outcome(latency=100.0), utc_now())
        record.begin_attempt()
        record.mark_succeeded(ok_outcome(latency=20.0))

        stats = StatsAccumulator().add_all([record]).result(sub.id, utc_now(), utc_now())

        assert stats.total_deliveries == 1
        assert stats.total_attempts == 2
        assert stats.success_rate == 0.5
        assert stats.average_latency_ms == 60.0

    def test_no_attempts(self):
        stats = StatsAccumulator().add_all([make_record()]).result("whk_1", utc_now(), utc_now())

        assert stats.total_deliveries == 1
        assert stats.total_attempts == 0
        assert stats.success_rate == 0.0
        assert stats.average_latency_ms is None
        assert stats.p95_latency_ms is None
        assert stats.status_counts == {"pending": 1}

    def test_attempts_without_latency_not_sampled(self):
        sub = make_subscription()
        record = make_record(sub)
        record.begin_attempt()
        record.mark_exhausted(failed_outcome().model_copy(update={"response_time_ms": None}))

        stats = StatsAccumulator().add_all([record]).result(sub.id, utc_now(), utc_now())

        assert stats.failure_count == 1
        assert stats.average_latency_ms is None


class TestGetStats:
    async def test_window_and_subscription_scoped(self, storage, aggregator):
        sub = make_subscription()
        now = utc_now()
        for ms in range(1, 21):
            await storage.store_delivery(delivered(sub, float(ms), success=ms > 2))
        old = delivered(sub, 5000.0, success=False)
        old.created_at = now - timedelta(days=45)
        await storage.store_delivery(old)
        await storage.store_delivery(delivered(make_subscription(), 9999.0))

        stats = await aggregator.get_stats(
            sub.id, now - timedelta(days=30), now + timedelta(minutes=1)
        )

        assert stats.webhook_id == sub.id
        assert stats.total_deliveries == 20
        assert stats.success_rate == pytest.approx(0.9)
        assert stats.p95_latency_ms == 19.0

    async def test_empty_window(self, aggregator):
        now = utc_now()
        stats = await aggregator.get_stats("whk_none", now - timedelta(days=1), now)

        assert stats.total_deliveries == 0
        assert stats.success_rate == 0.0
        assert stats.p95_latency_ms is None

    async def test_inverted_window_rejected(self, aggregator):
        now = utc_now()
        with pytest.raises(ValidationError) as exc_info:
            await aggregator.get_stats("whk_1", now, now - timedelta(days=1))
        assert exc_info.value.field == "end_date"


class TestGetDeliveries:
    async def test_pages(self, storage, aggregator):
        sub = make_subscription()
        now = utc_now()
        ids = []
        for i in range(5):
            record = make_record(sub)
            record.created_at = now - timedelta(seconds=i)
            record.next_attempt_at = record.created_at
            await storage.store_delivery(record)
            ids.append(record.id)

        first = await aggregator.get_deliveries(sub.id, page=1, page_size=2)
        last = await aggregator.get_deliveries(sub.id, page=3, page_size=2)

        assert first.total == 5
        assert [r.id for r in first.items] == ids[:2]
        assert first.has_more is True
        assert [r.id for r in last.items] == ids[4:]
        assert last.has_more is False

    async def test_status_filter(self, storage, aggregator):
        sub = make_subscription()
        await storage.store_delivery(delivered(sub, 10.0))
        await storage.store_delivery(make_record(sub))

        page = await aggregator.get_deliveries(sub.id, status="pending")

        assert page.total == 1
        assert page.items[0].status == "pending"

    @pytest.mark.parametrize(
        ("page", "page_size", "field"),
        [(0, 20, "page"), (1, 0, "page_size"), (1, 101, "page_size")],
    )
    async def test_bad_paging(self, aggregator, page, page_size, field):
        with pytest.raises(ValidationError) as exc_info:
            await aggregator.get_deliveries("whk_1", page=page, page_size=page_size)
        assert exc_info.value.field == field
