"""Delivery statistics and history reads.

Statistics are computed per read from the records created in the requested
window. The store narrows the scan with the ``webhook_id`` keyword index and
the ``created_ts`` range index, and a fresh StatsAccumulator folds the result.
Nothing is counted at write time, so there is no shared counter state to keep
consistent with the records.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING

from herald.exceptions import ValidationError
from herald.models import DeliveryPage, DeliveryRecord, DeliveryStats

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

MAX_PAGE_SIZE = 100


def nearest_rank(sorted_values: list[float], percentile: float) -> float | None:
    """Nearest-rank percentile of an ascending list, or None if it is empty."""
    if not sorted_values:
        return None
    rank = max(1, math.ceil(percentile / 100.0 * len(sorted_values)))
    return sorted_values[rank - 1]


class StatsAccumulator:
    """Folds delivery records into counts and latency samples.

    One accumulator is built per stats read and discarded afterwards.
    """

    def __init__(self) -> None:
        self.total_deliveries = 0
        self.total_attempts = 0
        self.success_count = 0
        self.failure_count = 0
        self.latencies: list[float] = []
        self.status_counts: Counter[str] = Counter()

    def add(self, record: DeliveryRecord) -> None:
        self.total_deliveries += 1
        self.status_counts[record.status] += 1
        for attempt in record.attempts:
            self.total_attempts += 1
            if attempt.success:
                self.success_count += 1
            else:
                self.failure_count += 1
            if attempt.response_time_ms is not None:
                self.latencies.append(attempt.response_time_ms)

    def add_all(self, records: list[DeliveryRecord]) -> StatsAccumulator:
        for record in records:
            self.add(record)
        return self

    def result(self, webhook_id: str, start: datetime, end: datetime) -> DeliveryStats:
        latencies = sorted(self.latencies)
        return DeliveryStats(
            webhook_id=webhook_id,
            window_start=start,
            window_end=end,
            total_deliveries=self.total_deliveries,
            total_attempts=self.total_attempts,
            success_count=self.success_count,
            failure_count=self.failure_count,
            success_rate=(
                self.success_count / self.total_attempts if self.total_attempts else 0.0
            ),
            average_latency_ms=sum(latencies) / len(latencies) if latencies else None,
            p95_latency_ms=nearest_rank(latencies, 95),
            status_counts=dict(self.status_counts),
        )


class StatsAggregator:
    """Read path for per-subscription statistics and delivery history.

    Example:
        ```python
        stats = await StatsAggregator(storage).get_stats("whk_abc", start, end)
        print(stats.success_rate, stats.p95_latency_ms)
        ```
    """

    def __init__(self, storage: HeraldStorage) -> None:
        self._storage = storage

    async def get_stats(self, webhook_id: str, start: datetime, end: datetime) -> DeliveryStats:
        """Aggregate attempts of records created in ``[start, end)``.

        Raises:
            ValidationError: If the window is empty or inverted.
        """
        if end <= start:
            raise ValidationError("end_date", "must be after start_date")
        records = await self._storage.get_deliveries_in_window(webhook_id, start, end)
        return StatsAccumulator().add_all(records).result(webhook_id, start, end)

    async def get_deliveries(
        self,
        webhook_id: str,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
        event: str | None = None,
    ) -> DeliveryPage:
        """One page of a subscription's delivery records, newest first."""
        if page < 1:
            raise ValidationError("page", "must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError("page_size", f"must be between 1 and {MAX_PAGE_SIZE}")
        items, total = await self._storage.list_deliveries(
            webhook_id,
            page=page,
            page_size=page_size,
            status=status,
            event_type=event,
        )
        return DeliveryPage(items=items, total=total, page=page, page_size=page_size)
