"""Read models for delivery history and statistics."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .delivery import DeliveryRecord


class DeliveryStats(BaseModel):
    """Aggregated delivery metrics for one subscription over a time window.

    Counts are over attempts belonging to records created inside
    ``[window_start, window_end)``; latencies over attempts that measured one.
    """

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    window_start: datetime
    window_end: datetime
    total_deliveries: int = Field(default=0, ge=0, description="Records created in the window")
    total_attempts: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    average_latency_ms: float | None = None
    p95_latency_ms: float | None = None
    status_counts: dict[str, int] = Field(
        default_factory=dict, description="Records per current status"
    )


class DeliveryPage(BaseModel):
    """One page of delivery records, newest first."""

    model_config = ConfigDict(extra="forbid")

    items: list[DeliveryRecord]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


__all__ = ["DeliveryPage", "DeliveryStats"]
