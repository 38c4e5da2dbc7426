"""Read-only query results for operator tooling."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .base import utc_now
from .delivery import ALL_STATUSES, Delivery


def count_by_status(deliveries: list[Delivery]) -> dict[str, int]:
    """Count deliveries per status. Every status is present, zero or not."""
    counts = dict.fromkeys(ALL_STATUSES, 0)
    for delivery in deliveries:
        counts[delivery.status] += 1
    return counts


class DeliveryStats(BaseModel):
    """Aggregate delivery statistics.

    Attributes:
        total_webhooks: Registered webhooks.
        active_webhooks: Registered webhooks that are active.
        total_deliveries: Deliveries currently held in history.
        successful_deliveries: Deliveries with status success.
        failed_deliveries: Deliveries with status failed.
        pending_deliveries: Deliveries whose first attempt has not finished.
        retrying_deliveries: Deliveries waiting for another attempt.
        pending_retries: Entries in the retry queue.
        status_counts: Deliveries per status.
        total_attempts: Attempts recorded across all held deliveries.
        average_response_time_ms: Mean attempt time, rounded to whole milliseconds.
        generated_at: When these statistics were computed.
    """

    model_config = ConfigDict(extra="forbid")

    total_webhooks: int = 0
    active_webhooks: int = 0
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    pending_deliveries: int = 0
    retrying_deliveries: int = 0
    pending_retries: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    total_attempts: int = 0
    average_response_time_ms: int = 0
    generated_at: datetime = Field(default_factory=utc_now)

    @property
    def error_rate(self) -> float:
        """Share of finished deliveries that failed (0.0 when none finished)."""
        finished = self.successful_deliveries + self.failed_deliveries
        if finished == 0:
            return 0.0
        return self.failed_deliveries / finished


class DeliveryHistory(BaseModel):
    """Most recent deliveries for one webhook."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    deliveries: list[Delivery]
    status_counts: dict[str, int]
    limit: int

    @property
    def total(self) -> int:
        return len(self.deliveries)


class RecentDeliveries(BaseModel):
    """Most recent deliveries across all webhooks."""

    model_config = ConfigDict(extra="forbid")

    deliveries: list[Delivery]
    status_counts: dict[str, int]
    limit: int
    generated_at: datetime = Field(default_factory=utc_now)

    @property
    def total(self) -> int:
        return len(self.deliveries)


__all__ = [
    "DeliveryHistory",
    "DeliveryStats",
    "RecentDeliveries",
    "count_by_status",
]
