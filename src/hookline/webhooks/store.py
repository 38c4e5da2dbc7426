"""Delivery history with TTL-based eviction.

Deliveries are keyed by id and indexed by webhook id. Recording an attempt,
recomputing the delivery's status and setting its next retry time happen in
one critical section so concurrent writers can't lose an update.

Callers receive deep copies; the stored records are only changed through
``record_attempt``.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta

from hookline.exceptions import EngineError, NotFoundError
from hookline.models import (
    Attempt,
    Delivery,
    DeliveryHistory,
    DeliveryStats,
    DeliveryStatus,
    RecentDeliveries,
    count_by_status,
    utc_now,
)

logger = logging.getLogger(__name__)

# Maps the zero-based attempt index to the delay before the next attempt
BackoffFn = Callable[[int], timedelta]


class DeliveryStore:
    """In-memory store of Delivery records.

    Example:
        ```python
        store = DeliveryStore(retention=timedelta(hours=24))
        store.add(delivery)
        store.record_attempt(
            delivery.id,
            attempt,
            retryable=True,
            max_attempts=5,
            backoff=scheduler.delay_for,
            now=utc_now(),
        )
        store.cleanup(utc_now())
        ```
    """

    def __init__(self, retention: timedelta = timedelta(hours=24)) -> None:
        self._deliveries: dict[str, Delivery] = {}
        self._by_webhook: dict[str, set[str]] = defaultdict(set)
        self._lock = threading.RLock()
        self.retention = retention

    def add(self, delivery: Delivery) -> str:
        """Store a new delivery.

        Returns:
            The delivery ID.

        Raises:
            EngineError: If a delivery with the same id already exists.
        """
        with self._lock:
            if delivery.id in self._deliveries:
                raise EngineError(f"Duplicate delivery id: {delivery.id}")
            self._deliveries[delivery.id] = delivery.model_copy(deep=True)
            self._by_webhook[delivery.webhook_id].add(delivery.id)
        return delivery.id

    def get(self, delivery_id: str) -> Delivery | None:
        """Get a snapshot of a delivery, or None."""
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            return delivery.model_copy(deep=True) if delivery is not None else None

    def record_attempt(
        self,
        delivery_id: str,
        attempt: Attempt,
        *,
        retryable: bool,
        max_attempts: int,
        backoff: BackoffFn,
        now: datetime,
    ) -> Delivery:
        """Append an attempt and move the delivery to its next state.

        - a successful attempt finishes the delivery as success
        - a non-retryable failure finishes it as failed
        - a retryable failure with the attempt budget spent finishes it as failed
        - any other retryable failure moves it to retrying, due at
          ``now + backoff(len(attempts) - 1)``

        Args:
            delivery_id: Delivery to update.
            attempt: The attempt that just finished.
            retryable: Whether a failed attempt may be retried.
            max_attempts: Attempt budget of the target webhook.
            backoff: Delay lookup by zero-based attempt index.
            now: Current time.

        Returns:
            Snapshot of the updated delivery.

        Raises:
            NotFoundError: If the delivery was evicted or never existed.
            EngineError: If the delivery is already terminal.
        """
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if delivery is None:
                raise NotFoundError("delivery", delivery_id)

            if attempt.succeeded:
                delivery.mark_success(attempt, now)
            elif not retryable or delivery.attempt_count + 1 >= max_attempts:
                delivery.mark_failed(attempt, now)
            else:
                delay = backoff(delivery.attempt_count)
                delivery.mark_retrying(attempt, now + delay)

            return delivery.model_copy(deep=True)

    def get_history(
        self,
        webhook_id: str,
        limit: int = 50,
        status: DeliveryStatus | None = None,
        event: str | None = None,
    ) -> DeliveryHistory:
        """Most recent deliveries for one webhook, newest first.

        Args:
            webhook_id: Webhook to report on.
            limit: Maximum deliveries to return.
            status: Only deliveries with this status.
            event: Only deliveries of this event.

        Returns:
            DeliveryHistory with a per-status breakdown of the returned page.
        """
        with self._lock:
            deliveries = [
                self._deliveries[delivery_id].model_copy(deep=True)
                for delivery_id in self._by_webhook.get(webhook_id, ())
            ]

        if status is not None:
            deliveries = [d for d in deliveries if d.status == status]
        if event is not None:
            deliveries = [d for d in deliveries if d.event == event]

        deliveries.sort(key=lambda d: d.created_at, reverse=True)
        page = deliveries[: max(limit, 0)]
        return DeliveryHistory(
            webhook_id=webhook_id,
            deliveries=page,
            status_counts=count_by_status(page),
            limit=limit,
        )

    def get_recent(self, limit: int = 100) -> RecentDeliveries:
        """Most recent deliveries across all webhooks, newest first."""
        with self._lock:
            deliveries = sorted(
                self._deliveries.values(),
                key=lambda d: d.created_at,
                reverse=True,
            )[: max(limit, 0)]
            page = [d.model_copy(deep=True) for d in deliveries]
        return RecentDeliveries(
            deliveries=page,
            status_counts=count_by_status(page),
            limit=limit,
        )

    def get_stats(
        self,
        total_webhooks: int = 0,
        active_webhooks: int = 0,
        pending_retries: int | None = None,
    ) -> DeliveryStats:
        """Aggregate statistics over every delivery held.

        Args:
            total_webhooks: Registered webhooks, reported as-is.
            active_webhooks: Active webhooks, reported as-is.
            pending_retries: Retry queue size. Defaults to the number of
                deliveries in retrying state.
        """
        with self._lock:
            deliveries = list(self._deliveries.values())
            counts = count_by_status(deliveries)
            response_times = [a.response_time_ms for d in deliveries for a in d.attempts]

        average = sum(response_times) / len(response_times) if response_times else 0.0
        return DeliveryStats(
            total_webhooks=total_webhooks,
            active_webhooks=active_webhooks,
            total_deliveries=len(deliveries),
            successful_deliveries=counts["success"],
            failed_deliveries=counts["failed"],
            pending_deliveries=counts["pending"],
            retrying_deliveries=counts["retrying"],
            pending_retries=counts["retrying"] if pending_retries is None else pending_retries,
            status_counts=counts,
            total_attempts=len(response_times),
            average_response_time_ms=round(average),
        )

    def cleanup(self, now: datetime | None = None) -> int:
        """Evict deliveries older than the retention window.

        Deliveries still retrying are kept regardless of age.

        Returns:
            Number of deliveries removed.
        """
        cutoff = (now or utc_now()) - self.retention
        with self._lock:
            expired = [
                d
                for d in self._deliveries.values()
                if d.created_at < cutoff and d.status != "retrying"
            ]
            for delivery in expired:
                del self._deliveries[delivery.id]
                ids = self._by_webhook.get(delivery.webhook_id)
                if ids is not None:
                    ids.discard(delivery.id)
                    if not ids:
                        del self._by_webhook[delivery.webhook_id]

        if expired:
            logger.info("Cleaned up %d old webhook deliveries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._deliveries)

    def __contains__(self, delivery_id: object) -> bool:
        with self._lock:
            return delivery_id in self._deliveries


__all__ = ["BackoffFn", "DeliveryStore"]
