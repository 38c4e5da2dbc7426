"""Retry scheduling with a fixed backoff table.

The scheduler owns the queue of deliveries waiting for another attempt. The
queue is a min-heap keyed by ``next_retry_at``; a side index keeps one live
entry per delivery and lets stale heap entries be skipped lazily.

Due entries are removed from the queue *before* the executor runs, so a
delivery can never have two attempts in flight even if a scan overlaps a
slow attempt.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from hookline.config import DEFAULT_RETRY_DELAYS_SECONDS
from hookline.exceptions import ConfigurationError
from hookline.models import utc_now

if TYPE_CHECKING:
    from hookline.webhooks.executor import DeliveryExecutor
    from hookline.webhooks.registry import WebhookRegistry
    from hookline.webhooks.store import DeliveryStore

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Backoff computation and the pending-retry queue.

    Example:
        ```python
        scheduler = RetryScheduler(store, registry)
        scheduler.delay_for(0)  # timedelta(seconds=30)
        scheduler.schedule(delivery.id, delivery.next_retry_at)

        # on a timer
        await scheduler.process_due(executor)
        ```
    """

    def __init__(
        self,
        store: DeliveryStore,
        registry: WebhookRegistry,
        delays_seconds: Sequence[int] = DEFAULT_RETRY_DELAYS_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Delivery history to read due deliveries from.
            registry: Webhook directory, checked at retry time.
            delays_seconds: Backoff table, indexed by zero-based attempt count.
            clock: Returns the current time. Defaults to the UTC wall clock.

        Raises:
            ConfigurationError: If the backoff table is empty.
        """
        if not delays_seconds:
            raise ConfigurationError("Retry backoff table must not be empty")
        self._store = store
        self._registry = registry
        self._delays = tuple(timedelta(seconds=s) for s in delays_seconds)
        self._clock = clock or utc_now
        self._heap: list[tuple[datetime, str]] = []
        self._queued: dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._scan_lock = asyncio.Lock()

    @property
    def delays(self) -> tuple[timedelta, ...]:
        return self._delays

    def delay_for(self, attempt_index: int) -> timedelta:
        """Backoff delay after the attempt with this zero-based index.

        Indexes past the end of the table reuse its last entry.
        """
        return self._delays[min(max(attempt_index, 0), len(self._delays) - 1)]

    def schedule(self, delivery_id: str, next_retry_at: datetime) -> None:
        """Queue a delivery for a retry at ``next_retry_at``.

        Scheduling a delivery that is already queued moves it to the new time.
        """
        with self._lock:
            self._queued[delivery_id] = next_retry_at
            heapq.heappush(self._heap, (next_retry_at, delivery_id))
        logger.debug("Retry scheduled: %s at %s", delivery_id, next_retry_at.isoformat())

    def discard(self, delivery_id: str) -> bool:
        """Remove a delivery from the queue.

        Returns:
            True if the delivery was queued.
        """
        with self._lock:
            return self._queued.pop(delivery_id, None) is not None

    def pop_due(self, now: datetime | None = None) -> list[str]:
        """Dequeue every delivery due at ``now``, earliest first."""
        now = now or self._clock()
        due: list[str] = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                when, delivery_id = heapq.heappop(self._heap)
                if self._queued.get(delivery_id) != when:
                    # superseded or discarded
                    continue
                del self._queued[delivery_id]
                due.append(delivery_id)
        return due

    def pending(self) -> list[str]:
        """Queued delivery ids ordered by due time."""
        with self._lock:
            return [d for d, _ in sorted(self._queued.items(), key=lambda item: item[1])]

    def next_due_at(self) -> datetime | None:
        """When the earliest queued delivery is due, or None if the queue is empty."""
        with self._lock:
            return min(self._queued.values(), default=None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queued)

    def __contains__(self, delivery_id: object) -> bool:
        with self._lock:
            return delivery_id in self._queued

    async def process_due(
        self,
        executor: DeliveryExecutor,
        now: datetime | None = None,
    ) -> int:
        """Re-attempt every delivery whose retry time has passed.

        A scan that starts while another one is still running does nothing.
        Deliveries whose webhook was removed or deactivated are dropped from
        the queue without another attempt and keep their last status.

        Args:
            executor: Executor performing the attempts.
            now: Current time. Defaults to the scheduler's clock.

        Returns:
            Number of attempts made.
        """
        if self._scan_lock.locked():
            logger.debug("Retry scan already running, skipping")
            return 0

        async with self._scan_lock:
            due = self.pop_due(now)
            if not due:
                return 0

            attempts = []
            for delivery_id in due:
                delivery = self._store.get(delivery_id)
                if delivery is None or delivery.status != "retrying":
                    continue
                webhook = self._registry.get(delivery.webhook_id)
                if webhook is None or not webhook.active:
                    logger.info(
                        "Dropping retry for %s: webhook %s removed or inactive",
                        delivery_id,
                        delivery.webhook_id,
                    )
                    continue
                attempts.append(executor.execute(delivery_id, webhook))

            if not attempts:
                return 0

            logger.info("Processing %d webhook retries", len(attempts))
            results = await asyncio.gather(*attempts, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Webhook retry failed: %s", result)
            return len(attempts)


__all__ = ["RetryScheduler"]
