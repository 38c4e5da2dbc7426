"""Hookline engine: one object owning all webhook state.

Construct a WebhookEngine at process start and pass it to the code that
produces events and the code that reports on deliveries. Nothing here is a
module-level singleton.

Example:
    ```python
    from hookline import WebhookEngine, WebhookEvents

    async with WebhookEngine.create() as engine:
        engine.register(
            "whk_erp",
            {
                "url": "https://erp.example.com/hooks/orders",
                "secret": "s3cret",
                "events": [WebhookEvents.ORDER_CREATED, WebhookEvents.ORDER_CANCELLED],
            },
        )

        await engine.send(WebhookEvents.ORDER_CREATED, {"order_id": "ord_1"}, {"user_id": "usr_7"})

        stats = engine.get_stats()
        print(f"{stats.successful_deliveries}/{stats.total_deliveries} delivered")
    ```

Limitations:
    All state lives in process memory. A restart loses webhook
    registrations, delivery history and queued retries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

import httpx

from hookline.config import Settings
from hookline.events import WebhookEvents, events_by_category
from hookline.exceptions import NotFoundError, ValidationError
from hookline.models import (
    Delivery,
    DeliveryHistory,
    DeliveryStats,
    DeliveryStatus,
    RecentDeliveries,
    WebhookConfig,
    WebhookSummary,
    generate_id,
    utc_now,
)
from hookline.webhooks import (
    DeliveryExecutor,
    DeliveryStore,
    EventDispatcher,
    RetryScheduler,
    WebhookRegistry,
    sign,
)
from hookline.webhooks import verify as verify_signature
from hookline.worker import BackgroundWorker, WorkerTask

logger = logging.getLogger(__name__)

COMMERCE_SOURCE = "hookline-commerce"


class WebhookEngine:
    """Producer-facing and operator-facing entry point.

    Owns one WebhookRegistry, DeliveryStore, RetryScheduler, DeliveryExecutor
    and EventDispatcher, plus the background worker running the retry scan
    and history cleanup.

    Attributes:
        settings: Configuration in effect.
        registry: Webhook directory.
        store: Delivery history.
        scheduler: Retry queue.
        executor: Attempt runner.
        dispatcher: Event fan-out.
        worker: Periodic retry scan and cleanup.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Configuration. Uses defaults (and HOOKLINE_ env vars) if None.
            client: Shared HTTP client for deliveries. The engine never closes
                a client it was given.
            clock: Returns the current time. Defaults to the UTC wall clock.
        """
        self.settings = settings or Settings()
        self._clock = clock or utc_now

        self.registry = WebhookRegistry(
            default_timeout_seconds=self.settings.default_timeout_seconds,
            default_max_attempts=self.settings.default_max_attempts,
        )
        self.store = DeliveryStore(
            retention=timedelta(hours=self.settings.delivery_retention_hours),
        )
        self.scheduler = RetryScheduler(
            self.store,
            self.registry,
            delays_seconds=self.settings.retry_delays_seconds,
            clock=self._clock,
        )
        self.executor = DeliveryExecutor(
            self.store,
            self.scheduler,
            client=client,
            max_concurrent=self.settings.max_concurrent_deliveries,
            user_agent=self.settings.user_agent,
            response_body_max_chars=self.settings.response_body_max_chars,
            clock=self._clock,
        )
        self.dispatcher = EventDispatcher(
            self.registry,
            self.store,
            self.executor,
            envelope_version=self.settings.envelope_version,
            clock=self._clock,
        )
        self.worker = BackgroundWorker(
            tasks=[
                WorkerTask(
                    name="webhook_retry_scan",
                    interval_seconds=self.settings.retry_scan_interval_seconds,
                    fn=self._retry_task,
                ),
                WorkerTask(
                    name="webhook_delivery_cleanup",
                    interval_seconds=self.settings.cleanup_interval_seconds,
                    fn=self._cleanup_task,
                ),
            ],
            clock=self._clock,
        )

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookEngine:
        """Create an engine with logging configured from its settings."""
        from hookline.logging import configure_from_settings

        settings = settings or Settings()
        configure_from_settings(settings)
        return cls(settings)

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic retry scan and cleanup."""
        await self.worker.start()

    async def stop(self) -> None:
        """Stop background jobs and wait for background fan-outs."""
        await self.worker.stop()
        await self.dispatcher.drain()

    async def __aenter__(self) -> WebhookEngine:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    async def _retry_task(self, now: datetime) -> str | None:
        attempted = await self.process_retries(now)
        return f"retried={attempted}" if attempted else None

    async def _cleanup_task(self, now: datetime) -> str | None:
        removed = self.cleanup(now)
        return f"removed={removed}" if removed else None

    # Registration

    def register(
        self,
        webhook_id: str,
        config: WebhookConfig | Mapping[str, Any],
    ) -> WebhookConfig:
        """Register or replace a webhook.

        Raises:
            ValidationError: On a malformed URL or an empty event set.
        """
        return self.registry.register(webhook_id, config)

    def create_webhook(
        self,
        url: str,
        secret: str,
        events: list[str],
        **options: Any,
    ) -> WebhookConfig:
        """Register a webhook under a freshly generated id.

        Args:
            url: Endpoint receiving deliveries.
            secret: Shared signing secret.
            events: Event names to subscribe to.
            **options: Any other WebhookConfig field (active, extra_headers, ...).

        Returns:
            The stored configuration, including its new id.
        """
        return self.registry.register(
            generate_id("whk"),
            {"url": url, "secret": secret, "events": events, **options},
        )

    def update_webhook(self, webhook_id: str, **changes: Any) -> WebhookConfig:
        """Partially update a webhook.

        Raises:
            NotFoundError: If the webhook isn't registered.
            ValidationError: If the update is invalid.
        """
        return self.registry.update(webhook_id, **changes)

    def unregister(self, webhook_id: str) -> bool:
        """Remove a webhook. Its delivery history stays queryable."""
        return self.registry.unregister(webhook_id)

    def get_webhook(self, webhook_id: str) -> WebhookConfig | None:
        return self.registry.get(webhook_id)

    def list_webhooks(self) -> list[WebhookSummary]:
        """All registered webhooks, without secrets."""
        return self.registry.summaries()

    # Producing events

    async def send(
        self,
        event: str,
        data: Any = None,
        metadata: dict[str, Any] | None = None,
        *,
        wait: bool = True,
    ) -> list[str]:
        """Dispatch an event to every subscribed, active webhook.

        Never raises because of a delivery failure; outcomes are recorded on
        the deliveries.

        Returns:
            IDs of the deliveries created.

        Raises:
            ValidationError: If ``metadata`` is malformed.
        """
        return await self.dispatcher.send(event, data, metadata, wait=wait)

    async def send_commerce_event(
        self,
        event: str,
        data: Any,
        user_id: str | None = None,
        order_id: str | None = None,
    ) -> list[str]:
        """Dispatch a commerce event tagged with its source and order."""
        metadata: dict[str, Any] = {"user_id": user_id, "source": COMMERCE_SOURCE}
        if order_id is not None:
            metadata["order_id"] = order_id
        return await self.send(event, data, metadata)

    async def test_webhook(
        self,
        webhook_id: str,
        event: str = WebhookEvents.WEBHOOK_TEST,
        user_id: str | None = None,
    ) -> Delivery:
        """Send a test delivery to one webhook.

        Only the named webhook receives it, whether or not it subscribes to
        ``event``. Retries follow the normal schedule.

        Raises:
            NotFoundError: If the webhook isn't registered.
            ValidationError: If the webhook is inactive.
        """
        webhook = self.registry.get(webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        if not webhook.active:
            raise ValidationError("active", f"webhook {webhook_id} is not active")

        now = self._clock()
        return await self.dispatcher.deliver_to(
            webhook,
            event,
            {
                "test": True,
                "timestamp": now.isoformat(),
                "message": "This is a test webhook delivery",
                "webhook_id": webhook_id,
            },
            {"user_id": user_id, "source": "webhook_test"},
        )

    async def redeliver(self, delivery_id: str) -> Delivery:
        """Deliver a past delivery's envelope again.

        A new delivery is created with the same envelope and payload, signed
        with the webhook's current secret and linked through
        ``redelivery_of``. The original record is left as it was.

        Raises:
            NotFoundError: If the delivery or its webhook no longer exists.
            ValidationError: If the delivery hasn't failed or the webhook is inactive.
        """
        original = self.store.get(delivery_id)
        if original is None:
            raise NotFoundError("delivery", delivery_id)
        if original.status != "failed":
            raise ValidationError(
                "status", f"only failed deliveries can be redelivered, got {original.status}"
            )

        webhook = self.registry.get(original.webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", original.webhook_id)
        if not webhook.active:
            raise ValidationError("active", f"webhook {webhook.id} is not active")

        clone = Delivery(
            webhook_id=original.webhook_id,
            event=original.event,
            url=str(webhook.url),
            envelope=original.envelope,
            payload=original.payload,
            signature=sign(original.envelope, webhook.secret_value),
            created_at=self._clock(),
            redelivery_of=original.id,
        )
        self.store.add(clone)
        logger.info("Redelivering %s as %s", original.id, clone.id)
        return await self.executor.execute(clone.id, webhook)

    # Queries

    def get_delivery(self, delivery_id: str) -> Delivery | None:
        return self.store.get(delivery_id)

    def get_stats(self) -> DeliveryStats:
        """Delivery statistics plus webhook counts and retry queue size."""
        total, active = self.registry.counts()
        return self.store.get_stats(
            total_webhooks=total,
            active_webhooks=active,
            pending_retries=len(self.scheduler),
        )

    def get_history(
        self,
        webhook_id: str,
        limit: int = 50,
        status: DeliveryStatus | None = None,
        event: str | None = None,
    ) -> DeliveryHistory:
        """Most recent deliveries for one webhook, optionally filtered."""
        return self.store.get_history(webhook_id, limit=limit, status=status, event=event)

    def get_recent(self, limit: int = 100) -> RecentDeliveries:
        """Most recent deliveries across all webhooks."""
        return self.store.get_recent(limit)

    @staticmethod
    def available_events() -> dict[str, list[dict[str, str]]]:
        """Known event names grouped by category."""
        return events_by_category()

    @staticmethod
    def verify(raw_body: str | bytes, signature_header: str | None, secret: str) -> bool:
        """Check an X-Webhook-Signature header against a raw request body."""
        return verify_signature(raw_body, signature_header, secret)

    # Maintenance

    async def process_retries(self, now: datetime | None = None) -> int:
        """Run one retry scan. Returns the number of attempts made."""
        return await self.scheduler.process_due(self.executor, now or self._clock())

    def cleanup(self, now: datetime | None = None) -> int:
        """Evict old deliveries. Returns the number removed."""
        return self.store.cleanup(now or self._clock())


__all__ = ["COMMERCE_SOURCE", "WebhookEngine"]
