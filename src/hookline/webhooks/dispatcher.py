"""Event fan-out to subscribed webhooks.

Dispatch is best-effort and isolated per target: every matching webhook
gets its own delivery and its own attempt task, all tasks are settled, and
no delivery failure ever reaches the producer calling ``send``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

import pydantic

from hookline.exceptions import ValidationError
from hookline.logging import bind_context, unbind_context
from hookline.models import Delivery, Envelope, utc_now

from .signing import sign

if TYPE_CHECKING:
    from hookline.models import WebhookConfig
    from hookline.webhooks.executor import DeliveryExecutor
    from hookline.webhooks.registry import WebhookRegistry
    from hookline.webhooks.store import DeliveryStore

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Creates deliveries for an event and runs their first attempt.

    Example:
        ```python
        dispatcher = EventDispatcher(registry, store, executor)
        delivery_ids = await dispatcher.send(
            "order.created",
            {"order_id": "ord_123", "total": "49.90"},
            {"user_id": "usr_9"},
        )
        ```
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        store: DeliveryStore,
        executor: DeliveryExecutor,
        envelope_version: str = "1.0.0",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._executor = executor
        self._envelope_version = envelope_version
        self._clock = clock or utc_now
        self._background: set[asyncio.Task[None]] = set()

    def build_envelope(
        self,
        event: str,
        data: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> Envelope:
        """Build the envelope for one dispatch, stamped with the current time.

        Raises:
            ValidationError: If ``metadata`` can't be used in an envelope.
        """
        try:
            return Envelope.build(
                event,
                data,
                metadata,
                version=self._envelope_version,
                timestamp=self._clock(),
            )
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            field = ".".join(["metadata", *(str(part) for part in first.get("loc", ()))])
            logger.warning("Rejected metadata for event %s: %s", event, first.get("msg"))
            raise ValidationError(field, first.get("msg", "invalid value")) from e

    async def send(
        self,
        event: str,
        data: Any = None,
        metadata: dict[str, Any] | None = None,
        *,
        wait: bool = True,
    ) -> list[str]:
        """Dispatch an event to every active webhook subscribed to it.

        Args:
            event: Event name.
            data: Event payload.
            metadata: Optional request_id, user_id and source tags.
            wait: If True, return once every first attempt has finished
                (delivered, failed, or queued for retry). If False, attempts
                run in the background.

        Returns:
            IDs of the deliveries created, empty if nothing subscribes.

        Raises:
            ValidationError: If ``metadata`` is malformed. Delivery
                failures are never raised.
        """
        webhooks = self._registry.list_matching(event)
        if not webhooks:
            logger.debug("No webhooks subscribed to event %s", event)
            return []

        envelope = self.build_envelope(event, data, metadata)
        return await self._fan_out(envelope, webhooks, wait=wait)

    async def deliver_to(
        self,
        webhook: WebhookConfig,
        event: str,
        data: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> Delivery:
        """Deliver an event to one specific webhook, regardless of its subscriptions.

        Returns:
            Snapshot of the delivery after its first attempt.
        """
        envelope = self.build_envelope(event, data, metadata)
        delivery = self.create_delivery(webhook, envelope)
        return await self._executor.execute(delivery.id, webhook)

    def create_delivery(
        self,
        webhook: WebhookConfig,
        envelope: Envelope,
        redelivery_of: str | None = None,
    ) -> Delivery:
        """Create and store a pending delivery of ``envelope`` to ``webhook``."""
        payload = envelope.canonical_json()
        delivery = Delivery(
            webhook_id=webhook.id,
            event=envelope.event,
            url=str(webhook.url),
            envelope=envelope,
            payload=payload,
            signature=sign(envelope, webhook.secret_value),
            created_at=self._clock(),
            redelivery_of=redelivery_of,
        )
        self._store.add(delivery)
        return delivery

    async def _fan_out(
        self,
        envelope: Envelope,
        webhooks: list[WebhookConfig],
        *,
        wait: bool,
    ) -> list[str]:
        deliveries = [self.create_delivery(webhook, envelope) for webhook in webhooks]
        logger.info(
            "Sending event '%s' to %d webhooks (request %s)",
            envelope.event,
            len(deliveries),
            envelope.metadata.request_id,
        )

        run = self._run_attempts(envelope, deliveries, webhooks)
        if wait:
            await run
        else:
            task = asyncio.create_task(run)
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return [d.id for d in deliveries]

    async def _run_attempts(
        self,
        envelope: Envelope,
        deliveries: list[Delivery],
        webhooks: list[WebhookConfig],
    ) -> None:
        bind_context(request_id=envelope.metadata.request_id, event=envelope.event)
        try:
            results = await asyncio.gather(
                *(
                    self._executor.execute(delivery.id, webhook)
                    for delivery, webhook in zip(deliveries, webhooks, strict=True)
                ),
                return_exceptions=True,
            )
        finally:
            unbind_context("request_id", "event")

        for delivery, result in zip(deliveries, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook delivery %s to %s raised: %r",
                    delivery.id,
                    delivery.webhook_id,
                    result,
                )

    async def drain(self) -> None:
        """Wait for background fan-outs started with ``wait=False``."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    @property
    def in_flight(self) -> int:
        """Background fan-outs still running."""
        return len(self._background)


__all__ = ["EventDispatcher"]
