"""Single delivery attempts.

The executor POSTs a delivery's stored payload to its webhook, classifies
the outcome and hands the result to the store:

- 2xx/3xx: success
- 4xx: permanent failure, no retry
- 5xx, timeout, connection error: retryable failure

Retryable failures with attempts left are queued on the RetryScheduler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import httpx

from hookline.exceptions import (
    DeliveryError,
    EngineError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from hookline.models import Attempt, Delivery, truncate, utc_now

if TYPE_CHECKING:
    from hookline.models import WebhookConfig
    from hookline.webhooks.retry import RetryScheduler
    from hookline.webhooks.store import DeliveryStore

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Hookline-Webhook/1.0"


def build_headers(
    delivery: Delivery,
    webhook: WebhookConfig,
    user_agent: str = DEFAULT_USER_AGENT,
) -> dict[str, str]:
    """Request headers for one attempt. Webhook extra headers come last."""
    return {
        "Content-Type": "application/json",
        "X-Webhook-Event": delivery.event,
        "X-Webhook-Signature": delivery.signature,
        "X-Webhook-Delivery": delivery.id,
        "X-Webhook-Timestamp": delivery.envelope.timestamp_iso,
        "User-Agent": user_agent,
        **webhook.extra_headers,
    }


def classify_response(response: httpx.Response) -> None:
    """Raise a DeliveryError unless the response counts as delivered.

    Raises:
        PermanentDeliveryError: On 4xx responses.
        TransientDeliveryError: On 5xx responses.
    """
    status = response.status_code
    if status < 400:
        return
    body = response.text or None
    if status < 500:
        raise PermanentDeliveryError(f"HTTP {status}", status_code=status, response_body=body)
    raise TransientDeliveryError(f"HTTP {status}", status_code=status, response_body=body)


class DeliveryExecutor:
    """Performs delivery attempts and records their outcome.

    Example:
        ```python
        executor = DeliveryExecutor(store, scheduler)
        delivery = await executor.execute(delivery_id, webhook)
        delivery.status  # "success", "retrying" or "failed"
        ```
    """

    def __init__(
        self,
        store: DeliveryStore,
        scheduler: RetryScheduler,
        client: httpx.AsyncClient | None = None,
        max_concurrent: int = 10,
        user_agent: str = DEFAULT_USER_AGENT,
        response_body_max_chars: int = 1000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Delivery history receiving attempt records.
            scheduler: Retry queue for retryable failures.
            client: Shared HTTP client. When None, each attempt opens its own.
            max_concurrent: Maximum attempts in flight at once.
            user_agent: User-Agent header value.
            response_body_max_chars: Truncation length for response bodies.
            clock: Returns the current time. Defaults to the UTC wall clock.
        """
        self._store = store
        self._scheduler = scheduler
        self._client = client
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._user_agent = user_agent
        self._body_max = response_body_max_chars
        self._clock = clock or utc_now

    async def execute(self, delivery_id: str, webhook: WebhookConfig) -> Delivery:
        """Make one attempt for a delivery and record the result.

        Args:
            delivery_id: Delivery to attempt.
            webhook: Current configuration of the target webhook.

        Returns:
            Snapshot of the delivery after the attempt.

        Raises:
            EngineError: If the delivery doesn't exist.
        """
        delivery = self._store.get(delivery_id)
        if delivery is None:
            raise EngineError(f"Delivery not found: {delivery_id}")
        if delivery.is_terminal:
            logger.debug("Delivery %s already %s, skipping", delivery_id, delivery.status)
            return delivery

        async with self._semaphore:
            attempt, retryable = await self._attempt(delivery, webhook)

        updated = self._store.record_attempt(
            delivery_id,
            attempt,
            retryable=retryable,
            max_attempts=webhook.max_attempts,
            backoff=self._scheduler.delay_for,
            now=self._clock(),
        )
        if updated.status == "retrying" and updated.next_retry_at is not None:
            self._scheduler.schedule(updated.id, updated.next_retry_at)

        self._log_outcome(updated, webhook)
        return updated

    async def _attempt(self, delivery: Delivery, webhook: WebhookConfig) -> tuple[Attempt, bool]:
        """POST the payload once.

        Returns:
            The attempt record and whether a failure may be retried.
        """
        started_at = self._clock()
        start = time.perf_counter()
        headers = build_headers(delivery, webhook, self._user_agent)

        try:
            response = await self._post(str(webhook.url), delivery.payload, headers, webhook)
            elapsed_ms = (time.perf_counter() - start) * 1000
            classify_response(response)
            return (
                Attempt(
                    timestamp=started_at,
                    outcome="success",
                    http_status=response.status_code,
                    response_time_ms=elapsed_ms,
                    response_body_sample=self._sample(response.text),
                ),
                False,
            )
        except DeliveryError as e:
            error, retryable = e, e.retryable
        except httpx.TimeoutException:
            error, retryable = TransientDeliveryError("Request timeout"), True
        except httpx.RequestError as e:
            error, retryable = TransientDeliveryError(str(e) or type(e).__name__), True
        except Exception as e:
            logger.exception("Webhook delivery error: %s", e)
            error, retryable = EngineError(f"Unexpected error: {e}"), False

        elapsed_ms = (time.perf_counter() - start) * 1000
        status_code = getattr(error, "status_code", None)
        body = getattr(error, "response_body", None)
        return (
            Attempt(
                timestamp=started_at,
                outcome="failed",
                http_status=status_code,
                response_time_ms=elapsed_ms,
                error=error.message,
                response_body_sample=self._sample(body),
            ),
            retryable,
        )

    async def _post(
        self,
        url: str,
        payload: str,
        headers: dict[str, str],
        webhook: WebhookConfig,
    ) -> httpx.Response:
        content = payload.encode("utf-8")
        if self._client is not None:
            return await self._client.post(
                url,
                content=content,
                headers=headers,
                timeout=webhook.timeout_seconds,
            )
        async with httpx.AsyncClient(timeout=webhook.timeout_seconds) as client:
            return await client.post(url, content=content, headers=headers)

    def _sample(self, body: str | None) -> str | None:
        if not body:
            return None
        return truncate(body, self._body_max)

    def _log_outcome(self, delivery: Delivery, webhook: WebhookConfig) -> None:
        attempt = delivery.last_attempt
        if attempt is None:
            return
        if delivery.status == "success":
            logger.info(
                "Webhook delivered: %s to %s (status %s, %dms)",
                delivery.event,
                webhook.url,
                attempt.http_status,
                round(attempt.response_time_ms),
            )
        elif delivery.status == "retrying":
            logger.warning(
                "Webhook delivery failed, scheduling retry: %s (attempt %d/%d, next at %s): %s",
                delivery.webhook_id,
                delivery.attempt_count,
                webhook.max_attempts,
                delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
                attempt.error,
            )
        else:
            logger.error(
                "Webhook delivery permanently failed: %s after %d attempts: %s",
                delivery.webhook_id,
                delivery.attempt_count,
                attempt.error,
            )


__all__ = [
    "DEFAULT_USER_AGENT",
    "DeliveryExecutor",
    "build_headers",
    "classify_response",
]
