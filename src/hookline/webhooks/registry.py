"""In-memory directory of webhook subscribers.

The registry is shared, process-wide state: the registration API writes to
it while the dispatcher and retry scheduler read from it. Every operation
runs under one lock and readers only ever receive copies, so a config can't
be observed half-updated.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import pydantic

from hookline.exceptions import NotFoundError, ValidationError
from hookline.models import WebhookConfig, WebhookSummary, utc_now

logger = logging.getLogger(__name__)

# Fields an update may not touch
_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at"})


def _validation_error(exc: pydantic.ValidationError) -> ValidationError:
    """Translate the first pydantic error into a Hookline ValidationError."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "config"
    message = first.get("msg", "invalid value").removeprefix("Value error, ")
    return ValidationError(field, message)


def _build_config(webhook_id: str, data: Mapping[str, Any]) -> WebhookConfig:
    try:
        return WebhookConfig.model_validate({**data, "id": webhook_id})
    except pydantic.ValidationError as e:
        raise _validation_error(e) from e


class WebhookRegistry:
    """Guarded map of webhook id to WebhookConfig.

    Example:
        ```python
        registry = WebhookRegistry()
        registry.register(
            "whk_orders",
            {"url": "https://shop.example.com/hooks", "secret": "s3cret", "events": ["order.created"]},
        )
        registry.list_matching("order.created")  # [WebhookConfig(id="whk_orders", ...)]
        ```
    """

    def __init__(
        self,
        default_timeout_seconds: float = 30.0,
        default_max_attempts: int = 5,
    ) -> None:
        self._webhooks: dict[str, WebhookConfig] = {}
        self._lock = threading.RLock()
        self._default_timeout = default_timeout_seconds
        self._default_max_attempts = default_max_attempts

    def register(
        self,
        webhook_id: str,
        config: WebhookConfig | Mapping[str, Any],
    ) -> WebhookConfig:
        """Register or replace a webhook.

        Registering an existing id replaces its configuration but keeps its
        original ``created_at``.

        Args:
            webhook_id: Identifier for the webhook.
            config: A WebhookConfig or a mapping of its fields.

        Returns:
            Copy of the stored configuration.

        Raises:
            ValidationError: If the id is empty, the URL isn't a well-formed
                http/https URL, or no events are given.
        """
        if not webhook_id or not webhook_id.strip():
            raise ValidationError("id", "webhook id must not be empty")

        if isinstance(config, WebhookConfig):
            data = config.model_dump(exclude={"id"})
        else:
            data = dict(config)
            data.setdefault("timeout_seconds", self._default_timeout)
            data.setdefault("max_attempts", self._default_max_attempts)

        webhook = _build_config(webhook_id, data)

        with self._lock:
            existing = self._webhooks.get(webhook_id)
            now = utc_now()
            webhook = webhook.model_copy(
                update={
                    "created_at": existing.created_at if existing else webhook.created_at,
                    "updated_at": now,
                }
            )
            self._webhooks[webhook_id] = webhook

        logger.info(
            "Webhook %s: %s -> %s (events=%s, active=%s)",
            "updated" if existing else "registered",
            webhook_id,
            webhook.url,
            sorted(webhook.events),
            webhook.active,
        )
        return webhook.model_copy()

    def update(self, webhook_id: str, **changes: Any) -> WebhookConfig:
        """Apply a partial update to a registered webhook.

        Args:
            webhook_id: ID of the webhook to update.
            **changes: Fields to change. Fields not named keep their value;
                an explicit ``None`` clears an optional field.

        Returns:
            Copy of the updated configuration.

        Raises:
            NotFoundError: If the webhook isn't registered.
            ValidationError: If the result fails validation or an
                immutable field is targeted.
        """
        for key in changes:
            if key in _IMMUTABLE_FIELDS:
                raise ValidationError(key, "field cannot be updated")

        with self._lock:
            existing = self._webhooks.get(webhook_id)
            if existing is None:
                raise NotFoundError("webhook", webhook_id)
            data = existing.model_dump(exclude={"id", "updated_at"})
            data.update(changes)
            return self.register(webhook_id, data)

    def unregister(self, webhook_id: str) -> bool:
        """Remove a webhook. Its delivery history is left untouched.

        Returns:
            True if the webhook was registered, False otherwise.
        """
        with self._lock:
            removed = self._webhooks.pop(webhook_id, None)
        if removed is not None:
            logger.info("Webhook unregistered: %s", webhook_id)
        return removed is not None

    def get(self, webhook_id: str) -> WebhookConfig | None:
        """Get a copy of a webhook's configuration, or None."""
        with self._lock:
            webhook = self._webhooks.get(webhook_id)
            return webhook.model_copy() if webhook is not None else None

    def list_all(self) -> list[WebhookConfig]:
        """Copies of all registered webhooks, ordered by registration time."""
        with self._lock:
            webhooks = [w.model_copy() for w in self._webhooks.values()]
        return sorted(webhooks, key=lambda w: w.created_at)

    def list_matching(self, event: str) -> list[WebhookConfig]:
        """Active webhooks subscribed to ``event``."""
        with self._lock:
            return [w.model_copy() for w in self._webhooks.values() if w.subscribes_to(event)]

    def summaries(self) -> list[WebhookSummary]:
        """Listing view of every webhook, without secrets."""
        return [w.summary() for w in self.list_all()]

    def counts(self) -> tuple[int, int]:
        """(total, active) webhook counts."""
        with self._lock:
            total = len(self._webhooks)
            active = sum(1 for w in self._webhooks.values() if w.active)
        return total, active

    def __len__(self) -> int:
        with self._lock:
            return len(self._webhooks)

    def __contains__(self, webhook_id: object) -> bool:
        with self._lock:
            return webhook_id in self._webhooks


__all__ = ["WebhookRegistry"]
