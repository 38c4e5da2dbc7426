"""Delivery and attempt records.

A Delivery is the (possibly multi-attempt) effort to deliver one envelope to
one webhook. Its status only moves forward:

    pending  -> success | retrying | failed
    retrying -> success | retrying | failed

success and failed are terminal. ``completed_at`` is set exactly once, on
the first transition into a terminal state, and ``next_retry_at`` is only
set while the delivery is retrying.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from hookline.exceptions import EngineError

from .base import generate_id, utc_now
from .envelope import Envelope

DeliveryStatus = Literal["pending", "retrying", "success", "failed"]
AttemptOutcome = Literal["success", "failed"]

ALL_STATUSES: tuple[DeliveryStatus, ...] = ("pending", "retrying", "success", "failed")
TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed"})


class Attempt(BaseModel):
    """One HTTP try within a delivery. Immutable once recorded.

    Attributes:
        timestamp: When the attempt started.
        outcome: success or failed.
        http_status: Response status code, if a response was received.
        response_time_ms: Wall time of the attempt in milliseconds.
        error: Error message for failed attempts.
        response_body_sample: Truncated response body, for diagnostics.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    outcome: AttemptOutcome
    http_status: int | None = None
    response_time_ms: float = Field(default=0.0, ge=0.0)
    error: str | None = None
    response_body_sample: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"


class Delivery(BaseModel):
    """Record of delivering one event to one webhook.

    ``webhook_id`` is kept even after the webhook is unregistered: deliveries
    are historical facts, not live joins.

    Attributes:
        id: Unique identifier, sent as X-Webhook-Delivery.
        webhook_id: ID of the target webhook.
        event: Event name.
        url: Target URL at creation time.
        envelope: The envelope being delivered.
        payload: Canonical serialization of the envelope (the request body).
        signature: HMAC signature over ``payload``, computed once.
        status: pending, retrying, success or failed.
        attempts: Attempts in the order they were made.
        created_at: When the delivery was created.
        completed_at: When the delivery reached a terminal state.
        next_retry_at: When the next attempt is due (retrying only).
        redelivery_of: Delivery this one was cloned from by an operator redelivery.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    webhook_id: str
    event: str
    url: str
    envelope: Envelope
    payload: str
    signature: str
    status: DeliveryStatus = "pending"
    attempts: list[Attempt] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    next_retry_at: datetime | None = None
    redelivery_of: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> Attempt | None:
        return self.attempts[-1] if self.attempts else None

    def _append(self, attempt: Attempt) -> None:
        if self.is_terminal:
            raise EngineError(f"Delivery {self.id} is already {self.status}")
        self.attempts.append(attempt)

    def mark_success(self, attempt: Attempt, now: datetime) -> Delivery:
        """Record a successful attempt and finish the delivery."""
        self._append(attempt)
        self.status = "success"
        self.completed_at = now
        self.next_retry_at = None
        return self

    def mark_failed(self, attempt: Attempt, now: datetime) -> Delivery:
        """Record a failed attempt and finish the delivery (no more retries)."""
        self._append(attempt)
        self.status = "failed"
        self.completed_at = now
        self.next_retry_at = None
        return self

    def mark_retrying(self, attempt: Attempt, next_retry_at: datetime) -> Delivery:
        """Record a failed attempt and wait for the next one."""
        self._append(attempt)
        self.status = "retrying"
        self.next_retry_at = next_retry_at
        return self


__all__ = [
    "ALL_STATUSES",
    "Attempt",
    "AttemptOutcome",
    "Delivery",
    "DeliveryStatus",
    "TERMINAL_STATUSES",
]
