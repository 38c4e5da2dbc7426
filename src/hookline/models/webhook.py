"""Webhook subscriber models.

A WebhookConfig describes one externally registered HTTP endpoint and the
event names it subscribes to. The shared secret is held as a SecretStr so it
never shows up in reprs, logs or listings.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, SecretStr, field_validator

from .base import utc_now


class WebhookConfig(BaseModel):
    """Configuration for a registered webhook.

    Attributes:
        id: Unique identifier, assigned at registration.
        url: http/https endpoint that receives deliveries.
        secret: Shared secret for HMAC-SHA256 signatures.
        events: Event names this webhook subscribes to (non-empty).
        active: Inactive webhooks receive nothing and their queued retries are dropped.
        timeout_seconds: HTTP timeout per attempt.
        max_attempts: Maximum delivery attempts, first attempt included.
        extra_headers: Additional headers sent with every delivery.
        description: Optional human-readable description.
        created_at: When the webhook was first registered.
        updated_at: When the webhook was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default="", description="Unique identifier, assigned at registration")
    url: HttpUrl = Field(description="Endpoint receiving deliveries")
    secret: SecretStr = Field(description="Shared secret for HMAC-SHA256 signatures")
    events: frozenset[str] = Field(description="Subscribed event names")
    active: bool = Field(default=True, description="Whether webhook is active")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300, description="HTTP timeout")
    max_attempts: int = Field(default=5, ge=1, le=20, description="Maximum delivery attempts")
    extra_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers sent with every delivery",
    )
    description: str | None = Field(default=None, description="Human-readable description")
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the webhook was registered",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="When the webhook was last modified",
    )

    @field_validator("events", mode="before")
    @classmethod
    def _normalize_events(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple, set, frozenset)):
            value = frozenset(str(v).strip() for v in value if str(v).strip())
            if not value:
                raise ValueError("at least one event must be specified")
        return value

    @field_validator("secret")
    @classmethod
    def _secret_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError("secret must not be empty")
        return value

    @property
    def secret_value(self) -> str:
        """The raw signing secret."""
        return self.secret.get_secret_value()

    def subscribes_to(self, event: str) -> bool:
        """Check if this webhook is active and subscribed to the given event."""
        return self.active and event in self.events

    def summary(self) -> "WebhookSummary":
        """Listing view without the secret."""
        return WebhookSummary(
            id=self.id,
            url=str(self.url),
            events=sorted(self.events),
            active=self.active,
            timeout_seconds=self.timeout_seconds,
            max_attempts=self.max_attempts,
            extra_headers=dict(self.extra_headers),
            description=self.description,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class WebhookSummary(BaseModel):
    """Public view of a webhook, safe to hand to operator tooling."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    url: str
    events: list[str]
    active: bool
    timeout_seconds: float
    max_attempts: int
    extra_headers: dict[str, str] = Field(default_factory=dict)
    description: str | None = None
    created_at: datetime
    updated_at: datetime


__all__ = [
    "WebhookConfig",
    "WebhookSummary",
]
