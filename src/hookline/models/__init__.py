"""Data models for Hookline."""

from .base import generate_id, truncate, utc_now
from .delivery import (
    ALL_STATUSES,
    TERMINAL_STATUSES,
    Attempt,
    AttemptOutcome,
    Delivery,
    DeliveryStatus,
)
from .envelope import Envelope, EnvelopeMetadata
from .stats import DeliveryHistory, DeliveryStats, RecentDeliveries, count_by_status
from .webhook import WebhookConfig, WebhookSummary

__all__ = [
    "ALL_STATUSES",
    "TERMINAL_STATUSES",
    "Attempt",
    "AttemptOutcome",
    "Delivery",
    "DeliveryHistory",
    "DeliveryStats",
    "DeliveryStatus",
    "Envelope",
    "EnvelopeMetadata",
    "RecentDeliveries",
    "WebhookConfig",
    "WebhookSummary",
    "count_by_status",
    "generate_id",
    "truncate",
    "utc_now",
]
