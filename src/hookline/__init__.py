"""Hookline: signed webhook delivery with retries.

Pushes domain events (orders, payments, inventory, users, products) to
registered HTTP endpoints as HMAC-signed JSON callbacks, retries transient
failures on a fixed backoff schedule, and keeps a bounded in-memory history
of every attempt.

Quick Start:
    from hookline import WebhookEngine

    async with WebhookEngine.create() as engine:
        engine.register(
            "whk_erp",
            {"url": "https://erp.example.com/hooks", "secret": "s3cret", "events": ["order.created"]},
        )
        await engine.send("order.created", {"order_id": "ord_1"})

Receiving side:
    from hookline import verify

    ok = verify(raw_body, headers["X-Webhook-Signature"], secret)
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Engine
from .engine import WebhookEngine

# Events
from .events import ALL_EVENTS, WebhookEvents

# Exceptions
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    EngineError,
    HooklineError,
    NotFoundError,
    PermanentDeliveryError,
    TransientDeliveryError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    Attempt,
    Delivery,
    DeliveryHistory,
    DeliveryStats,
    Envelope,
    RecentDeliveries,
    WebhookConfig,
    WebhookSummary,
)

# Signing
from .webhooks import compute_signature, sign, verify

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Engine
    "WebhookEngine",
    # Events
    "ALL_EVENTS",
    "WebhookEvents",
    # Exceptions
    "ConfigurationError",
    "DeliveryError",
    "EngineError",
    "HooklineError",
    "NotFoundError",
    "PermanentDeliveryError",
    "TransientDeliveryError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "logger",
    "unbind_context",
    # Models
    "Attempt",
    "Delivery",
    "DeliveryHistory",
    "DeliveryStats",
    "Envelope",
    "RecentDeliveries",
    "WebhookConfig",
    "WebhookSummary",
    # Signing
    "compute_signature",
    "sign",
    "verify",
]
