"""Webhook delivery components for Hookline.

Provides HMAC-signed webhook delivery with backoff retry, built from small
pieces that the WebhookEngine wires together.

Example:
    ```python
    from hookline.webhooks import DeliveryStore, WebhookRegistry, verify

    registry = WebhookRegistry()
    store = DeliveryStore()

    # Receiver side
    if not verify(request_body, request.headers["X-Webhook-Signature"], secret):
        raise PermissionError("bad signature")
    ```
"""

from .dispatcher import EventDispatcher
from .executor import DeliveryExecutor, build_headers, classify_response
from .registry import WebhookRegistry
from .retry import RetryScheduler
from .signing import compute_signature, sign, verify
from .store import DeliveryStore

__all__ = [
    "DeliveryExecutor",
    "DeliveryStore",
    "EventDispatcher",
    "RetryScheduler",
    "WebhookRegistry",
    "build_headers",
    "classify_response",
    "compute_signature",
    "sign",
    "verify",
]
