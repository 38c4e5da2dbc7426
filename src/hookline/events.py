"""Catalog of commerce events producers emit.

Registration is not restricted to these names; the catalog exists so
operator tooling can show subscribers what they can listen to.
"""

from __future__ import annotations

from typing import Final


class WebhookEvents:
    """Event name constants."""

    # Order events
    ORDER_CREATED: Final = "order.created"
    ORDER_UPDATED: Final = "order.updated"
    ORDER_COMPLETED: Final = "order.completed"
    ORDER_CANCELLED: Final = "order.cancelled"

    # Payment events
    PAYMENT_SUCCEEDED: Final = "payment.succeeded"
    PAYMENT_FAILED: Final = "payment.failed"
    PAYMENT_REFUNDED: Final = "payment.refunded"

    # Inventory events
    STOCK_LOW: Final = "inventory.stock_low"
    STOCK_OUT: Final = "inventory.stock_out"
    STOCK_UPDATED: Final = "inventory.updated"

    # User events
    USER_REGISTERED: Final = "user.registered"
    USER_UPDATED: Final = "user.updated"

    # Product events
    PRODUCT_CREATED: Final = "product.created"
    PRODUCT_UPDATED: Final = "product.updated"
    PRODUCT_DELETED: Final = "product.deleted"

    # Sent by the test-delivery operation
    WEBHOOK_TEST: Final = "webhook.test"


EVENT_DESCRIPTIONS: dict[str, str] = {
    WebhookEvents.ORDER_CREATED: "Triggered when a new order is created",
    WebhookEvents.ORDER_UPDATED: "Triggered when an order is updated",
    WebhookEvents.ORDER_COMPLETED: "Triggered when an order is completed",
    WebhookEvents.ORDER_CANCELLED: "Triggered when an order is cancelled",
    WebhookEvents.PAYMENT_SUCCEEDED: "Triggered when a payment is successful",
    WebhookEvents.PAYMENT_FAILED: "Triggered when a payment fails",
    WebhookEvents.PAYMENT_REFUNDED: "Triggered when a payment is refunded",
    WebhookEvents.STOCK_LOW: "Triggered when product stock falls below its threshold",
    WebhookEvents.STOCK_OUT: "Triggered when a product goes out of stock",
    WebhookEvents.STOCK_UPDATED: "Triggered when inventory levels change",
    WebhookEvents.USER_REGISTERED: "Triggered when a new user registers",
    WebhookEvents.USER_UPDATED: "Triggered when a user profile is updated",
    WebhookEvents.PRODUCT_CREATED: "Triggered when a new product is created",
    WebhookEvents.PRODUCT_UPDATED: "Triggered when a product is updated",
    WebhookEvents.PRODUCT_DELETED: "Triggered when a product is deleted",
    WebhookEvents.WEBHOOK_TEST: "Sent when an operator tests a webhook endpoint",
}

ALL_EVENTS: tuple[str, ...] = tuple(EVENT_DESCRIPTIONS)


def event_category(event: str) -> str:
    """Category of an event: the part before the first dot."""
    return event.split(".", 1)[0] if "." in event else "other"


def describe_event(event: str) -> str:
    """Human-readable description, or a generic one for unknown events."""
    return EVENT_DESCRIPTIONS.get(event, f"Custom event: {event}")


def events_by_category() -> dict[str, list[dict[str, str]]]:
    """Catalog grouped by category, each entry with name and description."""
    grouped: dict[str, list[dict[str, str]]] = {}
    for event in ALL_EVENTS:
        grouped.setdefault(event_category(event), []).append(
            {"event": event, "description": describe_event(event)}
        )
    return grouped


__all__ = [
    "ALL_EVENTS",
    "EVENT_DESCRIPTIONS",
    "WebhookEvents",
    "describe_event",
    "event_category",
    "events_by_category",
]
