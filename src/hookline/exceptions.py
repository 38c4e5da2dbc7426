"""Hookline exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HooklineError for easy catching.

Delivery errors (TransientDeliveryError, PermanentDeliveryError) are raised
while classifying an attempt and absorbed into the delivery record; they are
never surfaced to event producers.
"""

from __future__ import annotations


class HooklineError(Exception):
    """Base exception for all Hookline errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "hookline_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HooklineError):
    """Invalid input provided.

    Raised synchronously when a webhook registration or update fails
    validation (malformed URL, empty event set, and so on).

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HooklineError):
    """Resource not found.

    Raised when an operator operation references a webhook or delivery
    that doesn't exist.

    Attributes:
        resource_type: Type of resource ("webhook", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class DeliveryError(HooklineError):
    """A single delivery attempt did not succeed.

    Attributes:
        status_code: HTTP status returned by the subscriber, if any.
        response_body: Response body returned by the subscriber, if any.
    """

    code: str = "delivery_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class TransientDeliveryError(DeliveryError):
    """Network failure, timeout or 5xx response. The delivery is retried."""

    code: str = "transient_delivery_error"
    retryable: bool = True


class PermanentDeliveryError(DeliveryError):
    """4xx response. The delivery fails without retry."""

    code: str = "permanent_delivery_error"
    retryable: bool = False


class EngineError(HooklineError):
    """Unexpected internal fault while processing one delivery target."""

    code: str = "engine_error"


class ConfigurationError(HooklineError):
    """Invalid configuration.

    Raised when engine settings are inconsistent.
    """

    code: str = "configuration_error"
