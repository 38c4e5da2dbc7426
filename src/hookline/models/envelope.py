"""Envelope: the JSON body sent to webhook endpoints.

The envelope is built once per dispatch. Its canonical serialization (compact
JSON, sorted keys, camelCase names) is both what gets signed and what goes on
the wire, so every retry of a delivery sends byte-identical content.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from .base import generate_id, utc_now


class EnvelopeMetadata(BaseModel):
    """Envelope metadata.

    Unknown keys (``source``, ``order_id``, ...) are kept as source tags and
    serialized under the name they were given.
    """

    model_config = ConfigDict(
        extra="allow",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    request_id: str = Field(default_factory=lambda: generate_id("req"))
    user_id: str | None = None
    version: str = "1.0.0"

    @field_validator("request_id", "user_id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        # Numeric ids go on the wire as strings
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class Envelope(BaseModel):
    """Event payload sent to webhook endpoints.

    Attributes:
        event: Event name (e.g. "order.created").
        timestamp: When the event was dispatched. Never changes.
        data: Event-specific payload.
        metadata: Request id, user id, version and source tags.
    """

    model_config = ConfigDict(frozen=True)

    event: str
    timestamp: datetime = Field(default_factory=utc_now)
    data: Any = None
    metadata: EnvelopeMetadata = Field(default_factory=EnvelopeMetadata)

    @classmethod
    def build(
        cls,
        event: str,
        data: Any = None,
        metadata: dict[str, Any] | None = None,
        *,
        version: str = "1.0.0",
        timestamp: datetime | None = None,
    ) -> Envelope:
        """Create an envelope, generating a request id if the caller gave none.

        Caller metadata overrides the defaults key by key, so an explicit
        ``version`` in ``metadata`` wins over the engine's version tag.
        """
        fields: dict[str, Any] = {"version": version}
        for key, value in (metadata or {}).items():
            if key in ("request_id", "requestId") and not value:
                continue
            fields[key] = value
        return cls(
            event=event,
            timestamp=timestamp or utc_now(),
            data=data,
            metadata=EnvelopeMetadata(**fields),
        )

    @property
    def timestamp_iso(self) -> str:
        """Timestamp as sent in the body and the X-Webhook-Timestamp header."""
        return self.timestamp.astimezone(UTC).isoformat().replace("+00:00", "Z")

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict in wire format."""
        return {
            "event": self.event,
            "timestamp": self.timestamp_iso,
            "data": to_jsonable_python(self.data),
            "metadata": self.metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        }

    def canonical_json(self) -> str:
        """Deterministic serialization used for signing and sending."""
        return json.dumps(
            self.to_wire(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )


__all__ = [
    "Envelope",
    "EnvelopeMetadata",
]
