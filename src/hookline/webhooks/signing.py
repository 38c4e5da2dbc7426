"""HMAC-SHA256 signing for webhook envelopes.

Receivers validate against the exact bytes they got, so the signature is
computed once over the canonical envelope serialization when a delivery is
created and reused for every attempt of that delivery.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hookline.models import Envelope

SIGNATURE_PREFIX = "sha256="


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(payload: str | bytes, secret: str) -> str:
    """Compute HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Raw payload to sign.
        secret: Shared secret for HMAC.

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=_to_bytes(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def sign(envelope: Envelope, secret: str) -> str:
    """Sign an envelope's canonical serialization.

    Args:
        envelope: Envelope to sign.
        secret: Shared secret for HMAC.

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    return compute_signature(envelope.canonical_json(), secret)


def verify(raw_body: str | bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a received webhook signature.

    Recomputes the HMAC over the raw received body and compares it in
    constant time with the hex digest from the header. The ``sha256=``
    prefix is optional on the header.

    Args:
        raw_body: Request body exactly as received.
        signature_header: Value of the X-Webhook-Signature header.
        secret: Shared secret for HMAC.

    Returns:
        True if signature is valid, False otherwise (including a missing
        or malformed header).
    """
    if not signature_header or not secret:
        return False
    received = signature_header.strip()
    if received.startswith(SIGNATURE_PREFIX):
        received = received[len(SIGNATURE_PREFIX) :]
    expected = compute_signature(raw_body, secret)[len(SIGNATURE_PREFIX) :]
    try:
        return hmac.compare_digest(expected, received.lower())
    except TypeError:
        # non-ASCII header value
        return False


__all__ = [
    "SIGNATURE_PREFIX",
    "compute_signature",
    "sign",
    "verify",
]
