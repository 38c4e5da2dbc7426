"""Base helpers shared by Hookline models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def truncate(value: str, max_chars: int) -> str:
    """Truncate ``value`` to ``max_chars`` characters, marking the cut with '...'."""
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + "..."
