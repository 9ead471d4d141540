"""Identifier coercion shared by the primary triggers."""

from __future__ import annotations

from uuid import UUID


def coerce_uuid(value: UUID | str | None) -> UUID | None:
    """UUID from a UUID or its string form; None when it does not parse."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
