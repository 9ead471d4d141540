"""Database layer - engine, base classes and types."""

from incentive_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from incentive_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
