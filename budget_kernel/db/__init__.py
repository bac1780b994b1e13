"""Database layer - engine, session scope and declarative base."""

from budget_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from budget_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "build_engine",
    "create_tables",
    "drop_tables",
    "session_scope",
]
