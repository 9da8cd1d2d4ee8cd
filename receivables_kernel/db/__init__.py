"""Database layer - engine, base classes and append-only listeners."""

from receivables_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from receivables_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    read_only_scope,
    transaction_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "create_tables",
    "transaction_scope",
    "read_only_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
