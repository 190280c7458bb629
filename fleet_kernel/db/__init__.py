"""Database layer - engine, base classes, transactional scope."""

from fleet_kernel.db.base import UUID, Base, DecimalType, TrackedBase, TZDateTime, UUIDString
from fleet_kernel.db.engine import (
    RetryPolicy,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    run_in_transaction,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "run_in_transaction",
    "RetryPolicy",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "DecimalType",
    "TZDateTime",
    "UUID",
]
