"""Database layer - engine, base classes, types and transaction scopes."""

from fee_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from fee_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    run_with_conflict_retry,
    serializable_scope,
    session_scope,
)
from fee_kernel.db.types import MONEY_EPSILON, Money, Rate

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "session_scope",
    "serializable_scope",
    "run_with_conflict_retry",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "MONEY_EPSILON",
]
