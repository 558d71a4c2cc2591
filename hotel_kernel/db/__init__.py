"""Database layer - engine, base classes, column types, immutability."""

from hotel_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from hotel_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from hotel_kernel.db.types import DecimalString, MoneyAmount, Rate

__all__ = [
    "Base",
    "TrackedBase",
    "UUID",
    "UUIDString",
    "DecimalString",
    "MoneyAmount",
    "Rate",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
]
