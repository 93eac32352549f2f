"""Database layer - engine, base classes, money helpers, and immutability guards."""

from pos_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from pos_kernel.db.engine import create_tables, get_engine, get_session_factory
from pos_kernel.db.types import ZERO, format_money, round_money, to_money

__all__ = [
    "get_engine",
    "get_session_factory",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "ZERO",
    "to_money",
    "round_money",
    "format_money",
]
