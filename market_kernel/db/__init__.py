"""Database layer - engine, base classes, types, transactions, and integrity."""

from market_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from market_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from market_kernel.db.transaction import TransactionOutcome, atomic
from market_kernel.db.types import Money, ShortCode, round_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "atomic",
    "TransactionOutcome",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "Money",
    "ShortCode",
    "round_money",
]
