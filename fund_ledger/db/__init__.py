"""Database layer - base classes, engines and transactional scopes."""

from fund_ledger.db.base import Base, BigInt, TrackedBase
from fund_ledger.db.engine import DatabaseRouter, build_engine

__all__ = [
    "Base",
    "BigInt",
    "TrackedBase",
    "DatabaseRouter",
    "build_engine",
]
