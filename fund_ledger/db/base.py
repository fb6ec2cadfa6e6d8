"""
Module: fund_ledger.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the integer primary key convention, the type annotation map,
    and the TrackedBase mixin for audit timestamps.
Architecture position: DB layer.  ALL model files import from here.  This
    module MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Whole-unit money: int maps to BIGINT, so balances and amounts are
      integers end to end.  NEVER use float for monetary amounts.
    - Timestamps are timezone-aware where the backend supports it.
"""

from datetime import datetime
from typing import ClassVar

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements an INTEGER PRIMARY KEY, so BIGINT degrades there.
BigInt = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Guarantees:
        - id is an autoincrementing integer primary key.
        - int maps to BIGINT (INTEGER on SQLite).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        int: BigInt,
        datetime: DateTime(timezone=True),
    }

    id: Mapped[int] = mapped_column(BigInt, primary_key=True, autoincrement=True)


class TrackedBase(Base):
    """
    Abstract base with creation and modification timestamps.

    Guarantees:
        - created_at is set to server NOW() on INSERT and never changes.
        - updated_at is set on INSERT and refreshed on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
