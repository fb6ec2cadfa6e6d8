"""
BaseService -- abstract base for all ledger write services.

Responsibility:
    Every service receives a SQLAlchemy ``Session`` from its caller and
    persists through ``session.flush()`` -- never ``session.commit()``.
    FundLedgerEngine owns the transaction boundary, so a deposit's fund
    debit, fund credit and transaction insert commit or roll back together.

Failure modes:
    - A subclass that commits on its own breaks the all-or-nothing
      guarantee of every multi-row operation built on top of it.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fund_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for ledger services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; the caller controls boundaries.
    """

    def __init__(self, session: Session):
        self.session = session
