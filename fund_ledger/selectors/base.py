"""
Module: fund_ledger.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Selectors.  May import from db/, models/ and
    domain/dtos.py.  MUST NOT import from services/.

Invariants enforced:
    - Selectors accept a Session from the caller and never add, delete,
      flush or commit.
    - Selectors return frozen dataclasses or plain values, not ORM rows.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fund_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
