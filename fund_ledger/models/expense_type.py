"""
Module: fund_ledger.models.expense_type
Responsibility: Named classification buckets for expense transactions.

Invariants enforced:
    - name_key (trimmed, lower-cased name) is unique, so "Fuel" and " fuel "
      are the same type.  Lookups on the classification path go through
      name_key only.
    - A type referenced by a LedgerEntry is never hard-deleted
      (ExpenseTypeService.delete guards it; the FK is RESTRICT).
"""

from sqlalchemy import Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import TrackedBase


def expense_type_key(name: str) -> str:
    """Normalised lookup key for an expense type name."""
    return " ".join(name.split()).casefold()


class ExpenseType(TrackedBase):
    __tablename__ = "expense_types"

    __table_args__ = (UniqueConstraint("name_key", name="uq_expense_type_name_key"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    name_key: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ExpenseType {self.id}: {self.name}>"
