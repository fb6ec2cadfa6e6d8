"""
Module: fund_ledger.models.transaction
Responsibility: ORM persistence for money-movement records.
Architecture position: Models.  May import from db/base.py only.

Invariants enforced:
    - amount > 0 (ck_transaction_amount_positive); direction comes from
      transaction_type, never from the sign.
    - expense_type NULL is the explicit "general expense" value.  A label is
      only meaningful when transaction_type == EXPENSE.
    - deferred_payment_id links an installment settlement to the obligation
      it pays, replacing description pattern matching.
    - is_installment stays set after the deferred payment is deleted, so a
      settlement never re-enters the ledger through classification.

Audit relevance:
    Transactions are created only by TransactionProcessor inside an atomic
    scope, together with the fund balance changes they describe.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import BigInt, TrackedBase


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(TrackedBase):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("idx_transaction_project", "project_id"),
        Index("idx_transaction_deferred_payment", "deferred_payment_id"),
        Index("idx_transaction_date", "date"),
    )

    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    amount: Mapped[int] = mapped_column(BigInt, nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        "type",
        String(20),
        nullable=False,
    )

    expense_type: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # NULL means an admin fund transaction
    project_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=True,
    )

    created_by: Mapped[int] = mapped_column(BigInt, nullable=False)

    # Opaque attachment reference; never interpreted here
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    deferred_payment_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("deferred_payments.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Survives deletion of the deferred payment, unlike deferred_payment_id
    is_installment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.transaction_type}: {self.amount}>"

    @property
    def is_expense(self) -> bool:
        return self.transaction_type == TransactionType.EXPENSE

    @property
    def is_general_expense(self) -> bool:
        return self.is_expense and self.expense_type is None
