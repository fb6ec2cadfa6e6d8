"""
Module: fund_ledger.models.ledger_entry
Responsibility: Classification records binding a transaction (or a
    transferred deferred-payment settlement) to an expense type.
Architecture position: Models.  May import from db/base.py only.

Invariants enforced:
    - At most one entry per transaction (uq_ledger_transaction).
      Reclassification updates the row in place.
    - At most one transfer entry per deferred payment
      (uq_ledger_deferred_payment).  Transfer entries have no transaction
      (transaction_id NULL) and are append-only.
    - An entry references a transaction or a deferred payment, never both
      (ck_ledger_single_source).

Failure modes:
    - IntegrityError on a duplicate transaction_id / deferred_payment_id,
      i.e. a concurrent classifier or transfer lost the race.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import BigInt, Base


class LedgerEntryType(str, Enum):
    CLASSIFIED = "classified"
    GENERAL_EXPENSE = "general_expense"
    # Imported rows awaiting manual transfer
    PENDING_TRANSFER = "pending_transfer"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_ledger_transaction"),
        UniqueConstraint("deferred_payment_id", name="uq_ledger_deferred_payment"),
        CheckConstraint(
            "NOT (transaction_id IS NOT NULL AND deferred_payment_id IS NOT NULL)",
            name="ck_ledger_single_source",
        ),
        Index("idx_ledger_expense_type", "expense_type_id"),
        Index("idx_ledger_project", "project_id"),
    )

    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    transaction_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=True,
    )

    deferred_payment_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("deferred_payments.id", ondelete="SET NULL"),
        nullable=True,
    )

    expense_type_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("expense_types.id", ondelete="RESTRICT"),
        nullable=True,
    )

    amount: Mapped[int] = mapped_column(BigInt, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    project_id: Mapped[int | None] = mapped_column(BigInt, nullable=True)

    entry_type: Mapped[LedgerEntryType] = mapped_column(String(30), nullable=False)

    # Transfer entries only; survives deletion of the payment itself
    beneficiary_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.id} {self.entry_type}: {self.amount}>"

    @property
    def is_transfer(self) -> bool:
        return self.transaction_id is None and self.beneficiary_name is not None
