"""
Module: fund_ledger.models.deferred_payment
Responsibility: ORM persistence for installment obligations to a
    beneficiary.
Architecture position: Models.  May import from db/base.py only.

Invariants enforced:
    - 0 <= paid_amount <= total_amount (ck_deferred_paid_bounds).
    - status is derived from the amounts by domain.installments and stored
      for filtering only; remaining_amount is never stored.
    - version is a version_id_col, so two concurrent installments on the same
      payment cannot both apply against the same paid_amount.
"""

from datetime import date
from enum import Enum

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import BigInt, TrackedBase


class DeferredPaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


class DeferredPayment(TrackedBase):
    __tablename__ = "deferred_payments"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_deferred_total_positive"),
        CheckConstraint(
            "paid_amount >= 0 AND paid_amount <= total_amount",
            name="ck_deferred_paid_bounds",
        ),
    )

    beneficiary_name: Mapped[str] = mapped_column(String(255), nullable=False)

    total_amount: Mapped[int] = mapped_column(BigInt, nullable=False)

    paid_amount: Mapped[int] = mapped_column(BigInt, nullable=False, default=0)

    status: Mapped[DeferredPaymentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DeferredPaymentStatus.PENDING,
    )

    project_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=True,
    )

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[int] = mapped_column(BigInt, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<DeferredPayment {self.id} {self.beneficiary_name}: "
            f"{self.paid_amount}/{self.total_amount}>"
        )

    @property
    def remaining_amount(self) -> int:
        return self.total_amount - self.paid_amount
