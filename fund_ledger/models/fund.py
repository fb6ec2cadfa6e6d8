"""
Module: fund_ledger.models.fund
Responsibility: ORM persistence for named balances -- the single admin fund
    and one fund per project.
Architecture position: Models.  May import from db/base.py only.

Invariants enforced:
    - fund_type ADMIN <=> owner_id set and project_id NULL; fund_type PROJECT
      <=> project_id set and owner_id NULL (ck_fund_owner_xor_project).
    - At most one admin fund per owner (uq_fund_owner) and one fund per
      project (uq_fund_project).
    - balance >= 0 (ck_fund_balance_non_negative).  This is a backstop; the
      TransactionProcessor validates sufficiency before it mutates.
    - version is a SQLAlchemy version_id_col: every UPDATE is conditional on
      the version the session read, so a lost update raises StaleDataError.

Failure modes:
    - IntegrityError on a duplicate admin/project fund or a negative balance.
    - StaleDataError on a concurrent balance update (translated to
      OptimisticLockError by FundService).
"""

from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import BigInt, TrackedBase


class FundType(str, Enum):
    ADMIN = "admin"
    PROJECT = "project"


class Fund(TrackedBase):
    """
    A named money balance.

    Contract:
        balance is mutated only through FundService.update_balance, which is
        only called from inside an engine session scope.  A fund is never
        deleted while balance != 0.
    """

    __tablename__ = "funds"

    __table_args__ = (
        UniqueConstraint("owner_id", name="uq_fund_owner"),
        UniqueConstraint("project_id", name="uq_fund_project"),
        CheckConstraint("balance >= 0", name="ck_fund_balance_non_negative"),
        CheckConstraint(
            "(fund_type = 'admin' AND owner_id IS NOT NULL AND project_id IS NULL)"
            " OR (fund_type = 'project' AND project_id IS NOT NULL AND owner_id IS NULL)",
            name="ck_fund_owner_xor_project",
        ),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    balance: Mapped[int] = mapped_column(BigInt, nullable=False, default=0)

    fund_type: Mapped[FundType] = mapped_column(String(20), nullable=False)

    # Set iff fund_type == ADMIN
    owner_id: Mapped[int | None] = mapped_column(BigInt, nullable=True)

    # Set iff fund_type == PROJECT
    project_id: Mapped[int | None] = mapped_column(
        BigInt,
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Fund {self.id} {self.fund_type}: {self.balance}>"

    @property
    def is_admin(self) -> bool:
        return self.fund_type == FundType.ADMIN
