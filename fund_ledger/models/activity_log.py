"""
Module: fund_ledger.models.activity_log
Responsibility: ORM persistence for the activity audit trail -- one row per
    successful mutating engine operation.

Audit relevance:
    Rows are written after the financial commit in their own scope.  A
    missing row means the audit write failed, never that the operation did.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import Base, BigInt


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    __table_args__ = (
        Index("idx_activity_entity", "entity_type", "entity_id"),
        Index("idx_activity_user", "user_id"),
    )

    user_id: Mapped[int] = mapped_column(BigInt, nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(20), nullable=False)

    # e.g. "transaction", "fund", "deferred_payment", "expense_type"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[int] = mapped_column(BigInt, nullable=False)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action} {self.entity_type}:{self.entity_id}>"
