"""
Module: fund_ledger.selectors.ledger_selector
Responsibility: Read-only ledger queries -- entries and per-expense-type
    totals.  General-expense entries (no expense type) are reported as their
    own row with expense_type_id None.
"""

from dataclasses import dataclass

from sqlalchemy import func, select

from fund_ledger.domain.dtos import LedgerEntryInfo
from fund_ledger.models.expense_type import ExpenseType
from fund_ledger.models.ledger_entry import LedgerEntry
from fund_ledger.selectors.base import BaseSelector


@dataclass(frozen=True)
class ExpenseTypeTotal:
    expense_type_id: int | None
    expense_type_name: str | None
    total_amount: int
    entry_count: int

    @property
    def is_general_expense(self) -> bool:
        return self.expense_type_id is None


class LedgerSelector(BaseSelector[LedgerEntry]):

    def entries(
        self,
        project_id: int | None = None,
        expense_type_id: int | None = None,
    ) -> list[LedgerEntryInfo]:
        stmt = select(LedgerEntry)
        if project_id is not None:
            stmt = stmt.where(LedgerEntry.project_id == project_id)
        if expense_type_id is not None:
            stmt = stmt.where(LedgerEntry.expense_type_id == expense_type_id)
        stmt = stmt.order_by(LedgerEntry.date, LedgerEntry.id)
        return [LedgerEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]

    def summary_by_expense_type(self, project_id: int | None = None) -> list[ExpenseTypeTotal]:
        """Totals per expense type, named types first by name, general last."""
        stmt = (
            select(
                LedgerEntry.expense_type_id,
                ExpenseType.name,
                func.coalesce(func.sum(LedgerEntry.amount), 0),
                func.count(LedgerEntry.id),
            )
            .outerjoin(ExpenseType, ExpenseType.id == LedgerEntry.expense_type_id)
            .group_by(LedgerEntry.expense_type_id, ExpenseType.name)
        )
        if project_id is not None:
            stmt = stmt.where(LedgerEntry.project_id == project_id)

        totals = [
            ExpenseTypeTotal(
                expense_type_id=type_id,
                expense_type_name=name,
                total_amount=int(total),
                entry_count=count,
            )
            for type_id, name, total, count in self.session.execute(stmt)
        ]
        return sorted(
            totals,
            key=lambda t: (t.is_general_expense, (t.expense_type_name or "").casefold()),
        )

    def total(self, project_id: int | None = None) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.amount), 0))
        if project_id is not None:
            stmt = stmt.where(LedgerEntry.project_id == project_id)
        return int(self.session.execute(stmt).scalar_one())
