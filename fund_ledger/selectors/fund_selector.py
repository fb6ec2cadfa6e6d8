"""
Module: fund_ledger.selectors.fund_selector
Responsibility: Read-only fund balance queries, including the total used to
    check conservation: deposits only move money between funds, so the sum
    of all balances changes only by admin income and admin expense.
"""

from sqlalchemy import case, func, select

from fund_ledger.domain.dtos import FundInfo
from fund_ledger.models.fund import Fund, FundType
from fund_ledger.models.transaction import Transaction, TransactionType
from fund_ledger.selectors.base import BaseSelector


class FundSelector(BaseSelector[Fund]):

    def total_balance(self, fund_type: FundType | None = None) -> int:
        stmt = select(func.coalesce(func.sum(Fund.balance), 0))
        if fund_type is not None:
            stmt = stmt.where(Fund.fund_type == fund_type)
        return int(self.session.execute(stmt).scalar_one())

    def balances(self) -> dict[int, int]:
        """Balance per fund id."""
        rows = self.session.execute(select(Fund.id, Fund.balance).order_by(Fund.id))
        return {fund_id: balance for fund_id, balance in rows}

    def funds(self, fund_type: FundType | None = None) -> list[FundInfo]:
        stmt = select(Fund)
        if fund_type is not None:
            stmt = stmt.where(Fund.fund_type == fund_type)
        return [FundInfo.from_model(f) for f in self.session.execute(stmt.order_by(Fund.id)).scalars()]

    def net_admin_flow(self) -> int:
        """Admin income minus admin expense, i.e. the expected total balance
        before any project spending."""
        signed = case(
            (Transaction.transaction_type == TransactionType.INCOME, Transaction.amount),
            else_=-Transaction.amount,
        )
        stmt = select(func.coalesce(func.sum(signed), 0)).where(Transaction.project_id.is_(None))
        return int(self.session.execute(stmt).scalar_one())

    def project_spending(self) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.project_id.is_not(None),
            Transaction.transaction_type == TransactionType.EXPENSE,
        )
        return int(self.session.execute(stmt).scalar_one())
