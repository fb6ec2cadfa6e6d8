"""Read-only selectors for the fund ledger."""

from fund_ledger.selectors.base import BaseSelector
from fund_ledger.selectors.fund_selector import FundSelector
from fund_ledger.selectors.ledger_selector import ExpenseTypeTotal, LedgerSelector

__all__ = [
    "BaseSelector",
    "ExpenseTypeTotal",
    "FundSelector",
    "LedgerSelector",
]
