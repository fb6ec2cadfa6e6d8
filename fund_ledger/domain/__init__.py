"""Pure domain values and functions for the fund ledger."""

from fund_ledger.domain.actor import Actor, UserRole
from fund_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from fund_ledger.domain.expense_label import normalize_expense_label
from fund_ledger.domain.installments import (
    apply_installment,
    derive_status,
    revert_installment,
    validate_amount,
)

__all__ = [
    "Actor",
    "UserRole",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "normalize_expense_label",
    "apply_installment",
    "derive_status",
    "revert_installment",
    "validate_amount",
]
