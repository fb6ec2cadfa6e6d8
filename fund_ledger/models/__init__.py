"""ORM models for the fund ledger."""

from fund_ledger.models.activity_log import ActivityLog, AuditAction
from fund_ledger.models.deferred_payment import DeferredPayment, DeferredPaymentStatus
from fund_ledger.models.expense_type import ExpenseType, expense_type_key
from fund_ledger.models.fund import Fund, FundType
from fund_ledger.models.ledger_entry import LedgerEntry, LedgerEntryType
from fund_ledger.models.project import Project, ProjectMember, ProjectStatus
from fund_ledger.models.transaction import Transaction, TransactionType

__all__ = [
    "ActivityLog",
    "AuditAction",
    "DeferredPayment",
    "DeferredPaymentStatus",
    "ExpenseType",
    "expense_type_key",
    "Fund",
    "FundType",
    "LedgerEntry",
    "LedgerEntryType",
    "Project",
    "ProjectMember",
    "ProjectStatus",
    "Transaction",
    "TransactionType",
]
