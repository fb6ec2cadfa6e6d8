"""
Write services for the fund ledger.

All services are flush-only; FundLedgerEngine owns commit and rollback.
"""

from fund_ledger.services.activity_log_service import (
    ActivityLogService,
    ActivityLogSink,
    AuditSink,
)
from fund_ledger.services.deferred_payment_service import DeferredPaymentService
from fund_ledger.services.engine import FundLedgerEngine, UnitOfWork
from fund_ledger.services.expense_type_service import ExpenseTypeService
from fund_ledger.services.fund_service import FundService, FundSpec
from fund_ledger.services.ledger_classifier import (
    BulkClassificationReport,
    ClassificationFailure,
    ClassificationResult,
    ClassificationStatus,
    LedgerClassifier,
)
from fund_ledger.services.project_service import ProjectService, require_admin
from fund_ledger.services.transaction_processor import TransactionProcessor
from fund_ledger.services.transaction_service import TransactionService

__all__ = [
    "ActivityLogService",
    "ActivityLogSink",
    "AuditSink",
    "BulkClassificationReport",
    "ClassificationFailure",
    "ClassificationResult",
    "ClassificationStatus",
    "DeferredPaymentService",
    "ExpenseTypeService",
    "FundLedgerEngine",
    "FundService",
    "FundSpec",
    "LedgerClassifier",
    "ProjectService",
    "TransactionProcessor",
    "TransactionService",
    "UnitOfWork",
    "require_admin",
]
