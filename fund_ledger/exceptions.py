"""
Typed exception hierarchy for the fund ledger.

Every error carries a class-level ``code`` (machine-readable, API-safe) and
its context as attributes, so the route layer can translate errors by type
instead of parsing messages:

    try:
        engine.process_withdrawal(actor, project_id=7, amount=250_000)
    except InsufficientFundsError as e:
        respond(409, code=e.code, balance=e.balance, requested=e.requested)

Hierarchy:

    FundLedgerError
    |
    +-- NotFoundError
    |   +-- FundNotFoundError
    |   +-- ProjectNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- ExpenseTypeNotFoundError
    |   +-- DeferredPaymentNotFoundError
    |   +-- LedgerEntryNotFoundError
    |
    +-- InsufficientFundsError
    +-- AccessDeniedError
    +-- OverpaymentError
    +-- ClassificationFailedError
    +-- ReferencedEntityError
    |
    +-- LedgerValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidFundSpecError
    |   +-- DuplicateExpenseTypeError
    |
    +-- LedgerEntryError
    |   +-- AlreadyTransferredError
    |   +-- ImmutableEntryError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError

Propagation policy:
    Validation errors (not-found, insufficient funds, access denied,
    overpayment) abort the atomic operation before any mutation and reach
    the caller.  ClassificationFailedError reaches callers of forced
    classification only; bulk reclassification aggregates it.
    ConcurrencyError is retried by FundLedgerEngine before surfacing.
"""


class FundLedgerError(Exception):
    """Base exception for all fund ledger errors."""

    code: str = "FUND_LEDGER_ERROR"


# Not-found errors


class NotFoundError(FundLedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class FundNotFoundError(NotFoundError):
    code: str = "FUND_NOT_FOUND"
    entity_type: str = "Fund"


class ProjectNotFoundError(NotFoundError):
    code: str = "PROJECT_NOT_FOUND"
    entity_type: str = "Project"


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"
    entity_type: str = "Transaction"


class ExpenseTypeNotFoundError(NotFoundError):
    code: str = "EXPENSE_TYPE_NOT_FOUND"
    entity_type: str = "ExpenseType"


class DeferredPaymentNotFoundError(NotFoundError):
    code: str = "DEFERRED_PAYMENT_NOT_FOUND"
    entity_type: str = "DeferredPayment"


class LedgerEntryNotFoundError(NotFoundError):
    code: str = "LEDGER_ENTRY_NOT_FOUND"
    entity_type: str = "LedgerEntry"


# Money movement


class InsufficientFundsError(FundLedgerError):
    """Debiting the fund would take its balance below zero."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, fund_id: int, balance: int, requested: int):
        self.fund_id = fund_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds in fund {fund_id}: "
            f"balance {balance}, requested {requested}"
        )


class AccessDeniedError(FundLedgerError):
    """Caller lacks the role or project membership for the operation."""

    code: str = "ACCESS_DENIED"

    def __init__(self, user_id: int, reason: str):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Access denied for user {user_id}: {reason}")


class OverpaymentError(FundLedgerError):
    """An installment would push paid_amount past total_amount."""

    code: str = "OVERPAYMENT"

    def __init__(
        self,
        deferred_payment_id: int,
        total_amount: int,
        paid_amount: int,
        requested: int,
    ):
        self.deferred_payment_id = deferred_payment_id
        self.total_amount = total_amount
        self.paid_amount = paid_amount
        self.requested = requested
        super().__init__(
            f"Installment of {requested} on deferred payment "
            f"{deferred_payment_id} exceeds remaining "
            f"{total_amount - paid_amount}"
        )


class ClassificationFailedError(FundLedgerError):
    """Forced classification could not resolve the expense type."""

    code: str = "CLASSIFICATION_FAILED"

    def __init__(self, transaction_id: int, expense_type: str | None):
        self.transaction_id = transaction_id
        self.expense_type = expense_type
        super().__init__(
            f"Cannot classify transaction {transaction_id}: "
            f"expense type {expense_type!r} not found"
        )


class ReferencedEntityError(FundLedgerError):
    """Delete refused because ledger entries still reference the entity."""

    code: str = "REFERENCED_ENTITY"

    def __init__(self, entity_type: str, entity_id: int, reference_count: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reference_count = reference_count
        super().__init__(
            f"{entity_type} {entity_id} is referenced by "
            f"{reference_count} ledger entries"
        )


# Validation


class LedgerValidationError(FundLedgerError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(LedgerValidationError):
    code: str = "INVALID_AMOUNT"

    def __init__(self, amount, reason: str = "amount must be a positive integer"):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class InvalidFundSpecError(LedgerValidationError):
    code: str = "INVALID_FUND_SPEC"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid fund spec: {reason}")


class DuplicateExpenseTypeError(LedgerValidationError):
    code: str = "DUPLICATE_EXPENSE_TYPE"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Expense type already exists: {name}")


# Ledger entries


class LedgerEntryError(FundLedgerError):
    code: str = "LEDGER_ENTRY_ERROR"


class AlreadyTransferredError(LedgerEntryError):
    """The deferred payment already has a transfer entry in the ledger."""

    code: str = "ALREADY_TRANSFERRED"

    def __init__(self, deferred_payment_id: int, ledger_entry_id: int):
        self.deferred_payment_id = deferred_payment_id
        self.ledger_entry_id = ledger_entry_id
        super().__init__(
            f"Deferred payment {deferred_payment_id} already transferred "
            f"as ledger entry {ledger_entry_id}"
        )


class ImmutableEntryError(LedgerEntryError):
    """Transferred settlement entries are append-only."""

    code: str = "IMMUTABLE_ENTRY"

    def __init__(self, ledger_entry_id: int):
        self.ledger_entry_id = ledger_entry_id
        super().__init__(f"Ledger entry {ledger_entry_id} cannot be modified")


# Concurrency


class ConcurrencyError(FundLedgerError):
    """A concurrent writer won the race; the operation may be retried."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}"
        )
