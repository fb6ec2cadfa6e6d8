"""
Immutable DTOs returned by services and selectors.

Callers outside a session scope only ever see these frozen dataclasses,
never ORM rows, so nothing lazy-loads after the scope has closed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from fund_ledger.models.deferred_payment import DeferredPayment, DeferredPaymentStatus
from fund_ledger.models.expense_type import ExpenseType
from fund_ledger.models.fund import Fund, FundType
from fund_ledger.models.ledger_entry import LedgerEntry, LedgerEntryType
from fund_ledger.models.project import Project, ProjectStatus
from fund_ledger.models.transaction import Transaction, TransactionType


@dataclass(frozen=True)
class FundInfo:
    id: int
    name: str
    balance: int
    fund_type: FundType
    owner_id: int | None
    project_id: int | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, fund: Fund) -> FundInfo:
        return cls(
            id=fund.id,
            name=fund.name,
            balance=fund.balance,
            fund_type=FundType(fund.fund_type),
            owner_id=fund.owner_id,
            project_id=fund.project_id,
            created_at=fund.created_at,
            updated_at=fund.updated_at,
        )


@dataclass(frozen=True)
class ProjectInfo:
    id: int
    name: str
    status: ProjectStatus
    created_by: int

    @classmethod
    def from_model(cls, project: Project) -> ProjectInfo:
        return cls(
            id=project.id,
            name=project.name,
            status=ProjectStatus(project.status),
            created_by=project.created_by,
        )


@dataclass(frozen=True)
class TransactionInfo:
    id: int
    date: datetime
    amount: int
    transaction_type: TransactionType
    expense_type: str | None
    description: str
    project_id: int | None
    created_by: int
    file_url: str | None
    file_type: str | None
    archived: bool
    deferred_payment_id: int | None
    is_installment: bool

    @property
    def is_general_expense(self) -> bool:
        return self.transaction_type == TransactionType.EXPENSE and self.expense_type is None

    @classmethod
    def from_model(cls, tx: Transaction) -> TransactionInfo:
        return cls(
            id=tx.id,
            date=tx.date,
            amount=tx.amount,
            transaction_type=TransactionType(tx.transaction_type),
            expense_type=tx.expense_type,
            description=tx.description,
            project_id=tx.project_id,
            created_by=tx.created_by,
            file_url=tx.file_url,
            file_type=tx.file_type,
            archived=tx.archived,
            deferred_payment_id=tx.deferred_payment_id,
            is_installment=tx.is_installment,
        )


@dataclass(frozen=True)
class ExpenseTypeInfo:
    id: int
    name: str
    description: str | None
    is_active: bool

    @classmethod
    def from_model(cls, expense_type: ExpenseType) -> ExpenseTypeInfo:
        return cls(
            id=expense_type.id,
            name=expense_type.name,
            description=expense_type.description,
            is_active=expense_type.is_active,
        )


@dataclass(frozen=True)
class LedgerEntryInfo:
    id: int
    date: datetime
    transaction_id: int | None
    deferred_payment_id: int | None
    expense_type_id: int | None
    amount: int
    description: str
    project_id: int | None
    entry_type: LedgerEntryType
    beneficiary_name: str | None

    @classmethod
    def from_model(cls, entry: LedgerEntry) -> LedgerEntryInfo:
        return cls(
            id=entry.id,
            date=entry.date,
            transaction_id=entry.transaction_id,
            deferred_payment_id=entry.deferred_payment_id,
            expense_type_id=entry.expense_type_id,
            amount=entry.amount,
            description=entry.description,
            project_id=entry.project_id,
            entry_type=LedgerEntryType(entry.entry_type),
            beneficiary_name=entry.beneficiary_name,
        )


@dataclass(frozen=True)
class DeferredPaymentInfo:
    id: int
    beneficiary_name: str
    total_amount: int
    paid_amount: int
    status: DeferredPaymentStatus
    project_id: int | None
    due_date: date | None
    description: str | None

    @property
    def remaining_amount(self) -> int:
        return self.total_amount - self.paid_amount

    @classmethod
    def from_model(cls, payment: DeferredPayment) -> DeferredPaymentInfo:
        return cls(
            id=payment.id,
            beneficiary_name=payment.beneficiary_name,
            total_amount=payment.total_amount,
            paid_amount=payment.paid_amount,
            status=DeferredPaymentStatus(payment.status),
            project_id=payment.project_id,
            due_date=payment.due_date,
            description=payment.description,
        )
