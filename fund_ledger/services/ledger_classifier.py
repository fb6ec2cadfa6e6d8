"""
LedgerClassifier -- binds expense transactions to expense types.

Responsibility:
    Maintains at most one LedgerEntry per transaction, keyed by the
    transaction's normalised expense label.  Runs after the financial
    commit, so a failure here never undoes a money movement.

Classification rules:
    - Income transactions are never classified.
    - Installment settlements are skipped, even after their deferred
      payment is deleted; they reach the ledger only through
      DeferredPaymentService.transfer_to_ledger.
    - An existing entry is left alone unless force_classify is set, in
      which case it is overwritten in place.
    - General expenses (label NULL) get an entry only when forced, with
      entry_type GENERAL_EXPENSE and no expense type.
    - A label that resolves to no ACTIVE expense type is skipped when not
      forced and raises ClassificationFailedError when forced.  A forced
      failure removes the now-stale entry first.

Invariants enforced:
    - uq_ledger_transaction: two concurrent classifiers cannot both insert;
      the loser gets ConcurrencyError and the engine retries.
    - Transfer entries (transaction_id NULL) are never touched here and
      cannot be deleted (ImmutableEntryError).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fund_ledger.domain.clock import Clock
from fund_ledger.domain.dtos import LedgerEntryInfo
from fund_ledger.exceptions import (
    ClassificationFailedError,
    ConcurrencyError,
    ImmutableEntryError,
    LedgerEntryNotFoundError,
    TransactionNotFoundError,
)
from fund_ledger.logging_config import get_logger
from fund_ledger.models.ledger_entry import LedgerEntry, LedgerEntryType
from fund_ledger.models.transaction import Transaction, TransactionType
from fund_ledger.services.base import BaseService
from fund_ledger.services.expense_type_service import ExpenseTypeService

logger = get_logger("services.classifier")


class ClassificationStatus(str, Enum):
    CLASSIFIED = "classified"
    RECLASSIFIED = "reclassified"
    ALREADY_CLASSIFIED = "already_classified"
    GENERAL_EXPENSE = "general_expense"
    SKIPPED = "skipped"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ClassificationResult:
    transaction_id: int
    status: ClassificationStatus
    entry: LedgerEntryInfo | None = None


@dataclass(frozen=True)
class ClassificationFailure:
    transaction_id: int
    expense_type: str | None
    message: str


@dataclass
class BulkClassificationReport:
    """Counts for a bulk run; failures are collected, not raised."""

    added: int = 0
    updated: int = 0
    skipped: int = 0
    unresolved: int = 0
    failures: list[ClassificationFailure] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.added + self.updated + self.skipped + self.unresolved + len(self.failures)

    def record(self, result: ClassificationResult) -> None:
        if result.status == ClassificationStatus.CLASSIFIED:
            self.added += 1
        elif result.status == ClassificationStatus.RECLASSIFIED:
            self.updated += 1
        elif result.status == ClassificationStatus.UNRESOLVED:
            self.unresolved += 1
        else:
            self.skipped += 1


class LedgerClassifier(BaseService[LedgerEntry]):

    def __init__(self, session: Session, expense_types: ExpenseTypeService, clock: Clock):
        super().__init__(session)
        self._expense_types = expense_types
        self._clock = clock

    def _entry_for(self, transaction_id: int) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(LedgerEntry.transaction_id == transaction_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_entry_for_transaction(self, transaction_id: int) -> LedgerEntryInfo | None:
        entry = self._entry_for(transaction_id)
        return LedgerEntryInfo.from_model(entry) if entry else None

    def _upsert(
        self,
        tx: Transaction,
        existing: LedgerEntry | None,
        entry_type: LedgerEntryType,
        expense_type_id: int | None,
    ) -> ClassificationResult:
        entry = existing
        if entry is None:
            entry = LedgerEntry(transaction_id=tx.id, created_at=self._clock.now())
            self.session.add(entry)
        entry.date = tx.date
        entry.amount = tx.amount
        entry.description = tx.description
        entry.project_id = tx.project_id
        entry.entry_type = entry_type
        entry.expense_type_id = expense_type_id

        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyError(
                f"Transaction {tx.id} was classified concurrently"
            ) from exc

        status = (
            ClassificationStatus.CLASSIFIED if existing is None
            else ClassificationStatus.RECLASSIFIED
        )
        logger.info(
            "transaction_classified",
            extra={
                "transaction_id": tx.id,
                "ledger_entry_id": entry.id,
                "expense_type_id": expense_type_id,
                "status": status.value,
            },
        )
        return ClassificationResult(tx.id, status, LedgerEntryInfo.from_model(entry))

    def classify(self, tx: Transaction, force_classify: bool = False) -> ClassificationResult:
        """
        Classify one transaction.

        Raises:
            ClassificationFailedError: forced, and the label resolves to no
                active expense type.
        """
        if tx.transaction_type != TransactionType.EXPENSE:
            return ClassificationResult(tx.id, ClassificationStatus.SKIPPED)
        if tx.is_installment or tx.deferred_payment_id is not None:
            return ClassificationResult(tx.id, ClassificationStatus.SKIPPED)

        existing = self._entry_for(tx.id)
        if existing is not None and not force_classify:
            return ClassificationResult(
                tx.id,
                ClassificationStatus.ALREADY_CLASSIFIED,
                LedgerEntryInfo.from_model(existing),
            )

        if tx.expense_type is None:
            if not force_classify:
                return ClassificationResult(tx.id, ClassificationStatus.GENERAL_EXPENSE)
            return self._upsert(tx, existing, LedgerEntryType.GENERAL_EXPENSE, None)

        expense_type = self._expense_types.find_by_name(tx.expense_type)
        if expense_type is None:
            if not force_classify:
                logger.warning(
                    "classification_skipped",
                    extra={"transaction_id": tx.id, "expense_type": tx.expense_type},
                )
                return ClassificationResult(tx.id, ClassificationStatus.UNRESOLVED)
            if existing is not None:
                self.session.delete(existing)
                self.session.flush()
            raise ClassificationFailedError(tx.id, tx.expense_type)

        return self._upsert(tx, existing, LedgerEntryType.CLASSIFIED, expense_type.id)

    def classify_by_id(self, transaction_id: int, force_classify: bool = False) -> ClassificationResult:
        tx = self.session.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return self.classify(tx, force_classify=force_classify)

    def classify_unlinked(self) -> BulkClassificationReport:
        """Classify every expense transaction that has no entry yet."""
        has_entry = exists().where(LedgerEntry.transaction_id == Transaction.id)
        stmt = (
            select(Transaction)
            .where(Transaction.transaction_type == TransactionType.EXPENSE, ~has_entry)
            .order_by(Transaction.id)
        )
        report = BulkClassificationReport()
        for tx in self.session.execute(stmt).scalars().all():
            report.record(self.classify(tx))

        logger.info(
            "classify_unlinked_completed",
            extra={"added": report.added, "skipped": report.skipped, "unresolved": report.unresolved},
        )
        return report

    def reclassify_all(self, project_id: int | None = None) -> BulkClassificationReport:
        """Force-classify every expense transaction, collecting failures."""
        stmt = select(Transaction).where(Transaction.transaction_type == TransactionType.EXPENSE)
        if project_id is not None:
            stmt = stmt.where(Transaction.project_id == project_id)
        stmt = stmt.order_by(Transaction.id)

        report = BulkClassificationReport()
        for tx in self.session.execute(stmt).scalars().all():
            try:
                report.record(self.classify(tx, force_classify=True))
            except ClassificationFailedError as exc:
                report.failures.append(
                    ClassificationFailure(tx.id, tx.expense_type, str(exc))
                )

        logger.info(
            "reclassify_all_completed",
            extra={
                "project_id": project_id,
                "added": report.added,
                "updated": report.updated,
                "failures": len(report.failures),
            },
        )
        return report

    def remove_for_transaction(self, transaction_id: int) -> bool:
        """Delete the entry for a transaction; False when there was none."""
        entry = self._entry_for(transaction_id)
        if entry is None:
            return False
        self.session.delete(entry)
        self.session.flush()
        logger.info(
            "ledger_entry_removed",
            extra={"transaction_id": transaction_id, "ledger_entry_id": entry.id},
        )
        return True

    def delete_entry(self, entry_id: int) -> None:
        entry = self.session.get(LedgerEntry, entry_id)
        if entry is None:
            raise LedgerEntryNotFoundError(entry_id)
        if entry.is_transfer:
            raise ImmutableEntryError(entry_id)
        self.session.delete(entry)
        self.session.flush()
