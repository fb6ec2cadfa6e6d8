"""
FundLedgerEngine -- the public facade and transaction boundary.

Responsibility:
    Every caller (route layer, scripts, tests) goes through this class.
    Each operation:

    1. Opens ``router.session_scope()`` (commit on success, rollback on any
       exception).
    2. Builds the flush-only services bound to that session and runs the
       atomic unit of work.
    3. Retries the whole unit on ConcurrencyError (optimistic version
       conflict, fund creation race) up to ``max_concurrency_retries``.
    4. After commit, classifies the touched transaction (best effort) and
       emits one audit record (best effort).

Invariants enforced:
    - A financial write is never rolled back by a classification or audit
      failure; those run in their own scopes after the commit.
    - Callers only receive frozen DTOs, never ORM rows.

Usage:
    router = DatabaseRouter.from_settings(settings.database)
    engine = FundLedgerEngine(router, settings)
    engine.process_deposit(Actor.admin(1), project_id=7, amount=200_000)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date, datetime
from typing import Any, TypeVar
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fund_ledger.config import LedgerSettings, load_settings
from fund_ledger.db.engine import DatabaseRouter
from fund_ledger.domain.actor import Actor
from fund_ledger.domain.clock import Clock, SystemClock
from fund_ledger.domain.dtos import (
    DeferredPaymentInfo,
    ExpenseTypeInfo,
    FundInfo,
    LedgerEntryInfo,
    TransactionInfo,
)
from fund_ledger.exceptions import (
    ClassificationFailedError,
    ConcurrencyError,
    FundLedgerError,
)
from fund_ledger.logging_config import LogContext, get_logger
from fund_ledger.models.activity_log import AuditAction
from fund_ledger.models.transaction import TransactionType
from fund_ledger.selectors.fund_selector import FundSelector
from fund_ledger.selectors.ledger_selector import ExpenseTypeTotal, LedgerSelector
from fund_ledger.services.activity_log_service import ActivityLogSink, AuditSink
from fund_ledger.services.deferred_payment_service import DeferredPaymentService
from fund_ledger.services.expense_type_service import ExpenseTypeService
from fund_ledger.services.fund_service import FundService
from fund_ledger.services.ledger_classifier import (
    BulkClassificationReport,
    ClassificationResult,
    LedgerClassifier,
)
from fund_ledger.services.project_service import ProjectService, require_admin
from fund_ledger.services.transaction_processor import TransactionProcessor
from fund_ledger.services.transaction_service import TransactionService

logger = get_logger("services.engine")

T = TypeVar("T")


class UnitOfWork:
    """The services of one session scope, wired together."""

    def __init__(self, session: Session, clock: Clock, settings: LedgerSettings):
        rules = settings.ledger
        self.session = session
        self.funds = FundService(session)
        self.projects = ProjectService(session)
        self.transactions = TransactionService(session)
        self.expense_types = ExpenseTypeService(session)
        self.processor = TransactionProcessor(
            self.funds, self.projects, self.transactions, clock, rules
        )
        self.classifier = LedgerClassifier(session, self.expense_types, clock)
        self.deferred_payments = DeferredPaymentService(
            session, self.processor, self.projects, self.expense_types, clock, rules
        )
        self.fund_selector = FundSelector(session)
        self.ledger_selector = LedgerSelector(session)


class FundLedgerEngine:

    def __init__(
        self,
        router: DatabaseRouter,
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self._router = router
        self._settings = settings or load_settings()
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink or ActivityLogSink(router, self._clock)

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
    ) -> FundLedgerEngine:
        settings = settings or load_settings()
        return cls(DatabaseRouter.from_settings(settings.database), settings, clock)

    @property
    def router(self) -> DatabaseRouter:
        return self._router

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Scope management
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        actor: Actor | None,
        work: Callable[[UnitOfWork], T],
        transaction_id: int | None = None,
    ) -> T:
        """
        Run ``work`` atomically, retrying lost concurrency races.

        ``transaction_id`` is bound into the log context for operations on
        an existing transaction.
        """
        max_retries = self._settings.ledger.max_concurrency_retries
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor.user_id if actor else None,
            operation=operation,
            transaction_id=transaction_id,
        ):
            t0 = time.monotonic()
            attempt = 0
            while True:
                try:
                    with self._router.session_scope() as session:
                        result = work(UnitOfWork(session, self._clock, self._settings))
                    break
                except (ConcurrencyError, StaleDataError) as exc:
                    attempt += 1
                    if attempt > max_retries:
                        logger.error(
                            "operation_failed",
                            extra={"attempts": attempt, "reason": "concurrency"},
                            exc_info=True,
                        )
                        if isinstance(exc, StaleDataError):
                            raise ConcurrencyError(str(exc)) from exc
                        raise
                    logger.warning("operation_retrying", extra={"attempt": attempt})
                except FundLedgerError as exc:
                    logger.warning(
                        "operation_rejected",
                        extra={"error_code": exc.code, "error": str(exc)},
                    )
                    raise
                except Exception:
                    logger.error("operation_failed", exc_info=True)
                    raise

            logger.info(
                "operation_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            return result

    def _read(self, query: Callable[[UnitOfWork], T]) -> T:
        with self._router.session_scope() as session:
            return query(UnitOfWork(session, self._clock, self._settings))

    def _classify_after_commit(
        self,
        transaction_id: int,
        force_classify: bool = False,
    ) -> ClassificationResult | None:
        """
        Classify in a separate scope.  Failures are logged; a forced
        failure still commits the removal of the stale entry.
        """
        try:
            with (
                LogContext.bind(transaction_id=transaction_id),
                self._router.session_scope() as session,
            ):
                classifier = UnitOfWork(session, self._clock, self._settings).classifier
                try:
                    return classifier.classify_by_id(transaction_id, force_classify)
                except ClassificationFailedError as exc:
                    logger.warning(
                        "classification_failed",
                        extra={"expense_type": exc.expense_type},
                    )
                    return None
        except (FundLedgerError, SQLAlchemyError):
            logger.error(
                "classification_error",
                extra={"transaction_id": transaction_id},
                exc_info=True,
            )
            return None

    def _audit(
        self,
        actor: Actor,
        action: AuditAction,
        entity_type: str,
        entity_id: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._audit_sink.record(actor.user_id, action, entity_type, entity_id, details)
        # Audit never fails the operation it describes
        except Exception:
            logger.error(
                "audit_failed",
                extra={"entity_type": entity_type, "entity_id": entity_id},
                exc_info=True,
            )

    def _after_money_movement(self, actor: Actor, tx: TransactionInfo, action: AuditAction) -> None:
        if tx.transaction_type == TransactionType.EXPENSE and tx.expense_type is not None:
            self._classify_after_commit(tx.id)
        self._audit(
            actor,
            action,
            "transaction",
            tx.id,
            {"amount": tx.amount, "type": tx.transaction_type.value, "project_id": tx.project_id},
        )

    # ------------------------------------------------------------------
    # Funds and money movement
    # ------------------------------------------------------------------

    def bootstrap_admin_fund(self, actor: Actor, opening_balance: int = 0) -> FundInfo:
        def work(uow: UnitOfWork) -> FundInfo:
            fund = uow.processor.bootstrap_admin_fund(actor, opening_balance)
            return uow.funds.get_fund(fund.id)

        fund = self._run("bootstrap_admin_fund", actor, work)
        self._audit(actor, AuditAction.CREATE, "fund", fund.id, {"opening_balance": opening_balance})
        return fund

    def process_deposit(
        self,
        actor: Actor,
        project_id: int,
        amount: int,
        description: str = "",
        date: datetime | None = None,
        file_url: str | None = None,
        file_type: str | None = None,
    ) -> TransactionInfo:
        tx = self._run(
            "process_deposit",
            actor,
            lambda uow: TransactionInfo.from_model(
                uow.processor.process_deposit(
                    actor, project_id, amount, description, date, file_url, file_type
                )
            ),
        )
        self._after_money_movement(actor, tx, AuditAction.CREATE)
        return tx

    def process_withdrawal(
        self,
        actor: Actor,
        project_id: int,
        amount: int,
        description: str = "",
        expense_type: str | None = None,
        date: datetime | None = None,
        file_url: str | None = None,
        file_type: str | None = None,
    ) -> TransactionInfo:
        tx = self._run(
            "process_withdrawal",
            actor,
            lambda uow: TransactionInfo.from_model(
                uow.processor.process_withdrawal(
                    actor, project_id, amount, description, expense_type, date, file_url, file_type
                )
            ),
        )
        self._after_money_movement(actor, tx, AuditAction.CREATE)
        return tx

    def process_admin_transaction(
        self,
        actor: Actor,
        transaction_type: TransactionType | str,
        amount: int,
        description: str = "",
        expense_type: str | None = None,
        date: datetime | None = None,
        file_url: str | None = None,
        file_type: str | None = None,
    ) -> TransactionInfo:
        tx = self._run(
            "process_admin_transaction",
            actor,
            lambda uow: TransactionInfo.from_model(
                uow.processor.process_admin_transaction(
                    actor, transaction_type, amount, description, expense_type,
                    date, file_url, file_type,
                )
            ),
        )
        self._after_money_movement(actor, tx, AuditAction.CREATE)
        return tx

    # ------------------------------------------------------------------
    # Transaction maintenance
    # ------------------------------------------------------------------

    def update_transaction(
        self,
        actor: Actor,
        transaction_id: int,
        amount: int | None = None,
        date: datetime | None = None,
        description: str | None = None,
        expense_type: str | None = None,
    ) -> TransactionInfo:
        """
        Edit a transaction.  Amount changes re-apply the fund effect and the
        linked deferred payment; the transaction is then force-classified.
        """

        def work(uow: UnitOfWork) -> TransactionInfo:
            tx, amount_delta = uow.processor.amend_transaction(
                actor, transaction_id, amount, date, description, expense_type
            )
            uow.deferred_payments.adjust_settlement(tx, amount_delta)
            return TransactionInfo.from_model(tx)

        tx = self._run("update_transaction", actor, work, transaction_id)
        self._classify_after_commit(tx.id, force_classify=True)
        self._audit(actor, AuditAction.UPDATE, "transaction", tx.id, {"amount": tx.amount})
        return tx

    def delete_transaction(self, actor: Actor, transaction_id: int) -> TransactionInfo:
        """
        Delete a transaction and compensate everything that depended on it:
        the linked deferred payment, its ledger entry, and the fund balances.
        """

        def work(uow: UnitOfWork) -> TransactionInfo:
            tx = uow.transactions._get(transaction_id)
            uow.processor.require_transaction_access(actor, tx)
            info = TransactionInfo.from_model(tx)
            uow.deferred_payments.compensate_deleted_settlement(tx)
            uow.classifier.remove_for_transaction(transaction_id)
            uow.processor.reverse_transaction(actor, transaction_id)
            return info

        tx = self._run("delete_transaction", actor, work, transaction_id)
        self._audit(
            actor,
            AuditAction.DELETE,
            "transaction",
            tx.id,
            {"amount": tx.amount, "deferred_payment_id": tx.deferred_payment_id},
        )
        return tx

    def archive_transaction(
        self,
        actor: Actor,
        transaction_id: int,
        archived: bool = True,
    ) -> TransactionInfo:
        def work(uow: UnitOfWork) -> TransactionInfo:
            tx = uow.transactions._get(transaction_id)
            uow.processor.require_transaction_access(actor, tx)
            return uow.transactions.set_archived(transaction_id, archived)

        tx = self._run("archive_transaction", actor, work, transaction_id)
        self._audit(actor, AuditAction.UPDATE, "transaction", tx.id, {"archived": archived})
        return tx

    def get_transaction(self, transaction_id: int) -> TransactionInfo:
        return self._read(lambda uow: uow.transactions.get(transaction_id))

    def list_transactions(
        self,
        project_id: int | None = None,
        include_archived: bool = False,
    ) -> list[TransactionInfo]:
        return self._read(
            lambda uow: uow.transactions.list_transactions(
                project_id, include_archived=include_archived
            )
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify_transaction(
        self,
        actor: Actor,
        transaction_id: int,
        force_classify: bool = False,
    ) -> ClassificationResult:
        """
        Classify one transaction now.

        Raises:
            ClassificationFailedError: forced and the label does not resolve.
                The stale entry removal is committed before raising.
        """
        failure: list[ClassificationFailedError] = []

        def work(uow: UnitOfWork) -> ClassificationResult | None:
            tx = uow.transactions._get(transaction_id)
            uow.processor.require_transaction_access(actor, tx)
            try:
                return uow.classifier.classify(tx, force_classify)
            except ClassificationFailedError as exc:
                failure.append(exc)
                return None

        result = self._run("classify_transaction", actor, work, transaction_id)
        if failure:
            raise failure[0]
        return result

    def classify_unlinked(self, actor: Actor) -> BulkClassificationReport:
        require_admin(actor, "classify_unlinked")
        return self._run(
            "classify_unlinked", actor, lambda uow: uow.classifier.classify_unlinked()
        )

    def reclassify_all(self, actor: Actor, project_id: int | None = None) -> BulkClassificationReport:
        require_admin(actor, "reclassify_all")
        return self._run(
            "reclassify_all", actor, lambda uow: uow.classifier.reclassify_all(project_id)
        )

    def ledger_entry_for(self, transaction_id: int) -> LedgerEntryInfo | None:
        return self._read(lambda uow: uow.classifier.get_entry_for_transaction(transaction_id))

    # ------------------------------------------------------------------
    # Deferred payments
    # ------------------------------------------------------------------

    def register_deferred_payment(
        self,
        actor: Actor,
        beneficiary_name: str,
        total_amount: int,
        project_id: int | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> DeferredPaymentInfo:
        payment = self._run(
            "register_deferred_payment",
            actor,
            lambda uow: uow.deferred_payments.register(
                actor, beneficiary_name, total_amount, project_id, due_date, description
            ),
        )
        self._audit(
            actor,
            AuditAction.CREATE,
            "deferred_payment",
            payment.id,
            {"total_amount": total_amount, "beneficiary": payment.beneficiary_name},
        )
        return payment

    def pay_installment(
        self,
        actor: Actor,
        payment_id: int,
        amount: int,
        date: datetime | None = None,
    ) -> tuple[DeferredPaymentInfo, TransactionInfo]:
        def work(uow: UnitOfWork) -> tuple[DeferredPaymentInfo, TransactionInfo]:
            payment, tx = uow.deferred_payments.pay_installment(actor, payment_id, amount, date)
            return payment, TransactionInfo.from_model(tx)

        payment, tx = self._run("pay_installment", actor, work)
        self._audit(
            actor,
            AuditAction.UPDATE,
            "deferred_payment",
            payment.id,
            {"amount": amount, "transaction_id": tx.id, "status": payment.status.value},
        )
        return payment, tx

    def update_deferred_payment(
        self,
        actor: Actor,
        payment_id: int,
        beneficiary_name: str | None = None,
        total_amount: int | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> DeferredPaymentInfo:
        payment = self._run(
            "update_deferred_payment",
            actor,
            lambda uow: uow.deferred_payments.update(
                actor, payment_id, beneficiary_name, total_amount, due_date, description
            ),
        )
        self._audit(actor, AuditAction.UPDATE, "deferred_payment", payment.id)
        return payment

    def delete_deferred_payment(self, actor: Actor, payment_id: int) -> None:
        self._run(
            "delete_deferred_payment",
            actor,
            lambda uow: uow.deferred_payments.delete(actor, payment_id),
        )
        self._audit(actor, AuditAction.DELETE, "deferred_payment", payment_id)

    def transfer_to_ledger(self, actor: Actor, payment_id: int) -> LedgerEntryInfo:
        entry = self._run(
            "transfer_to_ledger",
            actor,
            lambda uow: uow.deferred_payments.transfer_to_ledger(actor, payment_id),
        )
        self._audit(
            actor,
            AuditAction.CREATE,
            "ledger_entry",
            entry.id,
            {"deferred_payment_id": payment_id, "amount": entry.amount},
        )
        return entry

    def transfer_completed_to_ledger(self, actor: Actor) -> list[LedgerEntryInfo]:
        entries = self._run(
            "transfer_completed_to_ledger",
            actor,
            lambda uow: uow.deferred_payments.transfer_completed_to_ledger(actor),
        )
        for entry in entries:
            self._audit(
                actor,
                AuditAction.CREATE,
                "ledger_entry",
                entry.id,
                {"deferred_payment_id": entry.deferred_payment_id, "amount": entry.amount},
            )
        return entries

    def get_deferred_payment(self, payment_id: int) -> DeferredPaymentInfo:
        return self._read(lambda uow: uow.deferred_payments.get(payment_id))

    def list_deferred_payments(self, project_id: int | None = None) -> list[DeferredPaymentInfo]:
        return self._read(lambda uow: uow.deferred_payments.list_payments(project_id))

    # ------------------------------------------------------------------
    # Expense types
    # ------------------------------------------------------------------

    def create_expense_type(
        self,
        actor: Actor,
        name: str,
        description: str | None = None,
    ) -> ExpenseTypeInfo:
        require_admin(actor, "create_expense_type")
        expense_type = self._run(
            "create_expense_type",
            actor,
            lambda uow: uow.expense_types.create(name, description),
        )
        self._audit(actor, AuditAction.CREATE, "expense_type", expense_type.id, {"name": expense_type.name})
        return expense_type

    def update_expense_type(
        self,
        actor: Actor,
        expense_type_id: int,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> ExpenseTypeInfo:
        require_admin(actor, "update_expense_type")
        expense_type = self._run(
            "update_expense_type",
            actor,
            lambda uow: uow.expense_types.update(expense_type_id, name, description, is_active),
        )
        self._audit(actor, AuditAction.UPDATE, "expense_type", expense_type_id)
        return expense_type

    def delete_expense_type(self, actor: Actor, expense_type_id: int) -> None:
        require_admin(actor, "delete_expense_type")
        self._run(
            "delete_expense_type",
            actor,
            lambda uow: uow.expense_types.delete(expense_type_id),
        )
        self._audit(actor, AuditAction.DELETE, "expense_type", expense_type_id)

    def list_expense_types(self, active_only: bool = True) -> list[ExpenseTypeInfo]:
        return self._read(lambda uow: uow.expense_types.list_types(active_only))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_fund(self, fund_id: int) -> FundInfo:
        return self._read(lambda uow: uow.funds.get_fund(fund_id))

    def get_project_fund(self, project_id: int) -> FundInfo:
        return self._read(lambda uow: uow.funds.get_fund_by_project(project_id))

    def get_admin_fund(self) -> FundInfo:
        owner_id = self._settings.ledger.admin_owner_id
        return self._read(lambda uow: uow.funds.get_fund_by_owner(owner_id))

    def list_funds(self) -> list[FundInfo]:
        return self._read(lambda uow: uow.funds.list_funds())

    def total_balance(self) -> int:
        return self._read(lambda uow: uow.fund_selector.total_balance())

    def ledger_summary(self, project_id: int | None = None) -> list[ExpenseTypeTotal]:
        return self._read(lambda uow: uow.ledger_selector.summary_by_expense_type(project_id))

    def ledger_entries(
        self,
        project_id: int | None = None,
        expense_type_id: int | None = None,
    ) -> list[LedgerEntryInfo]:
        return self._read(lambda uow: uow.ledger_selector.entries(project_id, expense_type_id))
