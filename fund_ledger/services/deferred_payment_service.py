"""
DeferredPaymentService -- the Deferred Payment Tracker.

Responsibility:
    Installment obligations to beneficiaries: registration, partial
    settlement, admin edits, and the one-time transfer of a settled amount
    into the ledger under the dedicated deferred-payments expense type.

Invariants enforced:
    - 0 <= paid_amount <= total_amount; an installment that would overpay
      raises OverpaymentError before any fund is touched.
    - Status is always derive_status(total, paid), so it moves
      pending -> partial -> completed as installments arrive.
    - Each installment produces exactly one expense transaction carrying
      deferred_payment_id, in the same scope as the paid_amount change.
    - At most one transfer ledger entry per payment
      (AlreadyTransferredError); transfer entries are append-only.

Failure modes:
    - DeferredPaymentNotFoundError, AccessDeniedError, InvalidAmountError,
      OverpaymentError, InsufficientFundsError (via the processor).
    - OptimisticLockError when two installments race on the same payment.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fund_ledger.config import LedgerRules
from fund_ledger.domain.actor import Actor
from fund_ledger.domain.clock import Clock
from fund_ledger.domain.dtos import DeferredPaymentInfo, LedgerEntryInfo
from fund_ledger.domain.installments import (
    apply_installment,
    derive_status,
    revert_installment,
    validate_amount,
)
from fund_ledger.exceptions import (
    AlreadyTransferredError,
    ConcurrencyError,
    DeferredPaymentNotFoundError,
    InvalidAmountError,
    LedgerValidationError,
    OptimisticLockError,
    OverpaymentError,
)
from fund_ledger.logging_config import get_logger
from fund_ledger.models.deferred_payment import DeferredPayment, DeferredPaymentStatus
from fund_ledger.models.ledger_entry import LedgerEntry, LedgerEntryType
from fund_ledger.models.transaction import Transaction
from fund_ledger.services.base import BaseService
from fund_ledger.services.expense_type_service import ExpenseTypeService
from fund_ledger.services.project_service import ProjectService, require_admin
from fund_ledger.services.transaction_processor import TransactionProcessor

logger = get_logger("services.deferred_payment")

TRANSFER_DESCRIPTION = "transfer of deferred payment for beneficiary: {beneficiary}"


class DeferredPaymentService(BaseService[DeferredPayment]):

    def __init__(
        self,
        session: Session,
        processor: TransactionProcessor,
        projects: ProjectService,
        expense_types: ExpenseTypeService,
        clock: Clock,
        rules: LedgerRules,
    ):
        super().__init__(session)
        self._processor = processor
        self._projects = projects
        self._expense_types = expense_types
        self._clock = clock
        self._rules = rules

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get(self, payment_id: int) -> DeferredPayment:
        payment = self.session.get(DeferredPayment, payment_id)
        if payment is None:
            raise DeferredPaymentNotFoundError(payment_id)
        return payment

    def _lock(self, payment_id: int) -> DeferredPayment:
        payment = self.session.execute(
            select(DeferredPayment)
            .where(DeferredPayment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise DeferredPaymentNotFoundError(payment_id)
        return payment

    def _transfer_entry(self, payment_id: int) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(LedgerEntry.deferred_payment_id == payment_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def _require_access(self, actor: Actor, payment: DeferredPayment) -> None:
        if payment.project_id is None:
            require_admin(actor, "deferred payment without a project")
        else:
            self._projects.require_access(actor, payment.project_id)

    def _flush(self, payment: DeferredPayment) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("DeferredPayment", payment.id) from exc

    def get(self, payment_id: int) -> DeferredPaymentInfo:
        return DeferredPaymentInfo.from_model(self._get(payment_id))

    def list_payments(
        self,
        project_id: int | None = None,
        status: DeferredPaymentStatus | None = None,
    ) -> list[DeferredPaymentInfo]:
        stmt = select(DeferredPayment)
        if project_id is not None:
            stmt = stmt.where(DeferredPayment.project_id == project_id)
        if status is not None:
            stmt = stmt.where(DeferredPayment.status == status)
        stmt = stmt.order_by(DeferredPayment.id)
        return [DeferredPaymentInfo.from_model(p) for p in self.session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register(
        self,
        actor: Actor,
        beneficiary_name: str,
        total_amount: int,
        project_id: int | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> DeferredPaymentInfo:
        validate_amount(total_amount)
        beneficiary = beneficiary_name.strip() if beneficiary_name else ""
        if not beneficiary:
            raise LedgerValidationError("Beneficiary name must not be blank")
        if project_id is None:
            require_admin(actor, "deferred payment without a project")
        else:
            self._projects.require_access(actor, project_id)

        payment = DeferredPayment(
            beneficiary_name=beneficiary,
            total_amount=total_amount,
            paid_amount=0,
            status=DeferredPaymentStatus.PENDING,
            project_id=project_id,
            due_date=due_date,
            description=description,
            created_by=actor.user_id,
        )
        self.session.add(payment)
        self.session.flush()
        logger.info(
            "deferred_payment_registered",
            extra={
                "deferred_payment_id": payment.id,
                "total_amount": total_amount,
                "project_id": project_id,
            },
        )
        return DeferredPaymentInfo.from_model(payment)

    def pay_installment(
        self,
        actor: Actor,
        payment_id: int,
        amount: int,
        date: datetime | None = None,
    ) -> tuple[DeferredPaymentInfo, Transaction]:
        """
        Pay ``amount`` toward a deferred payment.

        Preconditions:
            amount > 0 and paid_amount + amount <= total_amount.

        Postconditions:
            paid_amount increased by amount, status recomputed, and one
            expense transaction linked by deferred_payment_id recorded
            against the paying fund.
        """
        payment = self._lock(payment_id)
        self._require_access(actor, payment)
        new_paid, status = apply_installment(
            payment.id, payment.total_amount, payment.paid_amount, amount
        )

        tx = self._processor.settle_installment(actor, payment, amount, date=date)

        payment.paid_amount = new_paid
        payment.status = status
        self._flush(payment)

        logger.info(
            "installment_paid",
            extra={
                "deferred_payment_id": payment.id,
                "transaction_id": tx.id,
                "amount": amount,
                "paid_amount": new_paid,
                "status": status.value,
            },
        )
        return DeferredPaymentInfo.from_model(payment), tx

    def update(
        self,
        actor: Actor,
        payment_id: int,
        beneficiary_name: str | None = None,
        total_amount: int | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> DeferredPaymentInfo:
        """
        Admin edit.  A new total below what is already paid is refused with
        OverpaymentError.
        """
        require_admin(actor, "update deferred payment")
        payment = self._lock(payment_id)

        if beneficiary_name is not None:
            beneficiary = beneficiary_name.strip()
            if not beneficiary:
                raise LedgerValidationError("Beneficiary name must not be blank")
            payment.beneficiary_name = beneficiary
        if total_amount is not None:
            validate_amount(total_amount)
            if total_amount < payment.paid_amount:
                raise OverpaymentError(
                    payment.id, total_amount, payment.paid_amount, 0
                )
            payment.total_amount = total_amount
            payment.status = derive_status(total_amount, payment.paid_amount)
        if due_date is not None:
            payment.due_date = due_date
        if description is not None:
            payment.description = description

        self._flush(payment)
        return DeferredPaymentInfo.from_model(payment)

    def delete(self, actor: Actor, payment_id: int) -> None:
        """
        Admin delete.  Settlement transactions survive with their link
        cleared; a transfer entry keeps its beneficiary name.
        """
        require_admin(actor, "delete deferred payment")
        payment = self._lock(payment_id)

        unlinked = self.session.execute(
            update(Transaction)
            .where(Transaction.deferred_payment_id == payment_id)
            .values(deferred_payment_id=None)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        self.session.execute(
            update(LedgerEntry)
            .where(LedgerEntry.deferred_payment_id == payment_id)
            .values(deferred_payment_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.session.delete(payment)
        self.session.flush()

        logger.info(
            "deferred_payment_deleted",
            extra={"deferred_payment_id": payment_id, "unlinked_transactions": unlinked},
        )

    # ------------------------------------------------------------------
    # Compensation for edited/deleted settlement transactions
    # ------------------------------------------------------------------

    def _linked_payment(self, tx: Transaction) -> DeferredPayment | None:
        if tx.deferred_payment_id is None:
            return None
        payment = self.session.execute(
            select(DeferredPayment)
            .where(DeferredPayment.id == tx.deferred_payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            logger.warning(
                "deferred_payment_missing",
                extra={"transaction_id": tx.id, "deferred_payment_id": tx.deferred_payment_id},
            )
        return payment

    def compensate_deleted_settlement(self, tx: Transaction) -> DeferredPaymentInfo | None:
        """Give back the amount of a deleted settlement, floored at zero."""
        payment = self._linked_payment(tx)
        if payment is None:
            return None
        new_paid, status = revert_installment(payment.total_amount, payment.paid_amount, tx.amount)
        payment.paid_amount = new_paid
        payment.status = status
        self._flush(payment)
        logger.info(
            "deferred_payment_compensated",
            extra={
                "deferred_payment_id": payment.id,
                "transaction_id": tx.id,
                "paid_amount": new_paid,
                "status": status.value,
            },
        )
        return DeferredPaymentInfo.from_model(payment)

    def adjust_settlement(self, tx: Transaction, amount_delta: int) -> DeferredPaymentInfo | None:
        """Follow an amount edit on a settlement transaction."""
        if not amount_delta:
            return None
        payment = self._linked_payment(tx)
        if payment is None:
            return None
        if amount_delta > 0:
            new_paid, status = apply_installment(
                payment.id, payment.total_amount, payment.paid_amount, amount_delta
            )
        else:
            new_paid, status = revert_installment(
                payment.total_amount, payment.paid_amount, -amount_delta
            )
        payment.paid_amount = new_paid
        payment.status = status
        self._flush(payment)
        return DeferredPaymentInfo.from_model(payment)

    # ------------------------------------------------------------------
    # Transfer to ledger
    # ------------------------------------------------------------------

    def transfer_to_ledger(self, actor: Actor, payment_id: int) -> LedgerEntryInfo:
        """
        Append the payment's settled amount to the ledger.

        Raises:
            AlreadyTransferredError: a transfer entry already exists.
            InvalidAmountError: nothing has been paid yet.
        """
        require_admin(actor, "transfer deferred payment to ledger")
        payment = self._lock(payment_id)

        existing = self._transfer_entry(payment_id)
        if existing is not None:
            raise AlreadyTransferredError(payment_id, existing.id)
        if payment.paid_amount <= 0:
            raise InvalidAmountError(
                payment.paid_amount, reason="nothing paid yet, nothing to transfer"
            )

        expense_type = self._expense_types.ensure(self._rules.deferred_payments_expense_type)
        now = self._clock.now()
        entry = LedgerEntry(
            date=now,
            transaction_id=None,
            deferred_payment_id=payment.id,
            expense_type_id=expense_type.id,
            amount=payment.paid_amount,
            description=TRANSFER_DESCRIPTION.format(beneficiary=payment.beneficiary_name),
            project_id=payment.project_id,
            entry_type=LedgerEntryType.CLASSIFIED,
            beneficiary_name=payment.beneficiary_name,
            created_at=now,
        )
        self.session.add(entry)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyError(
                f"Deferred payment {payment_id} was transferred concurrently"
            ) from exc

        logger.info(
            "deferred_payment_transferred",
            extra={
                "deferred_payment_id": payment_id,
                "ledger_entry_id": entry.id,
                "amount": entry.amount,
            },
        )
        return LedgerEntryInfo.from_model(entry)

    def transfer_completed_to_ledger(self, actor: Actor) -> list[LedgerEntryInfo]:
        """Transfer every completed payment that has no transfer entry yet."""
        require_admin(actor, "transfer deferred payments to ledger")
        transferred = exists().where(LedgerEntry.deferred_payment_id == DeferredPayment.id)
        stmt = (
            select(DeferredPayment.id)
            .where(DeferredPayment.status == DeferredPaymentStatus.COMPLETED, ~transferred)
            .order_by(DeferredPayment.id)
        )
        payment_ids = list(self.session.execute(stmt).scalars())
        return [self.transfer_to_ledger(actor, payment_id) for payment_id in payment_ids]
