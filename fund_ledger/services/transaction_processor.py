"""
TransactionProcessor -- the only code path that moves money.

Responsibility:
    Deposits (admin fund -> project fund), project withdrawals, admin fund
    income/expense, installment settlements, and the reversal or amendment
    of an existing transaction's fund effect.

Architecture position:
    Services layer.  Flush-only: FundLedgerEngine opens the scope, calls one
    processor operation, and commits.  A raised error anywhere rolls back
    the fund changes and the transaction row together.

Invariants enforced:
    - No fund balance goes below zero.  Every debit is checked against the
      locked row BEFORE any balance is written.
    - Funds touched by one operation are locked in ascending id order.
    - Each transaction row is inserted in the same flush sequence as the
      balance changes it describes.
    - The sum of all fund balances changes only by admin income/expense;
      deposits and their reversals only move money between funds.

Failure modes:
    - InvalidAmountError, ProjectNotFoundError, AccessDeniedError,
      FundNotFoundError, InsufficientFundsError: raised before mutation.
    - OptimisticLockError / ConcurrencyError: a concurrent writer won;
      the engine retries.
"""

from __future__ import annotations

from datetime import datetime

from fund_ledger.config import LedgerRules
from fund_ledger.domain.actor import Actor
from fund_ledger.domain.clock import Clock
from fund_ledger.domain.dtos import FundInfo
from fund_ledger.domain.expense_label import normalize_expense_label
from fund_ledger.domain.installments import validate_amount
from fund_ledger.exceptions import (
    FundNotFoundError,
    InsufficientFundsError,
    LedgerValidationError,
)
from fund_ledger.logging_config import get_logger
from fund_ledger.models.deferred_payment import DeferredPayment
from fund_ledger.models.fund import Fund, FundType
from fund_ledger.models.transaction import Transaction, TransactionType
from fund_ledger.services.fund_service import FundService, FundSpec
from fund_ledger.services.project_service import ProjectService, require_admin
from fund_ledger.services.transaction_service import TransactionService

logger = get_logger("services.processor")

INSTALLMENT_DESCRIPTION = "payment of installment for beneficiary: {beneficiary}"


class TransactionProcessor:
    """
    Applies fund movements atomically within the caller's session.

    Usage:
        processor = TransactionProcessor(funds, projects, transactions, clock, rules)
        tx = processor.process_deposit(actor, project_id=7, amount=200_000)
    """

    def __init__(
        self,
        funds: FundService,
        projects: ProjectService,
        transactions: TransactionService,
        clock: Clock,
        rules: LedgerRules,
    ):
        self._funds = funds
        self._projects = projects
        self._transactions = transactions
        self._clock = clock
        self._rules = rules

    # ------------------------------------------------------------------
    # Fund resolution
    # ------------------------------------------------------------------

    def _admin_fund(self) -> Fund | None:
        return self._funds._find_by_owner(self._rules.admin_owner_id)

    def _require_admin_fund(self) -> Fund:
        fund = self._admin_fund()
        if fund is None:
            raise FundNotFoundError(f"owner={self._rules.admin_owner_id}")
        return fund

    def _ensure_admin_fund(self) -> Fund:
        fund = self._admin_fund()
        if fund is None:
            self._funds.create_fund(
                FundSpec(
                    name=self._rules.admin_fund_name,
                    fund_type=FundType.ADMIN,
                    owner_id=self._rules.admin_owner_id,
                )
            )
            fund = self._admin_fund()
        return fund

    def _require_project_fund(self, project_id: int) -> Fund:
        fund = self._funds._find_by_project(project_id)
        if fund is None:
            raise FundNotFoundError(f"project={project_id}")
        return fund

    def _ensure_project_fund(self, project_id: int, project_name: str) -> Fund:
        fund = self._funds._find_by_project(project_id)
        if fund is None:
            self._funds.create_fund(
                FundSpec(
                    name=f"{project_name} fund",
                    fund_type=FundType.PROJECT,
                    project_id=project_id,
                )
            )
            fund = self._funds._find_by_project(project_id)
        return fund

    def _fund_effect(self, tx: Transaction, amount: int) -> dict[int, int]:
        """Signed balance change per fund that ``tx`` causes for ``amount``."""
        if tx.project_id is not None:
            project_fund = self._require_project_fund(tx.project_id)
            if tx.transaction_type == TransactionType.INCOME:
                admin_fund = self._require_admin_fund()
                return {admin_fund.id: -amount, project_fund.id: amount}
            return {project_fund.id: -amount}

        admin_fund = self._require_admin_fund()
        if tx.transaction_type == TransactionType.INCOME:
            return {admin_fund.id: amount}
        return {admin_fund.id: -amount}

    # ------------------------------------------------------------------
    # Balance application
    # ------------------------------------------------------------------

    def _apply_deltas(self, deltas: dict[int, int]) -> None:
        """
        Lock every fund in ``deltas``, verify all debits, then write.

        Nothing is written unless every debited fund can cover its debit.
        """
        deltas = {fund_id: d for fund_id, d in deltas.items() if d != 0}
        if not deltas:
            return
        locked = self._funds.lock_funds(deltas)

        for fund_id, delta in sorted(deltas.items()):
            fund = locked[fund_id]
            if delta < 0 and fund.balance + delta < 0:
                logger.warning(
                    "insufficient_funds",
                    extra={"fund_id": fund_id, "balance": fund.balance, "requested": -delta},
                )
                raise InsufficientFundsError(fund_id, fund.balance, -delta)

        for fund_id, delta in sorted(deltas.items()):
            self._funds.update_balance(fund_id, delta)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def bootstrap_admin_fund(self, actor: Actor, opening_balance: int = 0) -> FundInfo:
        """
        Create the admin fund if needed, optionally crediting an opening
        balance as an admin income transaction.
        """
        require_admin(actor, "bootstrap_admin_fund")
        fund = self._ensure_admin_fund()
        if opening_balance:
            self.process_admin_transaction(
                actor,
                TransactionType.INCOME,
                opening_balance,
                description="opening balance",
            )
        return FundInfo.from_model(fund)

    def process_deposit(
        self,
        actor: Actor,
        project_id: int,
        amount: int,
        description: str = "",
        date: datetime | None = None,
        file_url: str | None = None,
        file_type: str | None = None,
    ) -> Transaction:
        """
        Move ``amount`` from the admin fund into the project's fund.

        The project fund is created with balance 0 on the first deposit.

        Raises:
            InvalidAmountError, ProjectNotFoundError, AccessDeniedError,
            FundNotFoundError (no admin fund), InsufficientFundsError.
        """
        validate_amount(amount)
        project = self._projects.require_access(actor, project_id)
        admin_fund = self._require_admin_fund()
        project_fund = self._ensure_project_fund(project_id, project.name)

        self._apply_deltas({admin_fund.id: -amount, project_fund.id: amount})

        tx = self._transactions.create(
            date=date or self._clock.now(),
            amount=amount,
            transaction_type=TransactionType.INCOME,
            description=description,
            project_id=project_id,
            created_by=actor.user_id,
            file_url=file_url,
            file_type=file_type,
        )
        logger.info(
            "deposit_processed",
            extra={
                "transaction_id": tx.id,
                "project_id": project_id,
                "amount": amount,
                "admin_fund_id": admin_fund.id,
                "project_fund_id": project_fund.id,
            },
        )
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
    ) -> Transaction:
        """
        Record a project expense, debiting the project fund.

        An absent label or a general-expense alias is stored as NULL.

        Raises:
            InvalidAmountError, ProjectNotFoundError, AccessDeniedError,
            FundNotFoundError (project never funded), InsufficientFundsError.
        """
        validate_amount(amount)
        self._projects.require_access(actor, project_id)
        fund = self._require_project_fund(project_id)
        label = normalize_expense_label(expense_type, self._rules.general_expense_aliases)

        self._apply_deltas({fund.id: -amount})

        tx = self._transactions.create(
            date=date or self._clock.now(),
            amount=amount,
            transaction_type=TransactionType.EXPENSE,
            description=description,
            project_id=project_id,
            created_by=actor.user_id,
            expense_type=label,
            file_url=file_url,
            file_type=file_type,
        )
        logger.info(
            "withdrawal_processed",
            extra={
                "transaction_id": tx.id,
                "project_id": project_id,
                "amount": amount,
                "expense_type": label,
            },
        )
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
    ) -> Transaction:
        """
        Income to or expense from the admin fund (no project).

        Income creates the admin fund lazily.  An expense against a missing
        or short admin fund raises InsufficientFundsError; the lazily created
        fund is rolled back with the rest of the scope.
        """
        require_admin(actor, "admin transaction")
        validate_amount(amount)
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError as exc:
            raise LedgerValidationError(
                f"Unknown transaction type: {transaction_type!r}"
            ) from exc
        fund = self._ensure_admin_fund()

        if transaction_type == TransactionType.INCOME:
            self._apply_deltas({fund.id: amount})
            label = None
        else:
            self._apply_deltas({fund.id: -amount})
            label = normalize_expense_label(expense_type, self._rules.general_expense_aliases)

        tx = self._transactions.create(
            date=date or self._clock.now(),
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            created_by=actor.user_id,
            expense_type=label,
            file_url=file_url,
            file_type=file_type,
        )
        logger.info(
            "admin_transaction_processed",
            extra={
                "transaction_id": tx.id,
                "transaction_type": transaction_type.value,
                "amount": amount,
            },
        )
        return tx

    def settle_installment(
        self,
        actor: Actor,
        payment: DeferredPayment,
        amount: int,
        date: datetime | None = None,
    ) -> Transaction:
        """
        Debit the fund paying ``payment`` and record the linked expense.

        The project fund pays for project obligations, the admin fund for
        obligations without a project.  Installment arithmetic is the
        caller's (DeferredPaymentService) concern.
        """
        validate_amount(amount)
        if payment.project_id is not None:
            fund = self._require_project_fund(payment.project_id)
        else:
            fund = self._require_admin_fund()

        self._apply_deltas({fund.id: -amount})

        tx = self._transactions.create(
            date=date or self._clock.now(),
            amount=amount,
            transaction_type=TransactionType.EXPENSE,
            description=INSTALLMENT_DESCRIPTION.format(beneficiary=payment.beneficiary_name),
            project_id=payment.project_id,
            created_by=actor.user_id,
            expense_type=self._rules.deferred_payments_expense_type,
            deferred_payment_id=payment.id,
        )
        logger.info(
            "installment_settled",
            extra={
                "transaction_id": tx.id,
                "deferred_payment_id": payment.id,
                "fund_id": fund.id,
                "amount": amount,
            },
        )
        return tx

    # ------------------------------------------------------------------
    # Maintenance of existing transactions
    # ------------------------------------------------------------------

    def require_transaction_access(self, actor: Actor, tx: Transaction) -> None:
        if tx.project_id is None:
            require_admin(actor, "admin fund transaction change")
        else:
            self._projects.require_access(actor, tx.project_id)

    def reverse_transaction(self, actor: Actor, transaction_id: int) -> Transaction:
        """
        Undo the fund effect of a transaction and delete its row.

        A deposit moves the money back to the admin fund; an expense credits
        the fund it was paid from.  Reversal is subject to the same
        non-negative rule, so money already spent cannot be un-deposited.
        Ledger entry and deferred payment compensation are done by the
        caller before this runs.
        """
        tx = self._transactions._get(transaction_id)
        self.require_transaction_access(actor, tx)

        effect = self._fund_effect(tx, tx.amount)
        self._apply_deltas({fund_id: -delta for fund_id, delta in effect.items()})
        self._transactions.delete(transaction_id)

        logger.info(
            "transaction_reversed",
            extra={
                "transaction_id": transaction_id,
                "amount": tx.amount,
                "transaction_type": TransactionType(tx.transaction_type).value,
            },
        )
        return tx

    def amend_transaction(
        self,
        actor: Actor,
        transaction_id: int,
        amount: int | None = None,
        date: datetime | None = None,
        description: str | None = None,
        expense_type: str | None = None,
    ) -> tuple[Transaction, int]:
        """
        Edit a transaction in place and return it with the amount delta.

        An amount change re-applies the fund effect for the difference.
        ``expense_type=None`` leaves the label unchanged; an empty string or
        a general-expense alias sets it to general.
        """
        tx = self._transactions._get(transaction_id)
        self.require_transaction_access(actor, tx)

        amount_delta = 0
        if amount is not None:
            validate_amount(amount)
            amount_delta = amount - tx.amount
            if amount_delta:
                self._apply_deltas(self._fund_effect(tx, amount_delta))
                tx.amount = amount
        if date is not None:
            tx.date = date
        if description is not None:
            tx.description = description
        if expense_type is not None and tx.is_expense:
            tx.expense_type = normalize_expense_label(
                expense_type, self._rules.general_expense_aliases
            )

        self._transactions.session.flush()
        logger.info(
            "transaction_amended",
            extra={"transaction_id": transaction_id, "amount_delta": amount_delta},
        )
        return tx, amount_delta
