"""
Service layer for the Transaction Store.

Inserts, reads, archives and deletes transaction rows.  It does not touch
fund balances: only TransactionProcessor creates transactions, and it does
so in the same flush as the balance change they describe.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select

from fund_ledger.domain.dtos import TransactionInfo
from fund_ledger.exceptions import TransactionNotFoundError
from fund_ledger.logging_config import get_logger
from fund_ledger.models.transaction import Transaction, TransactionType
from fund_ledger.services.base import BaseService

logger = get_logger("services.transaction")


class TransactionService(BaseService[Transaction]):

    def _get(self, transaction_id: int) -> Transaction:
        tx = self.session.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def get(self, transaction_id: int) -> TransactionInfo:
        return TransactionInfo.from_model(self._get(transaction_id))

    def list_transactions(
        self,
        project_id: int | None = None,
        transaction_type: TransactionType | None = None,
        include_archived: bool = False,
    ) -> list[TransactionInfo]:
        stmt = select(Transaction)
        if project_id is not None:
            stmt = stmt.where(Transaction.project_id == project_id)
        if transaction_type is not None:
            stmt = stmt.where(Transaction.transaction_type == transaction_type)
        if not include_archived:
            stmt = stmt.where(Transaction.archived.is_(False))
        stmt = stmt.order_by(Transaction.date, Transaction.id)
        return [TransactionInfo.from_model(t) for t in self.session.execute(stmt).scalars()]

    def create(
        self,
        *,
        date: datetime,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        created_by: int,
        project_id: int | None = None,
        expense_type: str | None = None,
        deferred_payment_id: int | None = None,
        file_url: str | None = None,
        file_type: str | None = None,
    ) -> Transaction:
        tx = Transaction(
            date=date,
            amount=amount,
            transaction_type=transaction_type,
            expense_type=expense_type if transaction_type == TransactionType.EXPENSE else None,
            description=description or "",
            project_id=project_id,
            created_by=created_by,
            deferred_payment_id=deferred_payment_id,
            is_installment=deferred_payment_id is not None,
            file_url=file_url,
            file_type=file_type,
            archived=False,
        )
        self.session.add(tx)
        self.session.flush()
        return tx

    def set_archived(self, transaction_id: int, archived: bool = True) -> TransactionInfo:
        tx = self._get(transaction_id)
        tx.archived = archived
        self.session.flush()
        logger.info(
            "transaction_archive_flag_set",
            extra={"transaction_id": transaction_id, "archived": archived},
        )
        return TransactionInfo.from_model(tx)

    def delete(self, transaction_id: int) -> None:
        tx = self._get(transaction_id)
        self.session.delete(tx)
        self.session.flush()
