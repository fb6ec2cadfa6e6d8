"""
ExpenseTypeService -- the Expense Type Registry.

Responsibility:
    CRUD for expense types plus the name lookup on the classification hot
    path.

Invariants enforced:
    - Names are unique after trimming and case-folding (name_key).
    - get_by_name/find_by_name resolve ACTIVE types only; a deactivated type
      keeps its existing ledger entries but attracts no new ones.
    - A type referenced by any ledger entry cannot be deleted
      (ReferencedEntityError); deactivate it instead.
"""

from __future__ import annotations

from sqlalchemy import func, select

from fund_ledger.domain.dtos import ExpenseTypeInfo
from fund_ledger.exceptions import (
    DuplicateExpenseTypeError,
    ExpenseTypeNotFoundError,
    LedgerValidationError,
    ReferencedEntityError,
)
from fund_ledger.logging_config import get_logger
from fund_ledger.models.expense_type import ExpenseType, expense_type_key
from fund_ledger.models.ledger_entry import LedgerEntry
from fund_ledger.services.base import BaseService

logger = get_logger("services.expense_type")


class ExpenseTypeService(BaseService[ExpenseType]):

    def _get(self, expense_type_id: int) -> ExpenseType:
        expense_type = self.session.get(ExpenseType, expense_type_id)
        if expense_type is None:
            raise ExpenseTypeNotFoundError(expense_type_id)
        return expense_type

    def _find_by_key(self, name: str) -> ExpenseType | None:
        stmt = select(ExpenseType).where(ExpenseType.name_key == expense_type_key(name))
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, expense_type_id: int) -> ExpenseTypeInfo:
        return ExpenseTypeInfo.from_model(self._get(expense_type_id))

    def find_by_name(self, name: str) -> ExpenseTypeInfo | None:
        """Active expense type matching ``name`` (trimmed, case-insensitive)."""
        expense_type = self._find_by_key(name)
        if expense_type is None or not expense_type.is_active:
            return None
        return ExpenseTypeInfo.from_model(expense_type)

    def get_by_name(self, name: str) -> ExpenseTypeInfo:
        expense_type = self.find_by_name(name)
        if expense_type is None:
            raise ExpenseTypeNotFoundError(name)
        return expense_type

    def list_types(self, active_only: bool = True) -> list[ExpenseTypeInfo]:
        stmt = select(ExpenseType)
        if active_only:
            stmt = stmt.where(ExpenseType.is_active.is_(True))
        stmt = stmt.order_by(ExpenseType.name)
        return [ExpenseTypeInfo.from_model(t) for t in self.session.execute(stmt).scalars()]

    def create(self, name: str, description: str | None = None) -> ExpenseTypeInfo:
        """
        Register a new expense type.

        Raises:
            LedgerValidationError: name is blank.
            DuplicateExpenseTypeError: a type with the same normalised name
                exists (active or not).
        """
        cleaned = name.strip() if name else ""
        if not cleaned:
            raise LedgerValidationError("Expense type name must not be blank")
        if self._find_by_key(cleaned) is not None:
            raise DuplicateExpenseTypeError(cleaned)

        expense_type = ExpenseType(
            name=cleaned,
            name_key=expense_type_key(cleaned),
            description=description,
            is_active=True,
        )
        self.session.add(expense_type)
        self.session.flush()
        logger.info(
            "expense_type_created",
            extra={"expense_type_id": expense_type.id, "expense_type_name": cleaned},
        )
        return ExpenseTypeInfo.from_model(expense_type)

    def ensure(self, name: str, description: str | None = None) -> ExpenseTypeInfo:
        """Return the type named ``name``, creating or reactivating it."""
        expense_type = self._find_by_key(name)
        if expense_type is None:
            return self.create(name, description)
        if not expense_type.is_active:
            expense_type.is_active = True
            self.session.flush()
        return ExpenseTypeInfo.from_model(expense_type)

    def update(
        self,
        expense_type_id: int,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> ExpenseTypeInfo:
        expense_type = self._get(expense_type_id)

        if name is not None:
            cleaned = name.strip()
            if not cleaned:
                raise LedgerValidationError("Expense type name must not be blank")
            clash = self._find_by_key(cleaned)
            if clash is not None and clash.id != expense_type.id:
                raise DuplicateExpenseTypeError(cleaned)
            expense_type.name = cleaned
            expense_type.name_key = expense_type_key(cleaned)
        if description is not None:
            expense_type.description = description
        if is_active is not None:
            expense_type.is_active = is_active

        self.session.flush()
        return ExpenseTypeInfo.from_model(expense_type)

    def deactivate(self, expense_type_id: int) -> ExpenseTypeInfo:
        return self.update(expense_type_id, is_active=False)

    def activate(self, expense_type_id: int) -> ExpenseTypeInfo:
        return self.update(expense_type_id, is_active=True)

    def reference_count(self, expense_type_id: int) -> int:
        stmt = select(func.count(LedgerEntry.id)).where(
            LedgerEntry.expense_type_id == expense_type_id
        )
        return self.session.execute(stmt).scalar_one()

    def delete(self, expense_type_id: int) -> None:
        """
        Hard-delete an unreferenced expense type.

        Raises:
            ExpenseTypeNotFoundError: unknown id.
            ReferencedEntityError: ledger entries still reference the type.
        """
        expense_type = self._get(expense_type_id)
        references = self.reference_count(expense_type_id)
        if references:
            raise ReferencedEntityError("ExpenseType", expense_type_id, references)

        self.session.delete(expense_type)
        self.session.flush()
        logger.info("expense_type_deleted", extra={"expense_type_id": expense_type_id})
