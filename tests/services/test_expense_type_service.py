"""
Tests for ExpenseTypeService (the Expense Type Registry).

Covers:
- Case-insensitive uniqueness
- Active-only name resolution
- Delete guard for referenced types
- ensure() get-or-create
"""

from datetime import datetime, timezone

import pytest

from fund_ledger.exceptions import (
    DuplicateExpenseTypeError,
    ExpenseTypeNotFoundError,
    LedgerValidationError,
    ReferencedEntityError,
)
from fund_ledger.models.ledger_entry import LedgerEntry, LedgerEntryType
from fund_ledger.services.expense_type_service import ExpenseTypeService


@pytest.fixture
def expense_types(session):
    return ExpenseTypeService(session)


class TestCreate:

    def test_create_trims_name(self, expense_types):
        fuel = expense_types.create("  Fuel ", "diesel for generators")

        assert fuel.name == "Fuel"
        assert fuel.description == "diesel for generators"
        assert fuel.is_active is True

    def test_duplicate_name_case_insensitive(self, expense_types):
        expense_types.create("Fuel")

        with pytest.raises(DuplicateExpenseTypeError):
            expense_types.create("FUEL")

    def test_blank_name_rejected(self, expense_types):
        with pytest.raises(LedgerValidationError):
            expense_types.create("   ")


class TestLookup:

    def test_get_by_name_is_case_insensitive(self, expense_types):
        fuel = expense_types.create("Fuel")

        assert expense_types.get_by_name(" fuel ").id == fuel.id

    def test_inactive_type_does_not_resolve(self, expense_types):
        fuel = expense_types.create("Fuel")
        expense_types.deactivate(fuel.id)

        assert expense_types.find_by_name("Fuel") is None
        with pytest.raises(ExpenseTypeNotFoundError):
            expense_types.get_by_name("Fuel")

        expense_types.activate(fuel.id)
        assert expense_types.find_by_name("Fuel").id == fuel.id

    def test_list_types(self, expense_types):
        expense_types.create("Wages")
        cement = expense_types.create("Cement")
        expense_types.deactivate(cement.id)

        assert [t.name for t in expense_types.list_types()] == ["Wages"]
        assert [t.name for t in expense_types.list_types(active_only=False)] == ["Cement", "Wages"]


class TestUpdate:

    def test_rename(self, expense_types):
        fuel = expense_types.create("Fuel")

        renamed = expense_types.update(fuel.id, name="Fuel & oil")

        assert renamed.name == "Fuel & oil"
        assert expense_types.find_by_name("fuel & OIL").id == fuel.id

    def test_rename_onto_existing_name_rejected(self, expense_types):
        expense_types.create("Fuel")
        wages = expense_types.create("Wages")

        with pytest.raises(DuplicateExpenseTypeError):
            expense_types.update(wages.id, name="fuel")

    def test_unknown_id(self, expense_types):
        with pytest.raises(ExpenseTypeNotFoundError):
            expense_types.update(404, description="x")


class TestDelete:

    def test_delete_unreferenced(self, expense_types):
        fuel = expense_types.create("Fuel")

        expense_types.delete(fuel.id)

        with pytest.raises(ExpenseTypeNotFoundError):
            expense_types.get(fuel.id)

    def test_delete_referenced_rejected(self, session, expense_types):
        fuel = expense_types.create("Fuel")
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        session.add(LedgerEntry(
            date=now,
            expense_type_id=fuel.id,
            amount=100,
            description="",
            entry_type=LedgerEntryType.CLASSIFIED,
            beneficiary_name="Contractor",
            created_at=now,
        ))
        session.flush()

        with pytest.raises(ReferencedEntityError) as exc_info:
            expense_types.delete(fuel.id)
        assert exc_info.value.reference_count == 1


class TestEnsure:

    def test_ensure_creates_once(self, expense_types):
        first = expense_types.ensure("Deferred payments")
        second = expense_types.ensure("deferred payments")

        assert first.id == second.id

    def test_ensure_reactivates(self, expense_types):
        created = expense_types.create("Deferred payments")
        expense_types.deactivate(created.id)

        assert expense_types.ensure("Deferred payments").is_active is True
