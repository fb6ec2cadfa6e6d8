"""
Tests for LedgerClassifier.

Covers:
- Idempotent classification (one entry per transaction)
- Forced reclassification in place
- General expenses and unresolved labels
- Bulk migration (classify_unlinked) and bulk reclassification
- Classification failures never undoing the financial write
"""

import pytest

from fund_ledger.domain.clock import DeterministicClock
from fund_ledger.exceptions import (
    AccessDeniedError,
    ClassificationFailedError,
    ImmutableEntryError,
    ReferencedEntityError,
)
from fund_ledger.models.ledger_entry import LedgerEntryType
from fund_ledger.models.transaction import TransactionType
from fund_ledger.services.expense_type_service import ExpenseTypeService
from fund_ledger.services.ledger_classifier import ClassificationStatus, LedgerClassifier
from tests.conftest import PROJECT_ID


class TestAutomaticClassification:

    def test_withdrawal_with_known_type_is_classified(self, engine, admin, funded_project):
        fuel = engine.create_expense_type(admin, "Fuel")

        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, "diesel", expense_type="fuel")

        entry = engine.ledger_entry_for(tx.id)
        assert entry.expense_type_id == fuel.id
        assert entry.entry_type == LedgerEntryType.CLASSIFIED
        assert entry.amount == 5_000
        assert entry.project_id == PROJECT_ID

    def test_general_expense_gets_no_entry(self, engine, admin, funded_project):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000)

        assert engine.ledger_entry_for(tx.id) is None

    def test_unknown_label_is_logged_and_money_still_moves(
        self, engine, admin, funded_project, captured_logs
    ):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Scaffolding")

        assert engine.ledger_entry_for(tx.id) is None
        assert engine.get_project_fund(PROJECT_ID).balance == 195_000
        skipped = [r for r in captured_logs() if r["message"] == "classification_skipped"]
        assert skipped[0]["expense_type"] == "Scaffolding"

    def test_deposits_are_never_classified(self, engine, admin, funded_project):
        [deposit] = engine.list_transactions(PROJECT_ID)

        result = engine.classify_transaction(admin, deposit.id, force_classify=True)

        assert result.status == ClassificationStatus.SKIPPED
        assert engine.ledger_entry_for(deposit.id) is None


class TestExplicitClassification:

    def test_second_classification_is_a_no_op(self, engine, admin, funded_project):
        engine.create_expense_type(admin, "Fuel")
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Fuel")
        first = engine.ledger_entry_for(tx.id)

        result = engine.classify_transaction(admin, tx.id)

        assert result.status == ClassificationStatus.ALREADY_CLASSIFIED
        assert result.entry.id == first.id
        assert len(engine.ledger_entries()) == 1

    def test_forced_classification_updates_in_place(self, engine, admin, funded_project):
        engine.create_expense_type(admin, "Fuel")
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Fuel")
        first = engine.ledger_entry_for(tx.id)

        result = engine.classify_transaction(admin, tx.id, force_classify=True)

        assert result.status == ClassificationStatus.RECLASSIFIED
        assert result.entry.id == first.id
        assert len(engine.ledger_entries()) == 1

    def test_forced_general_expense_creates_general_entry(self, engine, admin, funded_project):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000)

        result = engine.classify_transaction(admin, tx.id, force_classify=True)

        assert result.status == ClassificationStatus.CLASSIFIED
        assert result.entry.entry_type == LedgerEntryType.GENERAL_EXPENSE
        assert result.entry.expense_type_id is None

    def test_unresolved_without_force(self, engine, admin, funded_project):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Scaffolding")

        result = engine.classify_transaction(admin, tx.id)

        assert result.status == ClassificationStatus.UNRESOLVED

    def test_unresolved_with_force_raises(self, engine, admin, funded_project):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Scaffolding")

        with pytest.raises(ClassificationFailedError) as exc_info:
            engine.classify_transaction(admin, tx.id, force_classify=True)

        assert exc_info.value.transaction_id == tx.id
        assert exc_info.value.expense_type == "Scaffolding"

    def test_forced_failure_removes_stale_entry(self, engine, admin, funded_project):
        fuel = engine.create_expense_type(admin, "Fuel")
        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Fuel")
        engine.update_expense_type(admin, fuel.id, is_active=False)

        with pytest.raises(ClassificationFailedError):
            engine.classify_transaction(admin, tx.id, force_classify=True)

        assert engine.ledger_entry_for(tx.id) is None

    def test_inactive_type_does_not_attract_new_entries(self, engine, admin, funded_project):
        fuel = engine.create_expense_type(admin, "Fuel")
        engine.update_expense_type(admin, fuel.id, is_active=False)

        tx = engine.process_withdrawal(admin, PROJECT_ID, 5_000, expense_type="Fuel")

        assert engine.ledger_entry_for(tx.id) is None


class TestBulkClassification:

    def test_classify_unlinked_is_idempotent(self, engine, admin, funded_project):
        engine.process_withdrawal(admin, PROJECT_ID, 100, expense_type="Fuel")
        engine.process_withdrawal(admin, PROJECT_ID, 200, expense_type="Wages")
        engine.process_withdrawal(admin, PROJECT_ID, 300, expense_type="Scaffolding")
        engine.process_withdrawal(admin, PROJECT_ID, 400)
        engine.create_expense_type(admin, "Fuel")
        engine.create_expense_type(admin, "Wages")

        report = engine.classify_unlinked(admin)

        assert report.added == 2
        assert report.unresolved == 1
        assert report.skipped == 1
        assert report.failures == []

        again = engine.classify_unlinked(admin)
        assert again.added == 0
        assert len(engine.ledger_entries()) == 2

    def test_reclassify_all_collects_failures(self, engine, admin, funded_project):
        engine.create_expense_type(admin, "Fuel")
        fuel_tx = engine.process_withdrawal(admin, PROJECT_ID, 100, expense_type="Fuel")
        bad_tx = engine.process_withdrawal(admin, PROJECT_ID, 200, expense_type="Scaffolding")
        engine.process_withdrawal(admin, PROJECT_ID, 300)

        report = engine.reclassify_all(admin, project_id=PROJECT_ID)

        assert report.updated == 1
        assert report.added == 1
        assert [f.transaction_id for f in report.failures] == [bad_tx.id]
        assert engine.ledger_entry_for(fuel_tx.id) is not None
        assert report.processed == 3

    def test_bulk_operations_require_admin(self, engine, member, funded_project):
        with pytest.raises(AccessDeniedError):
            engine.classify_unlinked(member)
        with pytest.raises(AccessDeniedError):
            engine.reclassify_all(member)


class TestExpenseTypeReferences:

    def test_referenced_expense_type_cannot_be_deleted(self, engine, admin, funded_project):
        fuel = engine.create_expense_type(admin, "Fuel")
        engine.process_withdrawal(admin, PROJECT_ID, 100, expense_type="Fuel")

        with pytest.raises(ReferencedEntityError):
            engine.delete_expense_type(admin, fuel.id)

    def test_admin_expense_classified_without_project(self, engine, admin, funded_admin):
        rent = engine.create_expense_type(admin, "Rent")

        tx = engine.process_admin_transaction(admin, TransactionType.EXPENSE, 100, expense_type="Rent")

        entry = engine.ledger_entry_for(tx.id)
        assert entry.expense_type_id == rent.id
        assert entry.project_id is None


class TestTransferEntriesAreImmutable:

    def test_classifier_cannot_delete_transfer_entry(self, engine, admin, router, funded_project):
        payment = engine.register_deferred_payment(admin, "Steel Co", 1_000, project_id=PROJECT_ID)
        engine.pay_installment(admin, payment.id, 1_000)
        entry = engine.transfer_to_ledger(admin, payment.id)

        with router.session_scope() as s:
            classifier = LedgerClassifier(s, ExpenseTypeService(s), DeterministicClock())
            with pytest.raises(ImmutableEntryError):
                classifier.delete_entry(entry.id)

        assert [e.id for e in engine.ledger_entries()] == [entry.id]
