"""Tests for LedgerSelector and FundSelector."""

import pytest

from fund_ledger.models.fund import FundType
from fund_ledger.selectors.fund_selector import FundSelector
from fund_ledger.selectors.ledger_selector import LedgerSelector
from tests.conftest import OTHER_PROJECT_ID, PROJECT_ID


@pytest.fixture
def classified_ledger(engine, admin, funded_project):
    engine.process_deposit(admin, OTHER_PROJECT_ID, 100_000)
    fuel = engine.create_expense_type(admin, "Fuel")
    wages = engine.create_expense_type(admin, "Wages")
    engine.process_withdrawal(admin, PROJECT_ID, 1_000, expense_type="Fuel")
    engine.process_withdrawal(admin, PROJECT_ID, 2_000, expense_type="fuel")
    engine.process_withdrawal(admin, PROJECT_ID, 4_000, expense_type="Wages")
    engine.process_withdrawal(admin, OTHER_PROJECT_ID, 8_000, expense_type="Fuel")
    general = engine.process_withdrawal(admin, PROJECT_ID, 16_000)
    engine.classify_transaction(admin, general.id, force_classify=True)
    return fuel, wages


class TestLedgerSelector:

    def test_summary_by_expense_type(self, engine, classified_ledger):
        fuel, wages = classified_ledger

        summary = engine.ledger_summary()

        assert [(t.expense_type_id, t.total_amount, t.entry_count) for t in summary] == [
            (fuel.id, 11_000, 3),
            (wages.id, 4_000, 1),
            (None, 16_000, 1),
        ]
        assert summary[-1].is_general_expense

    def test_summary_for_one_project(self, engine, classified_ledger):
        fuel, _ = classified_ledger

        summary = engine.ledger_summary(project_id=OTHER_PROJECT_ID)

        assert [(t.expense_type_name, t.total_amount) for t in summary] == [("Fuel", 8_000)]
        assert summary[0].expense_type_id == fuel.id

    def test_entries_filtered_by_type(self, router, classified_ledger):
        fuel, _ = classified_ledger

        with router.session_scope() as s:
            selector = LedgerSelector(s)
            entries = selector.entries(project_id=PROJECT_ID, expense_type_id=fuel.id)
            total = selector.total(project_id=PROJECT_ID)

        assert [e.amount for e in entries] == [1_000, 2_000]
        assert total == 23_000


class TestFundSelector:

    def test_totals_and_balances(self, engine, router, admin, funded_project):
        engine.process_withdrawal(admin, PROJECT_ID, 50_000)

        with router.session_scope() as s:
            selector = FundSelector(s)
            total = selector.total_balance()
            project_total = selector.total_balance(FundType.PROJECT)
            balances = selector.balances()
            net_admin = selector.net_admin_flow()
            spent = selector.project_spending()

        assert total == 950_000
        assert project_total == 150_000
        assert sorted(balances.values()) == [150_000, 800_000]
        assert total == net_admin - spent
