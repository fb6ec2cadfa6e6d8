"""
Tests for FundLedgerEngine scope handling.

Covers:
- Retry of lost concurrency races
- Best-effort audit (recorded after commit, failures swallowed and logged)
- Log context binding for operations on an existing transaction
- Routing through an explicit DatabaseRouter
"""

import pytest

from fund_ledger.db.engine import DatabaseRouter
from fund_ledger.exceptions import ConcurrencyError, OptimisticLockError
from fund_ledger.logging_config import LogContext
from fund_ledger.models.activity_log import AuditAction
from fund_ledger.services.activity_log_service import ActivityLogService
from fund_ledger.services.engine import FundLedgerEngine
from tests.conftest import PROJECT_ID


class RecordingSink:

    def __init__(self):
        self.records = []

    def record(self, actor_id, action, entity_type, entity_id, details=None):
        self.records.append((actor_id, action, entity_type, entity_id, details))


class FailingSink:

    def record(self, actor_id, action, entity_type, entity_id, details=None):
        raise RuntimeError("audit store offline")


class TestRetry:

    def test_concurrency_error_is_retried(self, engine, admin, funded_admin, captured_logs):
        attempts = []

        def work(uow):
            attempts.append(1)
            if len(attempts) == 1:
                raise OptimisticLockError("Fund", 1)
            return uow.funds.get_fund_by_owner(admin.user_id).balance

        assert engine._run("test_retry", admin, work) == 1_000_000
        assert len(attempts) == 2
        assert any(r["message"] == "operation_retrying" for r in captured_logs())

    def test_gives_up_after_max_retries(self, engine, admin, funded_admin):
        attempts = []

        def work(uow):
            attempts.append(1)
            raise ConcurrencyError("always loses")

        with pytest.raises(ConcurrencyError):
            engine._run("test_retry", admin, work)

        assert len(attempts) == engine.settings.ledger.max_concurrency_retries + 1


class TestAudit:

    def test_operations_are_audited(self, router, ledger_settings, deterministic_clock, admin, projects):
        sink = RecordingSink()
        engine = FundLedgerEngine(router, ledger_settings, deterministic_clock, audit_sink=sink)

        engine.bootstrap_admin_fund(admin, opening_balance=100)
        tx = engine.process_deposit(admin, PROJECT_ID, 40)
        engine.delete_transaction(admin, tx.id)

        actions = [(r[1], r[2]) for r in sink.records]
        assert (AuditAction.DELETE, "transaction") in actions
        assert (AuditAction.CREATE, "transaction") in actions
        assert sink.records[-1][3] == tx.id

    def test_audit_failure_does_not_fail_operation(
        self, router, ledger_settings, deterministic_clock, admin, projects, captured_logs
    ):
        engine = FundLedgerEngine(
            router, ledger_settings, deterministic_clock, audit_sink=FailingSink()
        )

        fund = engine.bootstrap_admin_fund(admin, opening_balance=100)

        assert engine.get_fund(fund.id).balance == 100
        assert any(r["message"] == "audit_failed" for r in captured_logs())

    def test_default_sink_persists_activity_rows(self, engine, router, admin, funded_admin):
        tx = engine.process_deposit(admin, PROJECT_ID, 10)

        with router.session_scope() as s:
            [row] = ActivityLogService(s).list_for_entity("transaction", tx.id)

        assert row.action == AuditAction.CREATE
        assert row.user_id == admin.user_id
        assert row.details == {"amount": 10, "type": "income", "project_id": PROJECT_ID}


class TestLogContextBinding:

    def test_transaction_operations_bind_transaction_id(
        self, engine, admin, funded_project, captured_logs
    ):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 10, expense_type="fuel")

        engine.archive_transaction(admin, tx.id)

        [archived] = [r for r in captured_logs() if r["message"] == "transaction_archive_flag_set"]
        assert archived["transaction_id"] == str(tx.id)
        assert archived["operation"] == "archive_transaction"
        completed = [
            r for r in captured_logs()
            if r["message"] == "operation_completed" and r["operation"] == "archive_transaction"
        ]
        assert completed[-1]["transaction_id"] == str(tx.id)

    def test_context_is_released_after_operation(self, engine, admin, funded_project):
        tx = engine.process_withdrawal(admin, PROJECT_ID, 10)

        engine.archive_transaction(admin, tx.id)

        assert LogContext.get_all() == {}


class TestRouting:

    def test_engine_follows_router_fallback(self, tmp_path, ledger_settings, deterministic_clock, admin):
        router = DatabaseRouter(
            f"sqlite:///{tmp_path / 'primary.db'}",
            fallback_url=f"sqlite:///{tmp_path / 'fallback.db'}",
        )
        router.create_tables()
        router.use_fallback()
        router.create_tables()
        engine = FundLedgerEngine(router, ledger_settings, deterministic_clock)
        try:
            engine.bootstrap_admin_fund(admin, opening_balance=50)
            assert engine.total_balance() == 50

            router.use_primary()
            assert engine.list_funds() == []
        finally:
            router.dispose()
