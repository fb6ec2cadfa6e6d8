"""
Property tests for fund conservation.

For any sequence of deposits, withdrawals and admin transactions (accepted
or rejected):
- no balance is ever negative
- the sum of all balances equals admin net income minus project spending
"""

import pytest

pytest.importorskip("hypothesis")

from hypothesis import HealthCheck, given, settings  # noqa: E402
from hypothesis import strategies as st  # noqa: E402

from fund_ledger.config import settings_from_dict  # noqa: E402
from fund_ledger.db.engine import DatabaseRouter  # noqa: E402
from fund_ledger.domain.actor import Actor  # noqa: E402
from fund_ledger.domain.clock import DeterministicClock  # noqa: E402
from fund_ledger.exceptions import FundNotFoundError, InsufficientFundsError  # noqa: E402
from fund_ledger.models.project import Project  # noqa: E402
from fund_ledger.models.transaction import TransactionType  # noqa: E402
from fund_ledger.services.engine import FundLedgerEngine  # noqa: E402

ADMIN = Actor.admin(1)
PROJECT_IDS = (7, 8)

operations = st.lists(
    st.tuples(
        st.sampled_from(["admin_income", "admin_expense", "deposit", "withdraw"]),
        st.sampled_from(PROJECT_IDS),
        st.integers(min_value=1, max_value=50_000),
    ),
    min_size=1,
    max_size=15,
)


class _NullSink:

    def record(self, actor_id, action, entity_type, entity_id, details=None):
        pass


def _fresh_engine(tmp_path_factory) -> tuple[FundLedgerEngine, DatabaseRouter]:
    path = tmp_path_factory.mktemp("conservation") / "ledger.db"
    router = DatabaseRouter(f"sqlite:///{path}")
    router.create_tables()
    with router.session_scope() as s:
        for project_id in PROJECT_IDS:
            s.add(Project(id=project_id, name=f"Project {project_id}", created_by=1))
    ledger_settings = settings_from_dict({"ledger": {"admin_owner_id": 1}})
    engine = FundLedgerEngine(router, ledger_settings, DeterministicClock(), audit_sink=_NullSink())
    engine.bootstrap_admin_fund(ADMIN)
    return engine, router


class TestConservation:

    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(ops=operations)
    def test_balances_conserved(self, tmp_path_factory, ops):
        engine, router = _fresh_engine(tmp_path_factory)
        admin_net = 0
        spent = 0
        try:
            for kind, project_id, amount in ops:
                try:
                    if kind == "admin_income":
                        engine.process_admin_transaction(ADMIN, TransactionType.INCOME, amount)
                        admin_net += amount
                    elif kind == "admin_expense":
                        engine.process_admin_transaction(ADMIN, TransactionType.EXPENSE, amount)
                        admin_net -= amount
                    elif kind == "deposit":
                        engine.process_deposit(ADMIN, project_id, amount)
                    else:
                        engine.process_withdrawal(ADMIN, project_id, amount)
                        spent += amount
                except InsufficientFundsError:
                    pass
                except FundNotFoundError:
                    # Withdrawal from a project that was never funded
                    assert kind == "withdraw"

                funds = engine.list_funds()
                assert all(f.balance >= 0 for f in funds)
                assert sum(f.balance for f in funds) == admin_net - spent
        finally:
            router.dispose()
