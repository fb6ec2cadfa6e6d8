"""
Pytest fixtures for the fund ledger test suite.

Provides:
- A file-backed SQLite DatabaseRouter per test (tables created fresh)
- A FundLedgerEngine wired to a DeterministicClock
- Seeded projects and actors
- Structured log capture

Environment Variables:
- DATABASE_URL: PostgreSQL URL for tests marked ``postgres``.  Those tests
  are skipped when it is unset or does not name PostgreSQL.
"""

import json
import logging
import os
from io import StringIO

import pytest

from fund_ledger.config import settings_from_dict
from fund_ledger.db.engine import DatabaseRouter
from fund_ledger.domain.actor import Actor
from fund_ledger.domain.clock import DeterministicClock
from fund_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fund_ledger.models.project import Project, ProjectMember
from fund_ledger.services.engine import FundLedgerEngine

ADMIN_USER_ID = 1
MEMBER_USER_ID = 20
OUTSIDER_USER_ID = 30

PROJECT_ID = 7
OTHER_PROJECT_ID = 8


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def get_postgres_url() -> str | None:
    url = os.environ.get("DATABASE_URL")
    if url and url.startswith("postgresql"):
        return url
    return None


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fund_ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.process_deposit(...)
            logs = captured_logs()
            assert any(r["message"] == "deposit_processed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fund_ledger")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'fund_ledger.db'}"


@pytest.fixture
def router(database_url):
    """Router on a fresh SQLite file with every table created."""
    router = DatabaseRouter(database_url)
    router.create_tables()
    yield router
    router.dispose()


@pytest.fixture
def session(router):
    """
    Bare session for service-level tests.

    Do not combine with the ``engine`` fixture in one test: an open write
    transaction here blocks the engine's writes on SQLite.
    """
    session = router.get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Settings, clock, engine
# =============================================================================


@pytest.fixture
def ledger_settings():
    return settings_from_dict({
        "database": {"url": "sqlite://"},
        "ledger": {
            "admin_owner_id": ADMIN_USER_ID,
            "admin_fund_name": "Admin fund",
            "general_expense_aliases": ["general expense", "مصروف عام"],
            "deferred_payments_expense_type": "Deferred payments",
            "max_concurrency_retries": 2,
        },
    })


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def engine(router, ledger_settings, deterministic_clock):
    return FundLedgerEngine(router, ledger_settings, deterministic_clock)


# =============================================================================
# Actors and seed data
# =============================================================================


@pytest.fixture
def admin():
    return Actor.admin(ADMIN_USER_ID)


@pytest.fixture
def member():
    return Actor.user(MEMBER_USER_ID)


@pytest.fixture
def outsider():
    return Actor.user(OUTSIDER_USER_ID)


@pytest.fixture
def projects(router):
    """Projects 7 (member has access) and 8 (admin only)."""
    with router.session_scope() as s:
        s.add(Project(id=PROJECT_ID, name="Tower A", created_by=ADMIN_USER_ID))
        s.add(Project(id=OTHER_PROJECT_ID, name="Bridge B", created_by=ADMIN_USER_ID))
        s.flush()
        s.add(ProjectMember(project_id=PROJECT_ID, user_id=MEMBER_USER_ID))
    return PROJECT_ID, OTHER_PROJECT_ID


@pytest.fixture
def funded_admin(engine, admin, projects):
    """Admin fund holding 1,000,000."""
    return engine.bootstrap_admin_fund(admin, opening_balance=1_000_000)


@pytest.fixture
def funded_project(engine, admin, funded_admin):
    """Project 7 funded with 200,000 (admin fund left with 800,000)."""
    engine.process_deposit(admin, PROJECT_ID, 200_000, description="initial funding")
    return engine.get_project_fund(PROJECT_ID)
