"""
Tests for FundService (the Fund Store).

Covers:
- Fund creation and the type/owner/project consistency rule
- Uniqueness of admin and project funds
- Row locking order and missing funds
- Optimistic locking on concurrent balance updates
"""

import pytest

from fund_ledger.exceptions import (
    ConcurrencyError,
    FundNotFoundError,
    InvalidFundSpecError,
    OptimisticLockError,
)
from fund_ledger.models.fund import Fund, FundType
from fund_ledger.models.project import Project
from fund_ledger.services.fund_service import FundService, FundSpec


@pytest.fixture
def project(session):
    project = Project(name="Tower A", created_by=1)
    session.add(project)
    session.flush()
    return project


@pytest.fixture
def fund_service(session):
    return FundService(session)


class TestFundSpec:

    def test_admin_fund_needs_owner(self):
        with pytest.raises(InvalidFundSpecError):
            FundSpec(name="Admin", fund_type=FundType.ADMIN).validate()

    def test_admin_fund_rejects_project(self):
        with pytest.raises(InvalidFundSpecError):
            FundSpec(name="Admin", fund_type=FundType.ADMIN, owner_id=1, project_id=7).validate()

    def test_project_fund_needs_project(self):
        with pytest.raises(InvalidFundSpecError):
            FundSpec(name="P", fund_type=FundType.PROJECT, owner_id=1).validate()


class TestCreateFund:

    def test_create_admin_fund(self, fund_service):
        fund = fund_service.create_fund(FundSpec("Admin", FundType.ADMIN, owner_id=1))

        assert fund.id is not None
        assert fund.balance == 0
        assert fund.fund_type == FundType.ADMIN
        assert fund.created_at is not None
        assert fund.updated_at is not None
        assert fund_service.get_fund_by_owner(1) == fund

    def test_create_project_fund(self, fund_service, project):
        fund = fund_service.create_fund(FundSpec("Tower A fund", FundType.PROJECT, project_id=project.id))

        assert fund_service.get_fund_by_project(project.id).id == fund.id
        assert fund_service.find_fund_by_owner(1) is None

    def test_duplicate_project_fund_is_concurrency_error(self, fund_service, project):
        fund_service.create_fund(FundSpec("first", FundType.PROJECT, project_id=project.id))

        with pytest.raises(ConcurrencyError):
            fund_service.create_fund(FundSpec("second", FundType.PROJECT, project_id=project.id))

    def test_list_funds_filters_by_type(self, fund_service, project):
        fund_service.create_fund(FundSpec("Admin", FundType.ADMIN, owner_id=1))
        fund_service.create_fund(FundSpec("P", FundType.PROJECT, project_id=project.id))

        assert len(fund_service.list_funds()) == 2
        assert [f.fund_type for f in fund_service.list_funds(FundType.PROJECT)] == [FundType.PROJECT]


class TestLookups:

    def test_unknown_fund(self, fund_service):
        with pytest.raises(FundNotFoundError) as exc_info:
            fund_service.get_fund(404)
        assert exc_info.value.entity_id == 404

    def test_unknown_owner(self, fund_service):
        with pytest.raises(FundNotFoundError):
            fund_service.get_fund_by_owner(9)

    def test_lock_missing_fund(self, fund_service):
        with pytest.raises(FundNotFoundError):
            fund_service.lock_funds([404])

    def test_lock_returns_every_fund(self, fund_service, project):
        admin = fund_service.create_fund(FundSpec("Admin", FundType.ADMIN, owner_id=1))
        proj = fund_service.create_fund(FundSpec("P", FundType.PROJECT, project_id=project.id))

        locked = fund_service.lock_funds([proj.id, admin.id, proj.id])

        assert list(locked) == sorted({admin.id, proj.id})


class TestUpdateBalance:

    def test_applies_signed_delta(self, fund_service):
        fund = fund_service.create_fund(FundSpec("Admin", FundType.ADMIN, owner_id=1))

        assert fund_service.update_balance(fund.id, 500).balance == 500
        updated = fund_service.update_balance(fund.id, -200)
        assert updated.balance == 300
        assert updated.created_at == fund.created_at
        assert updated.updated_at >= fund.created_at

    def test_lost_update_raises_optimistic_lock_error(self, router):
        with router.session_scope() as s:
            fund_id = FundService(s).create_fund(FundSpec("Admin", FundType.ADMIN, owner_id=1)).id

        stale = router.get_session()
        try:
            stale_service = FundService(stale)
            # Hold the row so the identity map keeps the version read here
            stale_fund = stale.get(Fund, fund_id)
            assert stale_fund.balance == 0

            with router.session_scope() as s:
                FundService(s).update_balance(fund_id, 100)

            with pytest.raises(OptimisticLockError) as exc_info:
                stale_service.update_balance(fund_id, 50)
            assert exc_info.value.entity_type == "Fund"
            stale.rollback()

            with router.session_scope() as s:
                assert FundService(s).get_fund(fund_id).balance == 100
        finally:
            stale.rollback()
            stale.close()
