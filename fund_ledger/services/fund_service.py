"""
FundService -- the Fund Store.

Responsibility:
    Reads, creates and locks funds, and owns the single balance mutator
    ``update_balance``.  Sufficiency checks live in TransactionProcessor;
    this service never clamps.

Invariants enforced:
    - Row locks are taken in ascending fund id order, so two operations
      touching the same pair of funds cannot deadlock.
    - A lost update on Fund.version raises OptimisticLockError instead of
      silently overwriting a concurrent balance change.

Failure modes:
    - FundNotFoundError for an unknown id / owner / project.
    - InvalidFundSpecError when type, owner and project disagree.
    - ConcurrencyError when a concurrent request created the same fund first.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from fund_ledger.domain.dtos import FundInfo
from fund_ledger.exceptions import (
    ConcurrencyError,
    FundNotFoundError,
    InvalidFundSpecError,
    OptimisticLockError,
)
from fund_ledger.logging_config import get_logger
from fund_ledger.models.fund import Fund, FundType
from fund_ledger.services.base import BaseService

logger = get_logger("services.fund")


@dataclass(frozen=True)
class FundSpec:
    """Creation request for a fund."""

    name: str
    fund_type: FundType
    owner_id: int | None = None
    project_id: int | None = None

    def validate(self) -> None:
        if self.fund_type == FundType.ADMIN:
            if self.owner_id is None or self.project_id is not None:
                raise InvalidFundSpecError("admin fund needs owner_id and no project_id")
        elif self.fund_type == FundType.PROJECT:
            if self.project_id is None or self.owner_id is not None:
                raise InvalidFundSpecError("project fund needs project_id and no owner_id")
        else:
            raise InvalidFundSpecError(f"unknown fund type {self.fund_type!r}")


class FundService(BaseService[Fund]):
    """Service for the admin and project funds."""

    def _get(self, fund_id: int) -> Fund:
        fund = self.session.get(Fund, fund_id)
        if fund is None:
            raise FundNotFoundError(fund_id)
        return fund

    def _find_by_owner(self, owner_id: int) -> Fund | None:
        stmt = select(Fund).where(Fund.owner_id == owner_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def _find_by_project(self, project_id: int) -> Fund | None:
        stmt = select(Fund).where(Fund.project_id == project_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_fund(self, fund_id: int) -> FundInfo:
        return FundInfo.from_model(self._get(fund_id))

    def find_fund_by_owner(self, owner_id: int) -> FundInfo | None:
        fund = self._find_by_owner(owner_id)
        return FundInfo.from_model(fund) if fund else None

    def get_fund_by_owner(self, owner_id: int) -> FundInfo:
        fund = self._find_by_owner(owner_id)
        if fund is None:
            raise FundNotFoundError(f"owner={owner_id}")
        return FundInfo.from_model(fund)

    def find_fund_by_project(self, project_id: int) -> FundInfo | None:
        fund = self._find_by_project(project_id)
        return FundInfo.from_model(fund) if fund else None

    def get_fund_by_project(self, project_id: int) -> FundInfo:
        fund = self._find_by_project(project_id)
        if fund is None:
            raise FundNotFoundError(f"project={project_id}")
        return FundInfo.from_model(fund)

    def list_funds(self, fund_type: FundType | None = None) -> list[FundInfo]:
        stmt = select(Fund)
        if fund_type is not None:
            stmt = stmt.where(Fund.fund_type == fund_type)
        stmt = stmt.order_by(Fund.id)
        return [FundInfo.from_model(f) for f in self.session.execute(stmt).scalars()]

    def create_fund(self, spec: FundSpec) -> FundInfo:
        """
        Create a fund with balance 0.

        Raises:
            InvalidFundSpecError: type/owner/project combination is invalid.
            ConcurrencyError: the same admin or project fund already exists
                (typically a concurrent first deposit).  The session must be
                rolled back; FundLedgerEngine retries the whole operation.
        """
        spec.validate()
        fund = Fund(
            name=spec.name,
            fund_type=spec.fund_type,
            owner_id=spec.owner_id,
            project_id=spec.project_id,
            balance=0,
        )
        self.session.add(fund)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyError(
                f"Fund for owner={spec.owner_id} project={spec.project_id} "
                "was created concurrently"
            ) from exc

        logger.info(
            "fund_created",
            extra={
                "fund_id": fund.id,
                "fund_type": spec.fund_type.value,
                "owner_id": spec.owner_id,
                "project_id": spec.project_id,
            },
        )
        return FundInfo.from_model(fund)

    def lock_funds(self, fund_ids: Iterable[int]) -> dict[int, Fund]:
        """
        Lock fund rows for the rest of the transaction.

        Rows are locked in ascending id order and re-read from the database
        (populate_existing), so balances seen after this call are the
        committed values as of the lock.
        """
        ordered = sorted(set(fund_ids))
        locked: dict[int, Fund] = {}
        for fund_id in ordered:
            fund = self.session.execute(
                select(Fund)
                .where(Fund.id == fund_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if fund is None:
                raise FundNotFoundError(fund_id)
            locked[fund_id] = fund
        return locked

    def update_balance(self, fund_id: int, delta: int) -> FundInfo:
        """
        Apply a signed delta to a fund balance and return the new state.

        Preconditions:
            - Called inside the engine's transactional scope, after the fund
              has been locked and the resulting balance validated.

        Raises:
            OptimisticLockError: another transaction updated the row since
                this session read it.
        """
        fund = self._get(fund_id)
        fund.balance = fund.balance + delta
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("Fund", fund_id) from exc

        logger.debug(
            "fund_balance_updated",
            extra={"fund_id": fund_id, "delta": delta, "balance": fund.balance},
        )
        return FundInfo.from_model(fund)
