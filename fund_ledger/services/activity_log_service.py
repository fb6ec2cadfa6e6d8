"""
ActivityLogService -- the audit collaborator.

Responsibility:
    Records one ActivityLog row per successful mutating engine operation
    and reads them back per entity.

Architecture position:
    ActivityLogService is flush-only like every other service.
    ActivityLogSink wraps it in its own session scope so FundLedgerEngine
    can write audit rows after the financial commit; a failure there is
    logged and never reaches the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from fund_ledger.db.engine import DatabaseRouter
from fund_ledger.domain.clock import Clock, SystemClock
from fund_ledger.logging_config import get_logger
from fund_ledger.models.activity_log import ActivityLog, AuditAction
from fund_ledger.services.base import BaseService

logger = get_logger("services.activity_log")


class AuditSink(Protocol):
    def record(
        self,
        actor_id: int,
        action: AuditAction,
        entity_type: str,
        entity_id: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        ...


@dataclass(frozen=True)
class ActivityRecord:
    id: int
    user_id: int
    action: AuditAction
    entity_type: str
    entity_id: int
    details: dict[str, Any]
    created_at: datetime


class ActivityLogService(BaseService[ActivityLog]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(
        self,
        actor_id: int,
        action: AuditAction,
        entity_type: str,
        entity_id: int,
        details: dict[str, Any] | None = None,
    ) -> ActivityLog:
        row = ActivityLog(
            user_id=actor_id,
            action=AuditAction(action),
            entity_type=entity_type,
            entity_id=entity_id,
            details=dict(details or {}),
            created_at=self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        return row

    def list_for_entity(self, entity_type: str, entity_id: int) -> list[ActivityRecord]:
        stmt = (
            select(ActivityLog)
            .where(ActivityLog.entity_type == entity_type, ActivityLog.entity_id == entity_id)
            .order_by(ActivityLog.id)
        )
        return [
            ActivityRecord(
                id=row.id,
                user_id=row.user_id,
                action=AuditAction(row.action),
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                details=dict(row.details or {}),
                created_at=row.created_at,
            )
            for row in self.session.execute(stmt).scalars()
        ]


class ActivityLogSink:
    """AuditSink that persists each record in its own session scope."""

    def __init__(self, router: DatabaseRouter, clock: Clock | None = None):
        self._router = router
        self._clock = clock or SystemClock()

    def record(
        self,
        actor_id: int,
        action: AuditAction,
        entity_type: str,
        entity_id: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        with self._router.session_scope() as session:
            ActivityLogService(session, self._clock).record(
                actor_id, action, entity_type, entity_id, details
            )
        logger.debug(
            "activity_recorded",
            extra={"entity_type": entity_type, "entity_id": entity_id, "action": AuditAction(action).value},
        )
