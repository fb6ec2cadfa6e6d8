"""
Module: fund_ledger.models.project
Responsibility: The slice of project data the ledger consumes -- project
    existence and which non-admin users may move money for it.  Project
    CRUD itself belongs to the web layer.
"""

from enum import Enum

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fund_ledger.db.base import BigInt, TrackedBase


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class Project(TrackedBase):
    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[ProjectStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ProjectStatus.ACTIVE,
    )

    created_by: Mapped[int] = mapped_column(BigInt, nullable=False)

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class ProjectMember(TrackedBase):
    """Grants a non-admin user access to a project."""

    __tablename__ = "project_members"

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    project_id: Mapped[int] = mapped_column(
        BigInt,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[int] = mapped_column(BigInt, nullable=False)
