"""
Service layer for project lookups and access checks.

Project CRUD is owned by the web layer; the ledger needs to know that a
project exists and whether the actor may move money for it.  Admins may act
on every project, other users only on projects they created or are members
of.
"""

from __future__ import annotations

from sqlalchemy import select

from fund_ledger.domain.actor import Actor
from fund_ledger.domain.dtos import ProjectInfo
from fund_ledger.exceptions import AccessDeniedError, ProjectNotFoundError
from fund_ledger.models.project import Project, ProjectMember, ProjectStatus
from fund_ledger.services.base import BaseService


class ProjectService(BaseService[Project]):

    def _get(self, project_id: int) -> Project:
        project = self.session.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def get_project(self, project_id: int) -> ProjectInfo:
        return ProjectInfo.from_model(self._get(project_id))

    def create_project(
        self,
        name: str,
        created_by: int,
        status: ProjectStatus = ProjectStatus.ACTIVE,
    ) -> ProjectInfo:
        project = Project(name=name, status=status, created_by=created_by)
        self.session.add(project)
        self.session.flush()
        return ProjectInfo.from_model(project)

    def add_member(self, project_id: int, user_id: int) -> None:
        self._get(project_id)
        if not self._is_member(project_id, user_id):
            self.session.add(ProjectMember(project_id=project_id, user_id=user_id))
            self.session.flush()

    def _is_member(self, project_id: int, user_id: int) -> bool:
        stmt = select(ProjectMember.id).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
        return self.session.execute(stmt).first() is not None

    def has_access(self, actor: Actor, project: Project) -> bool:
        if actor.is_admin or project.created_by == actor.user_id:
            return True
        return self._is_member(project.id, actor.user_id)

    def require_access(self, actor: Actor, project_id: int) -> ProjectInfo:
        """
        Return the project if ``actor`` may act on it.

        Raises:
            ProjectNotFoundError: project does not exist.
            AccessDeniedError: actor is neither admin, creator nor member.
        """
        project = self._get(project_id)
        if not self.has_access(actor, project):
            raise AccessDeniedError(actor.user_id, f"no access to project {project_id}")
        return ProjectInfo.from_model(project)


def require_admin(actor: Actor, action: str) -> None:
    """Raise AccessDeniedError unless ``actor`` holds the admin role."""
    if not actor.is_admin:
        raise AccessDeniedError(actor.user_id, f"{action} requires the admin role")
