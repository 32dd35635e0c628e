from typing import Literal

from sqlalchemy import or_
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.core.errors import ServiceError, not_found
from nexusdash.models import Project, ProjectMembership

ProjectAccessRole = Literal["viewer", "editor", "owner"]

ROLE_ORDER: dict[str, int] = {"viewer": 0, "editor": 1, "owner": 2}

PROJECT_ROLES: tuple[str, ...] = ("viewer", "editor", "owner")


def is_project_role(value) -> bool:
    return value in ROLE_ORDER


def allowed_roles_for_minimum(minimum_role: ProjectAccessRole) -> list[str]:
    required = ROLE_ORDER[minimum_role]
    return [role for role in PROJECT_ROLES if ROLE_ORDER[role] >= required]


def project_access_filter(actor_user_id: str, minimum_role: ProjectAccessRole):
    """SQL predicate: actor owns the project or holds a sufficient membership."""
    member_projects = select(ProjectMembership.project_id).where(
        ProjectMembership.user_id == actor_user_id,
        col(ProjectMembership.role).in_(allowed_roles_for_minimum(minimum_role)),
    )
    return or_(
        Project.owner_id == actor_user_id,
        col(Project.id).in_(member_projects),
    )


class AuthorizationService:
    @staticmethod
    async def has_project_access(
        project_id: str,
        actor_user_id: str,
        minimum_role: ProjectAccessRole,
        db: AsyncSession,
    ) -> bool:
        query = select(Project.id).where(
            Project.id == project_id,
            project_access_filter(actor_user_id, minimum_role),
        )
        result = await db.exec(query)
        return result.first() is not None

    @staticmethod
    async def require_project_access(
        project_id: str,
        actor_user_id: str,
        minimum_role: ProjectAccessRole,
        db: AsyncSession,
    ) -> None:
        """Raise 404 when the project is invisible, 403 when the role is too low."""
        if await AuthorizationService.has_project_access(
            project_id, actor_user_id, minimum_role, db
        ):
            return

        if minimum_role != "viewer" and await AuthorizationService.has_project_access(
            project_id, actor_user_id, "viewer", db
        ):
            raise ServiceError(403, "forbidden")

        raise not_found("project-not-found")

    @staticmethod
    async def ensure_project_owner_membership(
        project_id: str, owner_id: str, db: AsyncSession
    ) -> ProjectMembership:
        """Stage the owner membership in the current transaction; the caller commits."""
        result = await db.exec(
            select(ProjectMembership).where(
                ProjectMembership.project_id == project_id,
                ProjectMembership.user_id == owner_id,
            )
        )
        membership = result.first()
        if membership is None:
            membership = ProjectMembership(project_id=project_id, user_id=owner_id)
            db.add(membership)
        membership.role = "owner"
        await db.flush()
        return membership
