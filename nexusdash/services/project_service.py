from datetime import timedelta

from sqlalchemy import and_, func, or_
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.core.errors import bad_request, not_found
from nexusdash.core.observability import log_server_info
from nexusdash.models import (
    ContextCard,
    ContextCardAttachment,
    Project,
    ProjectMembership,
    Task,
    TaskAttachment,
    TaskBlockedFollowUp,
    User,
    get_utc_now,
)
from nexusdash.services.actor_service import normalize_user_id
from nexusdash.services.attachment_service import (
    AttachmentOwner,
    AttachmentService,
    attachment_payload,
    delete_stored_files_quietly,
)
from nexusdash.services.authorization_service import (
    AuthorizationService,
    is_project_role,
    project_access_filter,
)
from nexusdash.storage.base import StorageProvider
from nexusdash.utils.task_label import task_labels_from_storage
from nexusdash.utils.task_status import STATUS_DONE, task_status_index

ARCHIVE_AFTER_DAYS = 7
MIN_NAME_LENGTH = 2


def project_payload(project: Project, task_count: int = 0, card_count: int = 0) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "ownerId": project.owner_id,
        "createdAt": project.created_at,
        "updatedAt": project.updated_at,
        "counts": {"tasks": task_count, "contextCards": card_count},
    }


def follow_up_payload(follow_up: TaskBlockedFollowUp) -> dict:
    return {
        "id": follow_up.id,
        "content": follow_up.content,
        "createdAt": follow_up.created_at,
    }


def task_payload(task: Task, attachments: list | None = None, follow_ups: list | None = None) -> dict:
    owner = AttachmentOwner(scope="task", project_id=task.project_id, owner_id=task.id)
    return {
        "id": task.id,
        "projectId": task.project_id,
        "title": task.title,
        "description": task.description,
        "label": task.label,
        "labels": task_labels_from_storage(task.labels_json, task.label),
        "status": task.status,
        "position": task.position,
        "blockedNote": task.blocked_note,
        "completedAt": task.completed_at,
        "archivedAt": task.archived_at,
        "createdAt": task.created_at,
        "updatedAt": task.updated_at,
        "attachments": [attachment_payload(owner, a) for a in attachments or []],
        "blockedFollowUps": [follow_up_payload(f) for f in follow_ups or []],
    }


def context_card_payload(card: ContextCard, attachments: list | None = None) -> dict:
    owner = AttachmentOwner(scope="context-card", project_id=card.project_id, owner_id=card.id)
    return {
        "id": card.id,
        "projectId": card.project_id,
        "title": card.title,
        "content": card.content,
        "color": card.color,
        "createdAt": card.created_at,
        "updatedAt": card.updated_at,
        "attachments": [attachment_payload(owner, a) for a in attachments or []],
    }


def membership_payload(membership: ProjectMembership) -> dict:
    return {
        "userId": membership.user_id,
        "role": membership.role,
        "createdAt": membership.created_at,
    }


def _normalize_name(name: str | None) -> str:
    normalized = (name or "").strip()
    if len(normalized) < MIN_NAME_LENGTH:
        raise bad_request("name-too-short")
    return normalized


def _normalize_description(description: str | None) -> str | None:
    normalized = (description or "").strip()
    return normalized or None


async def follow_ups_for_tasks(task_ids: list[str], db: AsyncSession) -> dict[str, list]:
    if not task_ids:
        return {}
    result = await db.exec(
        select(TaskBlockedFollowUp)
        .where(col(TaskBlockedFollowUp.task_id).in_(task_ids))
        .order_by(col(TaskBlockedFollowUp.created_at).desc())
    )
    grouped: dict[str, list] = {task_id: [] for task_id in task_ids}
    for follow_up in result.all():
        grouped[follow_up.task_id].append(follow_up)
    return grouped


async def delete_tasks_with_children(task_ids: list[str], db: AsyncSession) -> list[str]:
    """Stage deletion of tasks and their rows; return storage keys to remove."""
    if not task_ids:
        return []

    storage_keys: list[str] = []
    attachments = await db.exec(
        select(TaskAttachment).where(col(TaskAttachment.task_id).in_(task_ids))
    )
    for attachment in attachments.all():
        if attachment.storage_key:
            storage_keys.append(attachment.storage_key)
        await db.delete(attachment)

    follow_ups = await db.exec(
        select(TaskBlockedFollowUp).where(col(TaskBlockedFollowUp.task_id).in_(task_ids))
    )
    for follow_up in follow_ups.all():
        await db.delete(follow_up)
    await db.flush()

    tasks = await db.exec(select(Task).where(col(Task.id).in_(task_ids)))
    for task in tasks.all():
        await db.delete(task)
    return storage_keys


async def delete_cards_with_children(card_ids: list[str], db: AsyncSession) -> list[str]:
    if not card_ids:
        return []

    storage_keys: list[str] = []
    attachments = await db.exec(
        select(ContextCardAttachment).where(col(ContextCardAttachment.card_id).in_(card_ids))
    )
    for attachment in attachments.all():
        if attachment.storage_key:
            storage_keys.append(attachment.storage_key)
        await db.delete(attachment)
    await db.flush()

    cards = await db.exec(select(ContextCard).where(col(ContextCard.id).in_(card_ids)))
    for card in cards.all():
        await db.delete(card)
    return storage_keys


class ProjectService:
    @staticmethod
    async def list_projects_with_counts(actor_user_id: str, db: AsyncSession) -> list[dict]:
        result = await db.exec(
            select(Project)
            .where(project_access_filter(actor_user_id, "viewer"))
            .order_by(col(Project.updated_at).desc())
        )
        projects = result.all()
        if not projects:
            return []

        project_ids = [project.id for project in projects]
        task_counts = await db.exec(
            select(Task.project_id, func.count())
            .where(col(Task.project_id).in_(project_ids))
            .group_by(Task.project_id)
        )
        card_counts = await db.exec(
            select(ContextCard.project_id, func.count())
            .where(col(ContextCard.project_id).in_(project_ids))
            .group_by(ContextCard.project_id)
        )
        tasks_by_project = dict(task_counts.all())
        cards_by_project = dict(card_counts.all())

        return [
            project_payload(
                project,
                tasks_by_project.get(project.id, 0),
                cards_by_project.get(project.id, 0),
            )
            for project in projects
        ]

    @staticmethod
    async def create_project(
        actor_user_id: str, name: str, description: str | None, db: AsyncSession
    ) -> dict:
        project = Project(
            name=_normalize_name(name),
            description=_normalize_description(description),
            owner_id=actor_user_id,
        )
        db.add(project)
        await db.flush()
        await AuthorizationService.ensure_project_owner_membership(project.id, actor_user_id, db)
        await db.commit()
        await db.refresh(project)

        log_server_info("createProject", "Project created", {"projectId": project.id})
        return project_payload(project)

    @staticmethod
    async def update_project(
        project_id: str, name: str, description: str | None, db: AsyncSession
    ) -> dict:
        normalized_name = _normalize_name(name)
        project = await db.get(Project, project_id)
        if not project:
            raise not_found("project-not-found")

        project.name = normalized_name
        project.description = _normalize_description(description)
        project.updated_at = get_utc_now()
        await db.commit()
        await db.refresh(project)
        return project_payload(project)

    @staticmethod
    async def delete_project(project_id: str, db: AsyncSession, storage: StorageProvider) -> None:
        project = await db.get(Project, project_id)
        if not project:
            raise not_found("project-not-found")

        task_ids = (await db.exec(select(Task.id).where(Task.project_id == project_id))).all()
        card_ids = (
            await db.exec(select(ContextCard.id).where(ContextCard.project_id == project_id))
        ).all()

        storage_keys = await delete_tasks_with_children(list(task_ids), db)
        storage_keys += await delete_cards_with_children(list(card_ids), db)

        memberships = await db.exec(
            select(ProjectMembership).where(ProjectMembership.project_id == project_id)
        )
        for membership in memberships.all():
            await db.delete(membership)
        await db.flush()

        await db.delete(project)
        await db.commit()

        await delete_stored_files_quietly(storage, storage_keys, "deleteProject.cleanup")
        log_server_info(
            "deleteProject",
            "Project deleted",
            {"projectId": project_id, "storedFiles": len(storage_keys)},
        )

    @staticmethod
    async def archive_stale_done_tasks(project_id: str, db: AsyncSession) -> int:
        """Archive Done tasks that finished more than ARCHIVE_AFTER_DAYS ago."""
        now = get_utc_now()
        threshold = now - timedelta(days=ARCHIVE_AFTER_DAYS)

        result = await db.exec(
            select(Task).where(
                Task.project_id == project_id,
                Task.status == STATUS_DONE,
                col(Task.archived_at).is_(None),
                or_(
                    col(Task.completed_at) <= threshold,
                    and_(col(Task.completed_at).is_(None), col(Task.updated_at) <= threshold),
                ),
            )
        )
        stale_tasks = result.all()
        for task in stale_tasks:
            task.archived_at = now

        if stale_tasks:
            await db.commit()
        return len(stale_tasks)

    @staticmethod
    async def get_project_dashboard(
        project_id: str, db: AsyncSession, include_archived: bool = False
    ) -> dict:
        project = await db.get(Project, project_id)
        if not project:
            raise not_found("project-not-found")

        await ProjectService.archive_stale_done_tasks(project_id, db)

        task_query = select(Task).where(Task.project_id == project_id)
        if not include_archived:
            task_query = task_query.where(col(Task.archived_at).is_(None))
        tasks = sorted(
            (await db.exec(task_query)).all(),
            key=lambda task: (task_status_index(task.status), task.position, task.created_at),
        )
        task_ids = [task.id for task in tasks]
        task_attachments = await AttachmentService.list_for_owners("task", task_ids, db)
        follow_ups = await follow_ups_for_tasks(task_ids, db)

        cards = (
            await db.exec(
                select(ContextCard)
                .where(ContextCard.project_id == project_id)
                .order_by(col(ContextCard.created_at).desc())
            )
        ).all()
        card_attachments = await AttachmentService.list_for_owners(
            "context-card", [card.id for card in cards], db
        )

        return {
            **project_payload(project, len(tasks), len(cards)),
            "tasks": [
                task_payload(task, task_attachments.get(task.id), follow_ups.get(task.id))
                for task in tasks
            ],
            "contextCards": [
                context_card_payload(card, card_attachments.get(card.id)) for card in cards
            ],
        }

    @staticmethod
    async def list_project_members(project_id: str, db: AsyncSession) -> list[dict]:
        result = await db.exec(
            select(ProjectMembership)
            .where(ProjectMembership.project_id == project_id)
            .order_by(col(ProjectMembership.created_at))
        )
        return [membership_payload(m) for m in result.all()]

    @staticmethod
    async def set_project_member(
        project_id: str, user_id: str, role: str, db: AsyncSession
    ) -> dict:
        member_id = normalize_user_id(user_id)
        if not member_id:
            raise bad_request("member-missing")
        if not is_project_role(role):
            raise bad_request("role-invalid")

        project = await db.get(Project, project_id)
        if not project:
            raise not_found("project-not-found")
        if member_id == project.owner_id and role != "owner":
            raise bad_request("owner-role-locked")

        if await db.get(User, member_id) is None:
            db.add(User(id=member_id))

        result = await db.exec(
            select(ProjectMembership).where(
                ProjectMembership.project_id == project_id,
                ProjectMembership.user_id == member_id,
            )
        )
        membership = result.first()
        if membership is None:
            membership = ProjectMembership(project_id=project_id, user_id=member_id)
            db.add(membership)
        membership.role = role

        await db.commit()
        await db.refresh(membership)
        return membership_payload(membership)

    @staticmethod
    async def remove_project_member(project_id: str, user_id: str, db: AsyncSession) -> None:
        project = await db.get(Project, project_id)
        if not project:
            raise not_found("project-not-found")
        if user_id == project.owner_id:
            raise bad_request("owner-role-locked")

        result = await db.exec(
            select(ProjectMembership).where(
                ProjectMembership.project_id == project_id,
                ProjectMembership.user_id == user_id,
            )
        )
        membership = result.first()
        if membership is None:
            raise not_found("member-not-found")

        await db.delete(membership)
        await db.commit()
