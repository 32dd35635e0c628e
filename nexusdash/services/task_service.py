from dataclasses import dataclass

from fastapi import status
from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.core.errors import ServiceError, bad_request, not_found
from nexusdash.core.observability import log_server_error, log_server_info
from nexusdash.models import Project, Task, TaskBlockedFollowUp, get_utc_now
from nexusdash.services.attachment_input_service import (
    parse_attachment_links_json,
    validate_attachment_files,
)
from nexusdash.services.attachment_service import (
    AttachmentOwner,
    AttachmentService,
    delete_stored_files_quietly,
)
from nexusdash.services.project_service import (
    delete_tasks_with_children,
    follow_ups_for_tasks,
    task_payload,
)
from nexusdash.storage.base import StorageProvider, UploadedFile
from nexusdash.utils.rich_text import sanitize_rich_text
from nexusdash.utils.task_label import normalize_task_labels, parse_task_labels_json, serialize_task_labels
from nexusdash.utils.task_status import (
    STATUS_BACKLOG,
    STATUS_BLOCKED,
    STATUS_DONE,
    TASK_STATUSES,
    is_task_status,
)

MIN_TITLE_LENGTH = 2


@dataclass
class ReorderColumn:
    status: str
    task_ids: list[str]


@dataclass
class TaskUpdate:
    title: str
    label: str | None = None
    labels: list[str] | None = None
    description: str | None = None
    blocked_note: str | None = None
    blocked_follow_up_entry: str | None = None


def _normalize_text(value) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def is_valid_reorder_payload(payload) -> bool:
    """Columns must carry a known status and unique, non-empty task ids."""
    if not isinstance(payload, dict):
        return False

    columns = payload.get("columns")
    if not isinstance(columns, list):
        return False

    seen_task_ids: set[str] = set()
    for column in columns:
        if not isinstance(column, dict):
            return False
        if not is_task_status(column.get("status")):
            return False

        task_ids = column.get("taskIds")
        if not isinstance(task_ids, list):
            return False

        for task_id in task_ids:
            if not isinstance(task_id, str) or not task_id:
                return False
            if task_id in seen_task_ids:
                return False
            seen_task_ids.add(task_id)

    return True


def normalize_reorder_columns(payload: dict) -> list[ReorderColumn]:
    by_status = {column["status"]: column["taskIds"] for column in payload["columns"]}
    return [ReorderColumn(status=s, task_ids=list(by_status.get(s, []))) for s in TASK_STATUSES]


class TaskService:
    @staticmethod
    async def create_task_for_project(
        project_id: str,
        title: str,
        description: str,
        labels_json_raw: str,
        attachment_links_json_raw: str,
        attachment_files: list[UploadedFile],
        db: AsyncSession,
        storage: StorageProvider,
    ) -> str:
        normalized_title = _normalize_text(title)
        if len(normalized_title) < MIN_TITLE_LENGTH:
            raise bad_request("title-too-short")

        links, link_error = parse_attachment_links_json(attachment_links_json_raw)
        if link_error:
            raise bad_request(link_error)

        file_error = validate_attachment_files(attachment_files)
        if file_error:
            raise bad_request(file_error)

        labels = parse_task_labels_json(labels_json_raw)
        sanitized_description = sanitize_rich_text(_normalize_text(description))

        if await db.get(Project, project_id) is None:
            raise not_found("project-not-found")

        created_task_id: str | None = None
        try:
            result = await db.exec(
                select(func.max(Task.position)).where(
                    Task.project_id == project_id, Task.status == STATUS_BACKLOG
                )
            )
            max_position = result.first()
            next_position = 0 if max_position is None else max_position + 1

            task = Task(
                project_id=project_id,
                title=normalized_title,
                description=sanitized_description,
                label=labels[0] if labels else None,
                labels_json=serialize_task_labels(labels),
                status=STATUS_BACKLOG,
                position=next_position,
            )
            db.add(task)
            await db.commit()
            created_task_id = task.id

            owner = AttachmentOwner(scope="task", project_id=project_id, owner_id=task.id)
            await AttachmentService.create_attachments_from_draft(
                owner, links, attachment_files, db, storage
            )
        except Exception as e:
            await db.rollback()
            if created_task_id:
                try:
                    await delete_tasks_with_children([created_task_id], db)
                    await db.commit()
                except Exception as cleanup_error:
                    await db.rollback()
                    log_server_error("createTaskForProject.cleanup", cleanup_error)
            log_server_error("createTaskForProject", e, {"projectId": project_id})
            raise ServiceError(status.HTTP_500_INTERNAL_SERVER_ERROR, "create-failed") from e

        log_server_info(
            "createTaskForProject", "Task created", {"projectId": project_id, "taskId": created_task_id}
        )
        return created_task_id

    @staticmethod
    async def reorder_project_tasks(project_id: str, payload: dict, db: AsyncSession) -> None:
        if not is_valid_reorder_payload(payload):
            raise bad_request("invalid-payload")

        columns = normalize_reorder_columns(payload)
        task_ids = [task_id for column in columns for task_id in column.task_ids]
        if not task_ids:
            return

        try:
            result = await db.exec(
                select(Task).where(Task.project_id == project_id, col(Task.id).in_(task_ids))
            )
            tasks_by_id = {task.id: task for task in result.all()}
            if len(tasks_by_id) != len(task_ids):
                raise bad_request("One or more tasks do not belong to this project")

            now = get_utc_now()
            for column in columns:
                for index, task_id in enumerate(column.task_ids):
                    task = tasks_by_id[task_id]
                    if column.status == STATUS_DONE:
                        if task.status != STATUS_DONE or task.completed_at is None:
                            task.completed_at = now
                    else:
                        task.completed_at = None
                    task.status = column.status
                    task.position = index
                    task.archived_at = None
                    task.updated_at = now
            await db.commit()
        except ServiceError:
            raise
        except Exception as e:
            await db.rollback()
            log_server_error("reorderProjectTasks", e, {"projectId": project_id})
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to persist task order"
            ) from e

    @staticmethod
    async def update_task_for_project(
        project_id: str, task_id: str, update: TaskUpdate, db: AsyncSession
    ) -> dict:
        normalized_title = _normalize_text(update.title)
        raw_labels = update.labels if update.labels else [_normalize_text(update.label)]
        labels = normalize_task_labels([entry for entry in raw_labels if isinstance(entry, str)])
        description = sanitize_rich_text(_normalize_text(update.description))
        follow_up_entry = _normalize_text(update.blocked_follow_up_entry)

        if len(normalized_title) < MIN_TITLE_LENGTH:
            raise bad_request("Task title must be at least 2 characters")

        task = await db.get(Task, task_id)
        if task is None or task.project_id != project_id:
            raise not_found("Task not found")

        try:
            task.title = normalized_title
            task.label = labels[0] if labels else None
            task.labels_json = serialize_task_labels(labels)
            task.description = description
            if update.blocked_note is not None:
                task.blocked_note = _normalize_text(update.blocked_note) or None
            task.updated_at = get_utc_now()

            if follow_up_entry and task.status == STATUS_BLOCKED:
                db.add(TaskBlockedFollowUp(task_id=task_id, content=follow_up_entry))

            await db.commit()
            await db.refresh(task)
        except Exception as e:
            await db.rollback()
            log_server_error("updateTaskForProject", e, {"taskId": task_id})
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update task"
            ) from e

        follow_ups = await follow_ups_for_tasks([task_id], db)
        return task_payload(task, follow_ups=follow_ups[task_id])

    @staticmethod
    async def delete_task_for_project(
        project_id: str, task_id: str, db: AsyncSession, storage: StorageProvider
    ) -> None:
        task = await db.get(Task, task_id)
        if task is None or task.project_id != project_id:
            raise not_found("Task not found")

        try:
            storage_keys = await delete_tasks_with_children([task_id], db)
            await db.commit()
        except Exception as e:
            await db.rollback()
            log_server_error("deleteTaskForProject", e, {"taskId": task_id})
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to delete task"
            ) from e

        await delete_stored_files_quietly(storage, storage_keys, "deleteTaskForProject.cleanup")
