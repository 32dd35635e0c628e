from typing import Any

from fastapi import APIRouter, Body, File, Form, UploadFile, status

from nexusdash.dependencies import DbDep, ProjectEditorDep, read_uploads
from nexusdash.schemas import TaskUpdateRequest
from nexusdash.services.task_service import TaskService, TaskUpdate
from nexusdash.storage.provider import StorageDep

router = APIRouter(prefix="/api/projects/{project_id}/tasks", tags=["tasks"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(
    project_id: ProjectEditorDep,
    db: DbDep,
    storage: StorageDep,
    title: str = Form(default=""),
    description: str = Form(default=""),
    labels: str = Form(default=""),
    attachment_links: str = Form(default="", alias="attachmentLinks"),
    attachment_files: list[UploadFile] | None = File(default=None, alias="attachmentFiles"),
):
    """Create a Backlog task from the new-task form"""
    task_id = await TaskService.create_task_for_project(
        project_id,
        title,
        description,
        labels,
        attachment_links,
        await read_uploads(attachment_files),
        db,
        storage,
    )
    return {"taskId": task_id}


@router.post("/reorder")
async def reorder_tasks(project_id: ProjectEditorDep, db: DbDep, payload: Any = Body(default=None)):
    await TaskService.reorder_project_tasks(project_id, payload, db)
    return {"ok": True}


@router.patch("/{task_id}")
async def update_task(
    project_id: ProjectEditorDep, task_id: str, task_data: TaskUpdateRequest, db: DbDep
):
    update = TaskUpdate(**task_data.model_dump())
    task = await TaskService.update_task_for_project(project_id, task_id, update, db)
    return {"task": task}


@router.delete("/{task_id}")
async def delete_task(project_id: ProjectEditorDep, task_id: str, db: DbDep, storage: StorageDep):
    await TaskService.delete_task_for_project(project_id, task_id, db, storage)
    return {"ok": True}
