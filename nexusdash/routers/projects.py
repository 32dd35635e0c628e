from fastapi import APIRouter, Query, status

from nexusdash.dependencies import (
    ActorDep,
    DbDep,
    ProjectEditorDep,
    ProjectOwnerDep,
    ProjectViewerDep,
)
from nexusdash.schemas import ProjectMemberWrite, ProjectWrite
from nexusdash.services.project_service import ProjectService
from nexusdash.storage.provider import StorageDep

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("")
async def list_projects(actor_user_id: ActorDep, db: DbDep):
    return {"projects": await ProjectService.list_projects_with_counts(actor_user_id, db)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(project_data: ProjectWrite, actor_user_id: ActorDep, db: DbDep):
    project = await ProjectService.create_project(
        actor_user_id, project_data.name, project_data.description, db
    )
    return {"project": project}


@router.get("/{project_id}")
async def get_project(
    project_id: ProjectViewerDep,
    db: DbDep,
    include_archived: bool = Query(default=False, alias="includeArchived"),
):
    """Project dashboard: board tasks and context cards."""
    return {
        "project": await ProjectService.get_project_dashboard(project_id, db, include_archived)
    }


@router.patch("/{project_id}")
async def update_project(project_id: ProjectEditorDep, project_data: ProjectWrite, db: DbDep):
    project = await ProjectService.update_project(
        project_id, project_data.name, project_data.description, db
    )
    return {"project": project}


@router.delete("/{project_id}")
async def delete_project(project_id: ProjectOwnerDep, db: DbDep, storage: StorageDep):
    await ProjectService.delete_project(project_id, db, storage)
    return {"ok": True}


@router.get("/{project_id}/members")
async def list_members(project_id: ProjectViewerDep, db: DbDep):
    return {"members": await ProjectService.list_project_members(project_id, db)}


@router.put("/{project_id}/members/{user_id}")
async def set_member(
    project_id: ProjectOwnerDep, user_id: str, member_data: ProjectMemberWrite, db: DbDep
):
    member = await ProjectService.set_project_member(project_id, user_id, member_data.role, db)
    return {"member": member}


@router.delete("/{project_id}/members/{user_id}")
async def remove_member(project_id: ProjectOwnerDep, user_id: str, db: DbDep):
    await ProjectService.remove_project_member(project_id, user_id, db)
    return {"ok": True}
