from fastapi import Depends, Request, UploadFile
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from nexusdash.database import get_db
from nexusdash.services.actor_service import ACTOR_HEADER, ActorService
from nexusdash.services.authorization_service import AuthorizationService, ProjectAccessRole
from nexusdash.storage.base import UploadedFile
from nexusdash.utils.task_attachment import DEFAULT_MIME_TYPE

DbDep = Annotated[AsyncSession, Depends(get_db)]


async def get_actor_user_id(request: Request, db: DbDep) -> str:
    return await ActorService.resolve_actor_user_id(db, request.headers.get(ACTOR_HEADER))


ActorDep = Annotated[str, Depends(get_actor_user_id)]


def require_project_role(minimum_role: ProjectAccessRole):
    """Dependency guarding every route under /projects/{project_id}."""

    async def dependency(project_id: str, actor_user_id: ActorDep, db: DbDep) -> str:
        await AuthorizationService.require_project_access(
            project_id, actor_user_id, minimum_role, db
        )
        return project_id

    return dependency


ProjectViewerDep = Annotated[str, Depends(require_project_role("viewer"))]
ProjectEditorDep = Annotated[str, Depends(require_project_role("editor"))]
ProjectOwnerDep = Annotated[str, Depends(require_project_role("owner"))]


async def read_upload(upload: UploadFile) -> UploadedFile:
    data = await upload.read()
    return UploadedFile(
        filename=upload.filename or "file",
        content_type=upload.content_type or DEFAULT_MIME_TYPE,
        data=data,
    )


async def read_uploads(uploads: list[UploadFile] | None) -> list[UploadedFile]:
    """Read draft files, skipping empty entries browsers send for blank inputs."""
    files = [await read_upload(upload) for upload in uploads or []]
    return [file for file in files if file.size > 0]
