from typing import Awaitable, Callable, Literal

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import RedirectResponse
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from nexusdash.dependencies import DbDep, ProjectEditorDep, ProjectViewerDep, read_upload
from nexusdash.schemas import CleanupUploadRequest, FinalizeUploadRequest, UploadTargetRequest
from nexusdash.services.attachment_service import (
    AttachmentOwner,
    AttachmentService,
    resolve_context_card_owner,
    resolve_task_owner,
)
from nexusdash.storage.provider import StorageDep

DOWNLOAD_CACHE_CONTROL = "private, max-age=60"

OwnerResolver = Callable[[str, str, AsyncSession], Awaitable[AttachmentOwner]]


def build_attachment_router(collection: str, resolve_owner: OwnerResolver):
    """Attachment routes shared by tasks and context cards."""
    router = APIRouter(
        prefix=f"/api/projects/{{project_id}}/{collection}/{{owner_id}}/attachments",
        tags=["attachments"],
    )

    def owner_dependency(project_dep):
        async def dependency(project_id: project_dep, db: DbDep, owner_id: str) -> AttachmentOwner:
            return await resolve_owner(project_id, owner_id, db)

        return dependency

    ReadOwnerDep = Annotated[AttachmentOwner, Depends(owner_dependency(ProjectViewerDep))]
    WriteOwnerDep = Annotated[AttachmentOwner, Depends(owner_dependency(ProjectEditorDep))]

    @router.post("")
    async def create_attachment(
        owner: WriteOwnerDep,
        db: DbDep,
        storage: StorageDep,
        kind: str = Form(default=""),
        url: str | None = Form(default=None),
        name: str | None = Form(default=None),
        file: UploadFile | None = File(default=None),
    ):
        uploaded = await read_upload(file) if file is not None else None
        attachment = await AttachmentService.create_attachment_from_form(
            owner, kind, url, name, uploaded, db, storage
        )
        return {"attachment": attachment}

    @router.post("/upload-url")
    async def create_upload_target(
        owner: WriteOwnerDep, upload_data: UploadTargetRequest, storage: StorageDep
    ):
        return await AttachmentService.create_attachment_upload_target(
            owner, upload_data.name, upload_data.mime_type, upload_data.size_bytes, storage
        )

    @router.post("/direct")
    async def finalize_direct_upload(
        owner: WriteOwnerDep, upload_data: FinalizeUploadRequest, db: DbDep, storage: StorageDep
    ):
        attachment = await AttachmentService.finalize_attachment_direct_upload(
            owner,
            upload_data.storage_key,
            upload_data.name,
            upload_data.mime_type,
            upload_data.size_bytes,
            db,
            storage,
        )
        return {"attachment": attachment}

    @router.post("/direct/cleanup")
    async def cleanup_direct_upload(
        owner: WriteOwnerDep, cleanup_data: CleanupUploadRequest, db: DbDep, storage: StorageDep
    ):
        return await AttachmentService.cleanup_direct_upload_object(
            owner, cleanup_data.storage_key, db, storage
        )

    @router.delete("/{attachment_id}")
    async def delete_attachment(
        owner: WriteOwnerDep, attachment_id: str, db: DbDep, storage: StorageDep
    ):
        return await AttachmentService.delete_attachment(owner, attachment_id, db, storage)

    @router.get("/{attachment_id}/download")
    async def download_attachment(
        owner: ReadOwnerDep,
        attachment_id: str,
        db: DbDep,
        storage: StorageDep,
        disposition: Literal["inline", "attachment"] = Query(default="attachment"),
    ):
        download = await AttachmentService.get_attachment_download(
            owner, attachment_id, disposition, db, storage
        )
        if download.mode == "redirect":
            return RedirectResponse(download.redirect_url, status_code=307)

        return Response(
            content=download.content,
            media_type=download.content_type,
            headers={
                "Content-Disposition": download.content_disposition,
                "Cache-Control": DOWNLOAD_CACHE_CONTROL,
            },
        )

    return router


task_attachments = build_attachment_router("tasks", resolve_task_owner)
context_card_attachments = build_attachment_router("context-cards", resolve_context_card_owner)
