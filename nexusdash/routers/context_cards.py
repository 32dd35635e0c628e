from fastapi import APIRouter, File, Form, UploadFile, status

from nexusdash.dependencies import DbDep, ProjectEditorDep, read_uploads
from nexusdash.schemas import ContextCardUpdateRequest
from nexusdash.services.context_card_service import ContextCardService
from nexusdash.storage.provider import StorageDep

router = APIRouter(prefix="/api/projects/{project_id}/context-cards", tags=["context-cards"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_context_card(
    project_id: ProjectEditorDep,
    db: DbDep,
    storage: StorageDep,
    title: str = Form(default=""),
    content: str = Form(default=""),
    color: str = Form(default=""),
    attachment_links: str = Form(default="", alias="attachmentLinks"),
    attachment_files: list[UploadFile] | None = File(default=None, alias="attachmentFiles"),
):
    card_id = await ContextCardService.create_context_card_for_project(
        project_id,
        title,
        content,
        color,
        attachment_links,
        await read_uploads(attachment_files),
        db,
        storage,
    )
    return {"cardId": card_id}


@router.patch("/{card_id}")
async def update_context_card(
    project_id: ProjectEditorDep, card_id: str, card_data: ContextCardUpdateRequest, db: DbDep
):
    card = await ContextCardService.update_context_card_for_project(
        project_id, card_id, card_data.title, card_data.content, card_data.color, db
    )
    return {"card": card}


@router.delete("/{card_id}")
async def delete_context_card(
    project_id: ProjectEditorDep, card_id: str, db: DbDep, storage: StorageDep
):
    await ContextCardService.delete_context_card_for_project(project_id, card_id, db, storage)
    return {"ok": True}
