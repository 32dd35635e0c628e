from fastapi import status
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.core.errors import ServiceError, bad_request, not_found
from nexusdash.core.observability import log_server_error, log_server_info
from nexusdash.models import ContextCard, Project, get_utc_now
from nexusdash.services.attachment_input_service import (
    parse_attachment_links_json,
    validate_attachment_files,
)
from nexusdash.services.attachment_service import (
    AttachmentOwner,
    AttachmentService,
    delete_stored_files_quietly,
)
from nexusdash.services.project_service import context_card_payload, delete_cards_with_children
from nexusdash.storage.base import StorageProvider, UploadedFile
from nexusdash.utils.context_card_colors import DEFAULT_CONTEXT_CARD_COLOR, is_context_card_color

MIN_TITLE_LENGTH = 2
MAX_CONTEXT_TITLE_LENGTH = 120
MAX_CONTEXT_CONTENT_LENGTH = 4000


def _normalize_text(value) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def resolve_context_color(value: str) -> str | None:
    if not value:
        return DEFAULT_CONTEXT_CARD_COLOR
    if not is_context_card_color(value):
        return None
    return value


def validate_context_card_fields(title, content, color) -> tuple[str, str, str]:
    """Return the normalized (title, content, color) or raise a 400."""
    normalized_title = _normalize_text(title)
    normalized_content = _normalize_text(content)
    resolved_color = resolve_context_color(_normalize_text(color))

    if len(normalized_title) < MIN_TITLE_LENGTH:
        raise bad_request("context-title-too-short")
    if len(normalized_title) > MAX_CONTEXT_TITLE_LENGTH:
        raise bad_request("context-title-too-long")
    if len(normalized_content) > MAX_CONTEXT_CONTENT_LENGTH:
        raise bad_request("context-content-too-long")
    if not resolved_color:
        raise bad_request("context-color-invalid")

    return normalized_title, normalized_content, resolved_color


async def _get_project_card(project_id: str, card_id: str, db: AsyncSession) -> ContextCard:
    card = await db.get(ContextCard, card_id)
    if card is None or card.project_id != project_id:
        raise not_found("context-card-not-found")
    return card


class ContextCardService:
    @staticmethod
    async def create_context_card_for_project(
        project_id: str,
        title: str,
        content: str,
        color: str,
        attachment_links_json_raw: str,
        attachment_files: list[UploadedFile],
        db: AsyncSession,
        storage: StorageProvider,
    ) -> str:
        normalized_title, normalized_content, resolved_color = validate_context_card_fields(
            title, content, color
        )

        links, link_error = parse_attachment_links_json(attachment_links_json_raw)
        if link_error:
            raise bad_request(link_error)

        file_error = validate_attachment_files(attachment_files)
        if file_error:
            raise bad_request(file_error)

        if await db.get(Project, project_id) is None:
            raise not_found("project-not-found")

        created_card_id: str | None = None
        try:
            card = ContextCard(
                project_id=project_id,
                title=normalized_title,
                content=normalized_content,
                color=resolved_color,
            )
            db.add(card)
            await db.commit()
            created_card_id = card.id

            owner = AttachmentOwner(scope="context-card", project_id=project_id, owner_id=card.id)
            await AttachmentService.create_attachments_from_draft(
                owner, links, attachment_files, db, storage
            )
        except Exception as e:
            await db.rollback()
            if created_card_id:
                try:
                    await delete_cards_with_children([created_card_id], db)
                    await db.commit()
                except Exception as cleanup_error:
                    await db.rollback()
                    log_server_error("createContextCardForProject.cleanup", cleanup_error)
            log_server_error("createContextCardForProject", e, {"projectId": project_id})
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "context-create-failed"
            ) from e

        log_server_info(
            "createContextCardForProject",
            "Context card created",
            {"projectId": project_id, "cardId": created_card_id},
        )
        return created_card_id

    @staticmethod
    async def update_context_card_for_project(
        project_id: str,
        card_id: str,
        title: str,
        content: str,
        color: str,
        db: AsyncSession,
    ) -> dict:
        normalized_card_id = _normalize_text(card_id)
        if not normalized_card_id:
            raise bad_request("context-card-missing")

        normalized_title, normalized_content, resolved_color = validate_context_card_fields(
            title, content, color
        )
        card = await _get_project_card(project_id, normalized_card_id, db)

        try:
            card.title = normalized_title
            card.content = normalized_content
            card.color = resolved_color
            card.updated_at = get_utc_now()
            await db.commit()
            await db.refresh(card)
        except Exception as e:
            await db.rollback()
            log_server_error("updateContextCardForProject", e, {"cardId": normalized_card_id})
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "context-update-failed"
            ) from e

        return context_card_payload(card)

    @staticmethod
    async def delete_context_card_for_project(
        project_id: str, card_id: str, db: AsyncSession, storage: StorageProvider
    ) -> None:
        normalized_card_id = _normalize_text(card_id)
        if not normalized_card_id:
            raise bad_request("context-card-missing")

        await _get_project_card(project_id, normalized_card_id, db)

        try:
            storage_keys = await delete_cards_with_children([normalized_card_id], db)
            await db.commit()
        except Exception as e:
            await db.rollback()
            log_server_error("deleteContextCardForProject", e, {"cardId": normalized_card_id})
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "context-delete-failed"
            ) from e

        await delete_stored_files_quietly(
            storage, storage_keys, "deleteContextCardForProject.cleanup"
        )
