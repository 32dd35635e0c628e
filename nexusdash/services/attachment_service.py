import asyncio
import math
from dataclasses import dataclass
from typing import Literal
from urllib.parse import quote

from fastapi import status
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.core.errors import ServiceError, bad_request, not_found
from nexusdash.core.observability import log_server_error
from nexusdash.models import ContextCard, ContextCardAttachment, Task, TaskAttachment
from nexusdash.services.attachment_input_service import ParsedAttachmentLink
from nexusdash.storage.base import (
    StorageProvider,
    StorageScope,
    UploadedFile,
    is_owned_storage_key,
    storage_key_prefix,
)
from nexusdash.storage.errors import is_attachment_storage_unavailable_error
from nexusdash.utils.task_attachment import (
    ATTACHMENT_KIND_FILE,
    ATTACHMENT_KIND_LINK,
    DEFAULT_MIME_TYPE,
    DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_BYTES,
    DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_LABEL,
    MAX_ATTACHMENT_FILE_SIZE_BYTES,
    MAX_ATTACHMENT_FILE_SIZE_LABEL,
    UNSUPPORTED_FILE_TYPE_ERROR,
    is_allowed_attachment_mime_type,
    is_attachment_kind,
    link_display_name,
    normalize_attachment_url,
)

Disposition = Literal["inline", "attachment"]

STORAGE_UNAVAILABLE_MESSAGE = (
    "Attachment storage is not configured for this environment. "
    "Configure STORAGE_PROVIDER=r2 and R2 credentials, then redeploy."
)


@dataclass
class AttachmentOwner:
    """The task or context card an attachment hangs off."""

    scope: StorageScope
    project_id: str
    owner_id: str

    @property
    def model(self):
        return TaskAttachment if self.scope == "task" else ContextCardAttachment

    @property
    def owner_field(self) -> str:
        return "task_id" if self.scope == "task" else "card_id"

    @property
    def storage_prefix(self) -> str:
        return storage_key_prefix(self.scope, self.owner_id)

    def new_attachment(self, **fields):
        return self.model(**{self.owner_field: self.owner_id}, **fields)

    def download_url(self, attachment_id: str) -> str:
        collection = "tasks" if self.scope == "task" else "context-cards"
        return (
            f"/api/projects/{self.project_id}/{collection}/{self.owner_id}"
            f"/attachments/{attachment_id}/download"
        )


@dataclass
class AttachmentDownload:
    mode: Literal["proxy", "redirect"]
    content_type: str | None = None
    content_disposition: str | None = None
    content: bytes | None = None
    redirect_url: str | None = None


@dataclass
class DirectUploadInput:
    name: str
    mime_type: str
    size_bytes: int


def attachment_payload(owner: AttachmentOwner, attachment) -> dict:
    return {
        "id": attachment.id,
        "kind": attachment.kind,
        "name": attachment.name,
        "url": attachment.url,
        "mimeType": attachment.mime_type,
        "sizeBytes": attachment.size_bytes,
        "downloadUrl": (
            owner.download_url(attachment.id)
            if attachment.kind == ATTACHMENT_KIND_FILE
            else None
        ),
    }


def content_disposition_header(disposition: Disposition, filename: str) -> str:
    encoded = quote(filename or "attachment", safe="")
    return f"{disposition}; filename*=UTF-8''{encoded}"


def normalize_direct_upload_input(
    name: str, mime_type: str, size_bytes
) -> DirectUploadInput:
    normalized_name = (name or "").strip() or "file"
    normalized_mime_type = (mime_type or "").strip()

    if (
        isinstance(size_bytes, bool)
        or not isinstance(size_bytes, (int, float))
        or not math.isfinite(size_bytes)
        or size_bytes <= 0
    ):
        raise bad_request("File is empty")

    if size_bytes > DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_BYTES:
        raise bad_request(f"File exceeds {DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_LABEL} limit")

    if not is_allowed_attachment_mime_type(normalized_mime_type):
        raise bad_request(UNSUPPORTED_FILE_TYPE_ERROR)

    return DirectUploadInput(
        name=normalized_name, mime_type=normalized_mime_type, size_bytes=int(size_bytes)
    )


def upload_error_message(error: Exception) -> str:
    if is_attachment_storage_unavailable_error(error):
        return STORAGE_UNAVAILABLE_MESSAGE
    return "Failed to upload attachment"


async def delete_stored_file_quietly(
    storage: StorageProvider, storage_key: str, scope: str
) -> None:
    try:
        await storage.delete_file(storage_key)
    except Exception as cleanup_error:
        log_server_error(scope, cleanup_error, {"storageKey": storage_key})


async def delete_stored_files_quietly(
    storage: StorageProvider, storage_keys: list[str], scope: str
) -> None:
    await asyncio.gather(
        *(delete_stored_file_quietly(storage, key, scope) for key in storage_keys)
    )


async def resolve_task_owner(project_id: str, task_id: str, db: AsyncSession) -> AttachmentOwner:
    task = await db.get(Task, task_id)
    if not task or task.project_id != project_id:
        raise not_found("Task not found")
    return AttachmentOwner(scope="task", project_id=project_id, owner_id=task_id)


async def resolve_context_card_owner(
    project_id: str, card_id: str, db: AsyncSession
) -> AttachmentOwner:
    card = await db.get(ContextCard, card_id)
    if not card or card.project_id != project_id:
        raise not_found("Context card not found")
    return AttachmentOwner(scope="context-card", project_id=project_id, owner_id=card_id)


class AttachmentService:
    @staticmethod
    async def list_for_owners(
        scope: StorageScope, owner_ids: list[str], db: AsyncSession
    ) -> dict[str, list]:
        """Attachments grouped by owner id, newest first."""
        if not owner_ids:
            return {}

        model = TaskAttachment if scope == "task" else ContextCardAttachment
        owner_field = "task_id" if scope == "task" else "card_id"
        owner_column = getattr(model, owner_field)
        result = await db.exec(
            select(model)
            .where(col(owner_column).in_(owner_ids))
            .order_by(col(model.created_at).desc())
        )

        grouped: dict[str, list] = {owner_id: [] for owner_id in owner_ids}
        for attachment in result.all():
            grouped[getattr(attachment, owner_field)].append(attachment)
        return grouped

    @staticmethod
    async def create_attachments_from_draft(
        owner: AttachmentOwner,
        links: list[ParsedAttachmentLink],
        files: list[UploadedFile],
        db: AsyncSession,
        storage: StorageProvider,
    ) -> None:
        saved_storage_keys: list[str] = []

        try:
            for link in links:
                db.add(
                    owner.new_attachment(
                        kind=ATTACHMENT_KIND_LINK, name=link.name, url=link.url
                    )
                )

            for file in files:
                stored = await storage.save_file(owner.scope, owner.owner_id, file)
                saved_storage_keys.append(stored.storage_key)
                db.add(
                    owner.new_attachment(
                        kind=ATTACHMENT_KIND_FILE,
                        name=stored.original_name,
                        storage_key=stored.storage_key,
                        mime_type=stored.mime_type,
                        size_bytes=stored.size_bytes,
                    )
                )

            await db.commit()
        except Exception:
            await db.rollback()
            await delete_stored_files_quietly(
                storage, saved_storage_keys, f"createAttachmentsFromDraft.{owner.scope}.cleanup"
            )
            raise

    @staticmethod
    async def create_attachment_from_form(
        owner: AttachmentOwner,
        kind: str,
        url: str | None,
        name: str | None,
        file: UploadedFile | None,
        db: AsyncSession,
        storage: StorageProvider,
    ) -> dict:
        kind = (kind or "").strip()
        provided_name = (name or "").strip()

        if not is_attachment_kind(kind):
            raise bad_request("Invalid attachment kind")

        if kind == ATTACHMENT_KIND_LINK:
            normalized_url = normalize_attachment_url(url)
            if not normalized_url:
                raise bad_request("Invalid link URL")

            try:
                attachment = owner.new_attachment(
                    kind=ATTACHMENT_KIND_LINK,
                    name=provided_name or link_display_name(normalized_url),
                    url=normalized_url,
                )
                db.add(attachment)
                await db.commit()
                await db.refresh(attachment)
            except Exception as e:
                await db.rollback()
                log_server_error(f"createAttachmentFromForm.{owner.scope}.link", e)
                raise ServiceError(
                    status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create attachment"
                ) from e

            return attachment_payload(owner, attachment)

        if file is None:
            raise bad_request("Missing file")

        if file.size <= 0:
            raise bad_request("File is empty")

        if file.size > MAX_ATTACHMENT_FILE_SIZE_BYTES:
            raise bad_request(f"File exceeds {MAX_ATTACHMENT_FILE_SIZE_LABEL} limit")

        if not is_allowed_attachment_mime_type(file.content_type):
            raise bad_request(UNSUPPORTED_FILE_TYPE_ERROR)

        storage_key: str | None = None
        try:
            stored = await storage.save_file(owner.scope, owner.owner_id, file)
            storage_key = stored.storage_key

            attachment = owner.new_attachment(
                kind=ATTACHMENT_KIND_FILE,
                name=provided_name or stored.original_name,
                storage_key=stored.storage_key,
                mime_type=stored.mime_type,
                size_bytes=stored.size_bytes,
            )
            db.add(attachment)
            await db.commit()
            await db.refresh(attachment)
        except Exception as e:
            await db.rollback()
            if storage_key:
                await delete_stored_file_quietly(
                    storage, storage_key, f"createAttachmentFromForm.{owner.scope}.cleanup"
                )
            log_server_error(f"createAttachmentFromForm.{owner.scope}.file", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, upload_error_message(e)
            ) from e

        return attachment_payload(owner, attachment)

    @staticmethod
    async def create_attachment_upload_target(
        owner: AttachmentOwner,
        name: str,
        mime_type: str,
        size_bytes,
        storage: StorageProvider,
    ) -> dict:
        upload = normalize_direct_upload_input(name, mime_type, size_bytes)

        try:
            signed = await storage.create_signed_upload_url(
                owner.scope, owner.owner_id, upload.name, upload.mime_type, upload.size_bytes
            )
        except Exception as e:
            log_server_error(f"createAttachmentUploadTarget.{owner.scope}", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, upload_error_message(e)
            ) from e

        if signed is None:
            raise bad_request("Direct upload is not available for the current storage provider.")

        return {
            "upload": {
                "storageKey": signed.storage_key,
                "uploadUrl": signed.upload_url,
                "method": signed.method,
                "headers": signed.headers,
                "expiresInSeconds": signed.expires_in_seconds,
                "maxFileSizeBytes": DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_BYTES,
                "maxFileSizeLabel": DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_LABEL,
            }
        }

    @staticmethod
    async def finalize_attachment_direct_upload(
        owner: AttachmentOwner,
        storage_key: str,
        name: str,
        mime_type: str,
        size_bytes,
        db: AsyncSession,
        storage: StorageProvider,
    ) -> dict:
        normalized_key = (storage_key or "").strip()
        if not is_owned_storage_key(normalized_key, owner.storage_prefix):
            raise bad_request("Invalid storage key")

        upload = normalize_direct_upload_input(name, mime_type, size_bytes)
        cleanup_scope = f"finalizeAttachmentDirectUpload.{owner.scope}.cleanup"

        try:
            metadata = await storage.read_stored_file_metadata(normalized_key)
            if metadata is None:
                raise not_found("Uploaded file not found")

            resolved_size = (
                metadata.size_bytes if metadata.size_bytes is not None else upload.size_bytes
            )
            resolved_mime_type = metadata.mime_type or upload.mime_type

            rejection: str | None = None
            if resolved_size <= 0:
                rejection = "File is empty"
            elif resolved_size > DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_BYTES:
                rejection = f"File exceeds {DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_LABEL} limit"
            elif not is_allowed_attachment_mime_type(resolved_mime_type):
                rejection = UNSUPPORTED_FILE_TYPE_ERROR

            if rejection:
                await delete_stored_file_quietly(storage, normalized_key, cleanup_scope)
                raise bad_request(rejection)

            attachment = owner.new_attachment(
                kind=ATTACHMENT_KIND_FILE,
                name=upload.name,
                storage_key=normalized_key,
                mime_type=resolved_mime_type,
                size_bytes=resolved_size,
            )
            db.add(attachment)
            await db.commit()
            await db.refresh(attachment)
        except ServiceError:
            raise
        except Exception as e:
            await db.rollback()
            await delete_stored_file_quietly(storage, normalized_key, cleanup_scope)
            log_server_error(f"finalizeAttachmentDirectUpload.{owner.scope}", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to upload attachment"
            ) from e

        return attachment_payload(owner, attachment)

    @staticmethod
    async def cleanup_direct_upload_object(
        owner: AttachmentOwner,
        storage_key: str,
        db: AsyncSession,
        storage: StorageProvider,
    ) -> dict:
        """Remove an uploaded object the client failed to finalize."""
        normalized_key = (storage_key or "").strip()
        if not is_owned_storage_key(normalized_key, owner.storage_prefix):
            raise bad_request("Invalid storage key")

        result = await db.exec(
            select(owner.model.id).where(owner.model.storage_key == normalized_key)
        )
        if result.first() is not None:
            return {"ok": True, "deleted": False}

        try:
            await storage.delete_file(normalized_key)
        except Exception as e:
            log_server_error(f"cleanupDirectUploadObject.{owner.scope}", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to clean up upload"
            ) from e

        return {"ok": True, "deleted": True}

    @staticmethod
    async def _get_owned_attachment(owner: AttachmentOwner, attachment_id: str, db: AsyncSession):
        attachment = await db.get(owner.model, attachment_id)
        if attachment is None or getattr(attachment, owner.owner_field) != owner.owner_id:
            return None
        return attachment

    @staticmethod
    async def delete_attachment(
        owner: AttachmentOwner,
        attachment_id: str,
        db: AsyncSession,
        storage: StorageProvider,
    ) -> dict:
        attachment = await AttachmentService._get_owned_attachment(owner, attachment_id, db)
        if attachment is None:
            raise not_found("Attachment not found")

        kind, storage_key = attachment.kind, attachment.storage_key
        try:
            await db.delete(attachment)
            await db.commit()
        except Exception as e:
            await db.rollback()
            log_server_error(f"deleteAttachment.{owner.scope}", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to delete attachment"
            ) from e

        if kind == ATTACHMENT_KIND_FILE and storage_key:
            await delete_stored_file_quietly(
                storage, storage_key, f"deleteAttachment.{owner.scope}.cleanup"
            )

        return {"ok": True}

    @staticmethod
    async def get_attachment_download(
        owner: AttachmentOwner,
        attachment_id: str,
        disposition: Disposition,
        db: AsyncSession,
        storage: StorageProvider,
    ) -> AttachmentDownload:
        attachment = await AttachmentService._get_owned_attachment(owner, attachment_id, db)
        if (
            attachment is None
            or attachment.kind != ATTACHMENT_KIND_FILE
            or not attachment.storage_key
        ):
            raise not_found("File attachment not found")

        content_type = attachment.mime_type or DEFAULT_MIME_TYPE
        content_disposition = content_disposition_header(disposition, attachment.name)

        try:
            signed_url = await storage.get_signed_download_url(
                attachment.storage_key, content_type, content_disposition
            )
            if signed_url:
                return AttachmentDownload(mode="redirect", redirect_url=signed_url)

            content = await storage.read_file(attachment.storage_key)
        except Exception as e:
            log_server_error(f"getAttachmentDownload.{owner.scope}", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to read attachment"
            ) from e

        return AttachmentDownload(
            mode="proxy",
            content=content,
            content_type=content_type,
            content_disposition=content_disposition,
        )
