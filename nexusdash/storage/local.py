import asyncio
import errno
import logging
import mimetypes
from pathlib import Path

from nexusdash.storage.base import (
    SavedFile,
    SignedUpload,
    StorageScope,
    StoredFileMetadata,
    UploadedFile,
    create_storage_key,
)
from nexusdash.storage.errors import (
    AttachmentStorageUnavailableError,
    InvalidStorageKeyError,
)
from nexusdash.utils.task_attachment import DEFAULT_MIME_TYPE

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRNOS = {errno.EROFS, errno.EACCES, errno.EPERM}


class LocalStorageProvider:
    """Attachment bytes on the local filesystem under a single root."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def resolve_path(self, storage_key: str) -> Path:
        normalized_key = storage_key.replace("\\", "/")
        absolute_path = (self.root / normalized_key).resolve()
        if absolute_path == self.root or self.root not in absolute_path.parents:
            raise InvalidStorageKeyError("Invalid storage key")
        return absolute_path

    def _write(self, path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            if e.errno in _UNAVAILABLE_ERRNOS:
                raise AttachmentStorageUnavailableError(
                    "Local attachment storage is not writable",
                    filesystem_code=errno.errorcode.get(e.errno),
                    filesystem_path=str(path),
                ) from e
            raise

    async def save_file(
        self, scope: StorageScope, owner_id: str, file: UploadedFile
    ) -> SavedFile:
        original_name = file.filename or "file"
        storage_key = create_storage_key(scope, owner_id, original_name)
        path = self.resolve_path(storage_key)

        await asyncio.to_thread(self._write, path, file.data)

        return SavedFile(
            storage_key=storage_key,
            mime_type=file.content_type or DEFAULT_MIME_TYPE,
            size_bytes=len(file.data),
            original_name=original_name,
        )

    async def read_file(self, storage_key: str) -> bytes:
        path = self.resolve_path(storage_key)
        return await asyncio.to_thread(path.read_bytes)

    async def delete_file(self, storage_key: str) -> None:
        path = self.resolve_path(storage_key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.debug("Attachment already gone", extra={"metadata": {"key": storage_key}})

    async def get_signed_download_url(
        self, storage_key: str, content_type: str, content_disposition: str
    ) -> str | None:
        return None

    async def create_signed_upload_url(
        self,
        scope: StorageScope,
        owner_id: str,
        original_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> SignedUpload | None:
        return None

    async def read_stored_file_metadata(self, storage_key: str) -> StoredFileMetadata | None:
        path = self.resolve_path(storage_key)
        try:
            stat = await asyncio.to_thread(path.stat)
        except FileNotFoundError:
            return None
        mime_type, _ = mimetypes.guess_type(path.name)
        return StoredFileMetadata(size_bytes=stat.st_size, mime_type=mime_type)
