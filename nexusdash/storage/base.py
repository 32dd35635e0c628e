import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Literal, Protocol

StorageScope = Literal["task", "context-card"]

MAX_SAFE_FILENAME_LENGTH = 120

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_UNDERSCORE_RUNS = re.compile(r"_+")


@dataclass
class UploadedFile:
    """File bytes received by the server."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class SavedFile:
    storage_key: str
    mime_type: str
    size_bytes: int
    original_name: str


@dataclass
class SignedUpload:
    storage_key: str
    upload_url: str
    expires_in_seconds: int
    method: str = "PUT"
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class StoredFileMetadata:
    size_bytes: int | None
    mime_type: str | None


def sanitize_filename(filename: str) -> str:
    normalized = _UNSAFE_CHARS.sub("_", filename)
    compact = _UNDERSCORE_RUNS.sub("_", normalized).strip("_")
    if not compact:
        return "file"
    return compact[:MAX_SAFE_FILENAME_LENGTH]


def create_storage_key(scope: str, owner_id: str, original_name: str) -> str:
    safe_name = sanitize_filename(original_name or "file")
    unique_prefix = f"{time.time_ns()}-{uuid.uuid4().hex[:8]}"
    return f"{scope}/{owner_id}/{unique_prefix}-{safe_name}"


def storage_key_prefix(scope: str, owner_id: str) -> str:
    return f"{scope}/{owner_id}/"


def is_owned_storage_key(storage_key: str, prefix: str) -> bool:
    """True when the key sits under prefix with no relative or empty segments."""
    if "\\" in storage_key or not storage_key.startswith(prefix):
        return False
    return all(segment not in ("", ".", "..") for segment in storage_key.split("/"))



class StorageProvider(Protocol):
    async def save_file(
        self, scope: StorageScope, owner_id: str, file: UploadedFile
    ) -> SavedFile: ...

    async def read_file(self, storage_key: str) -> bytes: ...

    async def delete_file(self, storage_key: str) -> None: ...

    async def get_signed_download_url(
        self, storage_key: str, content_type: str, content_disposition: str
    ) -> str | None: ...

    async def create_signed_upload_url(
        self,
        scope: StorageScope,
        owner_id: str,
        original_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> SignedUpload | None: ...

    async def read_stored_file_metadata(
        self, storage_key: str
    ) -> StoredFileMetadata | None: ...
