from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RequestModel(BaseModel):
    """JSON request bodies; fields arrive in camelCase."""

    model_config = ConfigDict(populate_by_name=True)


class ProjectWrite(RequestModel):
    name: str = ""
    description: str | None = None


class ProjectMemberWrite(RequestModel):
    role: str


class TaskUpdateRequest(RequestModel):
    title: str = ""
    label: str | None = None
    labels: list[str] | None = None
    description: str | None = None
    blocked_note: str | None = Field(default=None, alias="blockedNote")
    blocked_follow_up_entry: str | None = Field(default=None, alias="blockedFollowUpEntry")


class ContextCardUpdateRequest(RequestModel):
    title: str = ""
    content: str = ""
    color: str = ""


class UploadTargetRequest(RequestModel):
    name: str = ""
    mime_type: str = Field(default="", alias="mimeType")
    # Left untyped so a non-numeric size is reported as an empty file
    size_bytes: Any = Field(default=None, alias="sizeBytes")


class FinalizeUploadRequest(UploadTargetRequest):
    storage_key: str = Field(default="", alias="storageKey")


class CleanupUploadRequest(RequestModel):
    storage_key: str = Field(default="", alias="storageKey")
