import json
from dataclasses import dataclass

from nexusdash.storage.base import UploadedFile
from nexusdash.utils.task_attachment import (
    MAX_ATTACHMENT_FILE_SIZE_BYTES,
    is_allowed_attachment_mime_type,
    link_display_name,
    normalize_attachment_url,
)

ATTACHMENT_LINK_INVALID = "attachment-link-invalid"
ATTACHMENT_FILE_TOO_LARGE = "attachment-file-too-large"
ATTACHMENT_FILE_TYPE_INVALID = "attachment-file-type-invalid"


@dataclass
class ParsedAttachmentLink:
    name: str
    url: str


def parse_attachment_links_json(raw_value: str | None) -> tuple[list[ParsedAttachmentLink], str | None]:
    """Parse the draft link list sent along with a new task or card."""
    if not raw_value:
        return [], None

    try:
        payload = json.loads(raw_value)
    except ValueError:
        return [], ATTACHMENT_LINK_INVALID

    if not isinstance(payload, list):
        return [], ATTACHMENT_LINK_INVALID

    links: list[ParsedAttachmentLink] = []
    for item in payload:
        if not isinstance(item, dict):
            return [], ATTACHMENT_LINK_INVALID

        raw_url = item.get("url")
        normalized_url = normalize_attachment_url(raw_url if isinstance(raw_url, str) else "")
        if not normalized_url:
            return [], ATTACHMENT_LINK_INVALID

        raw_name = item.get("name")
        name = raw_name.strip() if isinstance(raw_name, str) else ""
        links.append(ParsedAttachmentLink(name=name or link_display_name(normalized_url), url=normalized_url))

    return links, None


def validate_attachment_files(files: list[UploadedFile]) -> str | None:
    for file in files:
        if file.size > MAX_ATTACHMENT_FILE_SIZE_BYTES:
            return ATTACHMENT_FILE_TOO_LARGE

        if not is_allowed_attachment_mime_type(file.content_type):
            return ATTACHMENT_FILE_TYPE_INVALID

    return None
