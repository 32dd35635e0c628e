from urllib.parse import urlsplit

ATTACHMENT_KIND_LINK = "link"
ATTACHMENT_KIND_FILE = "file"

ATTACHMENT_KINDS = (ATTACHMENT_KIND_LINK, ATTACHMENT_KIND_FILE)

MAX_ATTACHMENT_FILE_SIZE_BYTES = 10 * 1024 * 1024
MAX_ATTACHMENT_FILE_SIZE_LABEL = "10 MB"

DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_BYTES = 25 * 1024 * 1024
DIRECT_UPLOAD_MAX_ATTACHMENT_FILE_SIZE_LABEL = "25 MB"

DEFAULT_MIME_TYPE = "application/octet-stream"

ALLOWED_ATTACHMENT_MIME_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/json",
)

UNSUPPORTED_FILE_TYPE_ERROR = "Unsupported file type. Use PDF, image, text, CSV, or JSON."


def is_attachment_kind(value) -> bool:
    return value in ATTACHMENT_KINDS


def is_allowed_attachment_mime_type(mime_type: str | None) -> bool:
    return mime_type in ALLOWED_ATTACHMENT_MIME_TYPES


def normalize_attachment_url(raw_value: str | None) -> str | None:
    value = (raw_value or "").strip()
    if not value:
        return None

    if "://" not in value:
        value = f"https://{value}"

    try:
        parts = urlsplit(value)
    except ValueError:
        return None

    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        return None

    return value


def link_display_name(url: str) -> str:
    return urlsplit(url).hostname or url


def format_attachment_file_size(size_bytes: int | None) -> str:
    if not size_bytes or size_bytes < 0:
        return ""

    if size_bytes < 1024:
        return f"{size_bytes} B"

    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"

    return f"{size_bytes / (1024 * 1024):.1f} MB"


def attachment_preview_kind(mime_type: str | None) -> str | None:
    if mime_type == "application/pdf":
        return "pdf"
    if mime_type and mime_type.startswith("image/"):
        return "image"
    return None


def is_attachment_previewable(kind: str, mime_type: str | None) -> bool:
    return kind == ATTACHMENT_KIND_FILE and attachment_preview_kind(mime_type) is not None


def build_attachment_inline_url(url: str | None) -> str | None:
    if not url:
        return None
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}disposition=inline"
