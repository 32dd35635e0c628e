import html
import re

import bleach

ALLOWED_TAGS = [
    "p",
    "h1",
    "h2",
    "br",
    "strong",
    "b",
    "em",
    "i",
    "u",
    "s",
    "ul",
    "ol",
    "li",
    "blockquote",
    "a",
]

ALLOWED_ATTRIBUTES = {"a": ["href", "target", "rel"]}

ALLOWED_PROTOCOLS = ["http", "https", "mailto"]

_WHITESPACE = re.compile(r"\s+")

# bleach keeps the text of stripped tags; these never carry visible text
_NON_TEXT_BLOCKS = re.compile(
    r"<(script|style|textarea|option|noscript)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)


def _strip_all_tags(value: str) -> str:
    text = bleach.clean(value, tags=[], attributes={}, strip=True)
    return html.unescape(text).replace("\u00a0", " ")


def sanitize_rich_text(value: str | None) -> str | None:
    """Return allow-listed HTML, or None when nothing visible remains."""
    if not value:
        return None

    sanitized = bleach.clean(
        _NON_TEXT_BLOCKS.sub("", value),
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    ).strip()

    if not sanitized:
        return None

    if not _strip_all_tags(sanitized).strip():
        return None

    return sanitized


def rich_text_to_plain_text(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", _strip_all_tags(_NON_TEXT_BLOCKS.sub("", value))).strip()
