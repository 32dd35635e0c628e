import json
import re

from nexusdash.utils.context_card_colors import CONTEXT_CARD_COLORS, seed_hash

MAX_TASK_LABELS = 8
MAX_TASK_LABEL_LENGTH = 40

_WHITESPACE = re.compile(r"\s+")


def normalize_task_label(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()[:MAX_TASK_LABEL_LENGTH]


def normalize_task_labels(values) -> list[str]:
    """Trim, drop empties, dedupe case-insensitively and cap the list."""
    labels: list[str] = []
    seen: set[str] = set()

    for value in values:
        label = normalize_task_label(value)
        if not label:
            continue

        dedupe_key = label.lower()
        if dedupe_key in seen:
            continue

        seen.add(dedupe_key)
        labels.append(label)

        if len(labels) >= MAX_TASK_LABELS:
            break

    return labels


def parse_task_labels_json(raw_value: str | None) -> list[str]:
    if not raw_value:
        return []

    try:
        parsed = json.loads(raw_value)
    except (TypeError, ValueError):
        return []

    if not isinstance(parsed, list):
        return []

    return normalize_task_labels(entry for entry in parsed if isinstance(entry, str))


def serialize_task_labels(labels) -> str | None:
    normalized = normalize_task_labels(labels)
    if not normalized:
        return None
    return json.dumps(normalized, ensure_ascii=False)


def task_labels_from_storage(labels_json: str | None, legacy_label: str | None) -> list[str]:
    labels = parse_task_labels_json(labels_json or "")
    if labels:
        return labels

    if not legacy_label:
        return []

    return normalize_task_labels([legacy_label])


def task_label_color(label: str) -> str:
    return CONTEXT_CARD_COLORS[seed_hash(label) % len(CONTEXT_CARD_COLORS)]
