from nexusdash.utils.context_card_colors import (
    CONTEXT_CARD_COLORS,
    DEFAULT_CONTEXT_CARD_COLOR,
    context_card_color_from_seed,
    is_context_card_color,
    seed_hash,
)
from nexusdash.utils.task_status import TASK_STATUSES, is_task_status, task_status_index


def test_palette_has_eight_colors_and_default_is_first():
    assert len(CONTEXT_CARD_COLORS) == 8
    assert DEFAULT_CONTEXT_CARD_COLOR == "#FDE2E4"


def test_is_context_card_color():
    assert is_context_card_color("#E5F4E3")
    assert not is_context_card_color("#000000")
    assert not is_context_card_color(None)


def test_seed_hash_matches_31_multiplier():
    # "ab" -> 97 * 31 + 98
    assert seed_hash("ab") == 97 * 31 + 98
    assert seed_hash("") == 0


def test_color_from_seed_uses_hash_modulo_palette():
    assert context_card_color_from_seed("ab") == CONTEXT_CARD_COLORS[(97 * 31 + 98) % 8]
    assert context_card_color_from_seed("") == CONTEXT_CARD_COLORS[0]


def test_seed_hash_counts_utf16_code_units():
    # U+1F600 is a surrogate pair: 0xD83D, 0xDE00
    assert seed_hash("\U0001F600") == (0xD83D * 31 + 0xDE00) % 2147483647


def test_task_statuses():
    assert TASK_STATUSES == ("Backlog", "In Progress", "Blocked", "Done")
    assert is_task_status("Blocked")
    assert not is_task_status("blocked")
    assert task_status_index("Done") == 3
    assert task_status_index("Unknown") == 4
