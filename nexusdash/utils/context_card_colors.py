CONTEXT_CARD_COLORS = (
    "#FDE2E4",
    "#FDECC8",
    "#E5F4E3",
    "#DFF3F9",
    "#E8E4FB",
    "#FBE4F3",
    "#F1F3D8",
    "#E7EEF8",
)

DEFAULT_CONTEXT_CARD_COLOR = CONTEXT_CARD_COLORS[0]

_HASH_MODULUS = 2147483647


def is_context_card_color(value) -> bool:
    return value in CONTEXT_CARD_COLORS


def _utf16_code_units(value: str):
    encoded = value.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        yield int.from_bytes(encoded[index : index + 2], "little")


def seed_hash(seed: str) -> int:
    """Stable 31-multiplier string hash, identical across processes."""
    hash_value = 0
    for code_unit in _utf16_code_units(seed):
        hash_value = (hash_value * 31 + code_unit) % _HASH_MODULUS
    return hash_value


def context_card_color_from_seed(seed: str) -> str:
    return CONTEXT_CARD_COLORS[seed_hash(seed) % len(CONTEXT_CARD_COLORS)]
