"""Part-number cell helpers shared by the vendor importers and the models."""

import re
from typing import Any

# Cell values meaning "not applicable". Compared upper-cased after trimming.
SENTINEL_VALUES: frozenset[str] = frozenset({"N/A", "-", "N/R"})

_PART_SPLIT_RE = re.compile(r"[\n\r;|,\s]+")


def clean(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    return str(value).strip()


def is_sentinel(value: Any) -> bool:
    return clean(value).upper() in SENTINEL_VALUES


def split_part_numbers(cell: Any) -> list[str]:
    """Split a part-number cell into unique part numbers.

    Examples:
        >>> split_part_numbers("95-7810; 99-7810\\n95-7810")
        ['95-7810', '99-7810']
        >>> split_part_numbers("N/A")
        []
    """
    text = clean(cell)
    if not text or is_sentinel(text):
        return []
    parts: list[str] = []
    for token in _PART_SPLIT_RE.split(text):
        token = token.strip()
        if token and not is_sentinel(token) and token not in parts:
            parts.append(token)
    return parts
