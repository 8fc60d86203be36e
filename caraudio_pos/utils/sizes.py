"""Speaker and opening size canonicalization.

Vendors describe the same speaker as 6.5", 6 1/2, 6-1/2in, 6¾ or 165mm.
Everything that feeds the matcher or the vendor importers goes through
``canonicalize`` so those spellings collapse to one comparable string.

Canonical forms:
    - Oval sizes: lowercase ``"AxB"`` (``"6x9"``, ``"5x7"``). Never converted
      to a decimal and never compared numerically.
    - Round sizes: a retail bucket label or the nearest quarter inch, with a
      trailing inch mark (``'6.5"'``, ``'5.25"'``, ``'2.75"'``).

Parsing fails soft: input with no usable number comes back trimmed and
otherwise unchanged.
"""

import re
from typing import Any

from caraudio_pos.core.enums import SIZE_MATCH_TOLERANCE

# =============================================================================
# Constants
# =============================================================================

_FRACTION_GLYPHS = {"¼": " 1/4", "½": " 1/2", "¾": " 3/4"}

# Order matters: longer unit words first so "inches" does not leave "es"
_UNIT_MARKERS = re.compile(r'(?:inches|inch|in\.|in\b|["″”“])', re.IGNORECASE)

_OVAL_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(?:x|×|by)\s*(\d+(?:\.\d+)?)", re.IGNORECASE
)
_MM_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*mm\b", re.IGNORECASE)
_FRACTION_ONLY_RE = re.compile(r"^(\d+)\s*/\s*(\d+)")
_WHOLE_FRACTION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(?:[-\s])?\s*(\d+\s*/\s*\d+)?")

# Inclusive retail buckets (inches) -> label
ROUND_BUCKETS: list[tuple[float, float, str]] = [
    (6.4, 6.8, "6.5"),
    (5.1, 5.4, "5.25"),
    (3.4, 3.6, "3.5"),
    (3.9, 4.1, "4"),
    (4.9, 5.05, "5"),
    (6.9, 7.1, "7"),
    (7.9, 8.1, "8"),
]

# Metric woofer diameters -> nominal inches
_MM_BUCKETS: list[tuple[float, float, float]] = [
    (160, 175, 6.5),
    (125, 139, 5.25),
    (95, 110, 4.0),
    (85, 94, 3.5),
    (55, 69, 2.75),
]

MM_PER_INCH = 25.4


# =============================================================================
# Parsing
# =============================================================================


def _clean(raw: Any) -> str:
    if raw is None:
        return ""
    text = str(raw)
    for glyph, ascii_fraction in _FRACTION_GLYPHS.items():
        text = text.replace(glyph, ascii_fraction)
    return text.strip()


def _parse_fraction(text: str) -> float | None:
    num, _, den = text.partition("/")
    try:
        denominator = float(den)
        if denominator == 0:
            return None
        return float(num) / denominator
    except ValueError:
        return None


def _mm_to_inches(mm: float) -> float:
    for low, high, inches in _MM_BUCKETS:
        if low <= mm <= high:
            return inches
    return mm / MM_PER_INCH


def parse_inches(raw: Any) -> float | None:
    """Parse a round size to decimal inches.

    Args:
        raw: Free-text size ("6.5", "6 1/2", '6-1/2"', "6½", "3/4", "165mm")

    Returns:
        Decimal inches, or None for ovals and unparseable input

    Examples:
        >>> parse_inches("6 3/4")
        6.75
        >>> parse_inches("3/4")
        0.75
        >>> parse_inches("6x9") is None
        True
    """
    text = _clean(raw)
    if not text or _OVAL_RE.search(text):
        return None

    mm_match = _MM_RE.match(text)
    if mm_match:
        return _mm_to_inches(float(mm_match.group(1)))

    text = _UNIT_MARKERS.sub(" ", text).strip()
    if not text:
        return None

    fraction_only = _FRACTION_ONLY_RE.match(text)
    if fraction_only:
        return _parse_fraction(text[: fraction_only.end()].replace(" ", ""))

    match = _WHOLE_FRACTION_RE.match(text)
    if not match:
        return None

    value = float(match.group(1))
    if match.group(2):
        fraction = _parse_fraction(match.group(2).replace(" ", ""))
        if fraction is not None:
            value += fraction
    return value


def parse_oval(raw: Any) -> str | None:
    """Return the lowercase "AxB" form of an oval size, or None."""
    match = _OVAL_RE.search(_clean(raw))
    if not match:
        return None
    width = _format_number(float(match.group(1)))
    height = _format_number(float(match.group(2)))
    return f"{width}x{height}"


def _format_number(value: float) -> str:
    return f"{value:g}"


def bucket_label(inches: float) -> str:
    """Snap decimal inches to a retail bucket or the nearest quarter inch."""
    for low, high, label in ROUND_BUCKETS:
        if low <= inches <= high:
            return f'{label}"'
    rounded = round(inches * 4) / 4
    return f'{_format_number(rounded)}"'


# =============================================================================
# Public API
# =============================================================================


def canonicalize(raw: Any) -> str:
    """Canonicalize a raw size string.

    Examples:
        >>> canonicalize("6 1/2")
        '6.5"'
        >>> canonicalize("6 X 9")
        '6x9'
        >>> canonicalize("  tweeter  ")
        'tweeter'
    """
    oval = parse_oval(raw)
    if oval:
        return oval

    inches = parse_inches(raw)
    if inches is None or inches <= 0:
        return str(raw).strip() if raw is not None else ""
    return bucket_label(inches)


def is_oval(size: Any) -> bool:
    return parse_oval(size) is not None


def canonical_sizes(values: Any) -> set[str]:
    """Canonicalize a size cell or list of sizes, dropping blanks."""
    if values is None:
        return set()
    if isinstance(values, str):
        values = [values]
    result = set()
    for value in values:
        size = canonicalize(value)
        if size:
            result.add(size)
    return result


def sizes_match(a: Any, b: Any, tolerance: float = SIZE_MATCH_TOLERANCE) -> bool:
    """Compare two sizes the way the matcher does.

    Ovals match only by exact canonical equality. Round sizes match when
    their parsed inch values are within ``tolerance``. A size that cannot be
    parsed never matches anything.
    """
    oval_a, oval_b = parse_oval(a), parse_oval(b)
    if oval_a or oval_b:
        return oval_a is not None and oval_a == oval_b

    inches_a, inches_b = parse_inches(a), parse_inches(b)
    if inches_a is None or inches_b is None:
        return False
    return abs(inches_a - inches_b) <= tolerance + 1e-9
