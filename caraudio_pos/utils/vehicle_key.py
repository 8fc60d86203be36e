"""Vehicle lookup keys and model-name variants.

Two key spellings exist:

    build_key    "2018|honda|civic|ex"    lowercase, always 4 segments.
                 Used for every in-memory index and comparison.
    storage_key  "2018|Honda|Civic|EX"    display casing with make aliases,
                 trim segment omitted when empty. Used in the merged
                 accessory JSON so the file stays readable.

``normalize_key`` maps any stored key (3 or 4 segments, any casing) onto the
``build_key`` form.
"""

import re
from collections.abc import Mapping
from typing import Any, TypeVar

T = TypeVar("T")

# =============================================================================
# Alias tables
# =============================================================================

MAKE_ALIASES: dict[str, str] = {
    "chevy": "Chevrolet",
    "vw": "Volkswagen",
    "mercedes": "Mercedes-Benz",
    "mercedes benz": "Mercedes-Benz",
    "infinity": "Infiniti",
}

# Closed set of truck names vendors spell differently. Each group is a set
# of equivalent spellings (compared lowercased).
MODEL_ALIAS_GROUPS: list[set[str]] = [
    {"f-150", "f150", "f-150 pickup", "f150 pickup"},
    {"f-250", "f250", "f-250 super duty", "f250 super duty"},
    {"f-350", "f350", "f-350 super duty", "f350 super duty"},
    {"silverado 1500", "silverado", "silverado1500"},
    {"sierra 1500", "sierra", "sierra1500"},
]

_WS_RE = re.compile(r"\s+")


# =============================================================================
# Normalization helpers
# =============================================================================


def key_part(value: Any) -> str:
    """Lowercased, whitespace-collapsed form of one key segment."""
    if value is None:
        return ""
    return _WS_RE.sub(" ", str(value)).strip().lower()


def _year_part(year: Any) -> str:
    text = str(year).strip() if year is not None else ""
    if text.endswith(".0"):
        text = text[:-2]
    return text


def normalize_make(make: Any) -> str:
    """Display form of a make: alias table first, otherwise title case."""
    cleaned = _WS_RE.sub(" ", str(make or "")).strip()
    alias = MAKE_ALIASES.get(cleaned.lower())
    if alias:
        return alias
    return cleaned.title()


def _title_part(value: Any) -> str:
    cleaned = _WS_RE.sub(" ", str(value or "")).strip()
    # Keep short all-caps tokens like "EX", "LX", "4WD" and model codes as-is
    if cleaned.isupper() or any(ch.isdigit() for ch in cleaned):
        return cleaned
    return cleaned.title()


# =============================================================================
# Keys
# =============================================================================


def build_key(year: Any, make: Any, model: Any, trim: Any = None) -> str:
    """Build the lowercase lookup key for a vehicle.

    Args:
        year: Model year
        make: Vehicle make
        model: Vehicle model
        trim: Optional trim; empty gives a trailing empty segment

    Returns:
        Key of the form "year|make|model|trim"

    Raises:
        ValueError: If year, make or model is missing

    Examples:
        >>> build_key(2018, "Honda", " Civic ", "EX")
        '2018|honda|civic|ex'
        >>> build_key(2018, "Honda", "Civic")
        '2018|honda|civic|'
    """
    year_part = _year_part(year)
    make_part = key_part(make)
    model_part = key_part(model)
    if not year_part or not make_part or not model_part:
        raise ValueError(
            f"Vehicle key needs year, make and model (got {year!r}, {make!r}, {model!r})"
        )
    return f"{year_part}|{make_part}|{model_part}|{key_part(trim)}"


def storage_key(year: Any, make: Any, model: Any, trim: Any = None) -> str:
    """Build the display-cased key used by the merged accessory JSON."""
    year_part = _year_part(year)
    make_part = normalize_make(make)
    model_part = _title_part(model)
    if not year_part or not make_part or not model_part:
        raise ValueError(
            f"Vehicle key needs year, make and model (got {year!r}, {make!r}, {model!r})"
        )
    trim_part = _title_part(trim)
    if trim_part:
        return f"{year_part}|{make_part}|{model_part}|{trim_part}"
    return f"{year_part}|{make_part}|{model_part}"


def normalize_key(raw_key: str) -> str:
    """Map a stored key (3 or 4 segments, any casing) to build_key form.

    Make aliases are applied so "2015|Chevy|Tahoe" and
    "2015|Chevrolet|Tahoe|" normalize identically.
    """
    parts = [p.strip() for p in str(raw_key).split("|")]
    while len(parts) < 4:
        parts.append("")
    year, make, model = parts[0], parts[1], parts[2]
    trim = "|".join(parts[3:])
    return build_key(year, normalize_make(make), model, trim)


def split_key(key: str) -> tuple[str, str, str, str]:
    """Split a build_key into (year, make, model, trim)."""
    parts = key.split("|")
    while len(parts) < 4:
        parts.append("")
    return parts[0], parts[1], parts[2], parts[3]


# =============================================================================
# Model variants
# =============================================================================


def model_variants(model: Any) -> set[str]:
    """Generate the spellings a vendor may have used for a model.

    Always contains the model itself (whitespace-trimmed), plus the hyphen
    and whitespace stripped forms and any truck-name aliases.

    Examples:
        >>> sorted(model_variants("F-150"))
        ['F-150', 'F150', 'f-150 pickup', 'f150 pickup']
    """
    raw = str(model or "").strip()
    if not raw:
        return set()

    variants = {raw}
    variants.add(raw.replace("-", ""))
    variants.add(_WS_RE.sub("", raw))
    variants.add(_WS_RE.sub("", raw.replace("-", "")))

    lowered = key_part(raw)
    for group in MODEL_ALIAS_GROUPS:
        if lowered in group or lowered.replace("-", "") in group:
            seen = {v.lower() for v in variants}
            variants.update(alias for alias in group if alias not in seen)
            break

    return {v for v in variants if v}


# =============================================================================
# Lookup
# =============================================================================


def lookup_with_fallback(
    mapping: Mapping[str, T],
    year: Any,
    make: Any,
    model: Any,
    trim: Any = None,
) -> T | None:
    """Resolve a vehicle against a mapping keyed by build_key strings.

    For each model variant, in turn:
        1. exact "year|make|model|trim"
        2. "year|make|model|" (any trim) and the 3-part legacy key
        3. first key (sorted) starting with "year|make|model|"

    Returns:
        The matched value, or None when nothing matches
    """
    try:
        base = build_key(year, make, model, trim)
    except ValueError:
        return None

    year_part, make_part, _, trim_part = split_key(base)
    make_aliases = {make_part, key_part(normalize_make(make_part))}

    candidates: list[tuple[str, str]] = []
    for variant in _ordered_variants(model):
        model_part = key_part(variant)
        for make_name in sorted(make_aliases):
            pair = (make_name, model_part)
            if pair not in candidates:
                candidates.append(pair)

    for make_name, model_part in candidates:
        prefix = f"{year_part}|{make_name}|{model_part}"
        if trim_part:
            hit = mapping.get(f"{prefix}|{trim_part}")
            if hit is not None:
                return hit
        for key in (f"{prefix}|", prefix):
            hit = mapping.get(key)
            if hit is not None:
                return hit

    for make_name, model_part in candidates:
        prefix = f"{year_part}|{make_name}|{model_part}|"
        for key in sorted(mapping):
            if key.startswith(prefix):
                return mapping[key]

    return None


def _ordered_variants(model: Any) -> list[str]:
    """Model variants with the original spelling first."""
    raw = str(model or "").strip()
    rest = sorted(v for v in model_variants(raw) if v != raw)
    return [raw, *rest]
