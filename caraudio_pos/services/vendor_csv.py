"""Low-level helpers for vendor application-guide spreadsheets.

Vendor exports arrive as CSV with whatever encoding and delimiter the
vendor's tooling produced. This module turns raw bytes into a grid of
strings and provides the cell-level parsers (model lists, year ranges)
shared by every importer in vendor_import.py. Part-number cells are split by
caraudio_pos.utils.parts.
"""

import logging
import re
from datetime import date
from io import StringIO
from typing import Any

import pandas as pd

from caraudio_pos.utils.parts import clean

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

CANDIDATE_DELIMITERS = [",", ";", "\t", "|"]

MIN_YEAR = 1950
MAX_SPAN = 60

_UTF16_LE_BOM = b"\xff\xfe"
_UTF8_BOM = b"\xef\xbb\xbf"

_YEAR_RE = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")
_OPEN_RANGE_RE = re.compile(r"\band up\b|\bup$|\+$|\bto present\b|\bpresent\b", re.IGNORECASE)
_YEAR_SPAN_RE = re.compile(r"^(\d{4})\s*-\s*(\d{2}|\d{4})$")
_MODEL_AND_RE = re.compile(r"\s+and\s+", re.IGNORECASE)
_MODEL_SPLIT_RE = re.compile(r"[,/&]")


# =============================================================================
# Decoding & reading
# =============================================================================


def decode_vendor_bytes(raw: bytes | str) -> str:
    """Decode a vendor file.

    UTF-16LE is detected from its byte-order mark in the first two bytes;
    anything else is read as UTF-8 with an optional BOM stripped.
    """
    if isinstance(raw, str):
        return raw.lstrip("\ufeff")
    if raw[:2] == _UTF16_LE_BOM:
        text = raw[2:].decode("utf-16-le", errors="replace")
    elif raw[:3] == _UTF8_BOM:
        text = raw[3:].decode("utf-8", errors="replace")
    else:
        text = raw.decode("utf-8", errors="replace")
    return text.lstrip("\ufeff")


def _count_outside_quotes(line: str, char: str) -> int:
    count = 0
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == char and not in_quotes:
            count += 1
    return count


def _max_fields(text: str, delimiter: str) -> int:
    """Widest record in the file, honoring quoted delimiters and newlines."""
    widest = fields = 1
    in_quotes = False
    for ch in text:
        if ch == '"':
            in_quotes = not in_quotes
        elif not in_quotes and ch == delimiter:
            fields += 1
        elif not in_quotes and ch == "\n":
            widest = max(widest, fields)
            fields = 1
    return max(widest, fields)


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter that occurs most often outside quotes.

    Comma wins ties and is the default when nothing is found.
    """
    best, best_count = ",", 0
    for candidate in CANDIDATE_DELIMITERS:
        count = _count_outside_quotes(header_line, candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def read_vendor_rows(text: str, delimiter: str | None = None) -> list[list[str]]:
    """Parse CSV text into a rectangular grid of trimmed strings.

    Quoted fields may contain the delimiter, newlines and doubled quotes.
    Ragged rows are padded with "" and trailing all-empty columns dropped.
    Blank lines are skipped.
    """
    text = text.lstrip("\ufeff")
    lines = text.splitlines()
    if not any(line.strip() for line in lines):
        return []

    if delimiter is None:
        first = next(line for line in lines if line.strip())
        delimiter = detect_delimiter(first)

    width = _max_fields(text, delimiter)

    df = pd.read_csv(
        StringIO(text),
        sep=delimiter,
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        quotechar='"',
        doublequote=True,
        engine="python",
    )
    df = df.fillna("")

    rows = [[clean(cell) for cell in row] for row in df.values.tolist()]

    last_used = -1
    for row in rows:
        for idx in range(len(row) - 1, last_used, -1):
            if row[idx]:
                last_used = idx
                break
    return [row[: last_used + 1] for row in rows]


# =============================================================================
# Cell parsers
# =============================================================================


def split_models(cell: Any) -> list[str]:
    """Split a model cell on comma, slash, ampersand and the word "and"."""
    text = _MODEL_AND_RE.sub(",", clean(cell))
    return [m.strip() for m in _MODEL_SPLIT_RE.split(text) if m.strip()]


def extract_years(text: Any) -> list[int]:
    return [int(y) for y in _YEAR_RE.findall(clean(text))]


def _valid_range(lo: int, hi: int, current_year: int) -> tuple[int, int] | None:
    if lo <= 0 or lo < MIN_YEAR or hi > current_year + 1:
        return None
    if hi - lo > MAX_SPAN:
        return None
    return lo, hi


def parse_year_range(
    start: Any, end: Any, current_year: int | None = None
) -> tuple[int, int] | None:
    """Parse start/end year cells into an ordered (min, max) pair.

    Years are pulled out of decorated cells ("MY2018", "2018 1/2"). A start
    year with "and up" / "present" and no end closes at the current year.
    Reversed ranges are reordered. Returns None when either end is missing
    or the range is implausible.
    """
    current_year = current_year or date.today().year
    start_text, end_text = clean(start), clean(end)
    start_years, end_years = extract_years(start_text), extract_years(end_text)

    start_year = start_years[0] if start_years else None
    end_year = end_years[0] if end_years else None

    if end_year is None and len(start_years) >= 2:
        end_year = start_years[1]
    if start_year is None and len(end_years) >= 2:
        start_year, end_year = end_years[0], end_years[1]

    if start_year is not None and end_year is None:
        if _OPEN_RANGE_RE.search(f"{start_text} {end_text}".strip()):
            end_year = current_year

    if start_year is None or end_year is None:
        return None
    return _valid_range(min(start_year, end_year), max(start_year, end_year), current_year)


def parse_year_span(cell: Any, current_year: int | None = None) -> tuple[int, int] | None:
    """Parse a single "YEAR SPAN" cell ("2001-03", "2012-2019")."""
    current_year = current_year or date.today().year
    match = _YEAR_SPAN_RE.match(clean(cell))
    if not match:
        return None
    start_year = int(match.group(1))
    end_raw = match.group(2)
    if len(end_raw) == 2:
        end_year = (start_year // 100) * 100 + int(end_raw)
    else:
        end_year = int(end_raw)
    return _valid_range(min(start_year, end_year), max(start_year, end_year), current_year)


def forward_fill(row: list[str]) -> list[str]:
    """Blank cells inherit the last non-blank value to their left.

    Leading blanks before the first value stay blank.
    """
    filled: list[str] = []
    last = ""
    for cell in row:
        value = clean(cell)
        if value:
            last = value
        filled.append(value or last)
    return filled
