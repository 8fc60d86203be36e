"""Vendor application-guide importers and the accessory table merge.

Two accessory layouts are supported:

    METRA    three header rows (section / subsection / role) above the data.
             Columns 0-5 are make, model, trim, (blank), year start, year end;
             every other column is a part-number column whose meaning comes
             from the forward-filled header rows.
    SCOSCHE  one header row. Columns are found through ordered alias lists,
             either MAKE, MODEL, START YEAR, END YEAR or MAKE/MODEL, YEAR SPAN
             (with make headings on their own rows).

Every data row is expanded years x models into storage keys
("2018|Honda|Civic"). Rows that are neither data nor headers are counted
and skipped; one bad row never fails the batch.
"""

import json
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from functools import reduce
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from caraudio_pos.core.logging import log_import_summary
from caraudio_pos.models.accessory import VehicleAccessoryRecord
from caraudio_pos.models.vehicle import VehicleFitmentRecord
from caraudio_pos.services.fitment_store import parse_accessory_rows
from caraudio_pos.services.vendor_csv import (
    decode_vendor_bytes,
    forward_fill,
    parse_year_range,
    parse_year_span,
    read_vendor_rows,
    split_models,
)
from caraudio_pos.utils.parts import clean, split_part_numbers
from caraudio_pos.utils.sizes import canonicalize
from caraudio_pos.utils.vehicle_key import normalize_key, normalize_make, split_key, storage_key

logger = logging.getLogger(__name__)


class VendorLayout(str, Enum):
    METRA = "metra"
    SCOSCHE = "scosche"


class SheetStats(BaseModel):
    data_rows: int = 0
    header_rows: int = 0
    skipped_rows: int = 0
    skipped_make_model: int = 0
    skipped_bad_years: int = 0
    rows_with_parts: int = 0
    vehicle_keys: int = 0


class VendorSheetResult(BaseModel):
    records: dict[str, VehicleAccessoryRecord] = Field(default_factory=dict)
    stats: SheetStats = Field(default_factory=SheetStats)


# Field path inside a record, e.g. ("harnesses", "amplified", "into_car")
FieldPath = tuple[str, ...]


def _part_set(block: BaseModel, path: FieldPath) -> set[str]:
    parent = reduce(getattr, path[:-1], block)
    return getattr(parent, path[-1])


def _pad(rows: list[list[str]]) -> list[list[str]]:
    width = max((len(r) for r in rows), default=0)
    return [r + [""] * (width - len(r)) for r in rows]


# =============================================================================
# Metra
# =============================================================================

METRA_DATA_START = 3
METRA_COL_MAKE, METRA_COL_MODEL, METRA_COL_TRIM = 0, 1, 2
METRA_COL_YEAR_START, METRA_COL_YEAR_END = 4, 5

_HARNESS_ROLES = [("INTO CAR", "into_car"), ("INTO RADIO", "into_radio"), ("BYPASS", "bypass")]


def align_section_row(section_row: list[str], role_row: list[str]) -> list[str]:
    """Shift the section row right so TURBO KITS sits above SINGLE DIN.

    The export merges the section cells one block too far left; the offset is
    the distance between the two anchors. Without both anchors (or with a
    non-positive offset) the row is returned unchanged.
    """
    kits_idx = next(
        (i for i, cell in enumerate(section_row) if clean(cell).upper() == "TURBO KITS"), -1
    )
    single_idx = next(
        (i for i, cell in enumerate(role_row) if "SINGLE DIN" in clean(cell).upper()), -1
    )
    if kits_idx == -1 or single_idx == -1:
        return section_row
    offset = single_idx - kits_idx
    if offset <= 0:
        return section_row
    return ([""] * offset + section_row)[: len(section_row)]


def metra_column_map(
    section_row: list[str], subsection_row: list[str], role_row: list[str]
) -> dict[int, FieldPath]:
    """Resolve each part-number column to a record field path."""
    width = max(len(section_row), len(subsection_row), len(role_row))
    section_row = section_row + [""] * (width - len(section_row))
    subsection_row = subsection_row + [""] * (width - len(subsection_row))
    role_row = role_row + [""] * (width - len(role_row))

    sections = forward_fill(align_section_row(section_row, role_row))
    subsections = forward_fill(subsection_row)

    columns: dict[int, FieldPath] = {}
    current_din: str | None = None

    for idx in range(width):
        section = sections[idx].upper()
        subsection = subsections[idx].upper()
        role = clean(role_row[idx]).upper()

        # DIN context carries across blank role cells
        if "SINGLE DIN" in role:
            current_din = "single_din"
        elif "DOUBLE DIN" in role:
            current_din = "double_din"

        if section == "TURBO KITS":
            if current_din:
                columns[idx] = ("dash_kits", current_din)

        elif section == "TURBO WIRE":
            if "NON-AMPLIFIED" in subsection or "NON AMPLIFIED" in subsection:
                amp = "non_amplified"
            elif "AMPLIFIED" in subsection:
                amp = "amplified"
            else:
                continue
            for label, field in _HARNESS_ROLES:
                if label in role:
                    columns[idx] = ("harnesses", amp, field)
                    break

        elif section == "ANTENNAWORKS":
            if "ANTENNA ADAPTER" in subsection:
                columns[idx] = ("antennas", "adapter")
            elif "ANTENNA" in subsection:
                if "POWER" in role:
                    columns[idx] = ("antennas", "power")
                elif "FIXED" in role:
                    columns[idx] = ("antennas", "fixed")
                else:
                    columns[idx] = ("antennas", "antenna")

        elif "MAESTRO" in section or "IDATALINK" in section:
            columns[idx] = ("maestro",)

    return columns


def _parse_metra(rows: list[list[str]]) -> VendorSheetResult:
    result = VendorSheetResult()
    stats = result.stats
    if len(rows) <= METRA_DATA_START:
        return result

    rows = _pad(rows)
    columns = metra_column_map(rows[0], rows[1], rows[2])
    stats.header_rows = METRA_DATA_START
    last_make = ""

    for row in rows[METRA_DATA_START:]:
        make = clean(row[METRA_COL_MAKE])
        model_cell = clean(row[METRA_COL_MODEL])
        years = parse_year_range(row[METRA_COL_YEAR_START], row[METRA_COL_YEAR_END])

        if make.upper() == "MAKE" or (make and not model_cell and years is None):
            # Column-title row or make heading
            stats.header_rows += 1
            if make.upper() != "MAKE":
                last_make = make
            continue

        make = make or last_make
        models = split_models(model_cell)
        if not make or not models:
            stats.skipped_rows += 1
            stats.skipped_make_model += 1
            continue
        if years is None:
            stats.skipped_rows += 1
            stats.skipped_bad_years += 1
            continue

        last_make = make
        stats.data_rows += 1
        parts = {
            path: split_part_numbers(row[idx]) for idx, path in columns.items() if row[idx]
        }
        if any(parts.values()):
            stats.rows_with_parts += 1

        trim = clean(row[METRA_COL_TRIM])
        for year in range(years[0], years[1] + 1):
            for model in models:
                record = _ensure(result.records, storage_key(year, make, model, trim))
                for path, numbers in parts.items():
                    _part_set(record, path).update(numbers)

    return result


# =============================================================================
# Scosche
# =============================================================================

MAKE_WHITELIST = frozenset(
    {
        "ACURA", "ALFA ROMEO", "ASTON MARTIN", "AUDI", "BENTLEY", "BMW", "BUICK",
        "CADILLAC", "CHEVROLET", "CHRYSLER", "DODGE", "FIAT", "FORD", "GENESIS",
        "GMC", "HONDA", "HYUNDAI", "INFINITI", "JAGUAR", "JEEP", "KIA",
        "LAMBORGHINI", "LAND ROVER", "LEXUS", "LINCOLN", "LOTUS", "MASERATI",
        "MAZDA", "MCLAREN", "MERCEDES-BENZ", "MERCEDES BENZ", "MERCURY", "MINI",
        "MITSUBISHI", "NISSAN", "POLESTAR", "PONTIAC", "PORSCHE", "RAM",
        "ROLLS-ROYCE", "SAAB", "SATURN", "SCION", "SUBARU", "SUZUKI", "TESLA",
        "TOYOTA", "VOLKSWAGEN", "VOLVO",
    }
)


def find_column(headers: list[str], aliases: list[str]) -> int:
    """Index of the first alias matching a header exactly, else by contains.

    Aliases are tried in order; -1 when none matches.
    """
    upper = [clean(h).upper() for h in headers]
    for alias in aliases:
        wanted = alias.upper()
        if wanted in upper:
            return upper.index(wanted)
        for idx, header in enumerate(upper):
            if wanted in header:
                return idx
    return -1


def find_column_guarded(
    headers: list[str], must_include: Sequence[str], must_exclude: Sequence[str] = ()
) -> int:
    """Index of the first header containing every word of ``must_include``
    and none of ``must_exclude``."""
    for idx, header in enumerate(clean(h).upper() for h in headers):
        if all(w in header for w in must_include) and not any(
            w in header for w in must_exclude
        ):
            return idx
    return -1


ColumnFinder = Callable[[list[str]], int]

# (finder, path inside the scosche block), resolved once per sheet
SCOSCHE_PART_COLUMNS: list[tuple[ColumnFinder, FieldPath]] = [
    (lambda h: find_column(h, ["SPECIFIC KIT"]), ("dash_kits", "single_din")),
    (lambda h: find_column(h, ["DOUBLE DIN KIT", "DOUBLE-DIN KIT"]), ("dash_kits", "double_din")),
    (lambda h: find_column(h, ["DASHKIT", "DASH KIT"]), ("dash_kits", "double_din")),
    (lambda h: find_column_guarded(h, ["WIRING", "HARNESS"]), ("harnesses", "wiring")),
    (
        lambda h: find_column_guarded(
            h, ["HARNESS"], ["WIRING", "REVERSE", "USB", "AUX", "CAMERA", "SPEAKER"]
        ),
        ("harnesses", "generic"),
    ),
    (lambda h: find_column(h, ["REVERSE HARNESS"]), ("harnesses", "reverse")),
    (lambda h: find_column(h, ["USB/AUX RETENTION HARNESS"]), ("harnesses", "usb_aux")),
    (lambda h: find_column(h, ["CAMERA RETENTION HARNESS"]), ("harnesses", "camera")),
    (lambda h: find_column(h, ["SPEAKER HARNESS"]), ("harnesses", "speaker")),
    (lambda h: find_column_guarded(h, ["ANTENNA ADAPTER"], ["REVERSE"]), ("antennas", "adapter")),
    (lambda h: find_column(h, ["REVERSE ANTENNA ADAPTER"]), ("antennas", "reverse")),
    (lambda h: find_column(h, ["LINK PLUS/PREMIER INTERFACE"]), ("interfaces", "link_plus_premier")),
    (lambda h: find_column(h, ["LINK/SWC INTERFACE"]), ("interfaces", "link_swc")),
    (lambda h: find_column(h, ["FRONT SPEAKER ADAPTER"]), ("speaker", "front_adapter")),
    (lambda h: find_column(h, ["REAR SPEAKER ADAPTER"]), ("speaker", "rear_adapter")),
    (lambda h: find_column(h, ["OEM DIRECT FIT QI"]), ("oem_qi",)),
]

SCOSCHE_META_COLUMNS: list[tuple[list[str], FieldPath]] = [
    (["NAV"], ("meta", "nav")),
    (["PAGE_INDEX", "PAGE"], ("meta", "pages")),
    (["SECTION"], ("meta", "sections")),
]


class ScoscheColumns(BaseModel):
    """Header positions resolved once per sheet (-1 = absent)."""

    make: int = -1
    model: int = -1
    make_model: int = -1
    year_span: int = -1
    trim: int = -1
    year_start: int = -1
    year_end: int = -1
    parts: list[tuple[int, FieldPath]] = []
    meta: list[tuple[int, FieldPath]] = []

    @property
    def make_model_format(self) -> bool:
        return self.make_model != -1 and self.year_span != -1

    @property
    def split_format(self) -> bool:
        return -1 not in (self.make, self.model, self.year_start, self.year_end)

    @classmethod
    def resolve(cls, header: list[str]) -> "ScoscheColumns":
        columns = cls(
            make=find_column(header, ["MAKE"]),
            model=find_column(header, ["MODEL"]),
            make_model=find_column(header, ["MAKE/MODEL", "MAKE MODEL"]),
            year_span=find_column(header, ["YEAR SPAN"]),
            trim=find_column(header, ["TRIM / QUALIFIER", "TRIM", "QUALIFIER", "SUBMODEL"]),
            year_start=find_column(header, ["START YEAR", "YEAR START", "FROM"]),
            year_end=find_column(header, ["END YEAR", "YEAR END", "TO"]),
        )
        for finder, path in SCOSCHE_PART_COLUMNS:
            idx = finder(header)
            if idx != -1:
                columns.parts.append((idx, path))
        for aliases, path in SCOSCHE_META_COLUMNS:
            idx = find_column(header, aliases)
            if idx != -1:
                columns.meta.append((idx, path))
        return columns


def _parse_scosche(rows: list[list[str]]) -> VendorSheetResult:
    result = VendorSheetResult()
    stats = result.stats
    if len(rows) < 2:
        return result

    rows = _pad(rows)
    header = rows[0]
    columns = ScoscheColumns.resolve(header)
    if not columns.make_model_format and not columns.split_format:
        raise ValueError(
            "Unsupported Scosche header format: expected MAKE, MODEL, START YEAR, "
            "END YEAR or MAKE/MODEL, YEAR SPAN"
        )
    stats.header_rows = 1
    last_make = ""

    for row in rows[1:]:
        if columns.make_model_format:
            make_model = clean(row[columns.make_model])
            span = clean(row[columns.year_span])
            if make_model and not span:
                # Make headings have no span; anything else is an annotation
                if make_model.upper() in MAKE_WHITELIST:
                    last_make = make_model
                    stats.header_rows += 1
                else:
                    stats.skipped_rows += 1
                continue
            make, model_cell = last_make, make_model
            years = parse_year_span(span)
        else:
            make = clean(row[columns.make])
            model_cell = clean(row[columns.model])
            years = parse_year_range(row[columns.year_start], row[columns.year_end])
            if make and not model_cell and years is None:
                last_make = make
                stats.header_rows += 1
                continue
            make = make or last_make
            if make:
                last_make = make

        models = split_models(model_cell)
        if not make or not models:
            stats.skipped_rows += 1
            stats.skipped_make_model += 1
            continue
        if years is None:
            stats.skipped_rows += 1
            stats.skipped_bad_years += 1
            continue

        stats.data_rows += 1
        parts = [(path, split_part_numbers(row[idx])) for idx, path in columns.parts]
        meta = [(path, clean(row[idx])) for idx, path in columns.meta]
        if any(numbers for _, numbers in parts):
            stats.rows_with_parts += 1

        trim = clean(row[columns.trim]) if columns.trim != -1 else ""
        for year in range(years[0], years[1] + 1):
            for model in models:
                record = _ensure(result.records, storage_key(year, make, model, trim))
                for path, numbers in parts:
                    _part_set(record.scosche, path).update(numbers)
                for path, text in meta:
                    if text:
                        _part_set(record.scosche, path).add(text)
                bubble_dash_kits(record)

    return result


def bubble_dash_kits(record: VehicleAccessoryRecord) -> None:
    """Copy vendor-block dash kits into the top-level union the matcher reads."""
    record.dash_kits.single_din |= record.scosche.dash_kits.single_din
    record.dash_kits.double_din |= record.scosche.dash_kits.double_din


# =============================================================================
# Entry points
# =============================================================================


def _ensure(records: dict[str, VehicleAccessoryRecord], key: str) -> VehicleAccessoryRecord:
    record = records.get(key)
    if record is None:
        record = records[key] = VehicleAccessoryRecord()
    return record


_PARSERS: dict[VendorLayout, Callable[[list[list[str]]], VendorSheetResult]] = {
    VendorLayout.METRA: _parse_metra,
    VendorLayout.SCOSCHE: _parse_scosche,
}


def parse_vendor_sheet(
    raw: bytes | str, layout: VendorLayout, delimiter: str | None = None
) -> VendorSheetResult:
    """Parse one vendor export into accessory records keyed by storage key.

    Args:
        raw: File contents (bytes are decoded, UTF-16LE BOM aware)
        layout: Which vendor layout the sheet uses
        delimiter: Force a delimiter instead of detecting it

    Returns:
        VendorSheetResult with records and row counters

    Raises:
        ValueError: If a SCOSCHE sheet has none of the known header formats
    """
    rows = read_vendor_rows(decode_vendor_bytes(raw), delimiter)
    result = _PARSERS[VendorLayout(layout)](rows)
    result.stats.vehicle_keys = len(result.records)
    log_import_summary(VendorLayout(layout).value, **result.stats.model_dump())
    return result


def merge_into(
    master: dict[str, VehicleAccessoryRecord],
    incoming: Mapping[str, VehicleAccessoryRecord],
) -> dict[str, VehicleAccessoryRecord]:
    """Union ``incoming`` into ``master`` per key and sub-field.

    Keys are matched through normalize_key so "2015|Chevy|Tahoe" lands on an
    existing "2015|Chevrolet|Tahoe". Incoming keys are stored in storage_key
    form, and when two spellings of one vehicle meet the smaller one is kept,
    so the result is idempotent and order-independent. ``master`` is modified
    and returned.
    """
    index: dict[str, str] = {}
    for key in master:
        try:
            index[normalize_key(key)] = key
        except ValueError:
            continue

    merged = added = 0
    for key, record in incoming.items():
        try:
            normalized = normalize_key(key)
            spelling = storage_key(*split_key(key))
        except ValueError:
            logger.warning("Skipping accessory key without year/make/model: %r", key)
            continue
        target_key = index.get(normalized)
        if target_key is None:
            master[spelling] = record.model_copy(deep=True)
            index[normalized] = spelling
            added += 1
        else:
            master[target_key].merge(record)
            if spelling < target_key:
                master[spelling] = master.pop(target_key)
                index[normalized] = spelling
            merged += 1
        bubble_dash_kits(master[index[normalized]])

    logger.info("Merged accessory table: %d keys merged, %d keys added", merged, added)
    return master


def dump_accessory_table(table: Mapping[str, VehicleAccessoryRecord], path: str | Path) -> None:
    """Write the table as 2-space-indented JSON with sorted keys and parts."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {key: table[key].to_json() for key in sorted(table)}
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    logger.info("Wrote %d accessory keys to %s", len(data), path)


def load_accessory_json(path: str | Path) -> dict[str, VehicleAccessoryRecord]:
    path = Path(path)
    if not path.exists():
        return {}
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    return parse_accessory_rows(data, path.name)


# =============================================================================
# Speaker fitment sheet
# =============================================================================

_LOC_ROLE_RE = re.compile(r"^(REAR )?LOC\s*(\d+) ROLE$")


def parse_sizes_cell(cell: Any) -> list[str]:
    """Split an "A & B" size cell into canonical sizes, dropping blanks."""
    sizes: list[str] = []
    for part in clean(cell).split("&"):
        size = canonicalize(part)
        if size and size not in sizes:
            sizes.append(size)
    return sizes


def parse_fitment_sheet(raw: bytes | str, delimiter: str | None = None) -> list[VehicleFitmentRecord]:
    """Parse the speaker-location sheet into fitment records.

    Header columns: MAKE, MODEL, TRIM, YEAR START / START YEAR,
    YEAR END / END YEAR, LOC{n} ROLE, LOC{n} SIZE A/B and the REAR LOC{n}
    equivalents. A missing end year means a single-year record.
    """
    rows = read_vendor_rows(decode_vendor_bytes(raw), delimiter)
    if len(rows) < 2:
        return []
    rows = _pad(rows)
    header = [" ".join(clean(h).upper().split()) for h in rows[0]]

    def _exact(*names: str) -> int:
        for name in names:
            if name in header:
                return header.index(name)
        return -1

    col_make = _exact("MAKE")
    col_model = _exact("MODEL")
    col_trim = _exact("TRIM")
    col_start = _exact("YEAR START", "START YEAR")
    col_end = _exact("YEAR END", "END YEAR", "COLUMN2")
    if -1 in (col_make, col_model, col_start):
        raise ValueError("Fitment sheet needs MAKE, MODEL and YEAR START columns")

    # (role col, size A col, size B col), front locations before rear
    locations: list[tuple[bool, int, int, int, int]] = []
    for idx, name in enumerate(header):
        match = _LOC_ROLE_RE.match(name)
        if not match:
            continue
        prefix = f"{match.group(1) or ''}LOC{match.group(2)}"
        locations.append(
            (
                bool(match.group(1)),
                int(match.group(2)),
                idx,
                _exact(f"{prefix} SIZE A"),
                _exact(f"{prefix} SIZE B"),
            )
        )
    locations.sort()

    records: list[VehicleFitmentRecord] = []
    skipped = 0
    for row in rows[1:]:
        make, model = clean(row[col_make]), clean(row[col_model])
        start_cell = row[col_start]
        end_cell = row[col_end] if col_end != -1 and clean(row[col_end]) else start_cell
        years = parse_year_range(start_cell, end_cell)
        if not make or not model or years is None:
            skipped += 1
            continue

        row_locations = []
        for _, _, role_idx, size_a, size_b in locations:
            role = clean(row[role_idx])
            sizes = []
            for size_idx in (size_a, size_b):
                if size_idx == -1:
                    continue
                for size in parse_sizes_cell(row[size_idx]):
                    if size not in sizes:
                        sizes.append(size)
            if role and sizes:
                row_locations.append({"role": role, "sizes": sizes})
        if not row_locations:
            skipped += 1
            continue

        trim = clean(row[col_trim]) if col_trim != -1 else ""
        records.append(
            VehicleFitmentRecord(
                year_start=years[0],
                year_end=years[1],
                make=normalize_make(make),
                model=model,
                trim=trim or None,
                locations=row_locations,
                source="fitment sheet",
            )
        )

    log_import_summary("fitment", records=len(records), skipped_rows=skipped)
    return records
