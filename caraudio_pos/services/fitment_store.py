"""Read-only fitment snapshot: speaker openings and accessory part numbers.

Both tables are built once per load (startup or /admin/reload) and never
mutated afterwards. Records from several sources are merged while the
snapshot is built so a lookup sees at most one record per vehicle key.
"""

import asyncio
import json
import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from caraudio_pos.core.logging import log_db_query, log_external_call
from caraudio_pos.models.accessory import VehicleAccessoryRecord
from caraudio_pos.models.vehicle import SpeakerLocation, VehicleFitmentRecord
from caraudio_pos.utils.vehicle_key import (
    build_key,
    key_part,
    lookup_with_fallback,
    normalize_key,
    normalize_make,
)

logger = logging.getLogger(__name__)

FITMENT_TABLE = "vehicle_speaker_fitment"
_PAGE_SIZE = 1000


# =============================================================================
# Speaker fitment
# =============================================================================


def merge_locations(
    first: list[SpeakerLocation], second: list[SpeakerLocation]
) -> list[SpeakerLocation]:
    """Union two location lists by role (case-insensitive), keeping order."""
    merged: dict[str, SpeakerLocation] = {}
    for loc in [*first, *second]:
        role_key = loc.role.strip().lower()
        existing = merged.get(role_key)
        if existing is None:
            merged[role_key] = SpeakerLocation(role=loc.role, sizes=list(loc.sizes))
            continue
        for size in loc.sizes:
            if size not in existing.sizes:
                existing.sizes.append(size)
    return list(merged.values())


class FitmentDataStore:
    """Speaker fitment records indexed per (year, make, model, trim)."""

    def __init__(self, records: Iterable[VehicleFitmentRecord] = ()) -> None:
        self._index: dict[str, VehicleFitmentRecord] = {}
        # lowercase -> first-seen display casing
        self._make_names: dict[str, str] = {}
        self._model_names: dict[tuple[str, str], str] = {}
        self._source_count = 0
        for record in records:
            self.add(record)

    def add(self, record: VehicleFitmentRecord) -> None:
        """Index a record for every year it covers, merging on collision."""
        self._source_count += 1
        make_display = normalize_make(record.make)
        make_lower = key_part(make_display)
        self._make_names.setdefault(make_lower, make_display)
        self._model_names.setdefault(
            (make_lower, key_part(record.model)), " ".join(record.model.split())
        )

        for year in range(record.year_start, record.year_end + 1):
            key = build_key(year, make_display, record.model, record.trim)
            existing = self._index.get(key)
            if existing is None:
                self._index[key] = record
                continue
            self._index[key] = existing.model_copy(
                update={
                    "year_start": year,
                    "year_end": year,
                    "locations": merge_locations(existing.locations, record.locations),
                    "source": "merged",
                }
            )

    def lookup(
        self, year: Any, make: Any, model: Any, trim: Any = None
    ) -> VehicleFitmentRecord | None:
        return lookup_with_fallback(self._index, year, make, model, trim)

    def years(self) -> list[int]:
        return sorted({int(key.split("|", 1)[0]) for key in self._index}, reverse=True)

    def makes(self, year: int) -> list[str]:
        prefix = f"{year}|"
        found = {key.split("|")[1] for key in self._index if key.startswith(prefix)}
        return sorted(self._make_names.get(m, m) for m in found)

    def models(self, year: int, make: str) -> list[str]:
        make_lower = key_part(normalize_make(make))
        prefix = f"{year}|{make_lower}|"
        found = {key.split("|")[2] for key in self._index if key.startswith(prefix)}
        return sorted(self._model_names.get((make_lower, m), m) for m in found)

    def records(self) -> Iterator[VehicleFitmentRecord]:
        """Distinct indexed records (merged records appear once per year)."""
        seen: set[int] = set()
        for record in self._index.values():
            if id(record) not in seen:
                seen.add(id(record))
                yield record

    def __len__(self) -> int:
        return len(self._index)


# =============================================================================
# Accessories
# =============================================================================


class AccessoryTable:
    """Accessory records keyed by normalized vehicle key."""

    def __init__(self, records: Mapping[str, VehicleAccessoryRecord] | None = None) -> None:
        self._records: dict[str, VehicleAccessoryRecord] = {}
        skipped = 0
        for raw_key, record in (records or {}).items():
            try:
                key = normalize_key(raw_key)
            except ValueError:
                skipped += 1
                continue
            existing = self._records.get(key)
            if existing is None:
                self._records[key] = record
            else:
                existing.merge(record)
        if skipped:
            logger.warning("Skipped %d accessory keys without year/make/model", skipped)

    def get(
        self, year: Any, make: Any, model: Any, trim: Any = None
    ) -> VehicleAccessoryRecord | None:
        return lookup_with_fallback(self._records, year, make, model, trim)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return normalize_key(key) in self._records


# =============================================================================
# Loaders
# =============================================================================


def _parse_fitment_rows(rows: Iterable[Any], source: str) -> list[VehicleFitmentRecord]:
    records: list[VehicleFitmentRecord] = []
    invalid = 0
    for row in rows:
        try:
            record = VehicleFitmentRecord.model_validate(row)
        except ValidationError as e:
            invalid += 1
            logger.debug("Invalid fitment row from %s: %s", source, e)
            continue
        if record.source is None:
            record.source = source
        records.append(record)
    if invalid:
        logger.warning("Skipped %d invalid fitment rows from %s", invalid, source)
    return records


def parse_accessory_rows(data: Mapping[str, Any], source: str) -> dict[str, VehicleAccessoryRecord]:
    """Validate {vehicle key: record} rows, skipping and counting bad ones."""
    records: dict[str, VehicleAccessoryRecord] = {}
    invalid = 0
    for key, value in data.items():
        try:
            records[key] = VehicleAccessoryRecord.model_validate(value)
        except ValidationError as e:
            invalid += 1
            logger.debug("Invalid accessory record %s from %s: %s", key, source, e)
    if invalid:
        logger.warning("Skipped %d invalid accessory records from %s", invalid, source)
    return records


def load_fitment_records(path: str | Path) -> list[VehicleFitmentRecord]:
    """Load speaker fitment records from a JSON file.

    Accepts a list of records or {"records": [...]}. A missing file yields an
    empty list so the API can start before the first pipeline run.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Fitment data not found at %s", path)
        return []
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records", [])
    records = _parse_fitment_rows(data, path.name)
    logger.info("Loaded %d fitment records from %s", len(records), path)
    return records


def load_accessory_table(path: str | Path) -> AccessoryTable:
    """Load the merged accessory JSON ({vehicle key: record})."""
    path = Path(path)
    if not path.exists():
        logger.warning("Accessory data not found at %s", path)
        return AccessoryTable()
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    table = AccessoryTable(parse_accessory_rows(data, path.name))
    logger.info("Loaded %d accessory keys from %s", len(table), path)
    return table


async def fetch_fitment_records(client: Any) -> list[VehicleFitmentRecord]:
    """Fetch speaker fitment rows from Supabase, page by page."""
    start = time.time()
    rows: list[dict[str, Any]] = []
    offset = 0

    def _fetch_page(lo: int, hi: int):
        return client.table(FITMENT_TABLE).select("*").range(lo, hi).execute()

    while True:
        result = await asyncio.to_thread(_fetch_page, offset, offset + _PAGE_SIZE - 1)
        page = [row for row in (result.data or []) if isinstance(row, dict)]
        rows.extend(page)
        if len(page) < _PAGE_SIZE:
            break
        offset += _PAGE_SIZE

    duration_ms = (time.time() - start) * 1000
    log_db_query("select", FITMENT_TABLE, duration_ms)
    log_external_call("supabase", f"fetch {FITMENT_TABLE}", True, duration_ms)
    return _parse_fitment_rows(rows, FITMENT_TABLE)


async def load_snapshot(
    fitment_source: str,
    fitment_path: str | Path,
    accessory_path: str | Path,
    client: Any = None,
) -> tuple[FitmentDataStore, AccessoryTable]:
    """Build both snapshot tables from the configured sources."""
    if fitment_source == "supabase":
        records = await fetch_fitment_records(client)
    else:
        records = await asyncio.to_thread(load_fitment_records, fitment_path)
    accessories = await asyncio.to_thread(load_accessory_table, accessory_path)
    return FitmentDataStore(records), accessories
