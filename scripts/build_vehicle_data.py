#!/usr/bin/env python
"""Build the fitment snapshot files from vendor CSV exports.

Examples:
  # Merge a Metra and a Scosche export into the accessory table
  python scripts/build_vehicle_data.py --metra exports/metra.csv --scosche exports/scosche.csv

  # Rebuild the speaker fitment records from the location sheet
  python scripts/build_vehicle_data.py --fitment-sheet exports/speaker_locations.csv
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from caraudio_pos.core.config import get_settings
from caraudio_pos.services.vendor_import import (
    VendorLayout,
    dump_accessory_table,
    load_accessory_json,
    merge_into,
    parse_fitment_sheet,
    parse_vendor_sheet,
)


def build_accessories(sources: list[tuple[VendorLayout, Path]], output: Path, fresh: bool) -> None:
    master = {} if fresh else load_accessory_json(output)
    print(f"Starting from {len(master)} accessory keys")

    for layout, path in sources:
        result = parse_vendor_sheet(path.read_bytes(), layout)
        stats = result.stats
        print(
            f"  {layout.value} {path.name}: {len(result.records)} keys "
            f"(data rows={stats.data_rows}, header rows={stats.header_rows}, skipped={stats.skipped_rows})"
        )
        merge_into(master, result.records)

    dump_accessory_table(master, output)
    print(f"Wrote {len(master)} accessory keys to {output}")


def build_fitment(sheet: Path, output: Path) -> None:
    records = parse_fitment_sheet(sheet.read_bytes())
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as f:
        json.dump(
            {"records": [r.model_dump(by_alias=True, exclude_none=True) for r in records]},
            f,
            indent=2,
        )
        f.write("\n")
    print(f"Wrote {len(records)} fitment records to {output}")


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Build vehicle fitment and accessory JSON from vendor sheets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--metra", type=Path, action="append", default=[], help="Metra export (repeatable)")
    parser.add_argument("--scosche", type=Path, action="append", default=[], help="Scosche export (repeatable)")
    parser.add_argument("--fitment-sheet", type=Path, help="Speaker location sheet")
    parser.add_argument("--accessories-out", type=Path, default=Path(settings.accessory_data_path))
    parser.add_argument("--fitment-out", type=Path, default=Path(settings.fitment_data_path))
    parser.add_argument("--fresh", action="store_true", help="Ignore the existing accessory table")
    args = parser.parse_args()

    sources = [(VendorLayout.METRA, p) for p in args.metra] + [
        (VendorLayout.SCOSCHE, p) for p in args.scosche
    ]
    if not sources and not args.fitment_sheet:
        parser.error("nothing to do: pass --metra, --scosche or --fitment-sheet")

    missing = [p for _, p in sources if not p.exists()]
    if args.fitment_sheet and not args.fitment_sheet.exists():
        missing.append(args.fitment_sheet)
    if missing:
        print(f"Error: file not found: {', '.join(str(p) for p in missing)}")
        sys.exit(1)

    if sources:
        build_accessories(sources, args.accessories_out, args.fresh)
    if args.fitment_sheet:
        build_fitment(args.fitment_sheet, args.fitment_out)


if __name__ == "__main__":
    main()
