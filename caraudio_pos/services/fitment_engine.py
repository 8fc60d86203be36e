"""Fitment matching engine.

Given a vehicle selection this resolves the speaker fitment record and the
accessory record, then filters a product catalog down to what fits:

    - Speakers: any product categorized as a speaker whose size is within
      0.35" of a vehicle opening (ovals by exact canonical size only).
    - Install parts: any product whose code equals or starts with a part
      number listed for the vehicle (so "95-7810-BK" matches "95-7810").

No match is never an error; callers get None or an empty list.
"""

import logging
from collections.abc import Iterable
from typing import Any

from caraudio_pos.core.enums import DinSize, ProductBucket, SortOrder
from caraudio_pos.models.accessory import VehicleAccessoryRecord
from caraudio_pos.models.inventory import Product
from caraudio_pos.models.vehicle import DinSizes, Vehicle, VehicleFitmentRecord
from caraudio_pos.services.fitment_store import AccessoryTable, FitmentDataStore
from caraudio_pos.services.option_cache import OptionCache
from caraudio_pos.utils.sizes import canonicalize, is_oval, parse_inches, sizes_match

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SPEAKER_CATEGORY_KEYWORDS = ("speaker", "coax", "component", "tweeter", "midrange")

# (keyword, label) checked in order against the lowercased role
LOCATION_LABELS: list[tuple[tuple[str, ...], str]] = [
    (("front", "door"), "Front Door"),
    (("rear", "door"), "Rear Door"),
    (("dash",), "Dash"),
    (("center",), "Center"),
    (("pillar",), "A-Pillar"),
    (("sail",), "Sail Panel"),
    (("deck",), "Rear Deck"),
    (("kick",), "Kick Panel"),
]


# =============================================================================
# Product helpers
# =============================================================================


def is_speaker(product: Product) -> bool:
    category = (product.category or "").lower()
    return any(keyword in category for keyword in SPEAKER_CATEGORY_KEYWORDS)


def product_sizes(product: Product) -> list[str]:
    sizes = list(product.speaker_sizes)
    if product.speaker_size:
        sizes.append(product.speaker_size)
    return [s for s in sizes if s and str(s).strip()]


def product_code(product: Product) -> str:
    """Identifying code: SKU, then part number, then name."""
    for candidate in (product.sku, product.part_number, product.name):
        if candidate and candidate.strip():
            return candidate.strip().upper()
    return ""


def normalize_location_label(role: str) -> str:
    """Collapse vendor role names ("LF Door", "Rear Deck 6x9") to UI labels."""
    lowered = (role or "").lower()
    for keywords, label in LOCATION_LABELS:
        if all(k in lowered for k in keywords):
            return label
    cleaned = " ".join(role.replace("_", " ").replace("-", " ").split())
    return cleaned.title()


def bucket_for_product(product: Product) -> ProductBucket:
    """Place a product in one of the recommendation buckets."""
    category = (product.category or "").lower()
    code = product_code(product)

    if is_speaker(product) or product_sizes(product):
        return ProductBucket.SPEAKERS
    if "radio" in category or "head unit" in category:
        return ProductBucket.RADIOS
    if "dash" in category or "kit" in category or code.startswith(("95-", "99-")):
        return ProductBucket.DASH_KITS
    if "harness" in category or code.startswith(("70-", "71-")) or "HRN-" in code:
        return ProductBucket.HARNESSES
    if "antenna" in category or code.startswith("40-"):
        return ProductBucket.ANTENNAS
    if (
        "interface" in category
        or "module" in category
        or code.startswith("ADS-")
        or "RR" in code
    ):
        return ProductBucket.INTERFACES
    return ProductBucket.ACCESSORIES


# =============================================================================
# Matching (pure)
# =============================================================================


def match_products_to_vehicle(
    fitment: VehicleFitmentRecord | None, products: Iterable[Product]
) -> list[Product]:
    """Speakers whose size fits any opening of the vehicle, catalog order."""
    if fitment is None:
        return []
    vehicle_sizes = fitment.all_sizes()
    if not vehicle_sizes:
        return []

    matched = []
    for product in products:
        if not is_speaker(product):
            continue
        if any(
            sizes_match(size, vehicle_size)
            for size in product_sizes(product)
            for vehicle_size in vehicle_sizes
        ):
            matched.append(product)
    return matched


def match_products_to_parts(
    part_numbers: Iterable[str], products: Iterable[Product]
) -> list[Product]:
    """Products whose code equals or starts with an allowed part number."""
    allowed = {p.strip().upper() for p in part_numbers if p and p.strip()}
    if not allowed:
        return []
    matched = []
    for product in products:
        code = product_code(product)
        if code and any(code == part or code.startswith(part) for part in allowed):
            matched.append(product)
    return matched


def allowed_din_sizes(record: VehicleAccessoryRecord | None) -> DinSizes:
    if record is None:
        return DinSizes()
    return DinSizes(
        single_din=bool(record.dash_kits.single_din),
        double_din=bool(record.dash_kits.double_din),
    )


def speakers_by_location(fitment: VehicleFitmentRecord | None) -> dict[str, list[str]]:
    """Canonical sizes grouped by display location label."""
    grouped: dict[str, list[str]] = {}
    if fitment is None:
        return grouped
    for loc in fitment.locations:
        if not loc.sizes:
            continue
        label = normalize_location_label(loc.role)
        sizes = grouped.setdefault(label, [])
        for size in loc.sizes:
            size = canonicalize(size)
            if size not in sizes:
                sizes.append(size)
    return grouped


def dedupe_products(*groups: Iterable[Product]) -> list[Product]:
    seen: set[str] = set()
    merged = []
    for group in groups:
        for product in group:
            if product.id not in seen:
                seen.add(product.id)
                merged.append(product)
    return merged


def filter_recommendations(
    products: list[Product],
    bucket: ProductBucket | None = None,
    brand: str | None = None,
    location: str | None = None,
    din: DinSize | None = None,
    sort: SortOrder = SortOrder.RECOMMENDED,
    fitment: VehicleFitmentRecord | None = None,
    din_sizes: DinSizes | None = None,
) -> list[Product]:
    """Narrow an already-resolved recommendation list.

    Args:
        products: Output of recommend()
        bucket: Keep one bucket only (None = all)
        brand: Case-insensitive brand equality (None = all)
        location: Location label from speakers_by_location(); keeps speakers
            whose size is within tolerance of that location's sizes
        din: Drop radios when the vehicle has no dash kit for this DIN size
        sort: recommended (input order), price_low, price_high or name
        fitment: Needed for the location filter
        din_sizes: Needed for the DIN filter

    Returns:
        Filtered, sorted copy of ``products``
    """
    result = list(products)

    if bucket is not None:
        result = [p for p in result if bucket_for_product(p) == bucket]

    if brand:
        wanted = brand.strip().lower()
        result = [p for p in result if (p.brand or "").strip().lower() == wanted]

    if location:
        location_sizes = speakers_by_location(fitment).get(location, [])
        usable = [s for s in location_sizes if is_oval(s) or parse_inches(s) is not None]
        result = [p for p in result if is_speaker(p)]
        if usable:
            result = [
                p
                for p in result
                if any(sizes_match(ps, ls) for ps in product_sizes(p) for ls in usable)
            ]

    if din is not None:
        allowed = din_sizes or DinSizes()
        fits = allowed.single_din if din == DinSize.SINGLE else allowed.double_din
        if not fits:
            result = [p for p in result if bucket_for_product(p) != ProductBucket.RADIOS]

    if sort == SortOrder.PRICE_LOW:
        result.sort(key=lambda p: p.price or 0.0)
    elif sort == SortOrder.PRICE_HIGH:
        result.sort(key=lambda p: p.price or 0.0, reverse=True)
    elif sort == SortOrder.NAME:
        result.sort(key=lambda p: (p.name or "").casefold())

    return result


# =============================================================================
# Engine (snapshot-backed)
# =============================================================================


class FitmentEngine:
    """Query interface over one fitment snapshot."""

    def __init__(
        self,
        store: FitmentDataStore,
        accessories: AccessoryTable | None = None,
        cache: OptionCache | None = None,
    ) -> None:
        self.store = store
        self.accessories = accessories or AccessoryTable()
        self.cache = cache or OptionCache()

    def reload(self, store: FitmentDataStore, accessories: AccessoryTable) -> None:
        """Swap in a new snapshot and drop cached option lists."""
        self.store = store
        self.accessories = accessories
        self.cache.invalidate()
        logger.info(
            "Fitment snapshot reloaded: %d vehicle keys, %d accessory keys",
            len(store),
            len(accessories),
        )

    # -------------------------------------------------------------------------
    # Option lists
    # -------------------------------------------------------------------------

    def get_year_options(self) -> list[int]:
        return self.cache.get_or_load(OptionCache.make_key("years"), self.store.years)

    def get_make_options(self, year: int) -> list[str]:
        return self.cache.get_or_load(
            OptionCache.make_key("makes", year), lambda: self.store.makes(year)
        )

    def get_model_options(self, year: int, make: str) -> list[str]:
        return self.cache.get_or_load(
            OptionCache.make_key("models", year, make),
            lambda: self.store.models(year, make),
        )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def find_fitment(
        self, year: Any, make: Any, model: Any, trim: Any = None
    ) -> VehicleFitmentRecord | None:
        return self.store.lookup(year, make, model, trim)

    def resolve(self, vehicle: Vehicle) -> VehicleFitmentRecord | None:
        return self.find_fitment(vehicle.year, vehicle.make, vehicle.model, vehicle.trim)

    def accessory_record(self, vehicle: Vehicle) -> VehicleAccessoryRecord | None:
        return self.accessories.get(vehicle.year, vehicle.make, vehicle.model, vehicle.trim)

    def vehicle_part_numbers(self, vehicle: Vehicle) -> set[str]:
        """Every part number listed for the vehicle, any block or vendor."""
        parts: set[str] = set()
        record = self.accessory_record(vehicle)
        if record is not None:
            parts |= record.all_part_numbers()
        fitment = self.resolve(vehicle)
        if fitment is not None and fitment.radio is not None:
            parts |= fitment.radio.part_numbers()
        return parts

    # -------------------------------------------------------------------------
    # Matching
    # -------------------------------------------------------------------------

    def match_accessories_to_vehicle(
        self, vehicle: Vehicle, products: Iterable[Product]
    ) -> list[Product]:
        return match_products_to_parts(self.vehicle_part_numbers(vehicle), products)

    def get_allowed_din_sizes(self, vehicle: Vehicle) -> DinSizes:
        return allowed_din_sizes(self.accessory_record(vehicle))

    def recommend(self, vehicle: Vehicle, products: Iterable[Product]) -> list[Product]:
        """Speaker matches then accessory matches, deduplicated by id."""
        catalog = list(products)
        speakers = match_products_to_vehicle(self.resolve(vehicle), catalog)
        accessories = self.match_accessories_to_vehicle(vehicle, catalog)
        return dedupe_products(speakers, accessories)
