"""FastAPI route definitions for the fitment and inventory API."""

from collections import Counter
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from slowapi import Limiter
from slowapi.util import get_remote_address

from caraudio_pos.api.deps import (
    get_allocation_engine,
    get_fitment_engine,
    load_configured_snapshot,
    verify_admin_key,
)
from caraudio_pos.core.config import Settings, get_settings
from caraudio_pos.core.enums import DinSize, ProductBucket, SortOrder, UnitStatus
from caraudio_pos.core.errors import (
    BackorderDeclinedError,
    InvalidQuantityError,
    InvalidTransitionError,
    InventoryError,
    SoldUnitError,
)
from caraudio_pos.core.logging import log_error, logger
from caraudio_pos.models.inventory import CheckInResult, OrderItem, Product, ProductUnit
from caraudio_pos.models.vehicle import DinSizes, Vehicle, VehicleFitmentRecord
from caraudio_pos.services.allocation import AllocationEngine
from caraudio_pos.services.fitment_engine import (
    FitmentEngine,
    bucket_for_product,
    filter_recommendations,
    speakers_by_location,
)

router = APIRouter()

# Rate limiter (write endpoints only)
limiter = Limiter(key_func=get_remote_address)


def _write_limit() -> str:
    return get_settings().rate_limit


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecommendationRequest(_CamelModel):
    vehicle: Vehicle
    products: list[Product] = []
    bucket: Optional[str] = None  # bucket label, "All" or None
    brand: Optional[str] = None
    location: Optional[str] = None
    din: Optional[DinSize] = None
    sort: SortOrder = SortOrder.RECOMMENDED


class RecommendationResponse(_CamelModel):
    fitment: Optional[VehicleFitmentRecord] = None
    speakers_by_location: dict[str, list[str]] = {}
    din_sizes: DinSizes
    bucket_counts: dict[str, int] = {}
    products: list[Product] = []


class ProductUpsert(_CamelModel):
    sku: Optional[str] = None
    part_number: Optional[str] = None
    name: str = ""
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    speaker_size: Optional[str] = None
    speaker_sizes: list[str] = []


class OrderItemRequest(_CamelModel):
    product_id: str
    quantity: int
    confirm_backorder: bool = False
    order_item_id: Optional[str] = None
    customer_id: Optional[str] = None


class CheckInRequest(_CamelModel):
    qty_received: Optional[int] = None
    unit_costs: Optional[list[float]] = None
    serials: Optional[list[str]] = None
    spot: Optional[str] = None


def _http_error(exc: InventoryError) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidQuantityError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, (BackorderDeclinedError, SoldUnitError, InvalidTransitionError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ---------------------------------------------------------------------------
# Vehicle options
# ---------------------------------------------------------------------------


@router.get("/vehicles/years")
async def get_years(engine: Annotated[FitmentEngine, Depends(get_fitment_engine)]):
    """Distinct years across all fitment records, newest first."""
    return {"years": engine.get_year_options()}


@router.get("/vehicles/makes")
async def get_makes(year: int, engine: Annotated[FitmentEngine, Depends(get_fitment_engine)]):
    return {"makes": engine.get_make_options(year)}


@router.get("/vehicles/models")
async def get_models(
    year: int, make: str, engine: Annotated[FitmentEngine, Depends(get_fitment_engine)]
):
    return {"models": engine.get_model_options(year, make)}


# ---------------------------------------------------------------------------
# Fitment
# ---------------------------------------------------------------------------


@router.get("/fitment")
async def get_fitment(
    year: int,
    make: str,
    model: str,
    engine: Annotated[FitmentEngine, Depends(get_fitment_engine)],
    trim: Optional[str] = None,
):
    """Speaker fitment record for a vehicle, or null when none is known."""
    record = engine.find_fitment(year, make, model, trim)
    return {"fitment": record.model_dump(by_alias=True) if record else None}


@router.get("/fitment/din-sizes", response_model=DinSizes)
async def get_din_sizes(
    year: int,
    make: str,
    model: str,
    engine: Annotated[FitmentEngine, Depends(get_fitment_engine)],
    trim: Optional[str] = None,
):
    return engine.get_allowed_din_sizes(Vehicle(year=year, make=make, model=model, trim=trim))


@router.post("/fitment/recommendations", response_model=RecommendationResponse)
async def recommend(
    req: RecommendationRequest,
    engine: Annotated[FitmentEngine, Depends(get_fitment_engine)],
):
    """Speakers and install parts from ``products`` that fit the vehicle.

    ``bucketCounts`` is computed before the bucket/brand/location/DIN
    filters so the UI can show counts for every tab.
    """
    fitment = engine.resolve(req.vehicle)
    din_sizes = engine.get_allowed_din_sizes(req.vehicle)
    matched = engine.recommend(req.vehicle, req.products)

    filtered = filter_recommendations(
        matched,
        bucket=ProductBucket.from_string(req.bucket),
        brand=req.brand,
        location=req.location,
        din=req.din,
        sort=req.sort,
        fitment=fitment,
        din_sizes=din_sizes,
    )
    counts = Counter(bucket_for_product(p).value for p in matched)

    return RecommendationResponse(
        fitment=fitment,
        speakers_by_location=speakers_by_location(fitment),
        din_sizes=din_sizes,
        bucket_counts=dict(counts),
        products=filtered,
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


@router.put("/products/{product_id}")
async def upsert_product(
    product_id: str,
    body: ProductUpsert,
    allocation: Annotated[AllocationEngine, Depends(get_allocation_engine)],
):
    """Create or update catalog fields; cost history is kept."""
    existing = await allocation.repo.get_product(product_id)
    fields = body.model_dump(exclude_unset=True)
    if existing is None:
        product = Product(id=product_id, **body.model_dump())
    else:
        product = existing.model_copy(update=fields)
    await allocation.repo.save_product(product)
    return {"product": product.model_dump(by_alias=True, mode="json")}


@router.get("/products/{product_id}/units")
async def list_product_units(
    product_id: str,
    allocation: Annotated[AllocationEngine, Depends(get_allocation_engine)],
    status: Optional[str] = None,
):
    """Units of a product in FIFO order, optionally filtered by status."""
    unit_status = UnitStatus.from_string(status)
    if status and unit_status is None:
        raise HTTPException(status_code=422, detail=f"Unknown unit status: {status}")
    units = await allocation.repo.list_units(product_id, unit_status)
    return {"units": [u.model_dump(by_alias=True, mode="json") for u in units]}


@router.post("/orders/{order_id}/items")
@limiter.limit(_write_limit)
async def add_order_item(
    request: Request,
    order_id: str,
    body: OrderItemRequest,
    allocation: Annotated[AllocationEngine, Depends(get_allocation_engine)],
):
    """Allocate an order line FIFO.

    A shortfall needs ``confirmBackorder: true``; otherwise the line is
    rejected with 409 and nothing is written.
    """

    async def prompt_backorder(shortfall: int) -> bool:
        return body.confirm_backorder

    try:
        item: OrderItem = await allocation.process_order_item(
            order_id,
            body.product_id,
            body.quantity,
            prompt_backorder=prompt_backorder,
            order_item_id=body.order_item_id,
            customer_id=body.customer_id,
        )
    except InventoryError as e:
        raise _http_error(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return {"orderItem": item.model_dump(by_alias=True, mode="json")}


@router.post("/products/{product_id}/check-in")
@limiter.limit(_write_limit)
async def check_in(
    request: Request,
    product_id: str,
    body: CheckInRequest,
    allocation: Annotated[AllocationEngine, Depends(get_allocation_engine)],
):
    """Receive units; backorders are filled oldest-first before free stock."""
    qty = body.qty_received if body.qty_received is not None else len(body.unit_costs or [])
    try:
        result: CheckInResult = await allocation.check_in_product(
            product_id,
            qty,
            unit_costs=body.unit_costs,
            serials=body.serials,
            spot=body.spot,
        )
    except InventoryError as e:
        raise _http_error(e) from e
    return result.model_dump(by_alias=True, mode="json")


@router.post("/units/{unit_id}/sell")
@limiter.limit(_write_limit)
async def sell_unit(
    request: Request,
    unit_id: str,
    allocation: Annotated[AllocationEngine, Depends(get_allocation_engine)],
):
    try:
        unit: ProductUnit = await allocation.sell_unit(unit_id)
    except InventoryError as e:
        raise _http_error(e) from e
    return {"unit": unit.model_dump(by_alias=True, mode="json")}


@router.delete("/units/{unit_id}")
@limiter.limit(_write_limit)
async def delete_unit(
    request: Request,
    unit_id: str,
    allocation: Annotated[AllocationEngine, Depends(get_allocation_engine)],
):
    try:
        await allocation.delete_unit(unit_id)
    except InventoryError as e:
        raise _http_error(e) from e
    return {"deleted": unit_id}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/admin/reload")
async def reload_snapshot(
    engine: Annotated[FitmentEngine, Depends(get_fitment_engine)],
    settings: Annotated[Settings, Depends(get_settings)],
    _admin: Annotated[bool, Depends(verify_admin_key)],
):
    """
    Reload the fitment snapshot and drop cached option lists.

    Requires X-Admin-Key header for authentication.
    """
    try:
        store, accessories = await load_configured_snapshot(settings)
    except (OSError, ValueError) as e:
        log_error("Failed to reload fitment snapshot", e)
        raise HTTPException(status_code=500, detail="Failed to reload fitment data")
    engine.reload(store, accessories)
    logger.info(f"Reloaded fitment snapshot: {len(store)} vehicle keys")
    return {"vehicleKeys": len(store), "accessoryKeys": len(accessories)}
