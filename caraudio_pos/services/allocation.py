"""Inventory allocation engine.

Units are serialized: every physical item received is one ``ProductUnit``.
Order lines reserve units oldest-first (``received_at``, then ``seq``); any
shortfall becomes a backorder that later check-ins fill oldest-first before
the remaining units go to free stock.

Every read-then-write sequence for a product runs inside the repository's
``product_lock`` and reserves through ``reserve_unit``, which only succeeds
while a unit is still in stock.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from caraudio_pos.core.enums import (
    UNIT_TRANSITIONS,
    BackorderStatus,
    OrderStatus,
    TaskType,
    UnitStatus,
)
from caraudio_pos.core.errors import (
    BackorderDeclinedError,
    InvalidQuantityError,
    InvalidTransitionError,
    ProductNotFoundError,
    SoldUnitError,
    UnitNotFoundError,
)
from caraudio_pos.core.logging import log_inventory_event
from caraudio_pos.models.inventory import (
    AllocationResult,
    Backorder,
    BackorderAction,
    CheckInResult,
    Order,
    OrderItem,
    Product,
    ProductUnit,
    Task,
    utcnow,
)
from caraudio_pos.services.counters import next_order_number, next_unit_label
from caraudio_pos.services.inventory_repo import InventoryRepository

logger = logging.getLogger(__name__)

PromptBackorder = Callable[[int], Awaitable[bool]]

UNIT_SEQ_COUNTER = "unit_seq"
BACKORDER_SEQ_COUNTER = "backorder_seq"
AVG_COST_PRECISION = 4


def _new_id() -> str:
    return uuid.uuid4().hex


def validate_quantity(value: Any, field: str = "quantity") -> int:
    """Return ``value`` as a positive int or raise InvalidQuantityError."""
    if isinstance(value, bool) or value is None:
        raise InvalidQuantityError(f"{field} must be a positive integer")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidQuantityError(f"{field} must be a positive integer") from e
    if number != number or number <= 0 or not number.is_integer():
        raise InvalidQuantityError(f"{field} must be a positive integer")
    return int(number)


def _validate_costs(costs: Sequence[Any]) -> list[float | None]:
    cleaned: list[float | None] = []
    for cost in costs:
        if cost is None:
            cleaned.append(None)
            continue
        try:
            value = float(cost)
        except (TypeError, ValueError) as e:
            raise InvalidQuantityError(f"Invalid unit cost: {cost!r}") from e
        if value != value or value < 0:
            raise InvalidQuantityError(f"Invalid unit cost: {cost!r}")
        cleaned.append(value)
    return cleaned


def weighted_average(
    prev_avg: float | None, prev_qty: int, new_costs: Sequence[float]
) -> float | None:
    """Running average over every unit ever costed in.

    Examples:
        >>> weighted_average(None, 0, [10.0, 12.0])
        11.0
        >>> weighted_average(11.0, 2, [14.0])
        12.0
    """
    if not new_costs:
        return prev_avg
    total = (prev_avg or 0.0) * prev_qty + sum(new_costs)
    return round(total / (prev_qty + len(new_costs)), AVG_COST_PRECISION)


class AllocationEngine:
    """FIFO reservation, backorders and average cost over one repository."""

    def __init__(self, repo: InventoryRepository) -> None:
        self.repo = repo

    # =========================================================================
    # Lookups
    # =========================================================================

    async def _require_product(self, product_id: str) -> Product:
        if not product_id:
            raise ProductNotFoundError(product_id)
        product = await self.repo.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def _require_unit(self, unit_id: str) -> ProductUnit:
        unit = await self.repo.get_unit(unit_id)
        if unit is None:
            raise UnitNotFoundError(unit_id)
        return unit

    # =========================================================================
    # Allocation
    # =========================================================================

    async def _reserve_fifo(
        self,
        product_id: str,
        qty: int,
        order_id: str,
        order_item_id: str | None,
        candidates: list[ProductUnit] | None = None,
    ) -> list[str]:
        if candidates is None:
            candidates = await self.repo.list_units(product_id, UnitStatus.IN_STOCK)
        reserved: list[str] = []
        for unit in candidates:
            if len(reserved) >= qty:
                break
            if await self.repo.reserve_unit(unit.id, order_id, order_item_id):
                reserved.append(unit.id)
        return reserved

    async def allocate(
        self,
        product_id: str,
        qty: Any,
        order_id: str,
        order_item_id: str | None = None,
    ) -> AllocationResult:
        """Reserve up to ``qty`` in-stock units, oldest first.

        Never fails on short stock; the unmet quantity is returned as
        ``backordered_qty``.

        Raises:
            InvalidQuantityError: qty is not a positive integer
            ProductNotFoundError: unknown product
        """
        count = validate_quantity(qty)
        async with self.repo.product_lock(product_id):
            await self._require_product(product_id)
            unit_ids = await self._reserve_fifo(product_id, count, order_id, order_item_id)

        result = AllocationResult(
            fulfilled_unit_ids=unit_ids, backordered_qty=count - len(unit_ids)
        )
        logger.info(
            "Allocated %d/%d of %s to order %s",
            len(unit_ids),
            count,
            product_id,
            order_id,
        )
        return result

    async def process_order_item(
        self,
        order_id: str,
        product: Product | str,
        quantity: Any,
        prompt_backorder: PromptBackorder | None = None,
        order_item_id: str | None = None,
        customer_id: str | None = None,
    ) -> OrderItem:
        """Allocate one order line, backordering the shortfall on confirmation.

        ``prompt_backorder(shortfall)`` is awaited while the product lock is
        held so the shortfall it was asked about is the one committed. A
        decline (or no prompt at all) raises before anything is written.

        Passing an existing ``order_item_id`` adds ``quantity`` to that line
        and tops up its single active backorder.

        Raises:
            InvalidQuantityError: quantity is not a positive integer
            ProductNotFoundError: unknown product
            BackorderDeclinedError: stock is short and the backorder was declined
            ValueError: missing order id, or ``order_item_id`` names a line of
                another order or product
        """
        if not order_id:
            raise ValueError("Missing order id")
        qty = validate_quantity(quantity)
        product_id = product.id if isinstance(product, Product) else str(product or "")

        async with self.repo.product_lock(product_id):
            await self._require_product(product_id)
            item = await self.repo.get_order_item(order_item_id) if order_item_id else None
            if item is not None and (item.order_id != order_id or item.product_id != product_id):
                raise ValueError(
                    f"Order item {order_item_id} belongs to order {item.order_id} "
                    f"for product {item.product_id}"
                )
            in_stock = await self.repo.list_units(product_id, UnitStatus.IN_STOCK)
            shortfall = max(0, qty - len(in_stock))
            if shortfall:
                confirmed = await prompt_backorder(shortfall) if prompt_backorder else False
                if not confirmed:
                    logger.info(
                        "Backorder of %d x %s declined for order %s",
                        shortfall,
                        product_id,
                        order_id,
                    )
                    raise BackorderDeclinedError(product_id, shortfall)

            order = await self._ensure_order(order_id, customer_id)

            if item is None:
                item = OrderItem(
                    id=order_item_id or _new_id(),
                    order_id=order_id,
                    product_id=product_id,
                    qty_ordered=0,
                )

            unit_ids = await self._reserve_fifo(product_id, qty, order_id, item.id, in_stock)
            backordered = qty - len(unit_ids)

            item.qty_ordered += qty
            item.fulfilled_qty += len(unit_ids)
            item.backordered_qty += backordered
            item.assigned_unit_ids.extend(unit_ids)
            await self.repo.save_order_item(item)

            if backordered:
                backorder = await self._upsert_backorder(item, backordered, order.customer_id)
                await self.repo.add_task(
                    Task(
                        id=_new_id(),
                        type=TaskType.BACKORDER_CREATED,
                        product_id=product_id,
                        order_id=order_id,
                        order_item_id=item.id,
                        backorder_id=backorder.id,
                        customer_id=order.customer_id,
                        qty=backordered,
                    )
                )

            await self._refresh_order_status(order_id)

        logger.info(
            "Order %s line %s: %d reserved, %d backordered",
            order_id,
            item.id,
            len(unit_ids),
            backordered,
        )
        return item

    async def _ensure_order(self, order_id: str, customer_id: str | None) -> Order:
        order = await self.repo.get_order(order_id)
        if order is None:
            order = Order(
                id=order_id,
                order_number=await next_order_number(self.repo),
                customer_id=customer_id,
            )
            await self.repo.save_order(order)
        elif customer_id and not order.customer_id:
            order.customer_id = customer_id
            await self.repo.save_order(order)
        return order

    async def _upsert_backorder(
        self, item: OrderItem, qty: int, customer_id: str | None
    ) -> Backorder:
        backorder = await self.repo.get_active_backorder(item.id)
        if backorder is None:
            backorder = Backorder(
                id=_new_id(),
                order_id=item.order_id,
                order_item_id=item.id,
                product_id=item.product_id,
                customer_id=customer_id,
                requested_qty=qty,
                seq=await self.repo.next_counter(BACKORDER_SEQ_COUNTER),
            )
        else:
            backorder.requested_qty += qty
            if backorder.status not in (BackorderStatus.OPEN, BackorderStatus.ORDERED):
                backorder.status = BackorderStatus.PARTIAL
        await self.repo.save_backorder(backorder)
        return backorder

    async def _refresh_order_status(self, order_id: str) -> None:
        order = await self.repo.get_order(order_id)
        if order is None:
            return
        items = await self.repo.list_order_items(order_id)
        if not items:
            status = OrderStatus.DRAFT
        elif any(i.backordered_qty > 0 for i in items):
            status = OrderStatus.PARTIAL
        else:
            status = OrderStatus.FULFILLED
        if order.status != status:
            order.status = status
            await self.repo.save_order(order)

    # =========================================================================
    # Receiving
    # =========================================================================

    async def check_in_product(
        self,
        product_id: str,
        qty_received: Any,
        unit_costs: Sequence[Any] | None = None,
        serials: Sequence[str] | None = None,
        spot: str | None = None,
    ) -> CheckInResult:
        """Receive ``qty_received`` units, fill backorders, stock the rest.

        Args:
            product_id: Product being received
            qty_received: Number of physical units
            unit_costs: One cost per unit; omitted gives cost-less units,
                which are not averaged in
            serials: Optional serial per unit, matched by position
            spot: Bin location for every unit

        Returns:
            CheckInResult with the new unit ids and what went to backorders

        Raises:
            InvalidQuantityError: bad quantity, cost list length or cost value
            ProductNotFoundError: unknown product
        """
        qty = validate_quantity(qty_received, "qty_received")
        if unit_costs:
            costs = _validate_costs(unit_costs)
            if len(costs) != qty:
                raise InvalidQuantityError("unit_costs must have one entry per unit received")
        else:
            costs = [None] * qty

        async with self.repo.product_lock(product_id):
            product = await self._require_product(product_id)

            received_at = utcnow()
            unit_ids: list[str] = []
            for i, cost in enumerate(costs):
                unit = ProductUnit(
                    id=_new_id(),
                    label=await next_unit_label(self.repo, product.brand),
                    product_id=product_id,
                    cost=cost,
                    received_at=received_at,
                    seq=await self.repo.next_counter(UNIT_SEQ_COUNTER),
                    serial=serials[i] if serials and i < len(serials) else None,
                    spot=spot,
                )
                await self.repo.add_unit(unit)
                unit_ids.append(unit.id)

            priced = [c for c in costs if c is not None]
            if priced:
                product.avg_cost = weighted_average(
                    product.avg_cost, product.avg_cost_qty, priced
                )
                product.avg_cost_qty += len(priced)
                product.last_cost = priced[-1]
                await self.repo.save_product(product)

            actions = await self._fulfill_backorders_fifo(product_id, unit_ids)

        applied = sum(a.applied_qty for a in actions)
        result = CheckInResult(
            product_id=product_id,
            qty_received=qty,
            applied_to_backorders=applied,
            added_to_stock=qty - applied,
            backorder_actions=actions,
            unit_ids=unit_ids,
            avg_cost=product.avg_cost,
        )
        log_inventory_event(
            "check_in",
            product_id,
            received=qty,
            to_backorders=result.applied_to_backorders,
            to_stock=result.added_to_stock,
        )
        return result

    async def receive_units(
        self,
        product_id: str,
        costs: Sequence[Any],
        serials: Sequence[str] | None = None,
    ) -> CheckInResult:
        """One unit per cost entry."""
        return await self.check_in_product(
            product_id, len(costs), unit_costs=costs, serials=serials
        )

    async def fulfill_backorders_fifo(self, product_id: str) -> list[BackorderAction]:
        """Apply current free stock to waiting backorders, oldest first."""
        async with self.repo.product_lock(product_id):
            await self._require_product(product_id)
            return await self._fulfill_backorders_fifo(product_id, None)

    async def _fulfill_backorders_fifo(
        self, product_id: str, unit_ids: list[str] | None
    ) -> list[BackorderAction]:
        if unit_ids is None:
            pool = [u.id for u in await self.repo.list_units(product_id, UnitStatus.IN_STOCK)]
        else:
            pool = list(unit_ids)

        actions: list[BackorderAction] = []
        if not pool:
            return actions

        for backorder in await self.repo.list_fulfillable_backorders(product_id):
            if not pool:
                break
            needed = backorder.remaining_qty
            if needed <= 0:
                backorder.status = BackorderStatus.FULFILLED
                await self.repo.save_backorder(backorder)
                continue

            applied: list[str] = []
            while pool and len(applied) < needed:
                unit_id = pool.pop(0)
                if await self.repo.reserve_unit(
                    unit_id, backorder.order_id, backorder.order_item_id
                ):
                    applied.append(unit_id)
            if not applied:
                continue

            backorder.fulfilled_qty += len(applied)
            backorder.status = (
                BackorderStatus.FULFILLED
                if backorder.remaining_qty == 0
                else BackorderStatus.PARTIAL
            )
            await self.repo.save_backorder(backorder)

            item = await self.repo.get_order_item(backorder.order_item_id)
            if item is not None:
                moved = min(len(applied), item.backordered_qty)
                item.fulfilled_qty += moved
                item.backordered_qty -= moved
                item.assigned_unit_ids.extend(applied[:moved])
                await self.repo.save_order_item(item)

            await self.repo.add_task(
                Task(
                    id=_new_id(),
                    type=TaskType.BACKORDER_ARRIVED,
                    product_id=product_id,
                    order_id=backorder.order_id,
                    order_item_id=backorder.order_item_id,
                    backorder_id=backorder.id,
                    customer_id=backorder.customer_id,
                    qty=len(applied),
                )
            )
            await self._refresh_order_status(backorder.order_id)

            actions.append(
                BackorderAction(
                    backorder_id=backorder.id,
                    order_id=backorder.order_id,
                    customer_id=backorder.customer_id,
                    applied_qty=len(applied),
                    new_status=backorder.status,
                )
            )
        return actions

    # =========================================================================
    # Unit lifecycle
    # =========================================================================

    async def sell_unit(self, unit_id: str) -> ProductUnit:
        unit = await self._require_unit(unit_id)
        async with self.repo.product_lock(unit.product_id):
            unit = await self._require_unit(unit_id)
            if UnitStatus.SOLD not in UNIT_TRANSITIONS[unit.status]:
                raise InvalidTransitionError(unit_id, unit.status.value, UnitStatus.SOLD.value)
            unit.status = UnitStatus.SOLD
            unit.sold_at = utcnow()
            await self.repo.update_unit(unit)
        logger.info("Unit %s sold", unit.label or unit_id)
        return unit

    async def delete_unit(self, unit_id: str) -> None:
        """Remove an unsold unit. The product's average cost is left as is."""
        unit = await self._require_unit(unit_id)
        async with self.repo.product_lock(unit.product_id):
            unit = await self._require_unit(unit_id)
            if unit.status == UnitStatus.SOLD:
                raise SoldUnitError(unit_id)
            await self.repo.delete_unit(unit_id)
        logger.info("Unit %s deleted", unit.label or unit_id)
