"""Inventory persistence behind one async contract.

The allocation engine only talks to an ``InventoryRepository``:

    InMemoryInventoryRepository   default backend and the one tests use
    SupabaseInventoryRepository   hosted tables + the next_counter RPC

Unit reservation is compare-and-set in both: ``reserve_unit`` succeeds only
while the unit is still in stock, so a unit is never reserved twice even if
two workers race for it. Within one process, ``product_lock`` serializes
read-then-write sequences per product.
"""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol

from caraudio_pos.core.enums import (
    ACTIVE_BACKORDER_STATUSES,
    FULFILLABLE_BACKORDER_STATUSES,
    UnitStatus,
)
from caraudio_pos.core.logging import log_db_query, log_external_call
from caraudio_pos.models.inventory import (
    Backorder,
    Order,
    OrderItem,
    Product,
    ProductUnit,
    Task,
)

logger = logging.getLogger(__name__)


def fifo_key(unit: ProductUnit) -> tuple[datetime, int]:
    return (unit.received_at, unit.seq)


class InventoryRepository(Protocol):
    def product_lock(self, product_id: str) -> Any: ...

    async def next_counter(self, name: str) -> int: ...

    async def get_product(self, product_id: str) -> Product | None: ...
    async def save_product(self, product: Product) -> None: ...

    async def get_unit(self, unit_id: str) -> ProductUnit | None: ...
    async def list_units(self, product_id: str, status: UnitStatus | None = None) -> list[ProductUnit]: ...
    async def add_unit(self, unit: ProductUnit) -> None: ...
    async def update_unit(self, unit: ProductUnit) -> None: ...
    async def reserve_unit(self, unit_id: str, order_id: str, order_item_id: str | None) -> bool: ...
    async def delete_unit(self, unit_id: str) -> None: ...

    async def get_order(self, order_id: str) -> Order | None: ...
    async def save_order(self, order: Order) -> None: ...
    async def get_order_item(self, item_id: str) -> OrderItem | None: ...
    async def list_order_items(self, order_id: str) -> list[OrderItem]: ...
    async def save_order_item(self, item: OrderItem) -> None: ...

    async def get_active_backorder(self, order_item_id: str) -> Backorder | None: ...
    async def list_fulfillable_backorders(self, product_id: str) -> list[Backorder]: ...
    async def save_backorder(self, backorder: Backorder) -> None: ...

    async def add_task(self, task: Task) -> None: ...


# =============================================================================
# In-memory
# =============================================================================


class InMemoryInventoryRepository:
    """Dict-backed repository. Objects are copied in and out."""

    def __init__(self) -> None:
        self.products: dict[str, Product] = {}
        self.units: dict[str, ProductUnit] = {}
        self.orders: dict[str, Order] = {}
        self.order_items: dict[str, OrderItem] = {}
        self.backorders: dict[str, Backorder] = {}
        self.tasks: list[Task] = []
        self.counters: dict[str, int] = defaultdict(int)
        self._locks: dict[str, asyncio.Lock] = {}
        self._counter_lock = asyncio.Lock()

    @asynccontextmanager
    async def product_lock(self, product_id: str) -> AsyncIterator[None]:
        # one lock per product ever locked; bounded by catalog size
        lock = self._locks.setdefault(product_id, asyncio.Lock())
        async with lock:
            yield

    async def next_counter(self, name: str) -> int:
        async with self._counter_lock:
            self.counters[name] += 1
            return self.counters[name]

    # -- products -------------------------------------------------------------

    async def get_product(self, product_id: str) -> Product | None:
        product = self.products.get(product_id)
        return product.model_copy(deep=True) if product else None

    async def save_product(self, product: Product) -> None:
        self.products[product.id] = product.model_copy(deep=True)

    # -- units ----------------------------------------------------------------

    async def get_unit(self, unit_id: str) -> ProductUnit | None:
        unit = self.units.get(unit_id)
        return unit.model_copy() if unit else None

    async def list_units(self, product_id: str, status: UnitStatus | None = None) -> list[ProductUnit]:
        units = [
            u.model_copy()
            for u in self.units.values()
            if u.product_id == product_id and (status is None or u.status == status)
        ]
        return sorted(units, key=fifo_key)

    async def add_unit(self, unit: ProductUnit) -> None:
        self.units[unit.id] = unit.model_copy()

    async def update_unit(self, unit: ProductUnit) -> None:
        self.units[unit.id] = unit.model_copy()

    async def reserve_unit(self, unit_id: str, order_id: str, order_item_id: str | None) -> bool:
        unit = self.units.get(unit_id)
        if unit is None or unit.status != UnitStatus.IN_STOCK:
            return False
        unit.status = UnitStatus.RESERVED
        unit.reserved_for_order_id = order_id
        unit.order_item_id = order_item_id
        return True

    async def delete_unit(self, unit_id: str) -> None:
        self.units.pop(unit_id, None)

    # -- orders ---------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order | None:
        order = self.orders.get(order_id)
        return order.model_copy() if order else None

    async def save_order(self, order: Order) -> None:
        self.orders[order.id] = order.model_copy()

    async def get_order_item(self, item_id: str) -> OrderItem | None:
        item = self.order_items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def list_order_items(self, order_id: str) -> list[OrderItem]:
        return [
            i.model_copy(deep=True) for i in self.order_items.values() if i.order_id == order_id
        ]

    async def save_order_item(self, item: OrderItem) -> None:
        self.order_items[item.id] = item.model_copy(deep=True)

    # -- backorders -----------------------------------------------------------

    async def get_active_backorder(self, order_item_id: str) -> Backorder | None:
        for backorder in self.backorders.values():
            if (
                backorder.order_item_id == order_item_id
                and backorder.status in ACTIVE_BACKORDER_STATUSES
            ):
                return backorder.model_copy()
        return None

    async def list_fulfillable_backorders(self, product_id: str) -> list[Backorder]:
        eligible = [
            b.model_copy()
            for b in self.backorders.values()
            if b.product_id == product_id and b.status in FULFILLABLE_BACKORDER_STATUSES
        ]
        return sorted(eligible, key=lambda b: (b.created_at, b.seq))

    async def save_backorder(self, backorder: Backorder) -> None:
        self.backorders[backorder.id] = backorder.model_copy()

    async def add_task(self, task: Task) -> None:
        self.tasks.append(task.model_copy())


# =============================================================================
# Supabase
# =============================================================================

PRODUCTS_TABLE = "products"
UNITS_TABLE = "product_units"
ORDERS_TABLE = "orders"
ORDER_ITEMS_TABLE = "order_items"
BACKORDERS_TABLE = "backorders"
TASKS_TABLE = "tasks"
COUNTER_RPC = "next_counter"


def _row(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json")


class SupabaseInventoryRepository:
    """Repository over Supabase tables.

    Blocking client calls run in worker threads. Reservation is a conditional
    update guarded by ``status = in_stock``; counters go through the
    ``next_counter(counter_name)`` RPC, which increments in one statement.
    """

    def __init__(self, client: Any) -> None:
        self.client = client
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def product_lock(self, product_id: str) -> AsyncIterator[None]:
        # one lock per product ever locked; bounded by catalog size
        lock = self._locks.setdefault(product_id, asyncio.Lock())
        async with lock:
            yield

    async def _execute(self, operation: str, table: str, build: Any) -> list[dict[str, Any]]:
        start = time.time()
        result = await asyncio.to_thread(lambda: build().execute())
        log_db_query(operation, table, (time.time() - start) * 1000)
        data = result.data
        if isinstance(data, list):
            return [row for row in data if isinstance(row, dict)]
        if isinstance(data, dict):
            return [data]
        return []

    async def _select_one(self, table: str, column: str, value: Any) -> dict[str, Any] | None:
        rows = await self._execute(
            "select",
            table,
            lambda: self.client.table(table).select("*").eq(column, value).limit(1),
        )
        return rows[0] if rows else None

    async def _upsert(self, table: str, row: dict[str, Any]) -> None:
        await self._execute("upsert", table, lambda: self.client.table(table).upsert(row))

    async def next_counter(self, name: str) -> int:
        start = time.time()
        try:
            result = await asyncio.to_thread(
                lambda: self.client.rpc(COUNTER_RPC, {"counter_name": name}).execute()
            )
        except Exception:
            log_external_call("supabase", f"rpc {COUNTER_RPC}", False, (time.time() - start) * 1000)
            raise
        log_db_query("rpc", COUNTER_RPC, (time.time() - start) * 1000)
        value = result.data
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            value = next(iter(value.values()), None)
        if value is None:
            raise RuntimeError(f"Counter RPC returned no value for {name}")
        return int(value)

    # -- products -------------------------------------------------------------

    async def get_product(self, product_id: str) -> Product | None:
        row = await self._select_one(PRODUCTS_TABLE, "id", product_id)
        return Product.model_validate(row) if row else None

    async def save_product(self, product: Product) -> None:
        await self._upsert(PRODUCTS_TABLE, _row(product))

    # -- units ----------------------------------------------------------------

    async def get_unit(self, unit_id: str) -> ProductUnit | None:
        row = await self._select_one(UNITS_TABLE, "id", unit_id)
        return ProductUnit.model_validate(row) if row else None

    async def list_units(self, product_id: str, status: UnitStatus | None = None) -> list[ProductUnit]:
        def _build():
            query = self.client.table(UNITS_TABLE).select("*").eq("product_id", product_id)
            if status is not None:
                query = query.eq("status", status.value)
            return query.order("received_at").order("seq")

        rows = await self._execute("select", UNITS_TABLE, _build)
        return sorted((ProductUnit.model_validate(r) for r in rows), key=fifo_key)

    async def add_unit(self, unit: ProductUnit) -> None:
        await self._execute(
            "insert", UNITS_TABLE, lambda: self.client.table(UNITS_TABLE).insert(_row(unit))
        )

    async def update_unit(self, unit: ProductUnit) -> None:
        await self._upsert(UNITS_TABLE, _row(unit))

    async def reserve_unit(self, unit_id: str, order_id: str, order_item_id: str | None) -> bool:
        rows = await self._execute(
            "update",
            UNITS_TABLE,
            lambda: self.client.table(UNITS_TABLE)
            .update(
                {
                    "status": UnitStatus.RESERVED.value,
                    "reserved_for_order_id": order_id,
                    "order_item_id": order_item_id,
                }
            )
            .eq("id", unit_id)
            .eq("status", UnitStatus.IN_STOCK.value),
        )
        return bool(rows)

    async def delete_unit(self, unit_id: str) -> None:
        await self._execute(
            "delete",
            UNITS_TABLE,
            lambda: self.client.table(UNITS_TABLE)
            .delete()
            .eq("id", unit_id)
            .neq("status", UnitStatus.SOLD.value),
        )

    # -- orders ---------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order | None:
        row = await self._select_one(ORDERS_TABLE, "id", order_id)
        return Order.model_validate(row) if row else None

    async def save_order(self, order: Order) -> None:
        await self._upsert(ORDERS_TABLE, _row(order))

    async def get_order_item(self, item_id: str) -> OrderItem | None:
        row = await self._select_one(ORDER_ITEMS_TABLE, "id", item_id)
        return OrderItem.model_validate(row) if row else None

    async def list_order_items(self, order_id: str) -> list[OrderItem]:
        rows = await self._execute(
            "select",
            ORDER_ITEMS_TABLE,
            lambda: self.client.table(ORDER_ITEMS_TABLE).select("*").eq("order_id", order_id),
        )
        return [OrderItem.model_validate(r) for r in rows]

    async def save_order_item(self, item: OrderItem) -> None:
        await self._upsert(ORDER_ITEMS_TABLE, _row(item))

    # -- backorders -----------------------------------------------------------

    async def get_active_backorder(self, order_item_id: str) -> Backorder | None:
        rows = await self._execute(
            "select",
            BACKORDERS_TABLE,
            lambda: self.client.table(BACKORDERS_TABLE)
            .select("*")
            .eq("order_item_id", order_item_id)
            .in_("status", [s.value for s in ACTIVE_BACKORDER_STATUSES])
            .limit(1),
        )
        return Backorder.model_validate(rows[0]) if rows else None

    async def list_fulfillable_backorders(self, product_id: str) -> list[Backorder]:
        rows = await self._execute(
            "select",
            BACKORDERS_TABLE,
            lambda: self.client.table(BACKORDERS_TABLE)
            .select("*")
            .eq("product_id", product_id)
            .in_("status", [s.value for s in FULFILLABLE_BACKORDER_STATUSES])
            .order("created_at")
            .order("seq"),
        )
        backorders = [Backorder.model_validate(r) for r in rows]
        return sorted(backorders, key=lambda b: (b.created_at, b.seq))

    async def save_backorder(self, backorder: Backorder) -> None:
        await self._upsert(BACKORDERS_TABLE, _row(backorder))

    async def add_task(self, task: Task) -> None:
        await self._execute(
            "insert", TASKS_TABLE, lambda: self.client.table(TASKS_TABLE).insert(_row(task))
        )
