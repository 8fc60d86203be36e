from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from caraudio_pos.core.enums import BackorderStatus, OrderStatus, TaskType, UnitStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Product(_CamelModel):
    id: str
    sku: Optional[str] = None
    part_number: Optional[str] = None
    name: str = ""
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    speaker_size: Optional[str] = None
    speaker_sizes: list[str] = []
    # Running weighted average over every unit ever costed in
    avg_cost: Optional[float] = None
    avg_cost_qty: int = 0
    last_cost: Optional[float] = None


class ProductUnit(_CamelModel):
    id: str
    label: Optional[str] = None  # human-readable id, e.g. "JO0001"
    product_id: str
    cost: Optional[float] = None
    status: UnitStatus = UnitStatus.IN_STOCK
    received_at: datetime = Field(default_factory=utcnow)
    seq: int = 0  # FIFO tie-breaker for identical received_at
    serial: Optional[str] = None
    spot: Optional[str] = None  # bin location
    reserved_for_order_id: Optional[str] = None
    order_item_id: Optional[str] = None
    sold_at: Optional[datetime] = None


class OrderItem(_CamelModel):
    id: str
    order_id: str
    product_id: str
    qty_ordered: int
    fulfilled_qty: int = 0
    backordered_qty: int = 0
    assigned_unit_ids: list[str] = []
    created_at: datetime = Field(default_factory=utcnow)

    def is_consistent(self) -> bool:
        return (
            self.fulfilled_qty + self.backordered_qty == self.qty_ordered
            and len(self.assigned_unit_ids) == self.fulfilled_qty
        )


class Backorder(_CamelModel):
    id: str
    order_id: str
    order_item_id: str
    product_id: str
    customer_id: Optional[str] = None
    requested_qty: int
    fulfilled_qty: int = 0
    status: BackorderStatus = BackorderStatus.OPEN
    created_at: datetime = Field(default_factory=utcnow)
    seq: int = 0

    @property
    def remaining_qty(self) -> int:
        return max(0, self.requested_qty - self.fulfilled_qty)


class Order(_CamelModel):
    id: str
    order_number: Optional[str] = None  # "SD-000123"
    customer_id: Optional[str] = None
    status: OrderStatus = OrderStatus.DRAFT
    created_at: datetime = Field(default_factory=utcnow)


class Task(_CamelModel):
    id: str
    type: TaskType
    product_id: str
    order_id: Optional[str] = None
    order_item_id: Optional[str] = None
    backorder_id: Optional[str] = None
    customer_id: Optional[str] = None
    qty: int = 0
    done: bool = False
    created_at: datetime = Field(default_factory=utcnow)


# -----------------------------------------------------------------------------
# Engine results
# -----------------------------------------------------------------------------


class AllocationResult(_CamelModel):
    fulfilled_unit_ids: list[str] = []
    backordered_qty: int = 0


class BackorderAction(_CamelModel):
    backorder_id: str
    order_id: str
    customer_id: Optional[str] = None
    applied_qty: int
    new_status: BackorderStatus


class CheckInResult(_CamelModel):
    product_id: str
    qty_received: int
    applied_to_backorders: int = 0
    added_to_stock: int = 0
    backorder_actions: list[BackorderAction] = []
    unit_ids: list[str] = []
    avg_cost: Optional[float] = None
