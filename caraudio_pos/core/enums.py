"""Enums for inventory and fitment constants."""

from enum import Enum


class UnitStatus(str, Enum):
    """Lifecycle of one physical product unit."""

    IN_STOCK = "in_stock"
    RESERVED = "reserved"
    SOLD = "sold"

    @classmethod
    def from_string(cls, value: str | None) -> "UnitStatus | None":
        """Convert string to enum, returning None if invalid.

        Older documents store statuses upper-cased ("IN_STOCK").
        """
        if not value:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


# Allowed unit status transitions. Deletion is handled separately.
UNIT_TRANSITIONS: dict[UnitStatus, set[UnitStatus]] = {
    UnitStatus.IN_STOCK: {UnitStatus.RESERVED, UnitStatus.SOLD},
    UnitStatus.RESERVED: {UnitStatus.SOLD},
    UnitStatus.SOLD: set(),
}


class BackorderStatus(str, Enum):
    """Backorder workflow states."""

    OPEN = "open"
    ORDERED = "ordered"
    PARTIAL = "partial"
    RECEIVED = "received"
    NOTIFIED = "notified"
    FULFILLED = "fulfilled"
    CLOSED = "closed"


# Backorders that still wait for stock and take part in FIFO fulfillment
FULFILLABLE_BACKORDER_STATUSES = frozenset(
    {BackorderStatus.OPEN, BackorderStatus.PARTIAL, BackorderStatus.ORDERED}
)

# Backorders that are still "live" for an order item (one per item)
ACTIVE_BACKORDER_STATUSES = frozenset(
    {
        BackorderStatus.OPEN,
        BackorderStatus.ORDERED,
        BackorderStatus.PARTIAL,
        BackorderStatus.RECEIVED,
        BackorderStatus.NOTIFIED,
    }
)


class OrderStatus(str, Enum):
    """Order header status after allocation."""

    DRAFT = "DRAFT"
    PARTIAL = "PARTIAL"
    FULFILLED = "FULFILLED"


class TaskType(str, Enum):
    """Dashboard reminders created by the allocation engine."""

    BACKORDER_CREATED = "BACKORDER_CREATED"
    BACKORDER_ARRIVED = "CONTACT_CUSTOMER_BACKORDER_ARRIVED"


class ProductBucket(str, Enum):
    """Recommendation buckets shown by the fitment screen."""

    SPEAKERS = "Speakers"
    RADIOS = "Radios"
    DASH_KITS = "Dash Kits"
    HARNESSES = "Harnesses"
    ANTENNAS = "Antennas"
    INTERFACES = "Interfaces"
    ACCESSORIES = "Accessories"

    @classmethod
    def from_string(cls, value: str | None) -> "ProductBucket | None":
        """Convert a bucket label to enum; None for "All" or unknown labels."""
        if not value:
            return None
        for bucket in cls:
            if bucket.value.lower() == value.strip().lower():
                return bucket
        return None


class SortOrder(str, Enum):
    """Sort options for the recommendation list."""

    RECOMMENDED = "recommended"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    NAME = "name"


class DinSize(str, Enum):
    SINGLE = "single"
    DOUBLE = "double"


# Speaker size tolerance (inches) used by the matcher; looser than bucketing
# so 6.5" and 6.75" vendor disagreement still matches.
SIZE_MATCH_TOLERANCE = 0.35
