"""Integrity errors raised by the inventory allocation engine.

Data-quality problems (bad sizes, stray CSV rows, unknown vehicles) never
raise; these errors are reserved for precondition and business-rule failures
that must abort the current write.
"""


class InventoryError(Exception):
    """Base class for allocation engine errors."""


class ProductNotFoundError(InventoryError, LookupError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class UnitNotFoundError(InventoryError, LookupError):
    def __init__(self, unit_id: str) -> None:
        super().__init__(f"Unit not found: {unit_id}")
        self.unit_id = unit_id


class InvalidQuantityError(InventoryError, ValueError):
    """Quantity was missing, non-integral or not positive."""


class SoldUnitError(InventoryError):
    """Sold units are immutable and cannot be deleted."""

    def __init__(self, unit_id: str) -> None:
        super().__init__("Sold units cannot be deleted.")
        self.unit_id = unit_id


class InvalidTransitionError(InventoryError):
    def __init__(self, unit_id: str, current: str, target: str) -> None:
        super().__init__(f"Unit {unit_id} cannot move from {current} to {target}")
        self.unit_id = unit_id


class BackorderDeclinedError(InventoryError):
    """The caller declined to create a backorder for a short order line."""

    def __init__(self, product_id: str, shortfall: int) -> None:
        super().__init__(
            f"{shortfall} unit(s) of {product_id} would be backordered; "
            "requires manager confirmation"
        )
        self.product_id = product_id
        self.shortfall = shortfall
