"""Tests for FIFO allocation, backorders and average cost."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from caraudio_pos.core.enums import BackorderStatus, OrderStatus, TaskType, UnitStatus
from caraudio_pos.core.errors import (
    BackorderDeclinedError,
    InvalidQuantityError,
    InvalidTransitionError,
    ProductNotFoundError,
    SoldUnitError,
    UnitNotFoundError,
)
from caraudio_pos.models.inventory import Product, ProductUnit
from caraudio_pos.services.allocation import AllocationEngine, validate_quantity, weighted_average
from caraudio_pos.services.counters import format_order_number, format_unit_label, make_brand_code
from caraudio_pos.services.inventory_repo import InMemoryInventoryRepository

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _setup(brand: str = "JL Audio") -> tuple[InMemoryInventoryRepository, AllocationEngine]:
    repo = InMemoryInventoryRepository()
    asyncio.run(repo.save_product(Product(id="sub", sku="10W3V3-4", name="10in sub", brand=brand)))
    return repo, AllocationEngine(repo)


def _add_unit(repo: InMemoryInventoryRepository, unit_id: str, offset_days: int, seq: int = 0) -> None:
    unit = ProductUnit(
        id=unit_id, product_id="sub", cost=100.0, received_at=T0 + timedelta(days=offset_days), seq=seq
    )
    asyncio.run(repo.add_unit(unit))


async def _yes(shortfall: int) -> bool:
    return True


async def _no(shortfall: int) -> bool:
    return False


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------


class TestCounters:
    def test_brand_code(self):
        assert make_brand_code("JL Audio") == "JO"
        assert make_brand_code("Q") == "QQ"
        assert make_brand_code("") == "XX"
        assert make_brand_code(None) == "XX"

    def test_formats(self):
        assert format_unit_label("JO", 1) == "JO0001"
        assert format_order_number(123) == "SD-000123"

    def test_labels_are_sequential_per_brand(self):
        repo, engine = _setup()
        result = asyncio.run(engine.receive_units("sub", [10.0, 12.0]))
        labels = [repo.units[u].label for u in result.unit_ids]
        assert labels == ["JO0001", "JO0002"]


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


class TestAllocate:
    def test_fifo_by_received_at(self):
        repo, engine = _setup()
        _add_unit(repo, "t3", 3)
        _add_unit(repo, "t1", 1)
        _add_unit(repo, "t2", 2)

        result = asyncio.run(engine.allocate("sub", 2, "order-1"))
        assert result.fulfilled_unit_ids == ["t1", "t2"]
        assert result.backordered_qty == 0
        assert repo.units["t3"].status == UnitStatus.IN_STOCK
        assert repo.units["t1"].status == UnitStatus.RESERVED
        assert repo.units["t1"].reserved_for_order_id == "order-1"

    def test_seq_breaks_timestamp_ties(self):
        repo, engine = _setup()
        _add_unit(repo, "b", 1, seq=2)
        _add_unit(repo, "a", 1, seq=1)
        result = asyncio.run(engine.allocate("sub", 1, "order-1"))
        assert result.fulfilled_unit_ids == ["a"]

    def test_short_stock_degrades_to_backorder(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        result = asyncio.run(engine.allocate("sub", 3, "order-1"))
        assert result.fulfilled_unit_ids == ["t1"]
        assert result.backordered_qty == 2

    def test_zero_stock(self):
        _, engine = _setup()
        result = asyncio.run(engine.allocate("sub", 3, "order-1"))
        assert result.fulfilled_unit_ids == []
        assert result.backordered_qty == 3

    def test_reserved_units_are_not_reallocated(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        _add_unit(repo, "t2", 2)
        asyncio.run(engine.allocate("sub", 1, "order-1"))
        second = asyncio.run(engine.allocate("sub", 2, "order-2"))
        assert second.fulfilled_unit_ids == ["t2"]

    def test_concurrent_allocations_never_share_units(self):
        repo, engine = _setup()
        for i in range(5):
            _add_unit(repo, f"u{i}", i)

        async def run():
            return await asyncio.gather(
                *(engine.allocate("sub", 2, f"order-{n}") for n in range(4))
            )

        results = asyncio.run(run())
        taken = [u for r in results for u in r.fulfilled_unit_ids]
        assert len(taken) == len(set(taken)) == 5
        assert sum(r.backordered_qty for r in results) == 3

    def test_one_lock_per_product(self):
        repo, engine = _setup()
        for n in range(3):
            asyncio.run(engine.allocate("sub", 1, f"order-{n}"))
        assert list(repo._locks) == ["sub"]

    @pytest.mark.parametrize("qty", [0, -1, 1.5, "two", None, True])
    def test_invalid_quantity(self, qty):
        _, engine = _setup()
        with pytest.raises(InvalidQuantityError):
            asyncio.run(engine.allocate("sub", qty, "order-1"))

    def test_unknown_product(self):
        _, engine = _setup()
        with pytest.raises(ProductNotFoundError):
            asyncio.run(engine.allocate("nope", 1, "order-1"))

    def test_validate_quantity_accepts_integral_values(self):
        assert validate_quantity("3") == 3
        assert validate_quantity(2.0) == 2


# ---------------------------------------------------------------------------
# Order lines
# ---------------------------------------------------------------------------


class TestProcessOrderItem:
    def test_fully_stocked_line(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        _add_unit(repo, "t2", 2)

        item = asyncio.run(engine.process_order_item("order-1", repo.products["sub"], 2))
        assert item.assigned_unit_ids == ["t1", "t2"]
        assert item.is_consistent()
        assert repo.orders["order-1"].status == OrderStatus.FULFILLED
        assert repo.orders["order-1"].order_number == "SD-000001"
        assert repo.backorders == {}

    def test_shortfall_prompt_receives_missing_qty(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        asked = []

        async def prompt(shortfall: int) -> bool:
            asked.append(shortfall)
            return True

        item = asyncio.run(engine.process_order_item("order-1", "sub", 3, prompt))
        assert asked == [2]
        assert (item.fulfilled_qty, item.backordered_qty) == (1, 2)
        assert item.is_consistent()
        assert repo.orders["order-1"].status == OrderStatus.PARTIAL

        (backorder,) = repo.backorders.values()
        assert backorder.requested_qty == 2
        assert backorder.status == BackorderStatus.OPEN
        assert [t.type for t in repo.tasks] == [TaskType.BACKORDER_CREATED]

    def test_decline_writes_nothing(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        with pytest.raises(BackorderDeclinedError, match="requires manager confirmation"):
            asyncio.run(engine.process_order_item("order-1", "sub", 3, _no))

        assert repo.units["t1"].status == UnitStatus.IN_STOCK
        assert repo.order_items == {}
        assert repo.orders == {}
        assert repo.backorders == {}

    def test_missing_prompt_counts_as_decline(self):
        _, engine = _setup()
        with pytest.raises(BackorderDeclinedError):
            asyncio.run(engine.process_order_item("order-1", "sub", 1))

    def test_one_backorder_per_order_item(self):
        repo, engine = _setup()
        item = asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))
        asyncio.run(engine.process_order_item("order-1", "sub", 2, _yes, order_item_id=item.id))

        (backorder,) = repo.backorders.values()
        assert backorder.requested_qty == 3
        assert repo.order_items[item.id].qty_ordered == 3

    def test_existing_line_must_match_product_and_order(self):
        repo, engine = _setup()
        asyncio.run(repo.save_product(Product(id="amp", sku="RD500/1", brand="JL Audio")))
        asyncio.run(repo.add_unit(ProductUnit(id="a1", product_id="amp", received_at=T0)))
        item = asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))

        with pytest.raises(ValueError, match="belongs to order order-1"):
            asyncio.run(engine.process_order_item("order-1", "amp", 1, _yes, order_item_id=item.id))
        with pytest.raises(ValueError):
            asyncio.run(engine.process_order_item("order-2", "sub", 1, _yes, order_item_id=item.id))

        assert repo.units["a1"].status == UnitStatus.IN_STOCK
        assert repo.order_items[item.id].qty_ordered == 1
        assert "order-2" not in repo.orders

    def test_invalid_quantity_before_any_prompt(self):
        _, engine = _setup()
        with pytest.raises(InvalidQuantityError):
            asyncio.run(engine.process_order_item("order-1", "sub", 0, _yes))


# ---------------------------------------------------------------------------
# Receiving
# ---------------------------------------------------------------------------


class TestReceiveUnits:
    def test_backorder_example(self):
        repo, engine = _setup()
        item = asyncio.run(engine.process_order_item("order-1", "sub", 3, _yes))
        assert (item.fulfilled_qty, item.backordered_qty) == (0, 3)

        result = asyncio.run(engine.receive_units("sub", [10.00, 12.00]))
        assert result.applied_to_backorders == 2
        assert result.added_to_stock == 0

        item = repo.order_items[item.id]
        assert item.backordered_qty == 1
        assert item.assigned_unit_ids == result.unit_ids
        assert item.is_consistent()

        (action,) = result.backorder_actions
        assert action.applied_qty == 2
        assert action.new_status == BackorderStatus.PARTIAL
        assert repo.tasks[-1].type == TaskType.BACKORDER_ARRIVED

    def test_check_in_is_logged_with_counts(self, caplog):
        _, engine = _setup()
        asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))
        with caplog.at_level(logging.INFO, logger="caraudio_pos"):
            asyncio.run(engine.receive_units("sub", [10.0, 12.0]))
        assert "INVENTORY check_in product=sub received=2 to_backorders=1 to_stock=1" in caplog.messages

    def test_oldest_backorder_first(self):
        repo, engine = _setup()
        first = asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))
        second = asyncio.run(engine.process_order_item("order-2", "sub", 1, _yes))

        result = asyncio.run(engine.receive_units("sub", [50.0]))
        assert [a.order_id for a in result.backorder_actions] == ["order-1"]
        assert repo.order_items[first.id].fulfilled_qty == 1
        assert repo.order_items[second.id].fulfilled_qty == 0
        assert repo.orders["order-1"].status == OrderStatus.FULFILLED
        assert repo.orders["order-2"].status == OrderStatus.PARTIAL

    def test_surplus_goes_to_free_stock(self):
        repo, engine = _setup()
        asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))
        result = asyncio.run(engine.check_in_product("sub", 3, [10.0, 10.0, 10.0]))

        assert result.applied_to_backorders == 1
        assert result.added_to_stock == 2
        assert result.backorder_actions[0].new_status == BackorderStatus.FULFILLED
        in_stock = asyncio.run(repo.list_units("sub", UnitStatus.IN_STOCK))
        assert [u.id for u in in_stock] == result.unit_ids[1:]

    def test_qty_without_costs_gives_costless_units(self):
        repo, engine = _setup()
        result = asyncio.run(engine.check_in_product("sub", 2, serials=["S1"], spot="A3"))
        units = [repo.units[u] for u in result.unit_ids]
        assert [u.cost for u in units] == [None, None]
        assert [u.serial for u in units] == ["S1", None]
        assert repo.products["sub"].avg_cost is None
        assert repo.products["sub"].avg_cost_qty == 0

    def test_cost_list_must_match_qty(self):
        _, engine = _setup()
        with pytest.raises(InvalidQuantityError):
            asyncio.run(engine.check_in_product("sub", 3, [10.0]))

    def test_unknown_product(self):
        _, engine = _setup()
        with pytest.raises(ProductNotFoundError):
            asyncio.run(engine.receive_units("nope", [10.0]))

    def test_closed_backorders_are_skipped(self):
        repo, engine = _setup()
        asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))
        (backorder,) = repo.backorders.values()
        backorder.status = BackorderStatus.CLOSED

        result = asyncio.run(engine.receive_units("sub", [10.0]))
        assert result.backorder_actions == []
        assert result.added_to_stock == 1

    def test_fulfill_from_existing_stock(self):
        repo, engine = _setup()
        asyncio.run(engine.process_order_item("order-1", "sub", 1, _yes))
        _add_unit(repo, "late", 5)

        actions = asyncio.run(engine.fulfill_backorders_fifo("sub"))
        assert [a.applied_qty for a in actions] == [1]
        assert repo.units["late"].status == UnitStatus.RESERVED


# ---------------------------------------------------------------------------
# Average cost
# ---------------------------------------------------------------------------


class TestAverageCost:
    def test_first_receipt_equals_cost(self):
        repo, engine = _setup()
        asyncio.run(engine.receive_units("sub", [25.0, 25.0, 25.0]))
        product = repo.products["sub"]
        assert product.avg_cost == 25.0
        assert product.avg_cost_qty == 3
        assert product.last_cost == 25.0

    def test_batch_size_does_not_matter(self):
        repo_a, engine_a = _setup()
        asyncio.run(engine_a.receive_units("sub", [10.0, 20.0, 10.0, 20.0]))

        repo_b, engine_b = _setup()
        for cost in [10.0, 20.0, 10.0, 20.0]:
            asyncio.run(engine_b.receive_units("sub", [cost]))

        assert repo_a.products["sub"].avg_cost == repo_b.products["sub"].avg_cost == 15.0

    def test_rounded_to_four_places(self):
        assert weighted_average(None, 0, [1.0, 1.0, 2.0]) == 1.3333
        assert weighted_average(11.0, 2, [14.0]) == 12.0
        assert weighted_average(5.0, 3, []) == 5.0

    def test_delete_does_not_touch_average(self):
        repo, engine = _setup()
        result = asyncio.run(engine.receive_units("sub", [10.0, 20.0]))
        asyncio.run(engine.delete_unit(result.unit_ids[0]))
        product = repo.products["sub"]
        assert (product.avg_cost, product.avg_cost_qty) == (15.0, 2)


# ---------------------------------------------------------------------------
# Unit lifecycle
# ---------------------------------------------------------------------------


class TestUnitLifecycle:
    def test_sell_reserved_unit(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        asyncio.run(engine.allocate("sub", 1, "order-1"))
        unit = asyncio.run(engine.sell_unit("t1"))
        assert unit.status == UnitStatus.SOLD
        assert repo.units["t1"].sold_at is not None

    def test_sell_twice(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        asyncio.run(engine.sell_unit("t1"))
        with pytest.raises(InvalidTransitionError):
            asyncio.run(engine.sell_unit("t1"))

    def test_sold_unit_cannot_be_deleted(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        asyncio.run(engine.sell_unit("t1"))
        with pytest.raises(SoldUnitError, match="Sold units cannot be deleted."):
            asyncio.run(engine.delete_unit("t1"))
        assert "t1" in repo.units

    def test_delete_in_stock_unit(self):
        repo, engine = _setup()
        _add_unit(repo, "t1", 1)
        asyncio.run(engine.delete_unit("t1"))
        assert "t1" not in repo.units

    def test_unknown_unit(self):
        _, engine = _setup()
        with pytest.raises(UnitNotFoundError):
            asyncio.run(engine.sell_unit("ghost"))
