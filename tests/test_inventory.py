from decimal import Decimal

import pytest

from workshop import inventory
from workshop.errors import ConflictError, NotFoundError, ValidationError
from workshop.models import AdjustmentType


@pytest.mark.parametrize("current,kind,quantity,expected", [
    (10, AdjustmentType.ADD, 3, 13),
    (10, AdjustmentType.REMOVE, 10, 0),
    (10, AdjustmentType.SET, 4, 4),
    (0, AdjustmentType.SET, 0, 0),
])
def test_next_quantity(current, kind, quantity, expected):
    assert inventory.next_quantity(current, kind, quantity) == expected


def test_next_quantity_rejects_negative_results():
    with pytest.raises(ValidationError):
        inventory.next_quantity(10, AdjustmentType.REMOVE, 12)
    with pytest.raises(ValidationError):
        inventory.next_quantity(10, AdjustmentType.SET, -1)
    with pytest.raises(ValidationError):
        inventory.next_quantity(10, AdjustmentType.ADD, -1)


async def test_remove_add_scenario(session, clock, seed):
    with pytest.raises(ValidationError):
        await inventory.adjust_stock(session, seed.part_id, AdjustmentType.REMOVE, 12, "Counted", clock)
    part = await inventory.get_part(session, seed.part_id)
    assert part.quantity_in_stock == 10

    part = await inventory.adjust_stock(session, seed.part_id, AdjustmentType.REMOVE, 10, "Scrapped", clock)
    assert part.quantity_in_stock == 0
    part = await inventory.adjust_stock(session, seed.part_id, AdjustmentType.ADD, 3, "Found in back", clock)
    assert part.quantity_in_stock == 3


async def test_every_adjustment_is_audited(session, clock, seed):
    await inventory.adjust_stock(session, seed.part_id, AdjustmentType.REMOVE, 4, "Workshop use", clock)
    await inventory.adjust_stock(session, seed.part_id, AdjustmentType.SET, 8, "  Stock take  ", clock)

    rows, meta = await inventory.list_adjustments(session, seed.part_id)
    assert meta["total"] == 3
    latest, removal, initial = rows
    assert (latest.adjustment_type, latest.previous_quantity, latest.new_quantity) == (AdjustmentType.SET, 6, 8)
    assert latest.reason == "Stock take"
    assert (removal.previous_quantity, removal.new_quantity) == (10, 6)
    assert initial.reason == "Initial stock"
    assert latest.created_at == clock.now()


@pytest.mark.parametrize("reason", ["", "   ", None])
async def test_reason_is_required(session, clock, seed, reason):
    with pytest.raises(ValidationError):
        await inventory.adjust_stock(session, seed.part_id, AdjustmentType.ADD, 1, reason, clock)


async def test_unknown_part(session, clock):
    with pytest.raises(NotFoundError):
        await inventory.adjust_stock(session, 424242, AdjustmentType.ADD, 1, "Delivery", clock)


async def test_part_numbers_are_unique(session, clock, seed):
    with pytest.raises(ConflictError):
        await inventory.create_part(session, {
            "part_number": "OF-100", "part_name": "Duplicate", "unit_cost": Decimal("1"),
            "selling_price": Decimal("2"),
        }, clock)


async def test_stock_is_not_editable_through_update(session, seed):
    with pytest.raises(ValidationError):
        await inventory.update_part(session, seed.part_id, {"quantity_in_stock": 50})
    part = await inventory.update_part(session, seed.part_id, {"reorder_level": 12, "location": "B-4"})
    assert part.reorder_level == 12
    assert part.quantity_in_stock == 10


async def test_low_stock_and_valuation(session, clock, seed):
    await inventory.create_part(session, {
        "part_number": "BP-200", "part_name": "Brake pads", "quantity_in_stock": 2, "reorder_level": 4,
        "unit_cost": Decimal("15.00"), "selling_price": Decimal("30.00"),
    }, clock)

    low = await inventory.low_stock_parts(session)
    assert [p.part_number for p in low] == ["BP-200"]

    value = await inventory.inventory_value(session)
    assert value["total_cost_value"] == Decimal("230.00")
    assert value["total_retail_value"] == Decimal("410.00")
    assert value["total_parts"] == 2
    assert value["total_units"] == 12

    rows, _ = await inventory.list_parts(session, low_stock=True)
    assert [p.part_number for p in rows] == ["BP-200"]
    rows, _ = await inventory.list_parts(session, search="filter")
    assert [p.part_number for p in rows] == ["OF-100"]


async def test_deactivated_parts_leave_valuation(session, seed):
    await inventory.deactivate_part(session, seed.part_id)
    value = await inventory.inventory_value(session)
    assert value["total_parts"] == 0
    assert value["total_cost_value"] == Decimal("0.00")
