"""Inventory: the single entry point for stock mutations, plus part queries.

All changes to ``Part.quantity_in_stock`` go through ``adjust_stock``, which
locks the part row, enforces the non-negative invariant and writes a
``StockAdjustment`` audit row.
"""
import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock
from .errors import ConflictError, NotFoundError, ValidationError
from .metrics import stock_adjustments_total
from .models import AdjustmentType, Part, StockAdjustment, Supplier
from .money import money
from .store import apply_patch, paginate

log = structlog.get_logger()


def next_quantity(current: int, adjustment_type: AdjustmentType, quantity: int) -> int:
    if quantity < 0:
        raise ValidationError(
            "Adjustment quantity must not be negative",
            details=[{"field": "quantity", "message": "must be >= 0"}],
        )
    if adjustment_type is AdjustmentType.ADD:
        return current + quantity
    if adjustment_type is AdjustmentType.REMOVE:
        if quantity > current:
            raise ValidationError(
                f"Stock adjustment would result in negative quantity (current: {current}, remove: {quantity})",
                details=[{"field": "quantity", "message": f"at most {current} can be removed"}],
            )
        return current - quantity
    return quantity


async def adjust_stock(
    session: AsyncSession,
    part_id: int,
    adjustment_type: AdjustmentType,
    quantity: int,
    reason: str,
    clock: Clock,
    user_id: int | None = None,
) -> Part:
    if not reason or not reason.strip():
        raise ValidationError(
            "A reason is required for every stock adjustment",
            details=[{"field": "reason", "message": "must not be empty"}],
        )
    part = await session.scalar(
        select(Part).where(Part.id == part_id).with_for_update()
        .execution_options(populate_existing=True)
    )
    if part is None:
        raise NotFoundError("Part", part_id)

    previous = part.quantity_in_stock
    part.quantity_in_stock = next_quantity(previous, adjustment_type, quantity)
    session.add(StockAdjustment(
        part_id=part.id,
        adjustment_type=adjustment_type,
        quantity=quantity,
        previous_quantity=previous,
        new_quantity=part.quantity_in_stock,
        reason=reason.strip(),
        user_id=user_id,
        created_at=clock.now(),
    ))
    await session.flush()

    stock_adjustments_total.labels(type=adjustment_type.value).inc()
    log.info("stock_adjusted", part_id=part.id, type=adjustment_type.value,
             quantity=quantity, previous=previous, new=part.quantity_in_stock)
    await session.refresh(part)
    return part


async def list_adjustments(session: AsyncSession, part_id: int, page=None, limit=None):
    await get_part(session, part_id)
    stmt = (
        select(StockAdjustment)
        .where(StockAdjustment.part_id == part_id)
        .order_by(StockAdjustment.id.desc())
    )
    return await paginate(session, stmt, page, limit)


async def get_part(session: AsyncSession, part_id: int) -> Part:
    part = await session.get(Part, part_id)
    if part is None:
        raise NotFoundError("Part", part_id)
    return part


async def list_parts(
    session: AsyncSession,
    search: str | None = None,
    category: str | None = None,
    supplier_id: int | None = None,
    is_active: bool | None = None,
    low_stock: bool = False,
    page=None,
    limit=None,
):
    stmt = select(Part)
    if is_active is not None:
        stmt = stmt.where(Part.is_active == is_active)
    if category:
        stmt = stmt.where(Part.category.ilike(f"%{category}%"))
    if supplier_id:
        stmt = stmt.where(Part.supplier_id == supplier_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            Part.part_name.ilike(pattern),
            Part.part_number.ilike(pattern),
            Part.manufacturer.ilike(pattern),
            Part.description.ilike(pattern),
        ))
    if low_stock:
        stmt = stmt.where(Part.is_active.is_(True), Part.quantity_in_stock <= Part.reorder_level)
        stmt = stmt.order_by(Part.quantity_in_stock.asc(), Part.id)
    else:
        stmt = stmt.order_by(Part.id.desc())
    return await paginate(session, stmt, page, limit)


async def low_stock_parts(session: AsyncSession) -> list[Part]:
    stmt = (
        select(Part)
        .where(Part.is_active.is_(True), Part.quantity_in_stock <= Part.reorder_level)
        .order_by(Part.quantity_in_stock.asc(), Part.id)
    )
    return list((await session.scalars(stmt)).all())


async def inventory_value(session: AsyncSession) -> dict:
    row = (await session.execute(
        select(
            func.coalesce(func.sum(Part.quantity_in_stock * Part.unit_cost), 0),
            func.coalesce(func.sum(Part.quantity_in_stock * Part.selling_price), 0),
            func.count(Part.id),
            func.coalesce(func.sum(Part.quantity_in_stock), 0),
        ).where(Part.is_active.is_(True))
    )).one()
    return {
        "total_cost_value": money(row[0]),
        "total_retail_value": money(row[1]),
        "total_parts": int(row[2]),
        "total_units": int(row[3]),
    }


async def create_part(session: AsyncSession, payload: dict, clock: Clock, user_id: int | None = None) -> Part:
    existing = await session.scalar(select(Part.id).where(Part.part_number == payload["part_number"]))
    if existing is not None:
        raise ConflictError("A part with this part number already exists")
    if payload.get("supplier_id") and await session.get(Supplier, payload["supplier_id"]) is None:
        raise NotFoundError("Supplier", payload["supplier_id"])

    initial = payload.pop("quantity_in_stock", 0) or 0
    part = Part(**payload, quantity_in_stock=0)
    session.add(part)
    await session.flush()
    if initial:
        await adjust_stock(session, part.id, AdjustmentType.SET, initial, "Initial stock", clock, user_id)
    await session.refresh(part)
    return part


async def update_part(session: AsyncSession, part_id: int, patch: dict) -> Part:
    part = await get_part(session, part_id)
    if "quantity_in_stock" in patch:
        raise ValidationError(
            "Stock levels change through stock adjustments only",
            details=[{"field": "quantity_in_stock", "message": "use the adjust-stock endpoint"}],
        )
    if patch.get("part_number") and patch["part_number"] != part.part_number:
        clash = await session.scalar(select(Part.id).where(Part.part_number == patch["part_number"]))
        if clash is not None:
            raise ConflictError("A part with this part number already exists")
    if patch.get("supplier_id") and await session.get(Supplier, patch["supplier_id"]) is None:
        raise NotFoundError("Supplier", patch["supplier_id"])
    apply_patch(part, patch)
    await session.flush()
    await session.refresh(part)
    return part


async def deactivate_part(session: AsyncSession, part_id: int) -> None:
    part = await get_part(session, part_id)
    part.is_active = False
    await session.flush()
