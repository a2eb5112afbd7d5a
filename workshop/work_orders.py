"""Work orders with their service and part lines.

Part lines consume stock through ``inventory.adjust_stock``. Cost totals are
recomputed from the lines after every line change and on completion.
"""
from datetime import date, datetime, time, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .clock import Clock
from .errors import NotFoundError, ValidationError
from .inventory import adjust_stock
from .lifecycle import apply_transition, is_terminal
from .models import (
    AdjustmentType, Customer, Employee, Part, Service, Vehicle, WorkOrder, WorkOrderPart,
    WorkOrderService, WorkOrderStatus
)
from .money import money
from .store import apply_patch, paginate

log = structlog.get_logger()


async def load_work_order(session: AsyncSession, work_order_id: int) -> WorkOrder:
    work_order = await session.scalar(
        select(WorkOrder).where(WorkOrder.id == work_order_id)
        .options(selectinload(WorkOrder.services), selectinload(WorkOrder.parts))
        .execution_options(populate_existing=True)
    )
    if work_order is None:
        raise NotFoundError("Work Order", work_order_id)
    return work_order


async def _lock(session: AsyncSession, work_order_id: int) -> WorkOrder:
    work_order = await session.scalar(
        select(WorkOrder).where(WorkOrder.id == work_order_id).with_for_update()
        .execution_options(populate_existing=True)
    )
    if work_order is None:
        raise NotFoundError("Work Order", work_order_id)
    return work_order


def ensure_modifiable(work_order: WorkOrder) -> None:
    if is_terminal(work_order.status):
        raise ValidationError(f'Cannot modify a work order with status "{work_order.status.value}"')


async def _active_mechanic(session: AsyncSession, employee_id: int) -> Employee:
    mechanic = await session.get(Employee, employee_id)
    if mechanic is None:
        raise NotFoundError("Employee", employee_id)
    if not mechanic.is_active:
        raise ValidationError("Cannot assign work to an inactive mechanic")
    return mechanic


async def recalculate_totals(session: AsyncSession, work_order: WorkOrder) -> WorkOrder:
    labor = await session.scalar(
        select(func.coalesce(func.sum(WorkOrderService.total_price), 0))
        .where(WorkOrderService.work_order_id == work_order.id)
    )
    parts = await session.scalar(
        select(func.coalesce(func.sum(WorkOrderPart.total_price), 0))
        .where(WorkOrderPart.work_order_id == work_order.id)
    )
    work_order.total_labor_cost = money(labor)
    work_order.total_parts_cost = money(parts)
    work_order.total_cost = work_order.total_labor_cost + work_order.total_parts_cost
    await session.flush()
    return work_order


async def list_work_orders(
    session: AsyncSession,
    status: WorkOrderStatus | None = None,
    priority=None,
    customer_id: int | None = None,
    vehicle_id: int | None = None,
    mechanic_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page=None,
    limit=None,
):
    stmt = select(WorkOrder)
    if status is not None:
        stmt = stmt.where(WorkOrder.status == status)
    if priority is not None:
        stmt = stmt.where(WorkOrder.priority == priority)
    if customer_id:
        stmt = stmt.where(WorkOrder.customer_id == customer_id)
    if vehicle_id:
        stmt = stmt.where(WorkOrder.vehicle_id == vehicle_id)
    if mechanic_id:
        stmt = stmt.where(WorkOrder.assigned_mechanic_id == mechanic_id)
    if date_from:
        stmt = stmt.where(WorkOrder.order_date >= datetime.combine(date_from, time.min))
    if date_to:
        stmt = stmt.where(WorkOrder.order_date < datetime.combine(date_to + timedelta(days=1), time.min))
    stmt = stmt.options(selectinload(WorkOrder.services), selectinload(WorkOrder.parts))
    return await paginate(session, stmt.order_by(WorkOrder.id.desc()), page, limit)


async def create_work_order(session: AsyncSession, payload: dict, clock: Clock) -> WorkOrder:
    vehicle = await session.get(Vehicle, payload["vehicle_id"])
    if vehicle is None:
        raise NotFoundError("Vehicle", payload["vehicle_id"])
    if not vehicle.is_active:
        raise ValidationError("Cannot create work order for inactive vehicle")
    if await session.get(Customer, payload["customer_id"]) is None:
        raise NotFoundError("Customer", payload["customer_id"])
    if payload.get("assigned_mechanic_id"):
        await _active_mechanic(session, payload["assigned_mechanic_id"])

    work_order = WorkOrder(**payload, status=WorkOrderStatus.PENDING, order_date=clock.now())
    session.add(work_order)
    await session.flush()
    log.info("work_order_created", work_order_id=work_order.id, vehicle_id=vehicle.id)
    return await load_work_order(session, work_order.id)


async def update_work_order(session: AsyncSession, work_order_id: int, patch: dict) -> WorkOrder:
    if "status" in patch:
        raise ValidationError("Use the status endpoint to change a work order status")
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    if patch.get("assigned_mechanic_id"):
        await _active_mechanic(session, patch["assigned_mechanic_id"])
    apply_patch(work_order, patch)
    await session.flush()
    return await load_work_order(session, work_order.id)


async def transition_work_order(
    session: AsyncSession, work_order_id: int, requested: WorkOrderStatus, clock: Clock
) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    if apply_transition(work_order, requested) and requested == WorkOrderStatus.COMPLETED:
        await recalculate_totals(session, work_order)
        if work_order.completion_date is None:
            work_order.completion_date = clock.now()
    await session.flush()
    return await load_work_order(session, work_order.id)


async def add_service_line(session: AsyncSession, work_order_id: int, data: dict) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    service = await session.get(Service, data["service_id"])
    if service is None:
        raise NotFoundError("Service", data["service_id"])
    if data.get("mechanic_id"):
        await _active_mechanic(session, data["mechanic_id"])

    quantity = data.get("quantity") or 1
    unit_price = money(data["unit_price"] if data.get("unit_price") is not None else service.base_price)
    session.add(WorkOrderService(
        work_order_id=work_order.id,
        service_id=service.id,
        mechanic_id=data.get("mechanic_id"),
        quantity=quantity,
        unit_price=unit_price,
        labor_hours=data.get("labor_hours"),
        total_price=money(unit_price * quantity),
        notes=data.get("notes"),
    ))
    await session.flush()
    await recalculate_totals(session, work_order)
    return await load_work_order(session, work_order.id)


async def _service_line(session: AsyncSession, work_order_id: int, line_id: int) -> WorkOrderService:
    line = await session.scalar(select(WorkOrderService).where(
        WorkOrderService.id == line_id, WorkOrderService.work_order_id == work_order_id
    ))
    if line is None:
        raise NotFoundError("WorkOrderService", line_id)
    return line


async def update_service_line(session: AsyncSession, work_order_id: int, line_id: int, patch: dict) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    line = await _service_line(session, work_order_id, line_id)
    if patch.get("mechanic_id"):
        await _active_mechanic(session, patch["mechanic_id"])
    if patch.get("unit_price") is not None:
        patch = {**patch, "unit_price": money(patch["unit_price"])}
    apply_patch(line, patch)
    line.total_price = money(money(line.unit_price) * line.quantity)
    await session.flush()
    await recalculate_totals(session, work_order)
    return await load_work_order(session, work_order.id)


async def remove_service_line(session: AsyncSession, work_order_id: int, line_id: int) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    line = await _service_line(session, work_order_id, line_id)
    await session.delete(line)
    await session.flush()
    await recalculate_totals(session, work_order)
    return await load_work_order(session, work_order.id)


async def add_part_line(
    session: AsyncSession, work_order_id: int, data: dict, clock: Clock, user_id: int | None = None
) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    part = await session.get(Part, data["part_id"])
    if part is None:
        raise NotFoundError("Part", data["part_id"])
    if not part.is_active:
        raise ValidationError("Cannot add inactive part to work order")

    quantity = data["quantity"]
    await adjust_stock(session, part.id, AdjustmentType.REMOVE, quantity,
                       f"Used on work order #{work_order.id}", clock, user_id)
    unit_price = money(data["unit_price"] if data.get("unit_price") is not None else part.selling_price)
    session.add(WorkOrderPart(
        work_order_id=work_order.id,
        part_id=part.id,
        quantity=quantity,
        unit_price=unit_price,
        total_price=money(unit_price * quantity),
        notes=data.get("notes"),
    ))
    await session.flush()
    await recalculate_totals(session, work_order)
    return await load_work_order(session, work_order.id)


async def _part_line(session: AsyncSession, work_order_id: int, line_id: int) -> WorkOrderPart:
    line = await session.scalar(select(WorkOrderPart).where(
        WorkOrderPart.id == line_id, WorkOrderPart.work_order_id == work_order_id
    ))
    if line is None:
        raise NotFoundError("WorkOrderPart", line_id)
    return line


async def update_part_line(
    session: AsyncSession, work_order_id: int, line_id: int, patch: dict, clock: Clock,
    user_id: int | None = None,
) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    line = await _part_line(session, work_order_id, line_id)

    new_quantity = patch.get("quantity") or line.quantity
    diff = new_quantity - line.quantity
    if diff > 0:
        await adjust_stock(session, line.part_id, AdjustmentType.REMOVE, diff,
                           f"Quantity raised on work order #{work_order.id}", clock, user_id)
    elif diff < 0:
        await adjust_stock(session, line.part_id, AdjustmentType.ADD, -diff,
                           f"Quantity lowered on work order #{work_order.id}", clock, user_id)

    line.quantity = new_quantity
    if patch.get("unit_price") is not None:
        line.unit_price = money(patch["unit_price"])
    if "notes" in patch:
        line.notes = patch["notes"]
    line.total_price = money(money(line.unit_price) * line.quantity)
    await session.flush()
    await recalculate_totals(session, work_order)
    return await load_work_order(session, work_order.id)


async def remove_part_line(
    session: AsyncSession, work_order_id: int, line_id: int, clock: Clock, user_id: int | None = None
) -> WorkOrder:
    work_order = await _lock(session, work_order_id)
    ensure_modifiable(work_order)
    line = await _part_line(session, work_order_id, line_id)
    await adjust_stock(session, line.part_id, AdjustmentType.ADD, line.quantity,
                       f"Removed from work order #{work_order.id}", clock, user_id)
    await session.delete(line)
    await session.flush()
    await recalculate_totals(session, work_order)
    return await load_work_order(session, work_order.id)


async def vehicle_history(session: AsyncSession, vehicle_id: int) -> list[WorkOrder]:
    if await session.get(Vehicle, vehicle_id) is None:
        raise NotFoundError("Vehicle", vehicle_id)
    stmt = (
        select(WorkOrder)
        .where(WorkOrder.vehicle_id == vehicle_id, WorkOrder.status == WorkOrderStatus.COMPLETED)
        .options(selectinload(WorkOrder.services), selectinload(WorkOrder.parts))
        .order_by(WorkOrder.completion_date.desc(), WorkOrder.id.desc())
    )
    return list((await session.scalars(stmt)).all())
