"""Read-only aggregates for the dashboard.

Date ranges are inclusive on both ends. A range with no matching rows, or a
reversed range, gives an empty series. Averages are ``None`` when there is
nothing to divide by.
"""
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock
from .models import (
    Appointment, AppointmentStatus, Customer, Employee, Expense, Invoice, InvoiceStatus, Part,
    Service, WorkOrder, WorkOrderService, WorkOrderStatus
)
from .money import ZERO, money

OPEN_WORK_ORDER_STATUSES = (WorkOrderStatus.PENDING, WorkOrderStatus.IN_PROGRESS)
PENDING_INVOICE_STATUSES = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE)


def _date_range(stmt, column, date_from: date | None, date_to: date | None):
    if date_from:
        stmt = stmt.where(column >= date_from)
    if date_to:
        stmt = stmt.where(column <= date_to)
    return stmt


def _datetime_range(stmt, column, date_from: date | None, date_to: date | None):
    if date_from:
        stmt = stmt.where(column >= datetime.combine(date_from, time.min))
    if date_to:
        stmt = stmt.where(column < datetime.combine(date_to + timedelta(days=1), time.min))
    return stmt


def _average(total: Decimal, count) -> Decimal | None:
    if not count:
        return None
    return money(total / count)


def _bucket(day: date, group: str) -> str:
    if group == "month":
        return day.strftime("%Y-%m")
    return day.isoformat()


async def _paid_invoices(session, date_from, date_to):
    stmt = select(Invoice.invoice_date, Invoice.total_amount).where(Invoice.status == InvoiceStatus.PAID)
    stmt = _date_range(stmt, Invoice.invoice_date, date_from, date_to)
    return (await session.execute(stmt.order_by(Invoice.invoice_date))).all()


async def revenue_over_time(
    session: AsyncSession, date_from: date | None = None, date_to: date | None = None, group: str = "day"
) -> list[dict]:
    if group not in ("day", "month"):
        group = "day"
    grouped: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for invoice_date, total in await _paid_invoices(session, date_from, date_to):
        grouped[_bucket(invoice_date, group)] += money(total)
    return [{"period": key, "revenue": money(value)} for key, value in sorted(grouped.items())]


async def revenue_vs_expenses(
    session: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> list[dict]:
    revenue: dict[str, Decimal] = defaultdict(lambda: ZERO)
    expenses: dict[str, Decimal] = defaultdict(lambda: ZERO)

    for invoice_date, total in await _paid_invoices(session, date_from, date_to):
        revenue[_bucket(invoice_date, "month")] += money(total)

    stmt = _date_range(select(Expense.expense_date, Expense.amount), Expense.expense_date, date_from, date_to)
    for expense_date, amount in (await session.execute(stmt)).all():
        expenses[_bucket(expense_date, "month")] += money(amount)

    months = sorted(set(revenue) | set(expenses))
    return [
        {
            "month": month,
            "revenue": money(revenue[month]),
            "expenses": money(expenses[month]),
            "profit": money(revenue[month] - expenses[month]),
        }
        for month in months
    ]


async def mechanic_productivity(
    session: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> list[dict]:
    """Completed work orders, billed labor hours and revenue per active mechanic.

    Revenue is the total cost of the work orders assigned to the mechanic.
    Hours are the labor hours on those orders' service lines.
    """
    mechanics = (await session.scalars(
        select(Employee).where(Employee.is_active.is_(True), func.upper(Employee.role) == "MECHANIC")
        .order_by(Employee.id)
    )).all()
    if not mechanics:
        return []

    orders = select(WorkOrder.id, WorkOrder.assigned_mechanic_id, WorkOrder.total_cost).where(
        WorkOrder.status == WorkOrderStatus.COMPLETED,
        WorkOrder.assigned_mechanic_id.in_([m.id for m in mechanics]),
    )
    orders = _datetime_range(orders, WorkOrder.completion_date, date_from, date_to)
    rows = (await session.execute(orders)).all()

    counts: dict[int, int] = defaultdict(int)
    revenue: dict[int, Decimal] = defaultdict(lambda: ZERO)
    owner = {}
    for order_id, mechanic_id, total_cost in rows:
        counts[mechanic_id] += 1
        revenue[mechanic_id] += money(total_cost)
        owner[order_id] = mechanic_id

    hours: dict[int, Decimal] = defaultdict(lambda: ZERO)
    if owner:
        lines = select(WorkOrderService.work_order_id, WorkOrderService.labor_hours).where(
            WorkOrderService.work_order_id.in_(list(owner))
        )
        for order_id, labor_hours in (await session.execute(lines)).all():
            if labor_hours is not None:
                hours[owner[order_id]] += Decimal(labor_hours)

    result = [
        {
            "mechanic_id": m.id,
            "first_name": m.first_name,
            "last_name": m.last_name,
            "completed_orders": counts[m.id],
            "labor_hours": money(hours[m.id]),
            "total_revenue": money(revenue[m.id]),
            "avg_revenue_per_order": _average(revenue[m.id], counts[m.id]),
        }
        for m in mechanics
    ]
    result.sort(key=lambda row: row["completed_orders"], reverse=True)
    return result


async def top_services(
    session: AsyncSession, date_from: date | None = None, date_to: date | None = None, limit: int = 10
) -> list[dict]:
    uses = func.count(WorkOrderService.id).label("uses")
    stmt = (
        select(
            WorkOrderService.service_id,
            Service.service_name,
            uses,
            func.coalesce(func.sum(WorkOrderService.quantity), 0),
            func.coalesce(func.sum(WorkOrderService.total_price), 0),
        )
        .join(Service, Service.id == WorkOrderService.service_id)
        .join(WorkOrder, WorkOrder.id == WorkOrderService.work_order_id)
        .where(WorkOrder.status != WorkOrderStatus.CANCELLED)
    )
    stmt = (
        _datetime_range(stmt, WorkOrder.order_date, date_from, date_to)
        .group_by(WorkOrderService.service_id, Service.service_name)
        .order_by(uses.desc(), WorkOrderService.service_id)
        .limit(limit)
    )
    return [
        {
            "service_id": service_id,
            "service_name": name,
            "count": count,
            "total_revenue": money(total),
            "avg_revenue_per_use": _average(money(total), quantity),
        }
        for service_id, name, count, quantity, total in (await session.execute(stmt)).all()
    ]


async def work_orders_by_status(session: AsyncSession) -> list[dict]:
    rows = dict((await session.execute(
        select(WorkOrder.status, func.count(WorkOrder.id)).group_by(WorkOrder.status)
    )).all())
    return [{"status": status, "count": rows.get(status, 0)} for status in WorkOrderStatus]


async def summary(
    session: AsyncSession, clock: Clock, date_from: date | None = None, date_to: date | None = None
) -> dict:
    revenue_stmt = _date_range(
        select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(Invoice.status == InvoiceStatus.PAID),
        Invoice.invoice_date, date_from, date_to,
    )
    expense_stmt = _date_range(
        select(func.coalesce(func.sum(Expense.amount), 0)), Expense.expense_date, date_from, date_to
    )
    completed_stmt = _datetime_range(
        select(func.count(WorkOrder.id)).where(WorkOrder.status == WorkOrderStatus.COMPLETED),
        WorkOrder.completion_date, date_from, date_to,
    )
    today = clock.today()
    todays_stmt = _datetime_range(
        select(func.count(Appointment.id)).where(
            Appointment.status.in_((AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED))
        ),
        Appointment.appointment_date, today, today,
    )

    total_revenue = money(await session.scalar(revenue_stmt))
    total_expenses = money(await session.scalar(expense_stmt))
    return {
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "net_profit": money(total_revenue - total_expenses),
        "open_work_orders": await session.scalar(
            select(func.count(WorkOrder.id)).where(WorkOrder.status.in_(OPEN_WORK_ORDER_STATUSES))
        ),
        "completed_work_orders": await session.scalar(completed_stmt),
        "pending_invoices": await session.scalar(
            select(func.count(Invoice.id)).where(Invoice.status.in_(PENDING_INVOICE_STATUSES))
        ),
        "todays_appointments": await session.scalar(todays_stmt),
        "low_stock_parts": await session.scalar(
            select(func.count(Part.id)).where(
                Part.is_active.is_(True), Part.quantity_in_stock <= Part.reorder_level
            )
        ),
        "active_customers": await session.scalar(
            select(func.count(Customer.id)).where(Customer.is_active.is_(True))
        ),
    }
