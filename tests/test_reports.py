from datetime import date, datetime
from decimal import Decimal

import pytest

from workshop import appointments, billing, reports, work_orders
from workshop.models import (
    AppointmentStatus, Employee, Expense, PaymentMethod, Service, WorkOrderStatus
)


@pytest.fixture
def paid_invoice(clock, make_work_order):
    async def factory(session, when, price):
        clock.advance_to(when)
        work_order = await make_work_order(session, price=price)
        invoice = await billing.create_invoice(session, work_order.id, clock)
        await billing.record_payment(session, invoice.id, invoice.total_amount, PaymentMethod.CASH, clock)
        return invoice
    return factory


@pytest.fixture
async def ledger(session, clock, paid_invoice, make_work_order):
    await paid_invoice(session, datetime(2026, 3, 10, 9, 0), Decimal("100.00"))
    await paid_invoice(session, datetime(2026, 3, 10, 15, 0), Decimal("50.00"))
    await paid_invoice(session, datetime(2026, 4, 2, 10, 0), Decimal("80.00"))

    # Unpaid revenue is not revenue
    clock.advance_to(datetime(2026, 3, 11, 9, 0))
    await billing.create_invoice(session, (await make_work_order(session)).id, clock)

    session.add_all([
        Expense(description="Rent", category="Rent", amount=Decimal("30.00"), expense_date=date(2026, 3, 5)),
        Expense(description="Tools", category="Tools", amount=Decimal("20.00"), expense_date=date(2026, 5, 1)),
    ])
    await session.flush()


async def test_revenue_by_day_is_inclusive(session, ledger):
    rows = await reports.revenue_over_time(session, date(2026, 3, 10), date(2026, 4, 2))
    assert rows == [
        {"period": "2026-03-10", "revenue": Decimal("150.00")},
        {"period": "2026-04-02", "revenue": Decimal("80.00")},
    ]
    rows = await reports.revenue_over_time(session, date(2026, 3, 10), date(2026, 3, 10))
    assert rows == [{"period": "2026-03-10", "revenue": Decimal("150.00")}]


async def test_revenue_by_month(session, ledger):
    rows = await reports.revenue_over_time(session, group="month")
    assert rows == [
        {"period": "2026-03", "revenue": Decimal("150.00")},
        {"period": "2026-04", "revenue": Decimal("80.00")},
    ]


@pytest.mark.parametrize("date_from,date_to", [
    (date(2026, 4, 1), date(2026, 3, 1)),
    (date(2025, 1, 1), date(2025, 12, 31)),
])
async def test_empty_or_reversed_range(session, ledger, date_from, date_to):
    assert await reports.revenue_over_time(session, date_from, date_to) == []
    assert await reports.revenue_vs_expenses(session, date_from, date_to) == []
    assert await reports.top_services(session, date_from, date_to) == []


async def test_revenue_vs_expenses(session, ledger):
    rows = await reports.revenue_vs_expenses(session)
    assert rows == [
        {"month": "2026-03", "revenue": Decimal("150.00"), "expenses": Decimal("30.00"), "profit": Decimal("120.00")},
        {"month": "2026-04", "revenue": Decimal("80.00"), "expenses": Decimal("0.00"), "profit": Decimal("80.00")},
        {"month": "2026-05", "revenue": Decimal("0.00"), "expenses": Decimal("20.00"), "profit": Decimal("-20.00")},
    ]


async def test_summary(session, clock, ledger, seed):
    clock.advance_to(datetime(2026, 3, 12, 8, 0))
    await appointments.create_appointment(session, {
        "customer_id": seed.customer_id, "appointment_date": datetime(2026, 3, 12, 14, 0),
    })
    await appointments.create_appointment(session, {
        "customer_id": seed.customer_id, "appointment_date": datetime(2026, 3, 13, 14, 0),
    })

    data = await reports.summary(session, clock)
    assert data["total_revenue"] == Decimal("230.00")
    assert data["total_expenses"] == Decimal("50.00")
    assert data["net_profit"] == Decimal("180.00")
    assert data["completed_work_orders"] == 4
    assert data["open_work_orders"] == 0
    assert data["pending_invoices"] == 1
    assert data["todays_appointments"] == 1
    assert data["low_stock_parts"] == 0
    assert data["active_customers"] == 1

    data = await reports.summary(session, clock, date(2026, 4, 1), date(2026, 4, 30))
    assert data["total_revenue"] == Decimal("80.00")
    assert data["total_expenses"] == Decimal("0.00")


async def test_mechanic_productivity(session, make_work_order):
    idle = Employee(first_name="Ida", last_name="Idle", role="mechanic", hire_date=date(2024, 5, 1))
    session.add_all([
        idle, Employee(first_name="Rae", last_name="Desk", role="Receptionist", hire_date=date(2023, 1, 9)),
    ])
    await session.flush()

    await make_work_order(session, price=Decimal("100.00"), labor_hours=Decimal("1.5"))
    await make_work_order(session, price=Decimal("60.00"), labor_hours=Decimal("2"))
    await make_work_order(session, price=Decimal("500.00"), complete=False)

    busy, quiet = await reports.mechanic_productivity(session)
    assert busy["completed_orders"] == 2
    assert busy["labor_hours"] == Decimal("3.50")
    assert busy["total_revenue"] == Decimal("160.00")
    assert busy["avg_revenue_per_order"] == Decimal("80.00")
    assert quiet["mechanic_id"] == idle.id
    assert quiet["completed_orders"] == 0
    assert quiet["avg_revenue_per_order"] is None


async def test_top_services(session, clock, seed, make_work_order):
    brakes = Service(category_id=seed.category_id, service_name="Brake check", base_price=Decimal("40.00"))
    session.add(brakes)
    await session.flush()

    await make_work_order(session)
    await make_work_order(session)
    work_order = await make_work_order(session, complete=False)
    await work_orders.add_service_line(session, work_order.id, {"service_id": brakes.id, "quantity": 2})
    cancelled = await make_work_order(session, complete=False)
    await work_orders.add_service_line(session, cancelled.id, {"service_id": brakes.id})
    await work_orders.transition_work_order(session, cancelled.id, WorkOrderStatus.CANCELLED, clock)

    rows = await reports.top_services(session, limit=2)
    assert rows == [
        {"service_id": seed.service_id, "service_name": "Oil change", "count": 3,
         "total_revenue": Decimal("300.00"), "avg_revenue_per_use": Decimal("100.00")},
        {"service_id": brakes.id, "service_name": "Brake check", "count": 1,
         "total_revenue": Decimal("80.00"), "avg_revenue_per_use": Decimal("40.00")},
    ]


async def test_work_orders_by_status_lists_every_status(session, clock, make_work_order):
    await make_work_order(session)
    pending = await make_work_order(session, complete=False)
    await work_orders.transition_work_order(session, pending.id, WorkOrderStatus.CANCELLED, clock)

    rows = await reports.work_orders_by_status(session)
    assert rows == [
        {"status": WorkOrderStatus.PENDING, "count": 0},
        {"status": WorkOrderStatus.IN_PROGRESS, "count": 0},
        {"status": WorkOrderStatus.COMPLETED, "count": 1},
        {"status": WorkOrderStatus.CANCELLED, "count": 1},
    ]


async def test_cancelled_appointments_are_not_counted_today(session, clock, seed):
    appointment = await appointments.create_appointment(session, {
        "customer_id": seed.customer_id, "appointment_date": datetime(2026, 3, 10, 15, 0),
    })
    assert (await reports.summary(session, clock))["todays_appointments"] == 1
    await appointments.transition_appointment(session, appointment.id, AppointmentStatus.CANCELLED)
    assert (await reports.summary(session, clock))["todays_appointments"] == 0
