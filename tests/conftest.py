from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from workshop import inventory, work_orders
from workshop.clock import FixedClock
from workshop.models import Customer, Employee, Service, ServiceCategory, Supplier, Vehicle, WorkOrderStatus
from workshop.store import Store

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def store():
    store = Store(SQLITE_URL, create_schema=True)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 10, 9, 0))


@pytest.fixture
async def session(store, seed):
    # Seeded data is committed before the test's own transaction starts
    async with store.transaction() as session:
        yield session


@pytest.fixture
async def seed(store, clock):
    """A customer with one vehicle, a mechanic, a priced service and a stocked part."""
    async with store.transaction() as session:
        customer = Customer(first_name="Ada", last_name="Lovelace", phone="555-0100", email="ada@example.com")
        supplier = Supplier(supplier_name="Parts Direct", email="orders@partsdirect.com")
        mechanic = Employee(first_name="Sam", last_name="Wrench", role="MECHANIC", hire_date=date(2020, 1, 6),
                            hourly_rate=Decimal("45.00"))
        category = ServiceCategory(category_name="Maintenance")
        session.add_all([customer, supplier, mechanic, category])
        await session.flush()

        vehicle = Vehicle(customer_id=customer.id, make="Toyota", model="Corolla", year=2018,
                          license_plate="AB-123-CD")
        service = Service(category_id=category.id, service_name="Oil change", base_price=Decimal("100.00"),
                          estimated_duration=45)
        session.add_all([vehicle, service])
        await session.flush()

        part = await inventory.create_part(session, {
            "part_number": "OF-100",
            "part_name": "Oil filter",
            "category": "Filters",
            "quantity_in_stock": 10,
            "reorder_level": 5,
            "unit_cost": Decimal("20.00"),
            "selling_price": Decimal("35.00"),
            "supplier_id": supplier.id,
        }, clock)

        return SimpleNamespace(
            customer_id=customer.id,
            vehicle_id=vehicle.id,
            mechanic_id=mechanic.id,
            category_id=category.id,
            service_id=service.id,
            supplier_id=supplier.id,
            part_id=part.id,
        )


@pytest.fixture
def make_work_order(seed, clock):
    """Factory for work orders with one service line, optionally walked to COMPLETED."""
    async def factory(session, price=Decimal("100.00"), complete=True, labor_hours=None):
        work_order = await work_orders.create_work_order(session, {
            "vehicle_id": seed.vehicle_id,
            "customer_id": seed.customer_id,
            "assigned_mechanic_id": seed.mechanic_id,
        }, clock)
        await work_orders.add_service_line(session, work_order.id, {
            "service_id": seed.service_id,
            "unit_price": price,
            "labor_hours": labor_hours,
        })
        if complete:
            await work_orders.transition_work_order(session, work_order.id, WorkOrderStatus.IN_PROGRESS, clock)
            work_order = await work_orders.transition_work_order(
                session, work_order.id, WorkOrderStatus.COMPLETED, clock
            )
        return work_order
    return factory
