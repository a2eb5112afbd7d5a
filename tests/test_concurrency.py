import asyncio
from decimal import Decimal

import pytest

from workshop import auth, billing, inventory
from workshop.errors import UnauthorizedError, ValidationError
from workshop.models import AdjustmentType, InvoiceStatus, Payment, PaymentMethod, User, UserRole
from workshop.store import Store


@pytest.fixture
async def store(tmp_path):
    # A file database gives each transaction its own connection
    store = Store(f"sqlite+aiosqlite:///{tmp_path / 'workshop.db'}", create_schema=True)
    await store.open()
    yield store
    await store.close()


async def test_concurrent_invoices_get_distinct_numbers(store, clock, make_work_order):
    async with store.transaction() as session:
        work_order_ids = [(await make_work_order(session)).id for _ in range(3)]

    async def invoice_for(work_order_id):
        async with store.transaction() as session:
            invoice = await billing.create_invoice(session, work_order_id, clock)
            return invoice.invoice_number

    numbers = await asyncio.gather(*(invoice_for(i) for i in work_order_ids))
    assert sorted(numbers) == ["INV-2026-00001", "INV-2026-00002", "INV-2026-00003"]


async def test_competing_payments_cannot_overpay(store, clock, make_work_order):
    async with store.transaction() as session:
        work_order = await make_work_order(session)
        invoice = await billing.create_invoice(session, work_order.id, clock)
        await billing.record_payment(session, invoice.id, Decimal("40"), PaymentMethod.CASH, clock)

    async def pay(method):
        async with store.transaction() as session:
            return await billing.record_payment(session, invoice.id, Decimal("60"), method, clock)

    results = await asyncio.gather(pay(PaymentMethod.CARD), pay(PaymentMethod.CHECK), return_exceptions=True)
    assert sum(isinstance(r, Payment) for r in results) == 1
    assert sum(isinstance(r, ValidationError) for r in results) == 1

    async with store.transaction() as session:
        invoice = await billing.load_invoice(session, invoice.id)
    assert invoice.amount_paid == Decimal("100.00")
    assert invoice.balance_due == Decimal("0.00")
    assert invoice.status == InvoiceStatus.PAID
    assert len(invoice.payments) == 2


async def test_competing_stock_removals_never_go_negative(store, clock, seed):
    async def remove(quantity):
        async with store.transaction() as session:
            return await inventory.adjust_stock(
                session, seed.part_id, AdjustmentType.REMOVE, quantity, "Counter sale", clock
            )

    results = await asyncio.gather(remove(6), remove(6), return_exceptions=True)
    assert sum(isinstance(r, ValidationError) for r in results) == 1

    async with store.transaction() as session:
        part = await inventory.get_part(session, seed.part_id)
        adjustments, _ = await inventory.list_adjustments(session, seed.part_id)
    assert part.quantity_in_stock == 4
    assert [a.new_quantity for a in adjustments] == [4, 10]


async def test_only_one_first_registration_becomes_admin(store):
    async def register(email):
        async with store.transaction() as session:
            return await auth.register_user(session, None, email, "bootstrap-pass")

    results = await asyncio.gather(
        register("first@example.com"), register("second@example.com"), return_exceptions=True
    )
    users = [r for r in results if isinstance(r, User)]
    assert [u.role for u in users] == [UserRole.ADMIN]
    assert sum(isinstance(r, UnauthorizedError) for r in results) == 1
