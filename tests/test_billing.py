from datetime import date, datetime
from decimal import Decimal

import pytest

from workshop import billing, work_orders
from workshop.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from workshop.models import InvoiceStatus, PaymentMethod


def test_compute_totals():
    assert billing.compute_totals(Decimal("100"), Decimal("10"), Decimal("5")) == Decimal("105.00")
    assert billing.compute_totals(Decimal("100"), None, None) == Decimal("100.00")
    assert billing.compute_totals(Decimal("100"), Decimal("10"), Decimal("110")) == Decimal("0.00")


def test_compute_totals_rejects_discount_above_subtotal_plus_tax():
    with pytest.raises(ValidationError) as excinfo:
        billing.compute_totals(Decimal("100"), Decimal("10"), Decimal("110.01"))
    assert excinfo.value.details[0]["field"] == "discount_amount"


def test_compute_totals_rejects_negative_inputs():
    with pytest.raises(ValidationError):
        billing.compute_totals(Decimal("100"), Decimal("-1"), Decimal("0"))


@pytest.mark.parametrize("total,paid,due,expected", [
    ("105", "105", date(2026, 1, 1), InvoiceStatus.PAID),
    ("105", "50", date(2026, 1, 1), InvoiceStatus.OVERDUE),
    ("105", "50", date(2026, 4, 1), InvoiceStatus.PARTIALLY_PAID),
    ("105", "0", date(2026, 3, 10), InvoiceStatus.UNPAID),
    ("105", "0", None, InvoiceStatus.UNPAID),
    ("0", "0", date(2026, 1, 1), InvoiceStatus.PAID),
])
def test_derive_status(total, paid, due, expected):
    assert billing.derive_status(Decimal(total), Decimal(paid), due, date(2026, 3, 10)) == expected


async def test_payments_drive_balance_and_status(session, clock, make_work_order):
    work_order = await make_work_order(session, price=Decimal("100.00"))
    invoice = await billing.create_invoice(
        session, work_order.id, clock, tax_amount=Decimal("10"), discount_amount=Decimal("5")
    )
    assert invoice.subtotal == Decimal("100.00")
    assert invoice.total_amount == Decimal("105.00")
    assert invoice.balance_due == Decimal("105.00")
    assert invoice.status == InvoiceStatus.UNPAID

    await billing.record_payment(session, invoice.id, Decimal("50"), PaymentMethod.CASH, clock)
    invoice = await billing.load_invoice(session, invoice.id)
    assert invoice.amount_paid == Decimal("50.00")
    assert invoice.balance_due == Decimal("55.00")
    assert invoice.status == InvoiceStatus.PARTIALLY_PAID

    await billing.record_payment(session, invoice.id, Decimal("55"), PaymentMethod.CARD, clock)
    invoice = await billing.load_invoice(session, invoice.id)
    assert invoice.balance_due == Decimal("0.00")
    assert invoice.status == InvoiceStatus.PAID
    assert len(invoice.payments) == 2

    for amount in (Decimal("0.01"), Decimal("10")):
        with pytest.raises(ValidationError):
            await billing.record_payment(session, invoice.id, amount, PaymentMethod.CASH, clock)


async def test_overpayment_and_non_positive_amounts_are_rejected(session, clock, make_work_order):
    work_order = await make_work_order(session)
    invoice = await billing.create_invoice(session, work_order.id, clock)

    with pytest.raises(ValidationError) as excinfo:
        await billing.record_payment(session, invoice.id, Decimal("100.01"), PaymentMethod.CASH, clock)
    assert excinfo.value.details == [{"field": "amount", "message": "at most 100.00"}]
    for amount in (Decimal("0"), Decimal("-5")):
        with pytest.raises(ValidationError):
            await billing.record_payment(session, invoice.id, amount, PaymentMethod.CASH, clock)

    invoice = await billing.load_invoice(session, invoice.id)
    assert invoice.amount_paid == Decimal("0.00")
    assert invoice.payments == []


async def test_deleting_a_payment_reverses_it(session, clock, make_work_order):
    work_order = await make_work_order(session)
    invoice = await billing.create_invoice(session, work_order.id, clock)
    first = await billing.record_payment(session, invoice.id, Decimal("60"), PaymentMethod.CASH, clock)
    await billing.record_payment(session, invoice.id, Decimal("40"), PaymentMethod.CASH, clock)

    invoice = await billing.delete_payment(session, first.id, clock)
    assert invoice.amount_paid == Decimal("40.00")
    assert invoice.balance_due == Decimal("60.00")
    assert invoice.balance_due == invoice.total_amount - invoice.amount_paid
    assert invoice.status == InvoiceStatus.PARTIALLY_PAID

    with pytest.raises(NotFoundError):
        await billing.delete_payment(session, first.id, clock)


async def test_invoice_numbers_are_sequential_per_year(session, clock, make_work_order):
    first = await billing.create_invoice(session, (await make_work_order(session)).id, clock)
    second = await billing.create_invoice(session, (await make_work_order(session)).id, clock)
    assert first.invoice_number == "INV-2026-00001"
    assert second.invoice_number == "INV-2026-00002"

    clock.advance_to(datetime(2027, 1, 2, 10, 0))
    third = await billing.create_invoice(session, (await make_work_order(session)).id, clock)
    assert third.invoice_number == "INV-2027-00001"


async def test_generate_invoice_number_increments_counter(session):
    numbers = [await billing.generate_invoice_number(session, 2030) for _ in range(3)]
    assert numbers == ["INV-2030-00001", "INV-2030-00002", "INV-2030-00003"]


async def test_invoice_requires_completed_work_order(session, clock, make_work_order):
    work_order = await make_work_order(session, complete=False)
    with pytest.raises(ValidationError):
        await billing.create_invoice(session, work_order.id, clock)
    with pytest.raises(NotFoundError):
        await billing.create_invoice(session, 9999, clock)


async def test_one_invoice_per_work_order(session, clock, make_work_order):
    work_order = await make_work_order(session)
    await billing.create_invoice(session, work_order.id, clock)
    with pytest.raises(ConflictError):
        await billing.create_invoice(session, work_order.id, clock)


async def test_tax_rate_and_default_due_date(session, clock, make_work_order):
    work_order = await make_work_order(session, price=Decimal("80.00"))
    invoice = await billing.create_invoice(session, work_order.id, clock, tax_rate=Decimal("12.5"))
    assert invoice.tax_amount == Decimal("10.00")
    assert invoice.total_amount == Decimal("90.00")
    assert invoice.invoice_date == date(2026, 3, 10)
    assert invoice.due_date == date(2026, 4, 9)


async def test_overdue_follows_the_clock(session, clock, make_work_order):
    work_order = await make_work_order(session)
    invoice = await billing.create_invoice(session, work_order.id, clock, due_date=date(2026, 3, 20))
    await billing.record_payment(session, invoice.id, Decimal("30"), PaymentMethod.CASH, clock)

    clock.advance_to(datetime(2026, 3, 21, 8, 0))
    invoice = await billing.get_invoice(session, invoice.id, clock)
    assert invoice.status == InvoiceStatus.OVERDUE
    assert invoice.balance_due == Decimal("70.00")

    # Paying off an overdue invoice still ends as PAID
    await billing.record_payment(session, invoice.id, Decimal("70"), PaymentMethod.CARD, clock)
    invoice = await billing.load_invoice(session, invoice.id)
    assert invoice.status == InvoiceStatus.PAID


async def test_refresh_overdue_and_outstanding(session, clock, make_work_order):
    late = await billing.create_invoice(
        session, (await make_work_order(session)).id, clock, due_date=date(2026, 3, 11)
    )
    current = await billing.create_invoice(
        session, (await make_work_order(session)).id, clock, due_date=date(2026, 5, 1)
    )
    paid = await billing.create_invoice(session, (await make_work_order(session)).id, clock)
    await billing.record_payment(session, paid.id, paid.total_amount, PaymentMethod.CASH, clock)

    clock.advance_to(datetime(2026, 3, 15, 12, 0))
    assert await billing.refresh_overdue(session, clock.today()) == 1
    outstanding = await billing.outstanding_invoices(session, clock)
    assert {(i.id, i.status) for i in outstanding} == {
        (late.id, InvoiceStatus.OVERDUE), (current.id, InvoiceStatus.UNPAID),
    }


async def test_update_invoice_rules(session, clock, make_work_order):
    work_order = await make_work_order(session)
    invoice = await billing.create_invoice(session, work_order.id, clock)
    await billing.record_payment(session, invoice.id, Decimal("90"), PaymentMethod.CASH, clock)

    with pytest.raises(InvalidTransitionError):
        await billing.update_invoice(session, invoice.id, {"status": InvoiceStatus.PAID}, clock)
    with pytest.raises(ValidationError):
        await billing.update_invoice(session, invoice.id, {"discount_amount": Decimal("20")}, clock)

    invoice = await billing.update_invoice(session, invoice.id, {"discount_amount": Decimal("10")}, clock)
    assert invoice.total_amount == Decimal("90.00")
    assert invoice.balance_due == Decimal("0.00")
    assert invoice.status == InvoiceStatus.PAID

    with pytest.raises(ValidationError):
        await billing.update_invoice(session, invoice.id, {"notes": "late edit"}, clock)


async def test_update_invoice_null_amounts_keep_stored_values(session, clock, make_work_order):
    work_order = await make_work_order(session)
    invoice = await billing.create_invoice(
        session, work_order.id, clock, tax_amount=Decimal("10"), discount_amount=Decimal("5")
    )

    invoice = await billing.update_invoice(
        session, invoice.id, {"tax_amount": None, "discount_amount": None, "notes": "Fleet account"}, clock
    )
    assert invoice.tax_amount == Decimal("10.00")
    assert invoice.discount_amount == Decimal("5.00")
    assert invoice.total_amount == Decimal("105.00")
    assert invoice.balance_due == Decimal("105.00")
    assert invoice.notes == "Fleet account"


async def test_list_payments_filters_by_invoice(session, clock, make_work_order):
    first = await billing.create_invoice(session, (await make_work_order(session)).id, clock)
    second = await billing.create_invoice(session, (await make_work_order(session)).id, clock)
    await billing.record_payment(session, first.id, Decimal("10"), PaymentMethod.CASH, clock)
    await billing.record_payment(session, second.id, Decimal("20"), PaymentMethod.CHECK, clock)

    rows, meta = await billing.list_payments(session, invoice_id=second.id)
    assert [p.amount for p in rows] == [Decimal("20.00")]
    assert meta["total"] == 1

    rows, _ = await billing.list_payments(session, method=PaymentMethod.CASH)
    assert [p.invoice_id for p in rows] == [first.id]


async def test_work_order_totals_follow_lines(session, clock, make_work_order):
    work_order = await make_work_order(session, price=Decimal("100.00"), complete=False)
    work_order = await work_orders.add_service_line(session, work_order.id, {
        "service_id": work_order.services[0].service_id, "unit_price": Decimal("20.50"), "quantity": 2,
    })
    assert work_order.total_labor_cost == Decimal("141.00")
    assert work_order.total_cost == Decimal("141.00")
