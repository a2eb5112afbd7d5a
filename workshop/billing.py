"""Invoices and payments.

Invoice money fields and status are derived values: ``amount_paid`` is the
sum of the invoice's payments, ``balance_due`` is ``total_amount -
amount_paid`` and the status follows from the balance, the due date and
today's date. They are recomputed inside the same transaction as every write
that changes their inputs.
"""
from datetime import date, timedelta
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .clock import Clock
from .config import get_settings
from .errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .lifecycle import INVOICE_STATUS_MESSAGE
from .metrics import invoices_created_total, payments_total
from .models import (
    Invoice, InvoiceSequence, InvoiceStatus, Payment, PaymentMethod, WorkOrder, WorkOrderStatus
)
from .money import ZERO, money
from .store import paginate
from .work_orders import recalculate_totals

log = structlog.get_logger()

OPEN_STATUSES = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE)
OUTSTANDING_LIMIT = 200


def compute_totals(subtotal, tax_amount, discount_amount) -> Decimal:
    subtotal, tax_amount, discount_amount = money(subtotal), money(tax_amount), money(discount_amount)
    for field, value in (("subtotal", subtotal), ("tax_amount", tax_amount), ("discount_amount", discount_amount)):
        if value < 0:
            raise ValidationError(f"{field} must not be negative",
                                  details=[{"field": field, "message": "must be >= 0"}])
    if discount_amount > subtotal + tax_amount:
        raise ValidationError(
            "Discount exceeds subtotal plus tax",
            details=[{"field": "discount_amount", "message": f"at most {subtotal + tax_amount}"}],
        )
    return max(subtotal + tax_amount - discount_amount, ZERO)


def derive_status(total_amount, amount_paid, due_date: date | None, today: date) -> InvoiceStatus:
    balance = money(total_amount) - money(amount_paid)
    if balance <= 0:
        return InvoiceStatus.PAID
    if due_date is not None and due_date < today:
        return InvoiceStatus.OVERDUE
    if money(amount_paid) > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.UNPAID


def format_invoice_number(year: int, sequence: int) -> str:
    return f"INV-{year}-{sequence:05d}"


async def generate_invoice_number(session: AsyncSession, year: int) -> str:
    """Next number for ``year``, incremented atomically in the caller's transaction."""
    insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
    stmt = insert(InvoiceSequence).values(year=year, last_value=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[InvoiceSequence.year],
        set_={"last_value": InvoiceSequence.last_value + 1},
    )
    await session.execute(stmt)
    sequence = await session.scalar(
        select(InvoiceSequence.last_value).where(InvoiceSequence.year == year)
    )
    return format_invoice_number(year, sequence)


async def _paid_total(session: AsyncSession, invoice_id: int) -> Decimal:
    total = await session.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice_id)
    )
    return money(total)


async def reconcile(session: AsyncSession, invoice: Invoice, today: date) -> Invoice:
    """Recompute amount_paid, balance_due and status from the stored payments."""
    paid = await _paid_total(session, invoice.id)
    invoice.amount_paid = paid
    invoice.balance_due = money(invoice.total_amount) - paid
    invoice.status = derive_status(invoice.total_amount, paid, invoice.due_date, today)
    await session.flush()
    return invoice


async def _lock_invoice(session: AsyncSession, invoice_id: int) -> Invoice:
    invoice = await session.scalar(
        select(Invoice).where(Invoice.id == invoice_id).with_for_update()
        .execution_options(populate_existing=True)
    )
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


async def load_invoice(session: AsyncSession, invoice_id: int) -> Invoice:
    invoice = await session.scalar(
        select(Invoice).where(Invoice.id == invoice_id)
        .options(selectinload(Invoice.payments))
        .execution_options(populate_existing=True)
    )
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


async def get_invoice(session: AsyncSession, invoice_id: int, clock: Clock) -> Invoice:
    invoice = await load_invoice(session, invoice_id)
    status = derive_status(invoice.total_amount, invoice.amount_paid, invoice.due_date, clock.today())
    if status != invoice.status:
        invoice.status = status
        await session.flush()
        invoice = await load_invoice(session, invoice_id)
    return invoice


async def create_invoice(
    session: AsyncSession,
    work_order_id: int,
    clock: Clock,
    tax_rate: Decimal | None = None,
    tax_amount: Decimal | None = None,
    discount_amount: Decimal | None = None,
    due_date: date | None = None,
    notes: str | None = None,
) -> Invoice:
    work_order = await session.scalar(
        select(WorkOrder).where(WorkOrder.id == work_order_id).with_for_update()
    )
    if work_order is None:
        raise NotFoundError("Work Order", work_order_id)
    if work_order.status != WorkOrderStatus.COMPLETED:
        raise ValidationError("Can only create invoices for completed work orders")
    existing = await session.scalar(select(Invoice.id).where(Invoice.work_order_id == work_order_id))
    if existing is not None:
        raise ConflictError("An invoice already exists for this work order")

    await recalculate_totals(session, work_order)
    settings = get_settings()
    subtotal = money(work_order.total_cost)
    if tax_amount is None:
        rate = settings.default_tax_rate if tax_rate is None else Decimal(tax_rate)
        tax_amount = money(subtotal * rate / 100)
    total = compute_totals(subtotal, tax_amount, discount_amount)

    today = clock.today()
    if due_date is None:
        due_date = today + timedelta(days=settings.invoice_due_days)
    invoice = Invoice(
        invoice_number=await generate_invoice_number(session, today.year),
        work_order_id=work_order.id,
        customer_id=work_order.customer_id,
        invoice_date=today,
        due_date=due_date,
        subtotal=subtotal,
        tax_amount=money(tax_amount),
        discount_amount=money(discount_amount),
        total_amount=total,
        amount_paid=ZERO,
        balance_due=total,
        status=derive_status(total, ZERO, due_date, today),
        notes=notes,
    )
    session.add(invoice)
    await session.flush()

    invoices_created_total.inc()
    log.info("invoice_created", invoice_id=invoice.id, number=invoice.invoice_number,
             work_order_id=work_order.id, total=str(total))
    return await load_invoice(session, invoice.id)


async def update_invoice(session: AsyncSession, invoice_id: int, patch: dict, clock: Clock) -> Invoice:
    if "status" in patch:
        raise InvalidTransitionError("invoice", None, patch["status"], message=INVOICE_STATUS_MESSAGE)
    invoice = await _lock_invoice(session, invoice_id)
    if invoice.status == InvoiceStatus.PAID:
        raise ValidationError("Cannot modify a fully paid invoice")

    # null leaves the stored amount in place
    tax_amount = invoice.tax_amount if patch.get("tax_amount") is None else patch["tax_amount"]
    discount_amount = invoice.discount_amount if patch.get("discount_amount") is None else patch["discount_amount"]
    total = compute_totals(invoice.subtotal, tax_amount, discount_amount)
    paid = await _paid_total(session, invoice.id)
    if total < paid:
        raise ValidationError(
            f"New total ({total}) would be below the amount already paid ({paid})",
            details=[{"field": "discount_amount", "message": "total must cover recorded payments"}],
        )

    invoice.tax_amount = money(tax_amount)
    invoice.discount_amount = money(discount_amount)
    invoice.total_amount = total
    if "due_date" in patch:
        invoice.due_date = patch["due_date"]
    if "notes" in patch:
        invoice.notes = patch["notes"]
    await reconcile(session, invoice, clock.today())
    return await load_invoice(session, invoice.id)


async def record_payment(
    session: AsyncSession,
    invoice_id: int,
    amount,
    method: PaymentMethod,
    clock: Clock,
    payment_date: date | None = None,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero",
                              details=[{"field": "amount", "message": "must be > 0"}])
    invoice = await _lock_invoice(session, invoice_id)
    balance = money(invoice.total_amount) - await _paid_total(session, invoice.id)
    if balance <= 0:
        raise ValidationError("This invoice is already fully paid")
    if amount > balance:
        raise ValidationError(
            f"Payment amount ({amount}) exceeds balance due ({balance})",
            details=[{"field": "amount", "message": f"at most {balance}"}],
        )

    payment = Payment(
        invoice_id=invoice.id,
        amount=amount,
        payment_method=method,
        payment_date=payment_date or clock.today(),
        reference=reference,
        notes=notes,
    )
    session.add(payment)
    await session.flush()
    await reconcile(session, invoice, clock.today())

    payments_total.labels(method=method.value).inc()
    log.info("payment_recorded", invoice_id=invoice.id, payment_id=payment.id,
             amount=str(amount), balance_due=str(invoice.balance_due), status=invoice.status.value)
    await session.refresh(payment)
    return payment


async def delete_payment(session: AsyncSession, payment_id: int, clock: Clock) -> Invoice:
    payment = await session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    invoice = await _lock_invoice(session, payment.invoice_id)
    await session.delete(payment)
    await session.flush()
    await reconcile(session, invoice, clock.today())
    log.info("payment_deleted", invoice_id=invoice.id, payment_id=payment_id,
             amount=str(payment.amount), balance_due=str(invoice.balance_due))
    return await load_invoice(session, invoice.id)


async def get_payment(session: AsyncSession, payment_id: int) -> Payment:
    payment = await session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    return payment


async def refresh_overdue(session: AsyncSession, today: date) -> int:
    """Flag open invoices whose due date has passed. Returns how many changed."""
    stale = (await session.scalars(
        select(Invoice).where(
            Invoice.status.in_((InvoiceStatus.UNPAID, InvoiceStatus.PARTIALLY_PAID)),
            Invoice.due_date < today,
        )
    )).all()
    for invoice in stale:
        invoice.status = InvoiceStatus.OVERDUE
    if stale:
        await session.flush()
        log.info("invoices_marked_overdue", count=len(stale))
    return len(stale)


async def list_invoices(
    session: AsyncSession,
    clock: Clock,
    status: InvoiceStatus | None = None,
    customer_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page=None,
    limit=None,
):
    await refresh_overdue(session, clock.today())
    stmt = select(Invoice)
    if status is not None:
        stmt = stmt.where(Invoice.status == status)
    if customer_id:
        stmt = stmt.where(Invoice.customer_id == customer_id)
    if date_from:
        stmt = stmt.where(Invoice.invoice_date >= date_from)
    if date_to:
        stmt = stmt.where(Invoice.invoice_date <= date_to)
    stmt = (
        stmt.options(selectinload(Invoice.payments)).order_by(Invoice.id.desc())
        .execution_options(populate_existing=True)
    )
    return await paginate(session, stmt, page, limit)


async def outstanding_invoices(session: AsyncSession, clock: Clock) -> list[Invoice]:
    await refresh_overdue(session, clock.today())
    stmt = (
        select(Invoice)
        .where(Invoice.status.in_(OPEN_STATUSES))
        .options(selectinload(Invoice.payments))
        .order_by(Invoice.invoice_date.asc(), Invoice.id)
        .limit(OUTSTANDING_LIMIT)
        .execution_options(populate_existing=True)
    )
    return list((await session.scalars(stmt)).all())


async def list_payments(
    session: AsyncSession,
    invoice_id: int | None = None,
    method: PaymentMethod | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page=None,
    limit=None,
):
    stmt = select(Payment)
    if invoice_id:
        stmt = stmt.where(Payment.invoice_id == invoice_id)
    if method is not None:
        stmt = stmt.where(Payment.payment_method == method)
    if date_from:
        stmt = stmt.where(Payment.payment_date >= date_from)
    if date_to:
        stmt = stmt.where(Payment.payment_date <= date_to)
    return await paginate(session, stmt.order_by(Payment.id.desc()), page, limit)
