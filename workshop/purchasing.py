"""Purchase orders: drafting, item editing, lifecycle and receipt into stock."""
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .clock import Clock
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .inventory import adjust_stock
from .lifecycle import apply_transition
from .models import AdjustmentType, Part, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus, Supplier
from .money import money
from .store import apply_patch, paginate

log = structlog.get_logger()

EDITABLE_STATUSES = (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.ORDERED)


async def load_purchase_order(session: AsyncSession, po_id: int) -> PurchaseOrder:
    po = await session.scalar(
        select(PurchaseOrder).where(PurchaseOrder.id == po_id)
        .options(selectinload(PurchaseOrder.items))
        .execution_options(populate_existing=True)
    )
    if po is None:
        raise NotFoundError("Purchase Order", po_id)
    return po


async def _lock(session: AsyncSession, po_id: int) -> PurchaseOrder:
    po = await session.scalar(
        select(PurchaseOrder).where(PurchaseOrder.id == po_id).with_for_update()
        .execution_options(populate_existing=True)
    )
    if po is None:
        raise NotFoundError("Purchase Order", po_id)
    return po


def _ensure_editable(po: PurchaseOrder) -> None:
    if po.status not in EDITABLE_STATUSES:
        raise ValidationError(f'Cannot modify a purchase order with status "{po.status.value}"')


async def _check_parts(session: AsyncSession, part_ids) -> None:
    wanted = set(part_ids)
    found = set((await session.scalars(select(Part.id).where(Part.id.in_(wanted)))).all())
    missing = sorted(wanted - found)
    if missing:
        raise NotFoundError("Part", missing[0])


async def recalculate_total(session: AsyncSession, po: PurchaseOrder) -> PurchaseOrder:
    total = await session.scalar(
        select(func.coalesce(func.sum(PurchaseOrderItem.total_cost), 0))
        .where(PurchaseOrderItem.purchase_order_id == po.id)
    )
    po.total_amount = money(total)
    await session.flush()
    return po


async def create_purchase_order(session: AsyncSession, payload: dict) -> PurchaseOrder:
    if await session.get(Supplier, payload["supplier_id"]) is None:
        raise NotFoundError("Supplier", payload["supplier_id"])
    items = payload.pop("items")
    await _check_parts(session, [item["part_id"] for item in items])

    po = PurchaseOrder(**payload, status=PurchaseOrderStatus.DRAFT)
    session.add(po)
    await session.flush()
    for item in items:
        session.add(PurchaseOrderItem(
            purchase_order_id=po.id,
            part_id=item["part_id"],
            quantity=item["quantity"],
            unit_cost=money(item["unit_cost"]),
            total_cost=money(money(item["unit_cost"]) * item["quantity"]),
        ))
    await session.flush()
    await recalculate_total(session, po)
    log.info("purchase_order_created", po_id=po.id, items=len(items), total=str(po.total_amount))
    return await load_purchase_order(session, po.id)


async def update_purchase_order(session: AsyncSession, po_id: int, patch: dict) -> PurchaseOrder:
    if "status" in patch:
        raise ValidationError("Use the status endpoint to change a purchase order status")
    po = await _lock(session, po_id)
    _ensure_editable(po)
    apply_patch(po, patch)
    await session.flush()
    return await load_purchase_order(session, po.id)


async def add_item(session: AsyncSession, po_id: int, data: dict) -> PurchaseOrder:
    po = await _lock(session, po_id)
    _ensure_editable(po)
    await _check_parts(session, [data["part_id"]])
    unit_cost = money(data["unit_cost"])
    session.add(PurchaseOrderItem(
        purchase_order_id=po.id,
        part_id=data["part_id"],
        quantity=data["quantity"],
        unit_cost=unit_cost,
        total_cost=money(unit_cost * data["quantity"]),
    ))
    await session.flush()
    await recalculate_total(session, po)
    return await load_purchase_order(session, po.id)


async def _item(session: AsyncSession, po_id: int, item_id: int) -> PurchaseOrderItem:
    item = await session.scalar(select(PurchaseOrderItem).where(
        PurchaseOrderItem.id == item_id, PurchaseOrderItem.purchase_order_id == po_id
    ))
    if item is None:
        raise NotFoundError("PurchaseOrderItem", item_id)
    return item


async def update_item(session: AsyncSession, po_id: int, item_id: int, patch: dict) -> PurchaseOrder:
    po = await _lock(session, po_id)
    _ensure_editable(po)
    item = await _item(session, po_id, item_id)
    if patch.get("quantity") is not None:
        item.quantity = patch["quantity"]
    if patch.get("unit_cost") is not None:
        item.unit_cost = money(patch["unit_cost"])
    item.total_cost = money(money(item.unit_cost) * item.quantity)
    await session.flush()
    await recalculate_total(session, po)
    return await load_purchase_order(session, po.id)


async def remove_item(session: AsyncSession, po_id: int, item_id: int) -> PurchaseOrder:
    po = await _lock(session, po_id)
    _ensure_editable(po)
    item = await _item(session, po_id, item_id)
    await session.delete(item)
    await session.flush()
    await recalculate_total(session, po)
    return await load_purchase_order(session, po.id)


async def transition_purchase_order(
    session: AsyncSession,
    po_id: int,
    requested: PurchaseOrderStatus,
    clock: Clock,
    user_id: int | None = None,
) -> PurchaseOrder:
    """Apply a status change; entering RECEIVED books every item into stock.

    Requesting the current status is a no-op, so stock is only booked on the
    single move into RECEIVED.
    """
    po = await _lock(session, po_id)
    if requested == PurchaseOrderStatus.ORDERED and po.status == PurchaseOrderStatus.DRAFT:
        count = await session.scalar(
            select(func.count(PurchaseOrderItem.id)).where(PurchaseOrderItem.purchase_order_id == po.id)
        )
        if not count:
            raise ValidationError("Cannot order a purchase order without items")

    if apply_transition(po, requested) and requested == PurchaseOrderStatus.RECEIVED:
        items = (await session.scalars(
            select(PurchaseOrderItem).where(PurchaseOrderItem.purchase_order_id == po.id)
            .order_by(PurchaseOrderItem.id)
        )).all()
        for item in items:
            await adjust_stock(session, item.part_id, AdjustmentType.ADD, item.quantity,
                               f"Received on purchase order #{po.id}", clock, user_id)
            item.quantity_received = item.quantity
        po.received_date = clock.now()
        log.info("purchase_order_received", po_id=po.id, items=len(items))
    await session.flush()
    return await load_purchase_order(session, po.id)


async def receive_purchase_order(
    session: AsyncSession, po_id: int, clock: Clock, user_id: int | None = None
) -> PurchaseOrder:
    """Receive an ordered purchase order; receiving twice is an error, not a no-op."""
    po = await _lock(session, po_id)
    if po.status == PurchaseOrderStatus.RECEIVED:
        raise InvalidTransitionError(
            "PurchaseOrder", po.status, PurchaseOrderStatus.RECEIVED,
            message="Purchase order has already been received",
        )
    return await transition_purchase_order(session, po_id, PurchaseOrderStatus.RECEIVED, clock, user_id)


async def list_purchase_orders(
    session: AsyncSession,
    status: PurchaseOrderStatus | None = None,
    supplier_id: int | None = None,
    date_from=None,
    date_to=None,
    page=None,
    limit=None,
):
    stmt = select(PurchaseOrder)
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier_id:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if date_from:
        stmt = stmt.where(PurchaseOrder.order_date >= date_from)
    if date_to:
        stmt = stmt.where(PurchaseOrder.order_date <= date_to)
    stmt = stmt.options(selectinload(PurchaseOrder.items)).order_by(PurchaseOrder.id.desc())
    return await paginate(session, stmt, page, limit)
