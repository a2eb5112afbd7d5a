"""Status lifecycles for work orders, appointments and purchase orders.

Every status enum maps to the set of statuses it may move to. Terminal
statuses map to an empty set. Invoice status is not in the table: it is
derived from payments (see ``workshop.billing.derive_status``) and can never
be set directly.
"""
import enum

import structlog

from .errors import InvalidTransitionError
from .metrics import status_transitions_total
from .models import AppointmentStatus, InvoiceStatus, PurchaseOrderStatus, WorkOrderStatus

log = structlog.get_logger()

WO = WorkOrderStatus
APPT = AppointmentStatus
PO = PurchaseOrderStatus

INVOICE_STATUS_MESSAGE = "Invoice status is derived from payments and cannot be set directly"

TRANSITIONS: dict[type[enum.Enum], dict[enum.Enum, frozenset]] = {
    WorkOrderStatus: {
        WO.PENDING: frozenset({WO.IN_PROGRESS, WO.CANCELLED}),
        WO.IN_PROGRESS: frozenset({WO.COMPLETED, WO.CANCELLED}),
        WO.COMPLETED: frozenset(),
        WO.CANCELLED: frozenset(),
    },
    AppointmentStatus: {
        APPT.SCHEDULED: frozenset({APPT.CONFIRMED, APPT.CANCELLED, APPT.NO_SHOW}),
        APPT.CONFIRMED: frozenset({APPT.IN_PROGRESS, APPT.CANCELLED, APPT.NO_SHOW}),
        APPT.IN_PROGRESS: frozenset({APPT.COMPLETED}),
        APPT.COMPLETED: frozenset(),
        APPT.CANCELLED: frozenset(),
        APPT.NO_SHOW: frozenset(),
    },
    PurchaseOrderStatus: {
        PO.DRAFT: frozenset({PO.ORDERED, PO.CANCELLED}),
        PO.ORDERED: frozenset({PO.RECEIVED, PO.CANCELLED}),
        PO.RECEIVED: frozenset(),
        PO.CANCELLED: frozenset(),
    },
}


def _table(status: enum.Enum) -> dict:
    table = TRANSITIONS.get(type(status))
    if table is None:
        raise KeyError(f"No lifecycle defined for {type(status).__name__}")
    return table


def allowed_transitions(status: enum.Enum) -> frozenset:
    return _table(status)[status]


def is_terminal(status: enum.Enum) -> bool:
    return not allowed_transitions(status)


def check_transition(current: enum.Enum, requested: enum.Enum, entity: str = "entity") -> bool:
    """Return False for a same-state no-op, True for a legal move, raise otherwise."""
    if isinstance(current, InvoiceStatus) or isinstance(requested, InvoiceStatus):
        raise InvalidTransitionError("invoice", current, requested, message=INVOICE_STATUS_MESSAGE)
    if type(current) is not type(requested):
        raise InvalidTransitionError(entity, current, requested, allowed_transitions(current))
    if current == requested:
        return False
    allowed = allowed_transitions(current)
    if requested not in allowed:
        raise InvalidTransitionError(entity, current, requested, allowed)
    return True


def apply_transition(entity, requested: enum.Enum) -> bool:
    """Move ``entity.status`` to ``requested``.

    Returns True when the status changed, False when the entity was already in
    the requested status. Raises InvalidTransitionError for any move the table
    does not allow, which includes every move out of a terminal status.
    """
    name = type(entity).__name__
    changed = check_transition(entity.status, requested, name)
    if changed:
        previous = entity.status
        entity.status = requested
        status_transitions_total.labels(entity=name, status=requested.value).inc()
        log.info("status_transition", entity=name, id=entity.id,
                 from_status=previous.value, to_status=requested.value)
    return changed
