"""Appointment scheduling, double-booking checks and conversion to work orders."""
from datetime import date, datetime, time, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock
from .config import get_settings
from .errors import NotFoundError, ValidationError
from .lifecycle import apply_transition, is_terminal
from .models import Appointment, AppointmentStatus, Customer, Employee, Vehicle, WorkOrder
from .store import apply_patch, paginate
from .work_orders import create_work_order

log = structlog.get_logger()

ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS)
CONVERTIBLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
MAX_DURATION = timedelta(days=1)


def _end(start: datetime, duration: int, buffer: int) -> datetime:
    return start + timedelta(minutes=duration + buffer)


async def get_appointment(session: AsyncSession, appointment_id: int, for_update: bool = False) -> Appointment:
    stmt = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    appointment = await session.scalar(stmt)
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


async def has_mechanic_conflict(
    session: AsyncSession,
    mechanic_id: int,
    start: datetime,
    duration: int,
    exclude_id: int | None = None,
) -> bool:
    buffer = get_settings().slot_buffer_minutes
    end = _end(start, duration, buffer)
    stmt = select(Appointment).where(
        Appointment.assigned_mechanic_id == mechanic_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.appointment_date < end,
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    for other in (await session.scalars(stmt)).all():
        if start < _end(other.appointment_date, other.duration, buffer):
            return True
    return False


async def _check_references(session: AsyncSession, data: dict) -> None:
    if data.get("customer_id") and await session.get(Customer, data["customer_id"]) is None:
        raise NotFoundError("Customer", data["customer_id"])
    if data.get("vehicle_id") and await session.get(Vehicle, data["vehicle_id"]) is None:
        raise NotFoundError("Vehicle", data["vehicle_id"])
    if data.get("assigned_mechanic_id"):
        mechanic = await session.get(Employee, data["assigned_mechanic_id"])
        if mechanic is None:
            raise NotFoundError("Employee", data["assigned_mechanic_id"])
        if not mechanic.is_active:
            raise ValidationError("Cannot book an inactive mechanic")


async def create_appointment(session: AsyncSession, payload: dict) -> Appointment:
    await _check_references(session, payload)
    payload.setdefault("duration", 60)
    if payload.get("assigned_mechanic_id") and await has_mechanic_conflict(
        session, payload["assigned_mechanic_id"], payload["appointment_date"], payload["duration"]
    ):
        raise ValidationError("Mechanic is already booked at this time")

    appointment = Appointment(**payload, status=AppointmentStatus.SCHEDULED)
    session.add(appointment)
    await session.flush()
    await session.refresh(appointment)
    log.info("appointment_created", appointment_id=appointment.id, at=appointment.appointment_date.isoformat())
    return appointment


async def update_appointment(session: AsyncSession, appointment_id: int, patch: dict) -> Appointment:
    if "status" in patch:
        raise ValidationError("Use the status endpoint to change an appointment status")
    appointment = await get_appointment(session, appointment_id, for_update=True)
    if is_terminal(appointment.status):
        raise ValidationError(f'Cannot modify appointment with status "{appointment.status.value}"')
    await _check_references(session, patch)

    mechanic_id = patch.get("assigned_mechanic_id", appointment.assigned_mechanic_id)
    rescheduled = {"appointment_date", "duration", "assigned_mechanic_id"} & patch.keys()
    if mechanic_id and rescheduled and await has_mechanic_conflict(
        session,
        mechanic_id,
        patch.get("appointment_date") or appointment.appointment_date,
        patch.get("duration") or appointment.duration,
        exclude_id=appointment.id,
    ):
        raise ValidationError("Mechanic is already booked at this time")

    apply_patch(appointment, patch)
    await session.flush()
    await session.refresh(appointment)
    return appointment


async def transition_appointment(
    session: AsyncSession, appointment_id: int, requested: AppointmentStatus
) -> Appointment:
    appointment = await get_appointment(session, appointment_id, for_update=True)
    apply_transition(appointment, requested)
    await session.flush()
    await session.refresh(appointment)
    return appointment


async def convert_to_work_order(
    session: AsyncSession, appointment_id: int, data: dict, clock: Clock
) -> tuple[Appointment, WorkOrder]:
    """Open a work order for a scheduled or confirmed appointment.

    The appointment moves to IN_PROGRESS (through CONFIRMED when needed) and
    keeps the id of the new work order. Conversion happens at most once.
    """
    appointment = await get_appointment(session, appointment_id, for_update=True)
    if appointment.status not in CONVERTIBLE_STATUSES or appointment.work_order_id is not None:
        raise ValidationError("Can only convert scheduled or confirmed appointments")
    if appointment.vehicle_id is None:
        raise ValidationError(
            "Appointment has no vehicle; assign one before converting",
            details=[{"field": "vehicle_id", "message": "required for a work order"}],
        )

    work_order = await create_work_order(session, {
        "vehicle_id": appointment.vehicle_id,
        "customer_id": appointment.customer_id,
        "assigned_mechanic_id": appointment.assigned_mechanic_id,
        "scheduled_date": appointment.appointment_date,
        "priority": data["priority"],
        "customer_complaint": data.get("customer_complaint") or appointment.notes,
        "mileage_in": data.get("mileage_in"),
    }, clock)

    if appointment.status == AppointmentStatus.SCHEDULED:
        apply_transition(appointment, AppointmentStatus.CONFIRMED)
    apply_transition(appointment, AppointmentStatus.IN_PROGRESS)
    appointment.work_order_id = work_order.id
    await session.flush()
    await session.refresh(appointment)
    log.info("appointment_converted", appointment_id=appointment.id, work_order_id=work_order.id)
    return appointment, work_order


async def list_appointments(
    session: AsyncSession,
    status: AppointmentStatus | None = None,
    customer_id: int | None = None,
    mechanic_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page=None,
    limit=None,
):
    stmt = select(Appointment)
    if status is not None:
        stmt = stmt.where(Appointment.status == status)
    if customer_id:
        stmt = stmt.where(Appointment.customer_id == customer_id)
    if mechanic_id:
        stmt = stmt.where(Appointment.assigned_mechanic_id == mechanic_id)
    if date_from:
        stmt = stmt.where(Appointment.appointment_date >= datetime.combine(date_from, time.min))
    if date_to:
        stmt = stmt.where(Appointment.appointment_date < datetime.combine(date_to + timedelta(days=1), time.min))
    return await paginate(session, stmt.order_by(Appointment.appointment_date.asc(), Appointment.id), page, limit)


async def available_slots(
    session: AsyncSession, day: date, mechanic_id: int | None = None, duration: int = 60
) -> list[dict]:
    settings = get_settings()
    day_start = datetime.combine(day, time(settings.business_start_hour))
    day_end = datetime.combine(day, time(settings.business_end_hour))

    # Bookings that started earlier may still run into opening time
    stmt = select(Appointment).where(
        Appointment.appointment_date >= day_start - MAX_DURATION - timedelta(minutes=settings.slot_buffer_minutes),
        Appointment.appointment_date < day_end,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if mechanic_id:
        stmt = stmt.where(Appointment.assigned_mechanic_id == mechanic_id)
    booked = [
        (a.appointment_date, _end(a.appointment_date, a.duration, settings.slot_buffer_minutes))
        for a in (await session.scalars(stmt)).all()
    ]

    slots = []
    current = day_start
    length = timedelta(minutes=duration)
    while current + length <= day_end:
        slot_end = current + length
        if not any(current < booked_end and slot_end > booked_start for booked_start, booked_end in booked):
            slots.append({"start": current, "end": slot_end})
        current += timedelta(minutes=settings.slot_step_minutes)
    return slots
