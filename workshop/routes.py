from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from . import appointments, billing, inventory, purchasing, reports, work_orders
from .auth import (
    FINANCE_ROLES, authenticate, change_password, get_current_user, oauth2_scheme, register_user, require_roles
)
from .clock import Clock, get_clock
from .errors import InvalidTransitionError, NotFoundError
from .lifecycle import INVOICE_STATUS_MESSAGE
from .models import (
    AppointmentStatus, Customer, Employee, Expense, InvoiceStatus, PaymentMethod, PurchaseOrderStatus,
    Service, ServiceCategory, Supplier, User, UserRole, Vehicle, WorkOrderPriority, WorkOrderStatus
)
from .schemas import (
    AppointmentCreate, AppointmentOut, AppointmentStatusUpdate, AppointmentUpdate, ChangePasswordRequest,
    ConvertAppointmentRequest, CustomerCreate, CustomerOut, CustomerUpdate, EmployeeCreate, EmployeeOut,
    EmployeeUpdate, ExpenseCreate, ExpenseOut, ExpenseUpdate, InvoiceCreate, InvoiceOut, InvoiceStatusUpdate,
    InvoiceUpdate, LoginRequest, PartCreate, PartLineCreate, PartLineUpdate, PartOut, PartUpdate, PaymentCreate,
    PaymentOut, PurchaseOrderCreate, PurchaseOrderItemCreate, PurchaseOrderItemUpdate, PurchaseOrderOut,
    PurchaseOrderStatusUpdate, PurchaseOrderUpdate, RegisterRequest, ServiceCategoryCreate, ServiceCategoryOut,
    ServiceCategoryUpdate, ServiceCreate, ServiceLineCreate, ServiceLineUpdate, ServiceOut, ServiceUpdate,
    SlotOut, StockAdjustmentOut, StockAdjustmentRequest, SupplierCreate, SupplierOut, SupplierUpdate, UserOut,
    VehicleCreate, VehicleOut, VehicleUpdate, WorkOrderCreate, WorkOrderOut, WorkOrderStatusUpdate,
    WorkOrderSummaryOut, WorkOrderUpdate, dump, envelope
)
from .store import Repository, Store, get_store

finance = require_roles(*FINANCE_ROLES)


# Auth

auth_router = APIRouter(prefix="/auth", tags=["Auth"])


@auth_router.post("/login")
async def login(request: LoginRequest, store: Store = Depends(get_store)):
    async with store.transaction() as session:
        user, token = await authenticate(session, request.email, request.password)
        data = {"user": UserOut.model_validate(user), "token": token, "token_type": "bearer"}
    return envelope(data, "Login successful")


@auth_router.post("/register")
async def register(
    request: RegisterRequest,
    token: str | None = Depends(oauth2_scheme),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        user = await register_user(
            session, token, request.email, request.password, request.role, request.employee_id
        )
        data = UserOut.model_validate(user)
    return envelope(data, "User registered", status_code=201)


@auth_router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return envelope(UserOut.model_validate(user))


@auth_router.patch("/change-password")
async def update_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        await change_password(session, user.id, request.current_password, request.new_password)
    return envelope(None, "Password changed")


# Master data

def crud_router(
    prefix: str,
    tag: str,
    repository: Repository,
    create_schema: type[BaseModel],
    update_schema: type[BaseModel],
    out_schema: type[BaseModel],
    write_roles: tuple[UserRole, ...] = (),
    references: dict | None = None,
    filters: tuple[str, ...] = (),
) -> APIRouter:
    """List / get / create / update / delete routes for one master-data model.

    ``references`` maps a payload field to the (model, label) it must point at.
    ``filters`` names integer columns accepted as equality query parameters.
    """
    router = APIRouter(prefix=prefix, tags=[tag])
    writer = require_roles(*write_roles) if write_roles else get_current_user
    label = repository.label

    async def check_references(session, payload: dict):
        for field, (model, name) in (references or {}).items():
            if payload.get(field) is not None and await session.get(model, payload[field]) is None:
                raise NotFoundError(name, payload[field])

    @router.get("")
    async def list_entities(
        request: Request,
        page: int | None = Query(None, ge=1),
        limit: int | None = Query(None, ge=1),
        search: str | None = None,
        is_active: bool | None = None,
        _: User = Depends(get_current_user),
        store: Store = Depends(get_store),
    ):
        wanted = {name: int(request.query_params[name]) for name in filters if request.query_params.get(name)}
        if is_active is not None and hasattr(repository.model, "is_active"):
            wanted["is_active"] = is_active
        async with store.transaction() as session:
            rows, meta = await repository.find_many(session, wanted, page, limit, search=search)
            data = dump(out_schema, rows)
        return envelope(data, meta=meta)

    @router.get("/{entity_id}")
    async def get_entity(
        entity_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)
    ):
        async with store.transaction() as session:
            data = out_schema.model_validate(await repository.find(session, entity_id))
        return envelope(data)

    @router.post("")
    async def create_entity(
        payload: create_schema, _: User = Depends(writer), store: Store = Depends(get_store)
    ):
        values = payload.model_dump()
        async with store.transaction() as session:
            await check_references(session, values)
            data = out_schema.model_validate(await repository.create(session, values))
        return envelope(data, f"{label} created", status_code=201)

    @router.patch("/{entity_id}")
    async def update_entity(
        entity_id: int, payload: update_schema, _: User = Depends(writer), store: Store = Depends(get_store)
    ):
        patch = payload.model_dump(exclude_unset=True)
        async with store.transaction() as session:
            await check_references(session, patch)
            data = out_schema.model_validate(await repository.update(session, entity_id, patch))
        return envelope(data, f"{label} updated")

    @router.delete("/{entity_id}")
    async def delete_entity(
        entity_id: int, _: User = Depends(writer), store: Store = Depends(get_store)
    ):
        async with store.transaction() as session:
            await repository.delete(session, entity_id)
        return envelope(None, f"{label} deleted")

    return router


customers_router = crud_router(
    "/customers", "Customers",
    Repository(Customer, soft_delete=True, search_columns=("first_name", "last_name", "email", "phone")),
    CustomerCreate, CustomerUpdate, CustomerOut,
)
vehicles_router = crud_router(
    "/vehicles", "Vehicles",
    Repository(Vehicle, soft_delete=True, search_columns=("make", "model", "vin", "license_plate")),
    VehicleCreate, VehicleUpdate, VehicleOut,
    references={"customer_id": (Customer, "Customer")},
    filters=("customer_id",),
)
employees_router = crud_router(
    "/employees", "Employees",
    Repository(Employee, soft_delete=True, search_columns=("first_name", "last_name", "email", "role")),
    EmployeeCreate, EmployeeUpdate, EmployeeOut,
    write_roles=FINANCE_ROLES,
)
categories_router = crud_router(
    "/service-categories", "Service Catalog",
    Repository(ServiceCategory, label="Service Category", search_columns=("category_name",)),
    ServiceCategoryCreate, ServiceCategoryUpdate, ServiceCategoryOut,
    write_roles=FINANCE_ROLES,
)
services_router = crud_router(
    "/services", "Service Catalog",
    Repository(Service, soft_delete=True, search_columns=("service_name", "description")),
    ServiceCreate, ServiceUpdate, ServiceOut,
    write_roles=FINANCE_ROLES,
    references={"category_id": (ServiceCategory, "Service Category")},
    filters=("category_id",),
)
suppliers_router = crud_router(
    "/suppliers", "Suppliers",
    Repository(Supplier, soft_delete=True, search_columns=("supplier_name", "contact_person", "email")),
    SupplierCreate, SupplierUpdate, SupplierOut,
    write_roles=FINANCE_ROLES,
)
expenses_router = crud_router(
    "/expenses", "Expenses",
    Repository(Expense, search_columns=("description", "category", "vendor")),
    ExpenseCreate, ExpenseUpdate, ExpenseOut,
    write_roles=FINANCE_ROLES,
)


@vehicles_router.get("/{vehicle_id}/history")
async def vehicle_history(vehicle_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = dump(WorkOrderOut, await work_orders.vehicle_history(session, vehicle_id))
    return envelope(data)


# Parts

parts_router = APIRouter(prefix="/parts", tags=["Inventory"])


@parts_router.get("")
async def list_parts(
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    search: str | None = None,
    category: str | None = None,
    supplier_id: int | None = None,
    is_active: bool | None = None,
    low_stock: bool = False,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        rows, meta = await inventory.list_parts(
            session, search, category, supplier_id, is_active, low_stock, page, limit
        )
        data = dump(PartOut, rows)
    return envelope(data, meta=meta)


@parts_router.get("/low-stock")
async def low_stock(_: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = dump(PartOut, await inventory.low_stock_parts(session))
    return envelope(data)


@parts_router.get("/value")
async def inventory_value(_: User = Depends(finance), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = await inventory.inventory_value(session)
    return envelope(data)


@parts_router.get("/{part_id}")
async def get_part(part_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = PartOut.model_validate(await inventory.get_part(session, part_id))
    return envelope(data)


@parts_router.post("")
async def create_part(
    payload: PartCreate,
    user: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        part = await inventory.create_part(session, payload.model_dump(), clock, user.id)
        data = PartOut.model_validate(part)
    return envelope(data, "Part created", status_code=201)


@parts_router.patch("/{part_id}")
async def update_part(
    part_id: int, payload: PartUpdate, _: User = Depends(finance), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        part = await inventory.update_part(session, part_id, payload.model_dump(exclude_unset=True))
        data = PartOut.model_validate(part)
    return envelope(data, "Part updated")


@parts_router.delete("/{part_id}")
async def delete_part(part_id: int, _: User = Depends(finance), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        await inventory.deactivate_part(session, part_id)
    return envelope(None, "Part deactivated")


@parts_router.post("/{part_id}/adjust-stock")
async def adjust_stock(
    part_id: int,
    payload: StockAdjustmentRequest,
    user: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        part = await inventory.adjust_stock(
            session, part_id, payload.adjustment_type, payload.quantity, payload.reason, clock, user.id
        )
        data = PartOut.model_validate(part)
    return envelope(data, "Stock adjusted")


@parts_router.get("/{part_id}/adjustments")
async def list_adjustments(
    part_id: int,
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        rows, meta = await inventory.list_adjustments(session, part_id, page, limit)
        data = dump(StockAdjustmentOut, rows)
    return envelope(data, meta=meta)


# Work orders

work_orders_router = APIRouter(prefix="/work-orders", tags=["Work Orders"])


@work_orders_router.get("")
async def list_work_orders(
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    status: WorkOrderStatus | None = None,
    priority: WorkOrderPriority | None = None,
    customer_id: int | None = None,
    vehicle_id: int | None = None,
    mechanic_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        rows, meta = await work_orders.list_work_orders(
            session, status, priority, customer_id, vehicle_id, mechanic_id, date_from, date_to, page, limit
        )
        data = dump(WorkOrderSummaryOut, rows)
    return envelope(data, meta=meta)


@work_orders_router.get("/{work_order_id}")
async def get_work_order(work_order_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = WorkOrderOut.model_validate(await work_orders.load_work_order(session, work_order_id))
    return envelope(data)


@work_orders_router.post("")
async def create_work_order(
    payload: WorkOrderCreate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        work_order = await work_orders.create_work_order(session, payload.model_dump(), clock)
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Work order created", status_code=201)


@work_orders_router.patch("/{work_order_id}")
async def update_work_order(
    work_order_id: int,
    payload: WorkOrderUpdate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        work_order = await work_orders.update_work_order(
            session, work_order_id, payload.model_dump(exclude_unset=True)
        )
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Work order updated")


@work_orders_router.patch("/{work_order_id}/status")
async def update_work_order_status(
    work_order_id: int,
    payload: WorkOrderStatusUpdate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        work_order = await work_orders.transition_work_order(session, work_order_id, payload.status, clock)
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, f"Work order status is {payload.status.value}")


@work_orders_router.post("/{work_order_id}/services")
async def add_service_line(
    work_order_id: int,
    payload: ServiceLineCreate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        work_order = await work_orders.add_service_line(session, work_order_id, payload.model_dump())
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Service added", status_code=201)


@work_orders_router.patch("/{work_order_id}/services/{line_id}")
async def update_service_line(
    work_order_id: int,
    line_id: int,
    payload: ServiceLineUpdate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        work_order = await work_orders.update_service_line(
            session, work_order_id, line_id, payload.model_dump(exclude_unset=True)
        )
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Service updated")


@work_orders_router.delete("/{work_order_id}/services/{line_id}")
async def remove_service_line(
    work_order_id: int, line_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        work_order = await work_orders.remove_service_line(session, work_order_id, line_id)
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Service removed")


@work_orders_router.post("/{work_order_id}/parts")
async def add_part_line(
    work_order_id: int,
    payload: PartLineCreate,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        work_order = await work_orders.add_part_line(session, work_order_id, payload.model_dump(), clock, user.id)
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Part added", status_code=201)


@work_orders_router.patch("/{work_order_id}/parts/{line_id}")
async def update_part_line(
    work_order_id: int,
    line_id: int,
    payload: PartLineUpdate,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        work_order = await work_orders.update_part_line(
            session, work_order_id, line_id, payload.model_dump(exclude_unset=True), clock, user.id
        )
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Part updated")


@work_orders_router.delete("/{work_order_id}/parts/{line_id}")
async def remove_part_line(
    work_order_id: int,
    line_id: int,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        work_order = await work_orders.remove_part_line(session, work_order_id, line_id, clock, user.id)
        data = WorkOrderOut.model_validate(work_order)
    return envelope(data, "Part removed")


# Invoices

invoices_router = APIRouter(prefix="/invoices", tags=["Invoices"])


@invoices_router.get("")
async def list_invoices(
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    status: InvoiceStatus | None = None,
    customer_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        rows, meta = await billing.list_invoices(
            session, clock, status, customer_id, date_from, date_to, page, limit
        )
        data = dump(InvoiceOut, rows)
    return envelope(data, meta=meta)


@invoices_router.get("/outstanding")
async def outstanding_invoices(
    _: User = Depends(get_current_user), store: Store = Depends(get_store), clock: Clock = Depends(get_clock)
):
    async with store.transaction() as session:
        data = dump(InvoiceOut, await billing.outstanding_invoices(session, clock))
    return envelope(data)


@invoices_router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        data = InvoiceOut.model_validate(await billing.get_invoice(session, invoice_id, clock))
    return envelope(data)


@invoices_router.post("")
async def create_invoice(
    payload: InvoiceCreate,
    _: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        invoice = await billing.create_invoice(
            session, payload.work_order_id, clock,
            tax_rate=payload.tax_rate,
            tax_amount=payload.tax_amount,
            discount_amount=payload.discount_amount,
            due_date=payload.due_date,
            notes=payload.notes,
        )
        data = InvoiceOut.model_validate(invoice)
    return envelope(data, "Invoice created", status_code=201)


@invoices_router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    _: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        invoice = await billing.update_invoice(session, invoice_id, payload.model_dump(exclude_unset=True), clock)
        data = InvoiceOut.model_validate(invoice)
    return envelope(data, "Invoice updated")


@invoices_router.patch("/{invoice_id}/status")
async def update_invoice_status(invoice_id: int, payload: InvoiceStatusUpdate, _: User = Depends(finance)):
    raise InvalidTransitionError("invoice", None, payload.status, message=INVOICE_STATUS_MESSAGE)


# Payments

payments_router = APIRouter(prefix="/payments", tags=["Payments"])


@payments_router.get("")
async def list_payments(
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    invoice_id: int | None = None,
    payment_method: PaymentMethod | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        rows, meta = await billing.list_payments(
            session, invoice_id, payment_method, date_from, date_to, page, limit
        )
        data = dump(PaymentOut, rows)
    return envelope(data, meta=meta)


@payments_router.get("/{payment_id}")
async def get_payment(payment_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = PaymentOut.model_validate(await billing.get_payment(session, payment_id))
    return envelope(data)


@payments_router.post("")
async def record_payment(
    payload: PaymentCreate,
    _: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        payment = await billing.record_payment(
            session, payload.invoice_id, payload.amount, payload.payment_method, clock,
            payment_date=payload.payment_date, reference=payload.reference, notes=payload.notes,
        )
        data = PaymentOut.model_validate(payment)
    return envelope(data, "Payment recorded", status_code=201)


@payments_router.delete("/{payment_id}")
async def delete_payment(
    payment_id: int,
    _: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        data = InvoiceOut.model_validate(await billing.delete_payment(session, payment_id, clock))
    return envelope(data, "Payment deleted")


# Appointments

appointments_router = APIRouter(prefix="/appointments", tags=["Appointments"])


@appointments_router.get("")
async def list_appointments(
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    status: AppointmentStatus | None = None,
    customer_id: int | None = None,
    mechanic_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        rows, meta = await appointments.list_appointments(
            session, status, customer_id, mechanic_id, date_from, date_to, page, limit
        )
        data = dump(AppointmentOut, rows)
    return envelope(data, meta=meta)


@appointments_router.get("/available-slots")
async def available_slots(
    day: date = Query(..., alias="date"),
    mechanic_id: int | None = None,
    duration: int = Query(60, gt=0, le=600),
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        data = dump(SlotOut, await appointments.available_slots(session, day, mechanic_id, duration))
    return envelope(data)


@appointments_router.get("/{appointment_id}")
async def get_appointment(appointment_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = AppointmentOut.model_validate(await appointments.get_appointment(session, appointment_id))
    return envelope(data)


@appointments_router.post("")
async def create_appointment(
    payload: AppointmentCreate, _: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        appointment = await appointments.create_appointment(session, payload.model_dump())
        data = AppointmentOut.model_validate(appointment)
    return envelope(data, "Appointment created", status_code=201)


@appointments_router.patch("/{appointment_id}")
async def update_appointment(
    appointment_id: int,
    payload: AppointmentUpdate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        appointment = await appointments.update_appointment(
            session, appointment_id, payload.model_dump(exclude_unset=True)
        )
        data = AppointmentOut.model_validate(appointment)
    return envelope(data, "Appointment updated")


@appointments_router.patch("/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        appointment = await appointments.transition_appointment(session, appointment_id, payload.status)
        data = AppointmentOut.model_validate(appointment)
    return envelope(data, f"Appointment status is {payload.status.value}")


@appointments_router.post("/{appointment_id}/convert")
async def convert_appointment(
    appointment_id: int,
    payload: ConvertAppointmentRequest,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        appointment, work_order = await appointments.convert_to_work_order(
            session, appointment_id, payload.model_dump(), clock
        )
        data = {
            "appointment": AppointmentOut.model_validate(appointment),
            "work_order": WorkOrderOut.model_validate(work_order),
        }
    return envelope(data, "Appointment converted to work order", status_code=201)


# Purchase orders

purchase_orders_router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])


@purchase_orders_router.get("")
async def list_purchase_orders(
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
    status: PurchaseOrderStatus | None = None,
    supplier_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    _: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        rows, meta = await purchasing.list_purchase_orders(
            session, status, supplier_id, date_from, date_to, page, limit
        )
        data = dump(PurchaseOrderOut, rows)
    return envelope(data, meta=meta)


@purchase_orders_router.get("/{po_id}")
async def get_purchase_order(po_id: int, _: User = Depends(get_current_user), store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = PurchaseOrderOut.model_validate(await purchasing.load_purchase_order(session, po_id))
    return envelope(data)


@purchase_orders_router.post("")
async def create_purchase_order(
    payload: PurchaseOrderCreate, _: User = Depends(finance), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        po = await purchasing.create_purchase_order(session, payload.model_dump())
        data = PurchaseOrderOut.model_validate(po)
    return envelope(data, "Purchase order created", status_code=201)


@purchase_orders_router.patch("/{po_id}")
async def update_purchase_order(
    po_id: int, payload: PurchaseOrderUpdate, _: User = Depends(finance), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        po = await purchasing.update_purchase_order(session, po_id, payload.model_dump(exclude_unset=True))
        data = PurchaseOrderOut.model_validate(po)
    return envelope(data, "Purchase order updated")


@purchase_orders_router.patch("/{po_id}/status")
async def update_purchase_order_status(
    po_id: int,
    payload: PurchaseOrderStatusUpdate,
    user: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        po = await purchasing.transition_purchase_order(session, po_id, payload.status, clock, user.id)
        data = PurchaseOrderOut.model_validate(po)
    return envelope(data, f"Purchase order status is {payload.status.value}")


@purchase_orders_router.post("/{po_id}/receive")
async def receive_purchase_order(
    po_id: int,
    user: User = Depends(finance),
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        po = await purchasing.receive_purchase_order(session, po_id, clock, user.id)
        data = PurchaseOrderOut.model_validate(po)
    return envelope(data, "Purchase order received")


@purchase_orders_router.post("/{po_id}/items")
async def add_purchase_order_item(
    po_id: int, payload: PurchaseOrderItemCreate, _: User = Depends(finance), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        data = PurchaseOrderOut.model_validate(await purchasing.add_item(session, po_id, payload.model_dump()))
    return envelope(data, "Item added", status_code=201)


@purchase_orders_router.patch("/{po_id}/items/{item_id}")
async def update_purchase_order_item(
    po_id: int,
    item_id: int,
    payload: PurchaseOrderItemUpdate,
    _: User = Depends(finance),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        po = await purchasing.update_item(session, po_id, item_id, payload.model_dump(exclude_unset=True))
        data = PurchaseOrderOut.model_validate(po)
    return envelope(data, "Item updated")


@purchase_orders_router.delete("/{po_id}/items/{item_id}")
async def remove_purchase_order_item(
    po_id: int, item_id: int, _: User = Depends(finance), store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        data = PurchaseOrderOut.model_validate(await purchasing.remove_item(session, po_id, item_id))
    return envelope(data, "Item removed")


# Dashboard

dashboard_router = APIRouter(prefix="/dashboard", tags=["Dashboard"], dependencies=[Depends(finance)])


@dashboard_router.get("/summary")
async def summary(
    date_from: date | None = None,
    date_to: date | None = None,
    store: Store = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    async with store.transaction() as session:
        data = await reports.summary(session, clock, date_from, date_to)
    return envelope(data)


@dashboard_router.get("/revenue")
async def revenue(
    date_from: date | None = None,
    date_to: date | None = None,
    group: Literal["day", "month"] = "day",
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        data = await reports.revenue_over_time(session, date_from, date_to, group)
    return envelope(data)


@dashboard_router.get("/revenue-vs-expenses")
async def revenue_vs_expenses(
    date_from: date | None = None, date_to: date | None = None, store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        data = await reports.revenue_vs_expenses(session, date_from, date_to)
    return envelope(data)


@dashboard_router.get("/work-orders-by-status")
async def work_orders_by_status(store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = await reports.work_orders_by_status(session)
    return envelope(data)


@dashboard_router.get("/mechanic-productivity")
async def mechanic_productivity(
    date_from: date | None = None, date_to: date | None = None, store: Store = Depends(get_store)
):
    async with store.transaction() as session:
        data = await reports.mechanic_productivity(session, date_from, date_to)
    return envelope(data)


@dashboard_router.get("/top-services")
async def top_services(
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = Query(10, ge=1, le=100),
    store: Store = Depends(get_store),
):
    async with store.transaction() as session:
        data = await reports.top_services(session, date_from, date_to, limit)
    return envelope(data)


@dashboard_router.get("/inventory-alerts")
async def inventory_alerts(store: Store = Depends(get_store)):
    async with store.transaction() as session:
        data = dump(PartOut, await inventory.low_stock_parts(session))
    return envelope(data)


routers = [
    auth_router,
    customers_router,
    vehicles_router,
    employees_router,
    categories_router,
    services_router,
    suppliers_router,
    expenses_router,
    parts_router,
    work_orders_router,
    invoices_router,
    payments_router,
    appointments_router,
    purchase_orders_router,
    dashboard_router,
]
