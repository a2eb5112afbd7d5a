"""Request and response models for the HTTP layer, plus the response envelope."""
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from .clock import to_naive_utc
from .models import (
    AdjustmentType, AppointmentStatus, InvoiceStatus, PaymentMethod, PurchaseOrderStatus, UserRole,
    WorkOrderPriority, WorkOrderStatus
)

UtcDateTime = Annotated[datetime, AfterValidator(to_naive_utc)]


def envelope(data: Any = None, message: str = "OK", meta: dict | None = None, status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message, "data": data}
    if meta is not None:
        body["meta"] = meta
    return JSONResponse(jsonable_encoder(body, custom_encoder={Decimal: str}), status_code=status_code)


def dump(schema: type[BaseModel], rows) -> list[BaseModel]:
    return [schema.model_validate(row) for row in rows]


class Schema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Auth

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    role: UserRole = UserRole.RECEPTIONIST
    employee_id: int | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class UserOut(Schema):
    id: int
    email: str
    role: UserRole
    employee_id: int | None
    is_active: bool


# Master data

class CustomerCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str = Field(min_length=1, max_length=50)
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    notes: str | None = None


class CustomerUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, min_length=1, max_length=50)
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    notes: str | None = None
    is_active: bool | None = None


class CustomerOut(Schema):
    id: int
    first_name: str
    last_name: str
    email: str | None
    phone: str
    address: str | None
    city: str | None
    postal_code: str | None
    notes: str | None
    is_active: bool
    created_at: datetime


class VehicleCreate(BaseModel):
    customer_id: int
    make: str = Field(min_length=1, max_length=100)
    model: str = Field(min_length=1, max_length=100)
    year: int = Field(ge=1900, le=2100)
    vin: str | None = Field(default=None, max_length=17)
    license_plate: str | None = None
    color: str | None = None
    mileage: int | None = Field(default=None, ge=0)
    engine_type: str | None = None
    transmission_type: str | None = None
    notes: str | None = None


class VehicleUpdate(BaseModel):
    customer_id: int | None = None
    make: str | None = None
    model: str | None = None
    year: int | None = Field(default=None, ge=1900, le=2100)
    vin: str | None = Field(default=None, max_length=17)
    license_plate: str | None = None
    color: str | None = None
    mileage: int | None = Field(default=None, ge=0)
    engine_type: str | None = None
    transmission_type: str | None = None
    notes: str | None = None
    is_active: bool | None = None


class VehicleOut(Schema):
    id: int
    customer_id: int
    make: str
    model: str
    year: int
    vin: str | None
    license_plate: str | None
    color: str | None
    mileage: int | None
    engine_type: str | None
    transmission_type: str | None
    notes: str | None
    is_active: bool


class EmployeeCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    role: str = Field(min_length=1, max_length=50)
    specialization: str | None = None
    hire_date: date
    hourly_rate: Decimal | None = Field(default=None, ge=0)


class EmployeeUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    role: str | None = None
    specialization: str | None = None
    hire_date: date | None = None
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None


class EmployeeOut(Schema):
    id: int
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    role: str
    specialization: str | None
    hire_date: date
    hourly_rate: Decimal | None
    is_active: bool


class ServiceCategoryCreate(BaseModel):
    category_name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class ServiceCategoryUpdate(BaseModel):
    category_name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None


class ServiceCategoryOut(Schema):
    id: int
    category_name: str
    description: str | None


class ServiceCreate(BaseModel):
    category_id: int | None = None
    service_name: str = Field(min_length=1, max_length=150)
    description: str | None = None
    estimated_duration: int | None = Field(default=None, gt=0)
    base_price: Decimal = Field(ge=0)


class ServiceUpdate(BaseModel):
    category_id: int | None = None
    service_name: str | None = Field(default=None, min_length=1, max_length=150)
    description: str | None = None
    estimated_duration: int | None = Field(default=None, gt=0)
    base_price: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ServiceOut(Schema):
    id: int
    category_id: int | None
    service_name: str
    description: str | None
    estimated_duration: int | None
    base_price: Decimal
    is_active: bool


class SupplierCreate(BaseModel):
    supplier_name: str = Field(min_length=1, max_length=150)
    contact_person: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    payment_terms: str | None = None
    notes: str | None = None


class SupplierUpdate(BaseModel):
    supplier_name: str | None = Field(default=None, min_length=1, max_length=150)
    contact_person: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    payment_terms: str | None = None
    notes: str | None = None
    is_active: bool | None = None


class SupplierOut(Schema):
    id: int
    supplier_name: str
    contact_person: str | None
    email: str | None
    phone: str | None
    city: str | None
    payment_terms: str | None
    is_active: bool


class ExpenseCreate(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=50)
    amount: Decimal = Field(gt=0)
    expense_date: date
    vendor: str | None = None
    receipt_number: str | None = None
    payment_method: str | None = None
    notes: str | None = None


class ExpenseUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = None
    amount: Decimal | None = Field(default=None, gt=0)
    expense_date: date | None = None
    vendor: str | None = None
    receipt_number: str | None = None
    payment_method: str | None = None
    notes: str | None = None


class ExpenseOut(Schema):
    id: int
    description: str
    category: str
    amount: Decimal
    expense_date: date
    vendor: str | None
    receipt_number: str | None
    payment_method: str | None
    notes: str | None


# Inventory

class PartCreate(BaseModel):
    part_number: str = Field(min_length=1, max_length=50)
    part_name: str = Field(min_length=1, max_length=150)
    description: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    quantity_in_stock: int = Field(default=0, ge=0)
    reorder_level: int = Field(default=0, ge=0)
    unit_cost: Decimal = Field(ge=0)
    selling_price: Decimal = Field(ge=0)
    supplier_id: int | None = None
    location: str | None = None


class PartUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    part_number: str | None = Field(default=None, min_length=1, max_length=50)
    part_name: str | None = None
    description: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    reorder_level: int | None = Field(default=None, ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    selling_price: Decimal | None = Field(default=None, ge=0)
    supplier_id: int | None = None
    location: str | None = None
    is_active: bool | None = None


class PartOut(Schema):
    id: int
    part_number: str
    part_name: str
    description: str | None
    category: str | None
    manufacturer: str | None
    quantity_in_stock: int
    reorder_level: int
    unit_cost: Decimal
    selling_price: Decimal
    supplier_id: int | None
    location: str | None
    is_active: bool


class StockAdjustmentRequest(BaseModel):
    adjustment_type: AdjustmentType
    quantity: int
    reason: str


class StockAdjustmentOut(Schema):
    id: int
    part_id: int
    adjustment_type: AdjustmentType
    quantity: int
    previous_quantity: int
    new_quantity: int
    reason: str
    user_id: int | None
    created_at: datetime


# Work orders

class WorkOrderCreate(BaseModel):
    customer_id: int
    vehicle_id: int
    assigned_mechanic_id: int | None = None
    priority: WorkOrderPriority = WorkOrderPriority.NORMAL
    scheduled_date: UtcDateTime | None = None
    customer_complaint: str | None = None
    mileage_in: int | None = Field(default=None, ge=0)


class WorkOrderUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assigned_mechanic_id: int | None = None
    priority: WorkOrderPriority | None = None
    scheduled_date: UtcDateTime | None = None
    customer_complaint: str | None = None
    diagnosis: str | None = None
    work_performed: str | None = None
    recommendations: str | None = None
    mileage_in: int | None = Field(default=None, ge=0)
    mileage_out: int | None = Field(default=None, ge=0)


class WorkOrderStatusUpdate(BaseModel):
    status: WorkOrderStatus


class ServiceLineCreate(BaseModel):
    service_id: int
    mechanic_id: int | None = None
    quantity: int = Field(default=1, gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    labor_hours: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class ServiceLineUpdate(BaseModel):
    mechanic_id: int | None = None
    quantity: int | None = Field(default=None, gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    labor_hours: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class PartLineCreate(BaseModel):
    part_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class PartLineUpdate(BaseModel):
    quantity: int | None = Field(default=None, gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class WorkOrderServiceOut(Schema):
    id: int
    service_id: int
    mechanic_id: int | None
    quantity: int
    unit_price: Decimal
    labor_hours: Decimal | None
    total_price: Decimal
    notes: str | None


class WorkOrderPartOut(Schema):
    id: int
    part_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    notes: str | None


class WorkOrderOut(Schema):
    id: int
    customer_id: int
    vehicle_id: int
    assigned_mechanic_id: int | None
    status: WorkOrderStatus
    priority: WorkOrderPriority
    order_date: datetime
    scheduled_date: datetime | None
    completion_date: datetime | None
    customer_complaint: str | None
    diagnosis: str | None
    work_performed: str | None
    recommendations: str | None
    mileage_in: int | None
    mileage_out: int | None
    total_labor_cost: Decimal
    total_parts_cost: Decimal
    total_cost: Decimal
    services: list[WorkOrderServiceOut] = []
    parts: list[WorkOrderPartOut] = []


class WorkOrderSummaryOut(Schema):
    id: int
    customer_id: int
    vehicle_id: int
    assigned_mechanic_id: int | None
    status: WorkOrderStatus
    priority: WorkOrderPriority
    order_date: datetime
    completion_date: datetime | None
    total_cost: Decimal


# Invoices and payments

class InvoiceCreate(BaseModel):
    work_order_id: int
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    tax_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    due_date: date | None = None
    notes: str | None = None


class InvoiceUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tax_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    due_date: date | None = None
    notes: str | None = None


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class PaymentCreate(BaseModel):
    invoice_id: int
    amount: Decimal
    payment_method: PaymentMethod
    payment_date: date | None = None
    reference: str | None = Field(default=None, max_length=100)
    notes: str | None = None


class PaymentOut(Schema):
    id: int
    invoice_id: int
    amount: Decimal
    payment_method: PaymentMethod
    payment_date: date
    reference: str | None
    notes: str | None


class InvoiceOut(Schema):
    id: int
    invoice_number: str
    work_order_id: int
    customer_id: int
    invoice_date: date
    due_date: date | None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    status: InvoiceStatus
    notes: str | None
    payments: list[PaymentOut] = []


# Appointments

class AppointmentCreate(BaseModel):
    customer_id: int
    vehicle_id: int | None = None
    assigned_mechanic_id: int | None = None
    appointment_date: UtcDateTime
    duration: int = Field(default=60, gt=0, le=24 * 60)
    service_type: str | None = None
    notes: str | None = None


class AppointmentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vehicle_id: int | None = None
    assigned_mechanic_id: int | None = None
    appointment_date: UtcDateTime | None = None
    duration: int | None = Field(default=None, gt=0, le=24 * 60)
    service_type: str | None = None
    notes: str | None = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class ConvertAppointmentRequest(BaseModel):
    priority: WorkOrderPriority = WorkOrderPriority.NORMAL
    customer_complaint: str | None = None
    mileage_in: int | None = Field(default=None, ge=0)


class AppointmentOut(Schema):
    id: int
    customer_id: int
    vehicle_id: int | None
    assigned_mechanic_id: int | None
    appointment_date: datetime
    duration: int
    service_type: str | None
    status: AppointmentStatus
    notes: str | None
    work_order_id: int | None


class SlotOut(BaseModel):
    start: datetime
    end: datetime


# Purchase orders

class PurchaseOrderItemCreate(BaseModel):
    part_id: int
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)


class PurchaseOrderItemUpdate(BaseModel):
    quantity: int | None = Field(default=None, gt=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    order_date: date
    expected_delivery_date: date | None = None
    notes: str | None = None
    items: list[PurchaseOrderItemCreate] = Field(min_length=1)


class PurchaseOrderUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expected_delivery_date: date | None = None
    notes: str | None = None


class PurchaseOrderStatusUpdate(BaseModel):
    status: PurchaseOrderStatus


class PurchaseOrderItemOut(Schema):
    id: int
    part_id: int
    quantity: int
    quantity_received: int
    unit_cost: Decimal
    total_cost: Decimal


class PurchaseOrderOut(Schema):
    id: int
    supplier_id: int
    status: PurchaseOrderStatus
    order_date: date
    expected_delivery_date: date | None
    received_date: datetime | None
    total_amount: Decimal
    notes: str | None
    items: list[PurchaseOrderItemOut] = []
