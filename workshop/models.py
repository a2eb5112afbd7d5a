from sqlalchemy import (
    Column, String, DateTime, Integer, Boolean, Date, ForeignKey, Enum,
    Numeric, CheckConstraint, Index, Text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()

Money = Numeric(10, 2)


class UserRole(enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MECHANIC = "MECHANIC"
    RECEPTIONIST = "RECEPTIONIST"


class WorkOrderStatus(enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class WorkOrderPriority(enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class InvoiceStatus(enum.Enum):
    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class PaymentMethod(enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHECK = "CHECK"


class AppointmentStatus(enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PurchaseOrderStatus(enum.Enum):
    DRAFT = "DRAFT"
    ORDERED = "ORDERED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class AdjustmentType(enum.Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    SET = "SET"


class TimestampMixin:
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


"""
Users authenticate against the API. A user may be linked to an employee record.
"""
class User(TimestampMixin, Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.RECEPTIONIST)
    employee_id = Column(Integer, ForeignKey('employees.id'), nullable=True, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Customer(TimestampMixin, Base):
    __tablename__ = 'customers'
    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(50), nullable=False)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    vehicles = relationship("Vehicle", back_populates="customer")


class Vehicle(TimestampMixin, Base):
    __tablename__ = 'vehicles'
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    vin = Column(String(17), nullable=True, unique=True)
    license_plate = Column(String(20), nullable=True, index=True)
    color = Column(String(50), nullable=True)
    mileage = Column(Integer, nullable=True)
    engine_type = Column(String(50), nullable=True)
    transmission_type = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    customer = relationship("Customer", back_populates="vehicles")


class Employee(TimestampMixin, Base):
    __tablename__ = 'employees'
    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(50), nullable=False)  # Mechanic, Manager, Receptionist, ...
    specialization = Column(String(100), nullable=True)
    hire_date = Column(Date, nullable=False)
    hourly_rate = Column(Money, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ServiceCategory(TimestampMixin, Base):
    __tablename__ = 'service_categories'
    id = Column(Integer, primary_key=True)
    category_name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    services = relationship("Service", back_populates="category")


class Service(TimestampMixin, Base):
    __tablename__ = 'services'
    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey('service_categories.id'), nullable=True)
    service_name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    estimated_duration = Column(Integer, nullable=True)  # minutes
    base_price = Column(Money, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    category = relationship("ServiceCategory", back_populates="services")


class Supplier(TimestampMixin, Base):
    __tablename__ = 'suppliers'
    id = Column(Integer, primary_key=True)
    supplier_name = Column(String(150), nullable=False)
    contact_person = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    payment_terms = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


"""
Parts are the stock-keeping units of the workshop. quantity_in_stock only
changes through workshop.inventory.adjust_stock.
"""
class Part(TimestampMixin, Base):
    __tablename__ = 'parts'
    __table_args__ = (
        CheckConstraint('quantity_in_stock >= 0', name='ck_parts_stock_non_negative'),
    )
    id = Column(Integer, primary_key=True)
    part_number = Column(String(50), nullable=False, unique=True)
    part_name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    manufacturer = Column(String(100), nullable=True)
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Money, nullable=False)
    selling_price = Column(Money, nullable=False)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=True)
    location = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    supplier = relationship("Supplier")


"""
Audit trail of every stock mutation, manual or system-generated.
"""
class StockAdjustment(Base):
    __tablename__ = 'stock_adjustments'
    id = Column(Integer, primary_key=True)
    part_id = Column(Integer, ForeignKey('parts.id'), nullable=False, index=True)
    adjustment_type = Column(Enum(AdjustmentType, name="adjustment_type"), nullable=False)
    quantity = Column(Integer, nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime, nullable=False)


class WorkOrder(TimestampMixin, Base):
    __tablename__ = 'work_orders'
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    assigned_mechanic_id = Column(Integer, ForeignKey('employees.id'), nullable=True, index=True)
    status = Column(Enum(WorkOrderStatus, name="work_order_status"), nullable=False, default=WorkOrderStatus.PENDING)
    priority = Column(Enum(WorkOrderPriority, name="work_order_priority"), nullable=False, default=WorkOrderPriority.NORMAL)
    order_date = Column(DateTime, server_default=func.now(), nullable=False)
    scheduled_date = Column(DateTime, nullable=True)
    completion_date = Column(DateTime, nullable=True)
    customer_complaint = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    work_performed = Column(Text, nullable=True)
    recommendations = Column(Text, nullable=True)
    mileage_in = Column(Integer, nullable=True)
    mileage_out = Column(Integer, nullable=True)
    total_labor_cost = Column(Money, nullable=False, default=0)
    total_parts_cost = Column(Money, nullable=False, default=0)
    total_cost = Column(Money, nullable=False, default=0)

    services = relationship(
        "WorkOrderService", back_populates="work_order",
        cascade="all, delete-orphan", order_by="WorkOrderService.id"
    )
    parts = relationship(
        "WorkOrderPart", back_populates="work_order",
        cascade="all, delete-orphan", order_by="WorkOrderPart.id"
    )


class WorkOrderService(Base):
    __tablename__ = 'work_order_services'
    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey('work_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey('services.id'), nullable=False, index=True)
    mechanic_id = Column(Integer, ForeignKey('employees.id'), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False)
    labor_hours = Column(Numeric(6, 2), nullable=True)
    total_price = Column(Money, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    work_order = relationship("WorkOrder", back_populates="services")


class WorkOrderPart(Base):
    __tablename__ = 'work_order_parts'
    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey('work_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey('parts.id'), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    total_price = Column(Money, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    work_order = relationship("WorkOrder", back_populates="parts")


"""
Invoices are generated from completed work orders (1:1). Monetary fields and
status are derived from the work order total and the invoice's payments.
"""
class Invoice(TimestampMixin, Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        CheckConstraint('balance_due >= 0', name='ck_invoices_balance_non_negative'),
        Index('ix_invoices_status_due_date', 'status', 'due_date'),
    )
    id = Column(Integer, primary_key=True)
    invoice_number = Column(String(20), nullable=False, unique=True)
    work_order_id = Column(Integer, ForeignKey('work_orders.id'), nullable=False, unique=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    subtotal = Column(Money, nullable=False)
    tax_amount = Column(Money, nullable=False, default=0)
    discount_amount = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False)
    amount_paid = Column(Money, nullable=False, default=0)
    balance_due = Column(Money, nullable=False)
    status = Column(Enum(InvoiceStatus, name="invoice_status"), nullable=False, default=InvoiceStatus.UNPAID)
    notes = Column(Text, nullable=True)

    payments = relationship(
        "Payment", back_populates="invoice",
        cascade="all, delete-orphan", order_by="desc(Payment.payment_date)"
    )


class Payment(Base):
    __tablename__ = 'payments'
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
    )
    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    payment_method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    payment_date = Column(Date, nullable=False)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    invoice = relationship("Invoice", back_populates="payments")


"""
Per-year invoice counter. Incremented with a single upsert so that concurrent
invoice creation never hands out the same number.
"""
class InvoiceSequence(Base):
    __tablename__ = 'invoice_sequences'
    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)


class Appointment(TimestampMixin, Base):
    __tablename__ = 'appointments'
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=True)
    assigned_mechanic_id = Column(Integer, ForeignKey('employees.id'), nullable=True, index=True)
    appointment_date = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=60)  # minutes
    service_type = Column(String(100), nullable=True)
    status = Column(Enum(AppointmentStatus, name="appointment_status"), nullable=False, default=AppointmentStatus.SCHEDULED)
    notes = Column(Text, nullable=True)
    work_order_id = Column(Integer, ForeignKey('work_orders.id'), nullable=True, unique=True)


class PurchaseOrder(TimestampMixin, Base):
    __tablename__ = 'purchase_orders'
    id = Column(Integer, primary_key=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False, index=True)
    status = Column(Enum(PurchaseOrderStatus, name="purchase_order_status"), nullable=False, default=PurchaseOrderStatus.DRAFT)
    order_date = Column(Date, nullable=False)
    expected_delivery_date = Column(Date, nullable=True)
    received_date = Column(DateTime, nullable=True)
    total_amount = Column(Money, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    items = relationship(
        "PurchaseOrderItem", back_populates="purchase_order",
        cascade="all, delete-orphan", order_by="PurchaseOrderItem.id"
    )


class PurchaseOrderItem(Base):
    __tablename__ = 'purchase_order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_po_items_quantity_positive'),
    )
    id = Column(Integer, primary_key=True)
    purchase_order_id = Column(Integer, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey('parts.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    quantity_received = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Money, nullable=False)
    total_cost = Column(Money, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="items")


class Expense(TimestampMixin, Base):
    __tablename__ = 'expenses'
    id = Column(Integer, primary_key=True)
    description = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False)  # Rent, Utilities, Tools, ...
    amount = Column(Money, nullable=False)
    expense_date = Column(Date, nullable=False, index=True)
    vendor = Column(String(150), nullable=True)
    receipt_number = Column(String(50), nullable=True)
    payment_method = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
