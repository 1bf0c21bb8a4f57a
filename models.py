from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, text

from extensions import db
from werkzeug.security import generate_password_hash, check_password_hash


class RoleEnum(str, Enum):
    admin = "admin"
    production_manager = "production_manager"
    finance_manager = "finance_manager"
    viewer = "viewer"


class CostCategory(str, Enum):
    ELECTRICITY = "Electricity"
    EMPLOYEE = "Employee"
    PACKAGING = "Packaging"
    MAINTENANCE = "Maintenance"
    EXPENSE = "Expense"


# Categories whose cost is a frozen snapshot of that day's production output.
OUTPUT_BASED_CATEGORIES = frozenset({CostCategory.PACKAGING, CostCategory.MAINTENANCE})


class InvoiceStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK = "BANK"
    UPI = "UPI"
    CHEQUE = "CHEQUE"


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.viewer)
    active = db.Column(db.Boolean, default=True)

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return check_password_hash(self.password_hash, pw)


class Batch(db.Model):
    """A lot of raw cotton received on one date from one supplier."""

    __tablename__ = "batches"
    __table_args__ = (
        CheckConstraint("bale_count > 0", name="ck_batch_bale_count_positive"),
        CheckConstraint("total_weight_kg > 0", name="ck_batch_weight_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_code = db.Column(db.String(16), nullable=False, unique=True, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    supplier = db.Column(db.String(100), nullable=False)
    bale_count = db.Column(db.Integer, nullable=False)
    total_weight_kg = db.Column(db.Numeric(12, 3), nullable=False)
    version_id = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<Batch {self.batch_code} weight={self.total_weight_kg}>"


class ProductionEntry(db.Model):
    """One run converting consumed cotton into yarn output plus waste."""

    __tablename__ = "production_entries"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    total_consumed_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    total_produced_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    total_waste_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    waste_blow_room_kg = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0.000"))
    waste_carding_kg = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0.000"))
    waste_oe_kg = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0.000"))
    waste_others_kg = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0.000"))
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    consumptions = db.relationship(
        "ProductionConsumption",
        back_populates="production",
        cascade="all, delete-orphan",
        order_by="ProductionConsumption.id",
    )
    outputs = db.relationship(
        "ProductionOutput",
        back_populates="production",
        cascade="all, delete-orphan",
        order_by="ProductionOutput.id",
    )

    def __repr__(self):
        return f"<ProductionEntry date={self.date} consumed={self.total_consumed_kg}>"


class ProductionConsumption(db.Model):
    __tablename__ = "production_consumptions"

    id = db.Column(db.Integer, primary_key=True)
    production_id = db.Column(
        db.Integer, db.ForeignKey("production_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    weight_kg = db.Column(db.Numeric(12, 3), nullable=False)

    production = db.relationship("ProductionEntry", back_populates="consumptions")
    batch = db.relationship("Batch")

    __table_args__ = (
        CheckConstraint("weight_kg > 0", name="ck_consumption_weight_positive"),
    )


class ProductionOutput(db.Model):
    __tablename__ = "production_outputs"

    id = db.Column(db.Integer, primary_key=True)
    production_id = db.Column(
        db.Integer, db.ForeignKey("production_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    yarn_count = db.Column(db.String(40), nullable=False, index=True)
    weight_kg = db.Column(db.Numeric(12, 3), nullable=False)
    bags = db.Column(db.Integer, nullable=False, default=0)
    remainder_kg = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0.000"))

    production = db.relationship("ProductionEntry", back_populates="outputs")

    __table_args__ = (
        CheckConstraint("weight_kg > 0", name="ck_output_weight_positive"),
    )


class YarnCount(db.Model):
    """Registry row per yarn count; locked and versioned by stock movements."""

    __tablename__ = "yarn_counts"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False, unique=True)
    version_id = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class DispatchEntry(db.Model):
    """Finished yarn leaving the mill (outward entry)."""

    __tablename__ = "dispatch_entries"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    customer_name = db.Column(db.String(100), nullable=False)
    vehicle_no = db.Column(db.String(20), nullable=False)
    driver_name = db.Column(db.String(100), nullable=True)
    total_bags = db.Column(db.Integer, nullable=False, default=0)
    total_weight_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    items = db.relationship(
        "DispatchItem",
        back_populates="dispatch",
        cascade="all, delete-orphan",
        order_by="DispatchItem.id",
    )


class DispatchItem(db.Model):
    __tablename__ = "dispatch_items"

    id = db.Column(db.Integer, primary_key=True)
    dispatch_id = db.Column(
        db.Integer, db.ForeignKey("dispatch_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    yarn_count = db.Column(db.String(40), nullable=False, index=True)
    bags = db.Column(db.Integer, nullable=False)
    weight_kg = db.Column(db.Numeric(12, 3), nullable=False)

    dispatch = db.relationship("DispatchEntry", back_populates="items")


class CostingEntry(db.Model):
    """One cost line for one date and category.

    Packaging and maintenance rows keep ``basis_output_kg`` as a copy of the
    production output read at save time; later production edits only flip
    ``basis_stale``.
    """

    __tablename__ = "costing_entries"
    __table_args__ = (
        db.Index(
            "uq_costing_date_category",
            "date",
            "category",
            unique=True,
            sqlite_where=text("category <> 'EXPENSE'"),
            postgresql_where=text("category <> 'EXPENSE'"),
        ),
        CheckConstraint("total_cost > 0", name="ck_costing_total_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    category = db.Column(db.Enum(CostCategory), nullable=False, index=True)
    total_cost = db.Column(db.Numeric(14, 2), nullable=False)
    details = db.Column(db.String(255), nullable=True)

    units_consumed = db.Column(db.Numeric(12, 2), nullable=True)
    rate_per_unit = db.Column(db.Numeric(10, 2), nullable=True)
    shifts = db.Column(db.Integer, nullable=True)
    workers = db.Column(db.Integer, nullable=True)
    rate_per_worker = db.Column(db.Numeric(10, 2), nullable=True)
    overtime = db.Column(db.Numeric(12, 2), nullable=True)
    rate_per_kg = db.Column(db.Numeric(10, 4), nullable=True)
    basis_output_kg = db.Column(db.Numeric(14, 3), nullable=True)
    is_manual_override = db.Column(db.Boolean, nullable=False, default=False)
    basis_stale = db.Column(db.Boolean, nullable=False, default=False)
    title = db.Column(db.String(120), nullable=True)
    expense_type = db.Column(db.String(60), nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<CostingEntry {self.category.value} {self.date} total={self.total_cost}>"


class Invoice(db.Model):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("amount_paid >= 0", name="ck_invoice_amount_paid_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(40), nullable=False, unique=True, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    customer_name = db.Column(db.String(100), nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)
    cgst = db.Column(db.Numeric(14, 2), nullable=False)
    sgst = db.Column(db.Numeric(14, 2), nullable=False)
    total = db.Column(db.Numeric(14, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.UNPAID, index=True)
    version_id = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.id",
    )
    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due(self) -> Decimal:
        return Decimal(self.total or 0) - Decimal(self.amount_paid or 0)

    def __repr__(self):
        return f"<Invoice {self.invoice_no} total={self.total} status={self.status}>"


class InvoiceLine(db.Model):
    __tablename__ = "invoice_lines"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    yarn_count = db.Column(db.String(40), nullable=False)
    bags = db.Column(db.Integer, nullable=False, default=0)
    weight_kg = db.Column(db.Numeric(12, 3), nullable=False)
    rate = db.Column(db.Numeric(10, 2), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")


class Payment(db.Model):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    method = db.Column(db.Enum(PaymentMethod), nullable=False)
    reference = db.Column(db.String(80), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    invoice = db.relationship("Invoice", back_populates="payments")
