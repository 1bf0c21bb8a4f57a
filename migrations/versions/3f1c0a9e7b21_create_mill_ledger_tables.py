"""create mill ledger tables

Revision ID: 3f1c0a9e7b21
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f1c0a9e7b21"
down_revision = None
branch_labels = None
depends_on = None


ROLE_ENUM = sa.Enum("admin", "production_manager", "finance_manager", "viewer", name="roleenum")
COST_CATEGORY_ENUM = sa.Enum(
    "ELECTRICITY", "EMPLOYEE", "PACKAGING", "MAINTENANCE", "EXPENSE", name="costcategory"
)
INVOICE_STATUS_ENUM = sa.Enum("UNPAID", "PARTIAL", "PAID", name="invoicestatus")
PAYMENT_METHOD_ENUM = sa.Enum("CASH", "BANK", "UPI", "CHEQUE", name="paymentmethod")


def _timestamps(with_updated=True):
    columns = [sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())]
    if with_updated:
        columns.append(sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()))
    return columns


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", ROLE_ENUM, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
    )

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("batch_code", sa.String(length=16), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("supplier", sa.String(length=100), nullable=False),
        sa.Column("bale_count", sa.Integer(), nullable=False),
        sa.Column("total_weight_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("bale_count > 0", name="ck_batch_bale_count_positive"),
        sa.CheckConstraint("total_weight_kg > 0", name="ck_batch_weight_positive"),
    )
    op.create_index("ix_batches_batch_code", "batches", ["batch_code"], unique=True)
    op.create_index("ix_batches_date", "batches", ["date"])

    op.create_table(
        "production_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_consumed_kg", sa.Numeric(14, 3), nullable=False),
        sa.Column("total_produced_kg", sa.Numeric(14, 3), nullable=False),
        sa.Column("total_waste_kg", sa.Numeric(14, 3), nullable=False),
        sa.Column("waste_blow_room_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("waste_carding_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("waste_oe_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("waste_others_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_production_entries_date", "production_entries", ["date"])

    op.create_table(
        "production_consumptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "production_id",
            sa.Integer(),
            sa.ForeignKey("production_entries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("batch_id", sa.Integer(), sa.ForeignKey("batches.id"), nullable=False),
        sa.Column("weight_kg", sa.Numeric(12, 3), nullable=False),
        sa.CheckConstraint("weight_kg > 0", name="ck_consumption_weight_positive"),
    )
    op.create_index("ix_production_consumptions_production_id", "production_consumptions", ["production_id"])
    op.create_index("ix_production_consumptions_batch_id", "production_consumptions", ["batch_id"])

    op.create_table(
        "production_outputs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "production_id",
            sa.Integer(),
            sa.ForeignKey("production_entries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("yarn_count", sa.String(length=40), nullable=False),
        sa.Column("weight_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("bags", sa.Integer(), nullable=False),
        sa.Column("remainder_kg", sa.Numeric(12, 3), nullable=False),
        sa.CheckConstraint("weight_kg > 0", name="ck_output_weight_positive"),
    )
    op.create_index("ix_production_outputs_production_id", "production_outputs", ["production_id"])
    op.create_index("ix_production_outputs_yarn_count", "production_outputs", ["yarn_count"])

    op.create_table(
        "yarn_counts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False, unique=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "dispatch_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("customer_name", sa.String(length=100), nullable=False),
        sa.Column("vehicle_no", sa.String(length=20), nullable=False),
        sa.Column("driver_name", sa.String(length=100), nullable=True),
        sa.Column("total_bags", sa.Integer(), nullable=False),
        sa.Column("total_weight_kg", sa.Numeric(14, 3), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_dispatch_entries_date", "dispatch_entries", ["date"])

    op.create_table(
        "dispatch_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "dispatch_id",
            sa.Integer(),
            sa.ForeignKey("dispatch_entries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("yarn_count", sa.String(length=40), nullable=False),
        sa.Column("bags", sa.Integer(), nullable=False),
        sa.Column("weight_kg", sa.Numeric(12, 3), nullable=False),
    )
    op.create_index("ix_dispatch_items_dispatch_id", "dispatch_items", ["dispatch_id"])
    op.create_index("ix_dispatch_items_yarn_count", "dispatch_items", ["yarn_count"])

    op.create_table(
        "costing_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", COST_CATEGORY_ENUM, nullable=False),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("details", sa.String(length=255), nullable=True),
        sa.Column("units_consumed", sa.Numeric(12, 2), nullable=True),
        sa.Column("rate_per_unit", sa.Numeric(10, 2), nullable=True),
        sa.Column("shifts", sa.Integer(), nullable=True),
        sa.Column("workers", sa.Integer(), nullable=True),
        sa.Column("rate_per_worker", sa.Numeric(10, 2), nullable=True),
        sa.Column("overtime", sa.Numeric(12, 2), nullable=True),
        sa.Column("rate_per_kg", sa.Numeric(10, 4), nullable=True),
        sa.Column("basis_output_kg", sa.Numeric(14, 3), nullable=True),
        sa.Column("is_manual_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("basis_stale", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("title", sa.String(length=120), nullable=True),
        sa.Column("expense_type", sa.String(length=60), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_cost > 0", name="ck_costing_total_positive"),
    )
    op.create_index("ix_costing_entries_date", "costing_entries", ["date"])
    op.create_index("ix_costing_entries_category", "costing_entries", ["category"])
    op.create_index(
        "uq_costing_date_category",
        "costing_entries",
        ["date", "category"],
        unique=True,
        sqlite_where=sa.text("category <> 'EXPENSE'"),
        postgresql_where=sa.text("category <> 'EXPENSE'"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_no", sa.String(length=40), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("customer_name", sa.String(length=100), nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("cgst", sa.Numeric(14, 2), nullable=False),
        sa.Column("sgst", sa.Numeric(14, 2), nullable=False),
        sa.Column("total", sa.Numeric(14, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("status", INVOICE_STATUS_ENUM, nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_paid >= 0", name="ck_invoice_amount_paid_non_negative"),
    )
    op.create_index("ix_invoices_invoice_no", "invoices", ["invoice_no"], unique=True)
    op.create_index("ix_invoices_date", "invoices", ["date"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "invoice_id",
            sa.Integer(),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("yarn_count", sa.String(length=40), nullable=False),
        sa.Column("bags", sa.Integer(), nullable=False),
        sa.Column("weight_kg", sa.Numeric(12, 3), nullable=False),
        sa.Column("rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
    )
    op.create_index("ix_invoice_lines_invoice_id", "invoice_lines", ["invoice_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("method", PAYMENT_METHOD_ENUM, nullable=False),
        sa.Column("reference", sa.String(length=80), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])


def downgrade():
    op.drop_table("payments")
    op.drop_table("invoice_lines")
    op.drop_table("invoices")
    op.drop_index("uq_costing_date_category", table_name="costing_entries")
    op.drop_table("costing_entries")
    op.drop_table("dispatch_items")
    op.drop_table("dispatch_entries")
    op.drop_table("yarn_counts")
    op.drop_table("production_outputs")
    op.drop_table("production_consumptions")
    op.drop_table("production_entries")
    op.drop_table("batches")
    op.drop_table("user")

    bind = op.get_bind()
    for enum in (PAYMENT_METHOD_ENUM, INVOICE_STATUS_ENUM, COST_CATEGORY_ENUM, ROLE_ENUM):
        enum.drop(bind, checkfirst=True)
