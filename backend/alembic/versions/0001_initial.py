"""billing core tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-12 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    ]


def upgrade() -> None:
    role_enum = sa.Enum(
        "admin", "billing", "pharmacist", "reception", "doctor", "nurse", "lab", name="role_enum"
    )
    bill_type = sa.Enum(
        "consultation",
        "lab",
        "radiology",
        "pharmacy",
        "ipd",
        "outpatient",
        "scan",
        "other",
        name="bill_type",
    )
    payment_status = sa.Enum(
        "pending", "partial", "paid", "overdue", "cancelled", name="payment_status"
    )
    payment_method = sa.Enum(
        "cash",
        "card",
        "upi",
        "gpay",
        "ghpay",
        "insurance",
        "credit",
        "others",
        name="billing_payment_method",
    )
    refund_mode = sa.Enum("cash", "card", "upi", "bank_transfer", name="refund_mode")
    return_reason = sa.Enum(
        "wrong_medicine",
        "excess_quantity",
        "expired",
        "damaged",
        "adverse_reaction",
        "doctor_changed",
        "customer_request",
        "other",
        name="return_reason",
    )
    restock_status = sa.Enum("pending", "restocked", "disposed", name="restock_status")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "ref_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("domain", sa.String(length=50), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("label", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("domain", "code", name="uq_ref_codes_domain_code"),
    )
    op.create_index("ix_ref_codes_domain", "ref_codes", ["domain"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uhid", sa.String(length=32), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("ix_patients_uhid", "patients", ["uhid"], unique=True)
    op.create_index("ix_patients_deleted_at", "patients", ["deleted_at"])

    op.create_table(
        "billing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bill_number", sa.String(length=32), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("encounter_id", sa.Integer(), nullable=True),
        sa.Column("appointment_id", sa.Integer(), nullable=True),
        sa.Column("bed_allocation_id", sa.Integer(), nullable=True),
        sa.Column("bill_type", bill_type, nullable=False),
        sa.Column("bill_date", sa.Date(), nullable=False),
        sa.Column("subtotal_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_paid_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_due_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_status", payment_status, nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_billing_bill_number", "billing", ["bill_number"], unique=True)
    op.create_index("ix_billing_patient_id", "billing", ["patient_id"])
    op.create_index("ix_billing_encounter_id", "billing", ["encounter_id"])
    op.create_index("ix_billing_appointment_id", "billing", ["appointment_id"])
    op.create_index("ix_billing_bed_allocation_id", "billing", ["bed_allocation_id"])
    op.create_index("ix_billing_payment_status", "billing", ["payment_status"])

    op.create_table(
        "billing_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "billing_id",
            sa.Integer(),
            sa.ForeignKey("billing.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line_type_id", sa.Integer(), sa.ForeignKey("ref_codes.id"), nullable=False),
        sa.Column("ref_id", sa.String(length=64), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_amount_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_number", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_billing_item_billing_id", "billing_item", ["billing_id"])
    op.create_index("ix_billing_item_ref_id", "billing_item", ["ref_id"])

    op.create_table(
        "billing_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "billing_id",
            sa.Integer(),
            sa.ForeignKey("billing.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_paise", sa.Integer(), nullable=False),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("reference", sa.String(length=120), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("ix_billing_payments_billing_id", "billing_payments", ["billing_id"])
    op.create_index("ix_billing_payments_deleted_at", "billing_payments", ["deleted_at"])

    op.create_table(
        "sales_return",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_number", sa.String(length=32), nullable=False),
        sa.Column("billing_id", sa.Integer(), sa.ForeignKey("billing.id"), nullable=False),
        sa.Column("return_date", sa.Date(), nullable=False),
        sa.Column("refund_mode", refund_mode, nullable=False),
        sa.Column("refund_amount_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refund_due_paise", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reason", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("remarks", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sales_return_return_number", "sales_return", ["return_number"], unique=True)
    op.create_index("ix_sales_return_billing_id", "sales_return", ["billing_id"])

    op.create_table(
        "sales_return_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "return_id",
            sa.Integer(),
            sa.ForeignKey("sales_return.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "billing_item_id", sa.Integer(), sa.ForeignKey("billing_item.id"), nullable=False
        ),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("ref_id", sa.String(length=64), nullable=True),
        sa.Column("batch_number", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_amount_paise", sa.Integer(), nullable=False),
        sa.Column("total_paise", sa.Integer(), nullable=False),
        sa.Column("reason", return_reason, nullable=False),
        sa.Column("restock_status", restock_status, nullable=False),
    )
    op.create_index("ix_sales_return_items_return_id", "sales_return_items", ["return_id"])
    op.create_index(
        "ix_sales_return_items_billing_item_id", "sales_return_items", ["billing_item_id"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_email", sa.String(length=320), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("request_id", sa.String(length=120), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_sales_return_items_billing_item_id", table_name="sales_return_items")
    op.drop_index("ix_sales_return_items_return_id", table_name="sales_return_items")
    op.drop_table("sales_return_items")

    op.drop_index("ix_sales_return_billing_id", table_name="sales_return")
    op.drop_index("ix_sales_return_return_number", table_name="sales_return")
    op.drop_table("sales_return")

    op.drop_index("ix_billing_payments_deleted_at", table_name="billing_payments")
    op.drop_index("ix_billing_payments_billing_id", table_name="billing_payments")
    op.drop_table("billing_payments")

    op.drop_index("ix_billing_item_ref_id", table_name="billing_item")
    op.drop_index("ix_billing_item_billing_id", table_name="billing_item")
    op.drop_table("billing_item")

    for index in (
        "ix_billing_payment_status",
        "ix_billing_bed_allocation_id",
        "ix_billing_appointment_id",
        "ix_billing_encounter_id",
        "ix_billing_patient_id",
        "ix_billing_bill_number",
    ):
        op.drop_index(index, table_name="billing")
    op.drop_table("billing")

    op.drop_index("ix_patients_deleted_at", table_name="patients")
    op.drop_index("ix_patients_uhid", table_name="patients")
    op.drop_table("patients")

    op.drop_index("ix_ref_codes_domain", table_name="ref_codes")
    op.drop_table("ref_codes")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    for enum_name in (
        "restock_status",
        "return_reason",
        "refund_mode",
        "billing_payment_method",
        "payment_status",
        "bill_type",
        "role_enum",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
