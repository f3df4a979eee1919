"""Initial billing schema: users, invoices, invoice sequences, integration connections.

Revision ID: 0001_initial_billing_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_initial_billing_schema"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns persist member names.
ROLE = sa.Enum(
    "USER",
    "ADMIN",
    "GST_PRACTITIONER",
    "CONSULTANT",
    "ACCOUNTANT",
    "BUSINESS_OWNER",
    "MODERATOR",
    name="role",
)
GENDER = sa.Enum("MALE", "FEMALE", "OTHER", "PREFER_NOT_TO_SAY", name="gender")
PROFESSION = sa.Enum(
    "GST_PRACTITIONER",
    "CHARTERED_ACCOUNTANT",
    "TAX_CONSULTANT",
    "BUSINESS_OWNER",
    "STUDENT",
    "OTHER",
    name="profession",
)
INVOICE_TYPE = sa.Enum("SUBSCRIPTION", "ONE_TIME", "REFUND", "ADJUSTMENT", name="invoice_type")
INVOICE_STATUS = sa.Enum("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED", "REFUNDED", name="invoice_status")
PAYMENT_METHOD = sa.Enum("STRIPE", "RAZORPAY", "BANK_TRANSFER", "UPI", "WALLET", "CASH", name="payment_method")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=True),
        sa.Column("mobile", sa.String(length=15), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mobile_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_verification_token", sa.String(length=64), nullable=True),
        sa.Column("role", ROLE, nullable=False, server_default="USER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_name", sa.String(length=50), nullable=True),
        sa.Column("last_name", sa.String(length=50), nullable=True),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("gender", GENDER, nullable=True),
        sa.Column("profession", PROFESSION, nullable=True),
        sa.Column("experience_years", sa.Integer(), nullable=True),
        sa.Column("specialization", sa.JSON(), nullable=True),
        sa.Column("qualifications", sa.JSON(), nullable=True),
        sa.Column("gst_registration_number", sa.String(length=15), nullable=True),
        sa.Column("pan_number", sa.String(length=10), nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("website", sa.String(length=500), nullable=True),
        sa.Column("linkedin_profile", sa.String(length=500), nullable=True),
        sa.Column("address", sa.JSON(), nullable=True),
        sa.Column("preferences", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_mobile", "users", ["mobile"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_is_active", "users", ["is_active"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=True),
        sa.Column("invoice_type", INVOICE_TYPE, nullable=False),
        sa.Column("status", INVOICE_STATUS, nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.DateTime(timezone=True), nullable=True),
        _money("subtotal"),
        _money("tax_total"),
        _money("discount_total"),
        _money("total"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=True),
        sa.Column("payment_details", sa.JSON(), nullable=True),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminders_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reminder_sent", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_invoices_user_id_users"),
        sa.CheckConstraint("subtotal >= 0", name="ck_invoices_subtotal_non_negative"),
        sa.CheckConstraint("tax_total >= 0", name="ck_invoices_tax_total_non_negative"),
        sa.CheckConstraint("discount_total >= 0", name="ck_invoices_discount_total_non_negative"),
        sa.CheckConstraint("total >= 0", name="ck_invoices_total_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_invoices"),
    )
    op.create_index("ix_invoices_id", "invoices", ["id"])
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_subscription_id", "invoices", ["subscription_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_issue_date", "invoices", ["issue_date"])
    op.create_index("ix_invoices_paid_date", "invoices", ["paid_date"])
    op.create_index("ix_invoices_user_id_status", "invoices", ["user_id", "status"])
    op.create_index("ix_invoices_due_date_status", "invoices", ["due_date", "status"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="18"),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["invoice_id"],
            ["invoices.id"],
            name="fk_invoice_items_invoice_id_invoices",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_invoice_items_quantity_non_negative"),
        sa.CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price_non_negative"),
        sa.CheckConstraint("line_total >= 0", name="ck_invoice_items_line_total_non_negative"),
        sa.CheckConstraint("tax_rate >= 0", name="ck_invoice_items_tax_rate_non_negative"),
        sa.CheckConstraint("tax_amount >= 0", name="ck_invoice_items_tax_amount_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_invoice_items"),
    )
    op.create_index("ix_invoice_items_id", "invoice_items", ["id"])
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"])

    op.create_table(
        "invoice_attachments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("url", sa.String(length=500), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["invoice_id"],
            ["invoices.id"],
            name="fk_invoice_attachments_invoice_id_invoices",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("url", name="uq_invoice_attachments_url"),
        sa.PrimaryKeyConstraint("id", name="pk_invoice_attachments"),
    )
    op.create_index("ix_invoice_attachments_id", "invoice_attachments", ["id"])
    op.create_index("ix_invoice_attachments_invoice_id", "invoice_attachments", ["invoice_id"])

    op.create_table(
        "invoice_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("period", sa.String(length=6), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_invoice_sequences"),
    )
    op.create_index("ix_invoice_sequences_id", "invoice_sequences", ["id"])
    op.create_index("ix_invoice_sequences_period", "invoice_sequences", ["period"], unique=True)

    op.create_table(
        "integration_connections",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("connected", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("encrypted_credentials", sa.Text(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_integration_connections_user_id_users",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("user_id", "category", name="uq_integration_connections_user_category"),
        sa.PrimaryKeyConstraint("id", name="pk_integration_connections"),
    )
    op.create_index("ix_integration_connections_id", "integration_connections", ["id"])
    op.create_index("ix_integration_connections_user_id", "integration_connections", ["user_id"])


def downgrade() -> None:
    op.drop_table("integration_connections")
    op.drop_table("invoice_sequences")
    op.drop_table("invoice_attachments")
    op.drop_table("invoice_items")
    op.drop_table("invoices")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in (PAYMENT_METHOD, INVOICE_STATUS, INVOICE_TYPE, PROFESSION, GENDER, ROLE):
        enum_type.drop(bind, checkfirst=True)
