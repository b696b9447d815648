"""Initial KingRent schema

Revision ID: a1f4c2d9e8b7
Revises:
Create Date: 2026-03-02 10:14:51.208331
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1f4c2d9e8b7"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _ts(name, nullable=False, **kw):
    return sa.Column(name, sa.DateTime(), nullable=nullable, **kw)


def upgrade():
    # -----------------------------------------------------------------
    # Users / settings
    # -----------------------------------------------------------------
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(120), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("password_changed_at", nullable=True),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("locked_until", nullable=True),
        _ts("last_login_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("email", name="user_email_key"),
        sa.CheckConstraint("role IN ('admin', 'staff', 'read_only')", name="ck_user_role"),
    )

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_name", sa.String(160), nullable=False),
        sa.Column("company_email", sa.String(120), nullable=True),
        sa.Column("company_phone", sa.String(40), nullable=True),
        sa.Column("company_address", sa.String(255), nullable=True),
        sa.Column("logo_url", sa.String(500), nullable=True),
        sa.Column("default_currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("default_vat_rate", sa.Float(), nullable=False, server_default=sa.text("0")),
        _ts("created_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "email_template",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("template_type", sa.String(60), nullable=False),
        sa.Column("subject_line", sa.String(255), nullable=False),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("template_type", name="uq_email_template_type"),
    )

    # -----------------------------------------------------------------
    # Bookings and their children
    # -----------------------------------------------------------------
    op.create_table(
        "booking",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("reference_code", sa.String(50), nullable=False),
        sa.Column("client_name", sa.String(160), nullable=False),
        sa.Column("client_email", sa.String(120), nullable=True),
        sa.Column("client_phone", sa.String(40), nullable=True),
        sa.Column("car_model", sa.String(120), nullable=False),
        sa.Column("car_plate", sa.String(30), nullable=True),
        _ts("delivery_datetime"),
        sa.Column("delivery_location", sa.String(255), nullable=True),
        _ts("collection_datetime"),
        sa.Column("collection_location", sa.String(255), nullable=True),
        sa.Column("rental_day_hour_tolerance", sa.Float(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(9), nullable=False, server_default="draft"),
        sa.Column("booking_type", sa.String(20), nullable=False, server_default="direct"),
        sa.Column("imported_from_email", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rental_price_gross", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_rate", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("supplier_name", sa.String(160), nullable=True),
        sa.Column("supplier_price", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("other_costs_total", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_total", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("security_deposit_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        _ts("security_deposit_authorized_at", nullable=True),
        sa.Column("payment_amount_option", sa.String(30), nullable=True),
        _ts("balance_due_date", nullable=True),
        _ts("balance_payment_reminder_sent_at", nullable=True),
        _ts("security_deposit_reminder_sent_at", nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("deleted_at", nullable=True),
        sa.UniqueConstraint("reference_code", name="uq_booking_reference_code"),
        sa.CheckConstraint("amount_total >= 0", name="ck_booking_amount_total_nonneg"),
        sa.CheckConstraint("amount_paid >= 0", name="ck_booking_amount_paid_nonneg"),
        sa.CheckConstraint("security_deposit_amount >= 0", name="ck_booking_security_deposit_nonneg"),
        sa.CheckConstraint("collection_datetime > delivery_datetime", name="ck_booking_collection_after_delivery"),
    )
    op.create_index("ix_booking_car_plate", "booking", ["car_plate"])
    op.create_index("ix_booking_delivery_datetime", "booking", ["delivery_datetime"])
    op.create_index("ix_booking_status", "booking", ["status"])
    op.create_index("ix_booking_deleted_at", "booking", ["deleted_at"])
    op.create_index("ix_booking_status_delivery", "booking", ["status", "delivery_datetime"])

    op.create_table(
        "payment",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("method", sa.String(6), nullable=False),
        sa.Column("type", sa.String(7), nullable=False),
        _ts("paid_at"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("proof_url", sa.String(500), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )
    op.create_index("ix_payment_booking_id", "payment", ["booking_id"])

    op.create_table(
        "expense",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("category", sa.String(8), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_expense_booking_id", "expense", ["booking_id"])

    op.create_table(
        "booking_document",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_type", sa.String(20), nullable=False, server_default="other"),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("storage_key", sa.String(500), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("mime_type", sa.String(80), nullable=True),
        sa.Column("file_sha256", sa.String(64), nullable=True),
        sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        _ts("created_at"),
        _ts("deleted_at", nullable=True),
    )
    op.create_index("ix_booking_document_booking_id", "booking_document", ["booking_id"])

    op.create_table(
        "booking_access_token",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        _ts("expires_at"),
        _ts("accessed_at", nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("created_at"),
        sa.UniqueConstraint("token", name="uq_booking_access_token_token"),
        sa.CheckConstraint("length(token) >= 32", name="ck_booking_access_token_length"),
    )
    op.create_index("ix_booking_access_token_booking_id", "booking_access_token", ["booking_id"])
    op.create_index("ix_booking_access_token_expires_at", "booking_access_token", ["expires_at"])

    # -----------------------------------------------------------------
    # Invoices / fines
    # -----------------------------------------------------------------
    op.create_table(
        "supplier_invoice",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="SET NULL"), nullable=True),
        sa.Column("supplier_name", sa.String(160), nullable=False),
        sa.Column("car_plate", sa.String(30), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("invoice_url", sa.String(500), nullable=True),
        sa.Column("payment_status", sa.String(6), nullable=False, server_default="to_pay"),
        sa.Column("payment_proof_url", sa.String(500), nullable=True),
        _ts("created_at"),
        _ts("deleted_at", nullable=True),
    )
    op.create_index("ix_supplier_invoice_booking_id", "supplier_invoice", ["booking_id"])
    op.create_index("ix_supplier_invoice_supplier_name", "supplier_invoice", ["supplier_name"])

    op.create_table(
        "client_invoice",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("invoice_number", sa.String(40), nullable=False),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="SET NULL"), nullable=True),
        sa.Column("client_name", sa.String(160), nullable=False),
        sa.Column("billing_address", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("subtotal", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_rate", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("deleted_at", nullable=True),
        sa.UniqueConstraint("invoice_number", name="uq_client_invoice_number"),
    )
    op.create_index("ix_client_invoice_booking_id", "client_invoice", ["booking_id"])
    op.create_index("ix_client_invoice_client_name", "client_invoice", ["client_name"])

    op.create_table(
        "fine",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("booking.id", ondelete="SET NULL"), nullable=True),
        sa.Column("car_plate", sa.String(30), nullable=True),
        sa.Column("fine_number", sa.String(80), nullable=True),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("issue_date", sa.Date(), nullable=True),
        sa.Column("document_url", sa.String(500), nullable=True),
        sa.Column("payment_status", sa.String(6), nullable=False, server_default="unpaid"),
        sa.Column("payment_proof_url", sa.String(500), nullable=True),
        _ts("created_at"),
        _ts("deleted_at", nullable=True),
    )
    op.create_index("ix_fine_booking_id", "fine", ["booking_id"])
    op.create_index("ix_fine_car_plate", "fine", ["car_plate"])

    # -----------------------------------------------------------------
    # Chat / notifications / audit
    # -----------------------------------------------------------------
    op.create_table(
        "chat_message",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entity_type", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("mentioned_users", JSON_TYPE, nullable=False),
        sa.Column(
            "parent_message_id",
            sa.Uuid(),
            sa.ForeignKey("chat_message.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("source", sa.String(20), nullable=False, server_default="webapp"),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("deleted_at", nullable=True),
        sa.CheckConstraint(
            "(entity_type = 'general' AND entity_id IS NULL) OR "
            "(entity_type <> 'general' AND entity_id IS NOT NULL)",
            name="ck_chat_message_entity_id",
        ),
    )
    op.create_index("ix_chat_message_entity", "chat_message", ["entity_type", "entity_id"])
    op.create_index("ix_chat_message_created_at", "chat_message", ["created_at"])

    op.create_table(
        "chat_notification",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message_id", sa.Uuid(), sa.ForeignKey("chat_message.id", ondelete="CASCADE"), nullable=False),
        sa.Column("notification_type", sa.String(20), nullable=False, server_default="mention"),
        sa.Column("entity_type", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at"),
        sa.UniqueConstraint("user_id", "message_id", name="uq_chat_notification_user_message"),
    )
    op.create_index("ix_chat_notification_user_id", "chat_notification", ["user_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        sa.Column("entity", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(29), nullable=False),
        sa.Column("payload_snapshot", JSON_TYPE, nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])


def downgrade():
    op.drop_table("audit_log")
    op.drop_table("chat_notification")
    op.drop_table("chat_message")
    op.drop_table("fine")
    op.drop_table("client_invoice")
    op.drop_table("supplier_invoice")
    op.drop_table("booking_access_token")
    op.drop_table("booking_document")
    op.drop_table("expense")
    op.drop_table("payment")
    op.drop_table("booking")
    op.drop_table("email_template")
    op.drop_table("app_settings")
    op.drop_table("user")
