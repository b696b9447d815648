# kingrent/models.py
from __future__ import annotations

import enum
import secrets
import uuid
from datetime import date, datetime, timedelta, timezone

import sqlalchemy as sa
from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableDict, MutableList

from .extensions import db


# Naive UTC everywhere: DB columns are "timestamp without time zone".
def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
# One instance per column: as_mutable() binds to the type object.
def json_type():
    return db.JSON().with_variant(JSONB(), "postgresql")


def _enum_column(enum_cls: type[enum.Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        validate_strings=True,
    )


# =========================================================
# Enums
# =========================================================
class AppRole(enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    READ_ONLY = "read_only"


class BookingStatus(enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(enum.Enum):
    STRIPE = "stripe"
    WIRE = "wire"
    POS = "pos"
    OTHER = "other"


class PaymentType(enum.Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"
    FULL = "full"


class InvoicePaymentStatus(enum.Enum):
    TO_PAY = "to_pay"
    PAID = "paid"


class FinePaymentStatus(enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class ExpenseCategory(enum.Enum):
    TRANSFER = "transfer"
    FUEL = "fuel"
    CLEANING = "cleaning"
    TYRES = "tyres"
    PARKING = "parking"
    OTHER = "other"


class AuditAction(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    PAY = "pay"
    UPLOAD = "upload"
    REMINDER_SENT = "reminder_sent"
    IMMEDIATE_REMINDERS_TRIGGERED = "immediate_reminders_triggered"
    MERGE = "merge"


class AuditEntity(enum.Enum):
    BOOKING = "booking"
    FINE = "fine"
    SUPPLIER_INVOICE = "supplier_invoice"
    CLIENT_INVOICE = "client_invoice"
    PAYMENT = "payment"
    EXPENSE = "expense"
    USER = "user"
    DOCUMENT = "document"


class ChatEntityType(enum.Enum):
    BOOKING = "booking"
    FINE = "fine"
    SUPPLIER_INVOICE = "supplier_invoice"
    CLIENT_INVOICE = "client_invoice"
    GENERAL = "general"


class BookingDocumentType(enum.Enum):
    ID_CARD = "id_card"
    DRIVERS_LICENSE = "drivers_license"
    PASSPORT = "passport"
    RENTAL_CONTRACT = "rental_contract"
    CAR_CONDITION_PHOTO = "car_condition_photo"
    CAR_CONDITION_VIDEO = "car_condition_video"
    EXTRA_KM_INVOICE = "extra_km_invoice"
    FUEL_BALANCE_INVOICE = "fuel_balance_invoice"
    OTHER = "other"


BOOKING_TYPE_DIRECT = "direct"
BOOKING_TYPE_AGENCY = "agency"

PAYMENT_OPTION_FULL = "full_payment"
PAYMENT_OPTION_DOWN_PAYMENT = "down_payment_only"


# =========================================================
# User model (Authentication + Roles)
# =========================================================
class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=False)

    password_hash = db.Column(db.String(255), nullable=False)

    # admin / staff / read_only
    role = db.Column(db.String(20), nullable=False, default=AppRole.STAFF.value)

    # Account lifecycle / security
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    must_change_password = db.Column(db.Boolean, nullable=False, default=False)
    password_changed_at = db.Column(db.DateTime, nullable=True)

    failed_login_attempts = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utcnow_naive,
        onupdate=utcnow_naive,
    )

    __table_args__ = (
        db.UniqueConstraint("email", name="user_email_key"),
        db.CheckConstraint(
            "role IN ('admin', 'staff', 'read_only')",
            name="ck_user_role",
        ),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == AppRole.ADMIN.value

    @property
    def can_write(self) -> bool:
        return self.role in (AppRole.ADMIN.value, AppRole.STAFF.value)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"


# =========================================================
# Booking
# =========================================================
class Booking(db.Model):
    __tablename__ = "booking"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    reference_code = db.Column(db.String(50), nullable=False)

    # Client
    client_name = db.Column(db.String(160), nullable=False)
    client_email = db.Column(db.String(120), nullable=True)
    client_phone = db.Column(db.String(40), nullable=True)

    # Vehicle + logistics
    car_model = db.Column(db.String(120), nullable=False)
    car_plate = db.Column(db.String(30), nullable=True, index=True)
    delivery_datetime = db.Column(db.DateTime, nullable=False, index=True)
    delivery_location = db.Column(db.String(255), nullable=True)
    collection_datetime = db.Column(db.DateTime, nullable=False)
    collection_location = db.Column(db.String(255), nullable=True)
    rental_day_hour_tolerance = db.Column(db.Float, nullable=False, default=1.0)

    status = db.Column(
        _enum_column(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.DRAFT,
        index=True,
    )
    booking_type = db.Column(db.String(20), nullable=False, default=BOOKING_TYPE_DIRECT)
    imported_from_email = db.Column(db.Boolean, nullable=False, default=False)

    # Pricing
    rental_price_gross = db.Column(db.Float, nullable=False, default=0.0)
    vat_rate = db.Column(db.Float, nullable=False, default=0.0)
    supplier_name = db.Column(db.String(160), nullable=True)
    supplier_price = db.Column(db.Float, nullable=False, default=0.0)
    other_costs_total = db.Column(db.Float, nullable=False, default=0.0)
    amount_total = db.Column(db.Float, nullable=False, default=0.0)
    # Maintained from payments (services.financials.recalculate_amount_paid)
    amount_paid = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    # Security deposit + payment plan
    security_deposit_amount = db.Column(db.Float, nullable=False, default=0.0)
    security_deposit_authorized_at = db.Column(db.DateTime, nullable=True)
    payment_amount_option = db.Column(db.String(30), nullable=True)
    balance_due_date = db.Column(db.DateTime, nullable=True)

    # Reminder bookkeeping
    balance_payment_reminder_sent_at = db.Column(db.DateTime, nullable=True)
    security_deposit_reminder_sent_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey("user.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by = db.relationship("User", foreign_keys=[created_by_user_id], lazy="select")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    payments = db.relationship(
        "Payment",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="select",
        order_by="Payment.paid_at",
    )
    expenses = db.relationship(
        "Expense",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="select",
    )
    access_tokens = db.relationship(
        "BookingAccessToken",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="select",
        order_by="BookingAccessToken.created_at.desc()",
    )
    documents = db.relationship(
        "BookingDocument",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="select",
    )

    __table_args__ = (
        db.UniqueConstraint("reference_code", name="uq_booking_reference_code"),
        db.CheckConstraint("amount_total >= 0", name="ck_booking_amount_total_nonneg"),
        db.CheckConstraint("amount_paid >= 0", name="ck_booking_amount_paid_nonneg"),
        db.CheckConstraint(
            "security_deposit_amount >= 0",
            name="ck_booking_security_deposit_nonneg",
        ),
        db.CheckConstraint(
            "collection_datetime > delivery_datetime",
            name="ck_booking_collection_after_delivery",
        ),
        db.Index("ix_booking_status_delivery", "status", "delivery_datetime"),
    )

    @property
    def balance_amount(self) -> float:
        return float(self.amount_total or 0) - float(self.amount_paid or 0)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def latest_access_token(self) -> "BookingAccessToken | None":
        return self.access_tokens[0] if self.access_tokens else None

    def __repr__(self) -> str:
        return f"<Booking {self.reference_code} {self.status}>"


# =========================================================
# Payments + expenses (per booking)
# =========================================================
class Payment(db.Model):
    __tablename__ = "payment"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking = db.relationship("Booking", back_populates="payments")

    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    method = db.Column(_enum_column(PaymentMethod, "payment_method"), nullable=False)
    type = db.Column(_enum_column(PaymentType, "payment_type"), nullable=False)
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    note = db.Column(db.Text, nullable=True)
    proof_url = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.amount} {self.currency}>"


class Expense(db.Model):
    __tablename__ = "expense"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking = db.relationship("Booking", back_populates="expenses")

    amount = db.Column(db.Float, nullable=False)
    category = db.Column(_enum_column(ExpenseCategory, "expense_category"), nullable=False)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    def __repr__(self) -> str:
        return f"<Expense {self.id} {self.category} {self.amount}>"


# =========================================================
# Invoices + fines
# =========================================================
class SupplierInvoice(db.Model):
    __tablename__ = "supplier_invoice"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    booking = db.relationship("Booking", foreign_keys=[booking_id], lazy="select")

    supplier_name = db.Column(db.String(160), nullable=False, index=True)
    car_plate = db.Column(db.String(30), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    issue_date = db.Column(db.Date, nullable=False, default=date.today)

    invoice_url = db.Column(db.String(500), nullable=True)
    payment_status = db.Column(
        _enum_column(InvoicePaymentStatus, "invoice_payment_status"),
        nullable=False,
        default=InvoicePaymentStatus.TO_PAY,
    )
    payment_proof_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<SupplierInvoice {self.id} {self.supplier_name} {self.amount}>"


class ClientInvoice(db.Model):
    __tablename__ = "client_invoice"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    invoice_number = db.Column(db.String(40), nullable=False)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    booking = db.relationship("Booking", foreign_keys=[booking_id], lazy="select")

    client_name = db.Column(db.String(160), nullable=False, index=True)
    billing_address = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)

    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    vat_rate = db.Column(db.Float, nullable=False, default=0.0)
    vat_amount = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    issue_date = db.Column(db.Date, nullable=False, default=date.today)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    deleted_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_client_invoice_number"),
    )

    def __repr__(self) -> str:
        return f"<ClientInvoice {self.invoice_number} {self.total_amount}>"


class Fine(db.Model):
    __tablename__ = "fine"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    booking = db.relationship("Booking", foreign_keys=[booking_id], lazy="select")

    car_plate = db.Column(db.String(30), nullable=True, index=True)
    fine_number = db.Column(db.String(80), nullable=True)
    display_name = db.Column(db.String(200), nullable=True)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    issue_date = db.Column(db.Date, nullable=True)

    document_url = db.Column(db.String(500), nullable=True)
    payment_status = db.Column(
        _enum_column(FinePaymentStatus, "fine_payment_status"),
        nullable=False,
        default=FinePaymentStatus.UNPAID,
    )
    payment_proof_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Fine {self.id} {self.fine_number} {self.payment_status}>"


# =========================================================
# Booking documents (client ID, contracts, condition photos)
# =========================================================
class BookingDocument(db.Model):
    __tablename__ = "booking_document"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking = db.relationship("Booking", back_populates="documents")

    document_type = db.Column(
        _enum_column(BookingDocumentType, "booking_document_type"),
        nullable=False,
        default=BookingDocumentType.OTHER,
    )
    file_name = db.Column(db.String(255), nullable=False)
    storage_key = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(80), nullable=True)
    file_sha256 = db.Column(db.String(64), nullable=True)

    # NULL when uploaded by the client through the booking portal
    uploaded_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<BookingDocument {self.id} {self.document_type}>"


# =========================================================
# Client portal access tokens
# =========================================================
class BookingAccessToken(db.Model):
    __tablename__ = "booking_access_token"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    booking_id = db.Column(
        sa.Uuid,
        db.ForeignKey("booking.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking = db.relationship("Booking", back_populates="access_tokens")

    token = db.Column(db.String(128), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    accessed_at = db.Column(db.DateTime, nullable=True)
    access_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        db.UniqueConstraint("token", name="uq_booking_access_token_token"),
        db.CheckConstraint("length(token) >= 32", name="ck_booking_access_token_length"),
    )

    @classmethod
    def issue(cls, booking: Booking, days: int = 30) -> "BookingAccessToken":
        tok = cls(
            booking=booking,
            token=secrets.token_urlsafe(32),  # ~43 chars
            expires_at=utcnow_naive() + timedelta(days=days),
        )
        db.session.add(tok)
        return tok

    def is_valid(self, now: datetime | None = None) -> bool:
        return (now or utcnow_naive()) <= self.expires_at

    def touch(self) -> None:
        self.accessed_at = utcnow_naive()
        self.access_count = (self.access_count or 0) + 1

    def __repr__(self) -> str:
        return f"<BookingAccessToken {self.token[:8]}... {self.expires_at}>"


# =========================================================
# Chat
# =========================================================
class ChatMessage(db.Model):
    __tablename__ = "chat_message"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    entity_type = db.Column(_enum_column(ChatEntityType, "chat_entity_type"), nullable=False)
    # NULL for the general channel
    entity_id = db.Column(sa.Uuid, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    user = db.relationship("User", foreign_keys=[user_id], lazy="joined")

    message = db.Column(db.Text, nullable=False)
    mentioned_users = db.Column(MutableList.as_mutable(json_type()), nullable=False, default=list)

    parent_message_id = db.Column(
        sa.Uuid,
        db.ForeignKey("chat_message.id", ondelete="SET NULL"),
        nullable=True,
    )
    source = db.Column(db.String(20), nullable=False, default="webapp")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)
    deleted_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index("ix_chat_message_entity", "entity_type", "entity_id"),
        db.CheckConstraint(
            "(entity_type = 'general' AND entity_id IS NULL) OR "
            "(entity_type <> 'general' AND entity_id IS NOT NULL)",
            name="ck_chat_message_entity_id",
        ),
    )

    def __repr__(self) -> str:
        return f"<ChatMessage {self.id} {self.entity_type}>"


class ChatNotification(db.Model):
    __tablename__ = "chat_notification"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = db.Column(sa.Uuid, db.ForeignKey("chat_message.id", ondelete="CASCADE"), nullable=False)
    message = db.relationship("ChatMessage", foreign_keys=[message_id], lazy="joined")

    notification_type = db.Column(db.String(20), nullable=False, default="mention")
    entity_type = db.Column(_enum_column(ChatEntityType, "chat_entity_type"), nullable=False)
    entity_id = db.Column(sa.Uuid, nullable=True)
    read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        db.UniqueConstraint("user_id", "message_id", name="uq_chat_notification_user_message"),
    )

    def __repr__(self) -> str:
        return f"<ChatNotification user={self.user_id} read={self.read}>"


# =========================================================
# Audit log
# =========================================================
class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    entity = db.Column(_enum_column(AuditEntity, "audit_entity"), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False, index=True)
    action = db.Column(_enum_column(AuditAction, "audit_action"), nullable=False)
    payload_snapshot = db.Column(MutableDict.as_mutable(json_type()), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.entity} {self.entity_id} {self.action}>"


# =========================================================
# Email templates + app settings
# =========================================================
class EmailTemplate(db.Model):
    __tablename__ = "email_template"

    id = db.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    template_type = db.Column(db.String(60), nullable=False)
    subject_line = db.Column(db.String(255), nullable=False)
    html_content = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    __table_args__ = (
        db.UniqueConstraint("template_type", name="uq_email_template_type"),
    )

    def __repr__(self) -> str:
        return f"<EmailTemplate {self.template_type} active={self.is_active}>"


class AppSettings(db.Model):
    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(160), nullable=False, default="KingRent")
    company_email = db.Column(db.String(120), nullable=True)
    company_phone = db.Column(db.String(40), nullable=True)
    company_address = db.Column(db.String(255), nullable=True)
    logo_url = db.Column(db.String(500), nullable=True)
    default_currency = db.Column(db.String(3), nullable=False, default="EUR")
    default_vat_rate = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    @classmethod
    def current(cls) -> "AppSettings | None":
        return cls.query.order_by(cls.id.asc()).first()

    def __repr__(self) -> str:
        return f"<AppSettings {self.company_name}>"
