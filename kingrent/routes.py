# kingrent/routes.py
from __future__ import annotations

import re
import sqlalchemy as sa
from flask import (
    Blueprint,
    abort,
    current_app,
    jsonify,
    make_response,
    request,
)
from flask_login import current_user, login_required
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from kingrent.config.company import company_context
from kingrent.extensions import db
from kingrent.models import (
    AppSettings,
    AuditAction,
    AuditEntity,
    Booking,
    BookingAccessToken,
    BookingDocument,
    BookingDocumentType,
    BookingStatus,
    ChatEntityType,
    ClientInvoice,
    Expense,
    ExpenseCategory,
    Fine,
    FinePaymentStatus,
    InvoicePaymentStatus,
    Payment,
    PaymentMethod,
    PaymentType,
    SupplierInvoice,
    BOOKING_TYPE_AGENCY,
    BOOKING_TYPE_DIRECT,
    PAYMENT_OPTION_DOWN_PAYMENT,
    PAYMENT_OPTION_FULL,
    utcnow_naive,
)
from kingrent.services import audit
from kingrent.services.chat import purge_thread
from kingrent.services.document_files import (
    BUCKETS,
    StorageKeyError,
    delete_file,
    signed_url,
    store_upload,
)
from kingrent.services.document_renderer import render_payment_receipt_pdf_bytes
from kingrent.services.financials import (
    booking_financials,
    calculate_rental_days,
    recalculate_amount_paid,
    vat_breakdown,
)
from kingrent.services.reminders import trigger_immediate_reminders
from kingrent.utils.guards import admin_required, write_required
from kingrent.utils.invoice_pdf import render_client_invoice_pdf
from kingrent.utils.parsers import (
    clean_str,
    iso,
    parse_bool,
    parse_date,
    parse_datetime,
    parse_enum,
    parse_float,
    parse_int,
    parse_uuid,
    safe_enum_value,
)
from kingrent.utils.uploads import UploadRejected, validate_upload

main = Blueprint("main", __name__)


# =========================================================
# Small DB helper (SAFE)
# =========================================================
def _commit_or_rollback(action: str) -> bool:
    try:
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s failed", action)
        return False


def _failed(action: str):
    return jsonify({"error": f"{action} failed. Please try again."}), 500


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _get_or_404(model, raw_id, *, include_deleted: bool = False):
    obj_id = parse_uuid(raw_id)
    if obj_id is None:
        abort(404)
    obj = db.session.get(model, obj_id)
    if obj is None:
        abort(404)
    if not include_deleted and getattr(obj, "deleted_at", None) is not None:
        abort(404)
    return obj


def _page_args() -> tuple[int, int]:
    page = max(parse_int(request.args.get("page")) or 1, 1)
    per_page = min(max(parse_int(request.args.get("per_page")) or 50, 1), 200)
    return page, per_page


def _paginated(query, serializer) -> dict:
    page, per_page = _page_args()
    pg = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "items": [serializer(x) for x in pg.items],
        "page": pg.page,
        "per_page": pg.per_page,
        "total": pg.total,
    }


def _include_deleted() -> bool:
    return parse_bool(request.args.get("include_deleted")) and getattr(current_user, "is_admin", False)


# =========================================================
# Field parsing for create/update payloads
# =========================================================
# (kind, option) per field; option is maxlen for str, enum class for enum
BOOKING_FIELDS = {
    "reference_code": ("str", 50),
    "client_name": ("str", 160),
    "client_email": ("email", 120),
    "client_phone": ("str", 40),
    "car_model": ("str", 120),
    "car_plate": ("str", 30),
    "delivery_datetime": ("datetime", None),
    "delivery_location": ("str", 255),
    "collection_datetime": ("datetime", None),
    "collection_location": ("str", 255),
    "rental_day_hour_tolerance": ("float", None),
    "booking_type": ("choice", (BOOKING_TYPE_DIRECT, BOOKING_TYPE_AGENCY)),
    "imported_from_email": ("bool", None),
    "rental_price_gross": ("money", None),
    "vat_rate": ("money", None),
    "supplier_name": ("str", 160),
    "supplier_price": ("money", None),
    "other_costs_total": ("money", None),
    "amount_total": ("money", None),
    "currency": ("currency", None),
    "security_deposit_amount": ("money", None),
    "security_deposit_authorized_at": ("datetime", None),
    "payment_amount_option": ("choice", (PAYMENT_OPTION_FULL, PAYMENT_OPTION_DOWN_PAYMENT)),
    "balance_due_date": ("datetime", None),
    "notes": ("text", None),
}

SUPPLIER_INVOICE_FIELDS = {
    "supplier_name": ("str", 160),
    "car_plate": ("str", 30),
    "amount": ("money", None),
    "currency": ("currency", None),
    "issue_date": ("date", None),
    "invoice_url": ("str", 500),
    "payment_proof_url": ("str", 500),
    "payment_status": ("enum", InvoicePaymentStatus),
    "booking_id": ("booking", None),
}

CLIENT_INVOICE_FIELDS = {
    "invoice_number": ("str", 40),
    "client_name": ("str", 160),
    "billing_address": ("str", 255),
    "description": ("text", None),
    "subtotal": ("money", None),
    "vat_rate": ("money", None),
    "currency": ("currency", None),
    "issue_date": ("date", None),
    "notes": ("text", None),
    "booking_id": ("booking", None),
}

FINE_FIELDS = {
    "car_plate": ("str", 30),
    "fine_number": ("str", 80),
    "display_name": ("str", 200),
    "amount": ("money", None),
    "currency": ("currency", None),
    "issue_date": ("date", None),
    "document_url": ("str", 500),
    "payment_proof_url": ("str", 500),
    "payment_status": ("enum", FinePaymentStatus),
    "booking_id": ("booking", None),
}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _parse_field(name: str, kind: str, option, raw):
    """Returns (value, error). Empty input clears the field (None)."""
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return None, None

    if kind in ("str", "text"):
        s = clean_str(raw)
        if option and len(s) > option:
            return None, f"{name} must be at most {option} characters"
        return s, None
    if kind == "email":
        s = clean_str(raw).lower()
        if not _EMAIL_RE.match(s) or len(s) > option:
            return None, f"{name} is not a valid email"
        return s, None
    if kind == "currency":
        s = clean_str(raw).upper()
        if not _CURRENCY_RE.match(s):
            return None, f"{name} must be a 3-letter currency code"
        return s, None
    if kind in ("float", "money"):
        v = parse_float(raw)
        if v is None:
            return None, f"{name} must be a number"
        if kind == "money" and v < 0:
            return None, f"{name} cannot be negative"
        return v, None
    if kind == "bool":
        return parse_bool(raw), None
    if kind == "datetime":
        v = parse_datetime(raw)
        return (v, None) if v else (None, f"{name} must be an ISO-8601 datetime")
    if kind == "date":
        v = parse_date(raw)
        return (v, None) if v else (None, f"{name} must be an ISO date")
    if kind == "choice":
        s = clean_str(raw)
        return (s, None) if s in option else (None, f"{name} must be one of: {', '.join(option)}")
    if kind == "enum":
        v = parse_enum(option, raw)
        if v is None:
            return None, f"{name} must be one of: {', '.join(m.value for m in option)}"
        return v, None
    if kind == "booking":
        bid = parse_uuid(raw)
        booking = db.session.get(Booking, bid) if bid else None
        if booking is None or booking.deleted_at is not None:
            return None, f"{name} does not reference an existing booking"
        return booking.id, None
    raise ValueError(f"Unknown field kind {kind}")


def _apply_fields(obj, data: dict, fields: dict) -> list[str]:
    columns = sa.inspect(type(obj)).columns
    errors: list[str] = []
    for name, (kind, option) in fields.items():
        if name not in data:
            continue
        value, err = _parse_field(name, kind, option, data.get(name))
        if err:
            errors.append(err)
            continue
        if value is None and not columns[name].nullable:
            # empty input on a NOT NULL column means "leave as is"
            continue
        setattr(obj, name, value)
    return errors


def _require(data: dict, *names: str) -> list[str]:
    return [f"{n} is required" for n in names if data.get(n) in (None, "")]


# =========================================================
# Serializers
# =========================================================
def booking_json(b: Booking, *, detail: bool = False) -> dict:
    out = {
        "id": str(b.id),
        "reference_code": b.reference_code,
        "client_name": b.client_name,
        "client_email": b.client_email,
        "client_phone": b.client_phone,
        "car_model": b.car_model,
        "car_plate": b.car_plate,
        "delivery_datetime": iso(b.delivery_datetime),
        "delivery_location": b.delivery_location,
        "collection_datetime": iso(b.collection_datetime),
        "collection_location": b.collection_location,
        "rental_day_hour_tolerance": b.rental_day_hour_tolerance,
        "status": safe_enum_value(b.status),
        "booking_type": b.booking_type,
        "imported_from_email": bool(b.imported_from_email),
        "rental_price_gross": b.rental_price_gross,
        "vat_rate": b.vat_rate,
        "supplier_name": b.supplier_name,
        "supplier_price": b.supplier_price,
        "other_costs_total": b.other_costs_total,
        "amount_total": b.amount_total,
        "amount_paid": b.amount_paid,
        "currency": b.currency,
        "security_deposit_amount": b.security_deposit_amount,
        "security_deposit_authorized_at": iso(b.security_deposit_authorized_at),
        "payment_amount_option": b.payment_amount_option,
        "balance_due_date": iso(b.balance_due_date),
        "balance_payment_reminder_sent_at": iso(b.balance_payment_reminder_sent_at),
        "security_deposit_reminder_sent_at": iso(b.security_deposit_reminder_sent_at),
        "notes": b.notes,
        "created_at": iso(b.created_at),
        "updated_at": iso(b.updated_at),
        "deleted_at": iso(b.deleted_at),
    }
    if detail:
        out["payments"] = [payment_json(p) for p in b.payments]
        out["expenses"] = [expense_json(e) for e in b.expenses]
        out["financials"] = booking_financials(b)
    return out


def payment_json(p: Payment) -> dict:
    return {
        "id": str(p.id),
        "booking_id": str(p.booking_id),
        "amount": p.amount,
        "currency": p.currency,
        "method": safe_enum_value(p.method),
        "type": safe_enum_value(p.type),
        "paid_at": iso(p.paid_at),
        "note": p.note,
        "proof_url": p.proof_url,
        "created_at": iso(p.created_at),
    }


def expense_json(e: Expense) -> dict:
    return {
        "id": str(e.id),
        "booking_id": str(e.booking_id),
        "amount": e.amount,
        "category": safe_enum_value(e.category),
        "note": e.note,
        "created_at": iso(e.created_at),
    }


def supplier_invoice_json(inv: SupplierInvoice) -> dict:
    return {
        "id": str(inv.id),
        "booking_id": str(inv.booking_id) if inv.booking_id else None,
        "supplier_name": inv.supplier_name,
        "car_plate": inv.car_plate,
        "amount": inv.amount,
        "currency": inv.currency,
        "issue_date": iso(inv.issue_date),
        "invoice_url": inv.invoice_url,
        "payment_status": safe_enum_value(inv.payment_status),
        "payment_proof_url": inv.payment_proof_url,
        "created_at": iso(inv.created_at),
        "deleted_at": iso(inv.deleted_at),
    }


def client_invoice_json(inv: ClientInvoice) -> dict:
    return {
        "id": str(inv.id),
        "invoice_number": inv.invoice_number,
        "booking_id": str(inv.booking_id) if inv.booking_id else None,
        "client_name": inv.client_name,
        "billing_address": inv.billing_address,
        "description": inv.description,
        "subtotal": inv.subtotal,
        "vat_rate": inv.vat_rate,
        "vat_amount": inv.vat_amount,
        "total_amount": inv.total_amount,
        "currency": inv.currency,
        "issue_date": iso(inv.issue_date),
        "notes": inv.notes,
        "created_at": iso(inv.created_at),
        "deleted_at": iso(inv.deleted_at),
    }


def fine_json(f: Fine) -> dict:
    return {
        "id": str(f.id),
        "booking_id": str(f.booking_id) if f.booking_id else None,
        "car_plate": f.car_plate,
        "fine_number": f.fine_number,
        "display_name": f.display_name,
        "amount": f.amount,
        "currency": f.currency,
        "issue_date": iso(f.issue_date),
        "document_url": f.document_url,
        "payment_status": safe_enum_value(f.payment_status),
        "payment_proof_url": f.payment_proof_url,
        "created_at": iso(f.created_at),
        "deleted_at": iso(f.deleted_at),
    }


def booking_document_json(d: BookingDocument) -> dict:
    return {
        "id": str(d.id),
        "booking_id": str(d.booking_id),
        "document_type": safe_enum_value(d.document_type),
        "file_name": d.file_name,
        "file_size": d.file_size,
        "mime_type": d.mime_type,
        "uploaded_by_user_id": d.uploaded_by_user_id,
        "created_at": iso(d.created_at),
        "url": signed_url(d.storage_key),
    }


# =========================================================
# Health
# =========================================================
@main.route("/health")
def health():
    return jsonify({"status": "ok"}), 200


# =========================================================
# Bookings
# =========================================================
@main.route("/bookings", methods=["GET"])
@login_required
def list_bookings():
    q = Booking.query
    if not _include_deleted():
        q = q.filter(Booking.deleted_at.is_(None))

    status = parse_enum(BookingStatus, request.args.get("status"))
    if status:
        q = q.filter(Booking.status == status)

    term = clean_str(request.args.get("q"))
    if term:
        like = f"%{term}%"
        q = q.filter(
            or_(
                Booking.reference_code.ilike(like),
                Booking.client_name.ilike(like),
                Booking.client_email.ilike(like),
                Booking.car_plate.ilike(like),
                Booking.car_model.ilike(like),
            )
        )

    date_from = parse_datetime(request.args.get("from"))
    date_to = parse_datetime(request.args.get("to"))
    if date_from:
        q = q.filter(Booking.delivery_datetime >= date_from)
    if date_to:
        q = q.filter(Booking.delivery_datetime <= date_to)

    q = q.order_by(Booking.delivery_datetime.desc())
    return jsonify(_paginated(q, booking_json)), 200


def _validate_booking_dates(booking: Booking) -> str | None:
    if booking.delivery_datetime and booking.collection_datetime:
        if booking.collection_datetime <= booking.delivery_datetime:
            return "collection_datetime must be after delivery_datetime"
    return None


def _maybe_trigger_immediate(booking: Booking) -> dict | None:
    """
    Last-minute confirmed bookings get their reminders right away. Never fails the
    calling request: errors are logged and reported back.
    """
    if booking.status != BookingStatus.CONFIRMED or not booking.client_email:
        return None
    try:
        return trigger_immediate_reminders(booking)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Immediate reminders failed for booking %s", booking.reference_code)
        return {"success": False, "error": str(exc)}


@main.route("/bookings", methods=["POST"])
@write_required
def create_booking():
    data = _json_body()
    errors = _require(
        data,
        "reference_code",
        "client_name",
        "car_model",
        "delivery_datetime",
        "collection_datetime",
    )

    settings = AppSettings.current()
    booking = Booking(
        status=BookingStatus.DRAFT,
        currency=settings.default_currency if settings else "EUR",
        created_by_user_id=current_user.id,
    )
    errors += _apply_fields(booking, data, BOOKING_FIELDS)

    if "status" in data:
        status = parse_enum(BookingStatus, data.get("status"))
        if status is None:
            errors.append("status is invalid")
        else:
            booking.status = status

    if not errors:
        err = _validate_booking_dates(booking)
        if err:
            errors.append(err)

    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    if Booking.query.filter_by(reference_code=booking.reference_code).first():
        return jsonify({"error": "reference_code already exists"}), 409

    db.session.add(booking)
    db.session.flush()
    audit.record(AuditEntity.BOOKING, booking.id, AuditAction.CREATE, {"reference_code": booking.reference_code})

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "reference_code already exists"}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Create booking failed")
        return _failed("Create booking")

    out = {"booking": booking_json(booking)}
    immediate = _maybe_trigger_immediate(booking)
    if immediate is not None:
        out["immediate_reminders"] = immediate
    return jsonify(out), 201


@main.route("/bookings/<booking_id>", methods=["GET"])
@login_required
def get_booking(booking_id):
    booking = _get_or_404(Booking, booking_id, include_deleted=_include_deleted())
    return jsonify({"booking": booking_json(booking, detail=True)}), 200


@main.route("/bookings/<booking_id>", methods=["PATCH"])
@write_required
def update_booking(booking_id):
    booking = _get_or_404(Booking, booking_id)
    data = _json_body()

    for required in ("reference_code", "client_name", "car_model", "delivery_datetime", "collection_datetime"):
        if required in data and data.get(required) in (None, ""):
            return jsonify({"error": f"{required} cannot be empty"}), 400

    old_ref = booking.reference_code
    errors = _apply_fields(booking, data, BOOKING_FIELDS)
    if not errors:
        err = _validate_booking_dates(booking)
        if err:
            errors.append(err)
    if errors:
        db.session.rollback()
        return jsonify({"error": "Validation failed", "details": errors}), 400

    if booking.reference_code != old_ref:
        clash = Booking.query.filter(
            Booking.reference_code == booking.reference_code, Booking.id != booking.id
        ).first()
        if clash:
            db.session.rollback()
            return jsonify({"error": "reference_code already exists"}), 409

    audit.record(
        AuditEntity.BOOKING,
        booking.id,
        AuditAction.UPDATE,
        {"fields": sorted(k for k in data if k in BOOKING_FIELDS)},
    )
    if not _commit_or_rollback("Update booking"):
        return _failed("Update booking")
    return jsonify({"booking": booking_json(booking)}), 200


@main.route("/bookings/<booking_id>/status", methods=["POST"])
@write_required
def change_booking_status(booking_id):
    booking = _get_or_404(Booking, booking_id)
    data = _json_body()
    status = parse_enum(BookingStatus, data.get("status"))
    if status is None:
        return jsonify({"error": "status must be one of: " + ", ".join(s.value for s in BookingStatus)}), 400

    old = safe_enum_value(booking.status)
    booking.status = status
    audit.record(
        AuditEntity.BOOKING,
        booking.id,
        AuditAction.STATUS_CHANGE,
        {"from": old, "to": status.value},
    )
    if not _commit_or_rollback("Change booking status"):
        return _failed("Change booking status")

    out = {"booking": booking_json(booking)}
    if old != BookingStatus.CONFIRMED.value and status == BookingStatus.CONFIRMED:
        immediate = _maybe_trigger_immediate(booking)
        if immediate is not None:
            out["immediate_reminders"] = immediate
    return jsonify(out), 200


@main.route("/bookings/<booking_id>", methods=["DELETE"])
@write_required
def delete_booking(booking_id):
    booking = _get_or_404(Booking, booking_id)
    booking.deleted_at = utcnow_naive()
    audit.record(AuditEntity.BOOKING, booking.id, AuditAction.DELETE, {"reference_code": booking.reference_code})
    if not _commit_or_rollback("Delete booking"):
        return _failed("Delete booking")
    return jsonify({"success": True}), 200


@main.route("/bookings/<booking_id>/restore", methods=["POST"])
@write_required
def restore_booking(booking_id):
    booking = _get_or_404(Booking, booking_id, include_deleted=True)
    if booking.deleted_at is None:
        return jsonify({"error": "Booking is not deleted"}), 400
    booking.deleted_at = None
    audit.record(AuditEntity.BOOKING, booking.id, AuditAction.UPDATE, {"restored": True})
    if not _commit_or_rollback("Restore booking"):
        return _failed("Restore booking")
    return jsonify({"booking": booking_json(booking)}), 200


@main.route("/bookings/<booking_id>/permanent", methods=["DELETE"])
@admin_required
def delete_booking_permanent(booking_id):
    booking = _get_or_404(Booking, booking_id, include_deleted=True)
    ref = booking.reference_code
    storage_keys = [d.storage_key for d in booking.documents]

    audit.record(AuditEntity.BOOKING, booking.id, AuditAction.DELETE, {"reference_code": ref, "permanent": True})
    purge_thread(ChatEntityType.BOOKING, booking.id)
    db.session.delete(booking)
    if not _commit_or_rollback("Permanently delete booking"):
        return _failed("Permanently delete booking")

    for key in storage_keys:
        try:
            delete_file(key)
        except (OSError, StorageKeyError):
            current_app.logger.exception("Could not remove stored file %s", key)

    return jsonify({"success": True, "reference_code": ref}), 200


@main.route("/bookings/<booking_id>/financials", methods=["GET"])
@login_required
def get_booking_financials(booking_id):
    booking = _get_or_404(Booking, booking_id)
    return jsonify(booking_financials(booking)), 200


@main.route("/bookings/<booking_id>/access-token", methods=["POST"])
@write_required
def create_access_token(booking_id):
    booking = _get_or_404(Booking, booking_id)
    days = parse_int(_json_body().get("days")) or current_app.config.get("BOOKING_TOKEN_TTL_DAYS", 30)
    tok = BookingAccessToken.issue(booking, days=days)
    if not _commit_or_rollback("Create access token"):
        return _failed("Create access token")

    domain = (current_app.config.get("APP_DOMAIN") or "").rstrip("/")
    return (
        jsonify(
            {
                "token": tok.token,
                "expires_at": iso(tok.expires_at),
                "portal_url": f"{domain}/booking-form/{tok.token}",
            }
        ),
        201,
    )


@main.route("/rental-days", methods=["GET"])
@login_required
def rental_days():
    delivery = parse_datetime(request.args.get("delivery"))
    collection = parse_datetime(request.args.get("collection"))
    if not delivery or not collection:
        return jsonify({"error": "delivery and collection are required ISO datetimes"}), 400
    tolerance = parse_float(request.args.get("tolerance"))
    result = calculate_rental_days(delivery, collection, 1 if tolerance is None else tolerance)
    return jsonify(result.as_dict()), 200


# =========================================================
# Payments
# =========================================================
@main.route("/bookings/<booking_id>/payments", methods=["GET"])
@login_required
def list_payments(booking_id):
    booking = _get_or_404(Booking, booking_id)
    return jsonify({"items": [payment_json(p) for p in booking.payments]}), 200


def _apply_payment_fields(payment: Payment, data: dict, *, creating: bool) -> list[str]:
    errors: list[str] = []

    if creating or "amount" in data:
        amount = parse_float(data.get("amount"))
        if amount is None or amount <= 0:
            errors.append("amount must be a positive number")
        else:
            payment.amount = round(amount, 2)

    if creating or "method" in data:
        method = parse_enum(PaymentMethod, data.get("method"))
        if method is None:
            errors.append("method must be one of: " + ", ".join(m.value for m in PaymentMethod))
        else:
            payment.method = method

    if creating or "type" in data:
        ptype = parse_enum(PaymentType, data.get("type"))
        if ptype is None:
            errors.append("type must be one of: " + ", ".join(t.value for t in PaymentType))
        else:
            payment.type = ptype

    if data.get("paid_at"):
        paid_at = parse_datetime(data.get("paid_at"))
        if paid_at is None:
            errors.append("paid_at must be an ISO-8601 datetime")
        else:
            payment.paid_at = paid_at

    if "currency" in data:
        cur, err = _parse_field("currency", "currency", None, data.get("currency"))
        if err:
            errors.append(err)
        elif cur:
            payment.currency = cur

    for field, maxlen in (("note", None), ("proof_url", 500)):
        if field in data:
            val, err = _parse_field(field, "str", maxlen, data.get(field))
            if err:
                errors.append(err)
            else:
                setattr(payment, field, val)

    return errors


@main.route("/bookings/<booking_id>/payments", methods=["POST"])
@write_required
def create_payment(booking_id):
    booking = _get_or_404(Booking, booking_id)
    data = _json_body()

    payment = Payment(
        currency=booking.currency,
        paid_at=utcnow_naive(),
        created_by_user_id=current_user.id,
    )
    errors = _apply_payment_fields(payment, data, creating=True)
    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    payment.booking = booking
    db.session.add(payment)
    recalculate_amount_paid(booking)
    audit.record(
        AuditEntity.PAYMENT,
        payment.id,
        AuditAction.PAY,
        {
            "booking_id": str(booking.id),
            "amount": payment.amount,
            "method": payment.method.value,
            "type": payment.type.value,
        },
    )
    if not _commit_or_rollback("Record payment"):
        return _failed("Record payment")

    return jsonify({"payment": payment_json(payment), "amount_paid": booking.amount_paid}), 201


@main.route("/payments/<payment_id>", methods=["PATCH"])
@write_required
def update_payment(payment_id):
    payment = _get_or_404(Payment, payment_id)
    errors = _apply_payment_fields(payment, _json_body(), creating=False)
    if errors:
        db.session.rollback()
        return jsonify({"error": "Validation failed", "details": errors}), 400

    recalculate_amount_paid(payment.booking)
    audit.record(AuditEntity.PAYMENT, payment.id, AuditAction.UPDATE, {"amount": payment.amount})
    if not _commit_or_rollback("Update payment"):
        return _failed("Update payment")
    return jsonify({"payment": payment_json(payment), "amount_paid": payment.booking.amount_paid}), 200


@main.route("/payments/<payment_id>", methods=["DELETE"])
@write_required
def delete_payment(payment_id):
    payment = _get_or_404(Payment, payment_id)
    booking = payment.booking
    audit.record(
        AuditEntity.PAYMENT,
        payment.id,
        AuditAction.DELETE,
        {"booking_id": str(booking.id), "amount": payment.amount},
    )
    db.session.delete(payment)
    recalculate_amount_paid(booking)
    if not _commit_or_rollback("Delete payment"):
        return _failed("Delete payment")
    return jsonify({"success": True, "amount_paid": booking.amount_paid}), 200


@main.route("/payments/<payment_id>/receipt.pdf", methods=["GET"])
@login_required
def payment_receipt_pdf(payment_id):
    payment = _get_or_404(Payment, payment_id)
    pdf = render_payment_receipt_pdf_bytes(payment, base_url=request.url_root)

    resp = make_response(pdf)
    resp.headers["Content-Type"] = "application/pdf"
    resp.headers["Content-Disposition"] = (
        f'inline; filename="receipt_{payment.booking.reference_code}_{str(payment.id)[:8]}.pdf"'
    )
    return resp


# =========================================================
# Expenses
# =========================================================
@main.route("/bookings/<booking_id>/expenses", methods=["GET"])
@login_required
def list_expenses(booking_id):
    booking = _get_or_404(Booking, booking_id)
    return jsonify({"items": [expense_json(e) for e in booking.expenses]}), 200


@main.route("/bookings/<booking_id>/expenses", methods=["POST"])
@write_required
def create_expense(booking_id):
    booking = _get_or_404(Booking, booking_id)
    data = _json_body()

    amount = parse_float(data.get("amount"))
    category = parse_enum(ExpenseCategory, data.get("category"))
    errors = []
    if amount is None or amount < 0:
        errors.append("amount must be a non-negative number")
    if category is None:
        errors.append("category must be one of: " + ", ".join(c.value for c in ExpenseCategory))
    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    expense = Expense(booking=booking, amount=round(amount, 2), category=category, note=clean_str(data.get("note")) or None)
    db.session.add(expense)
    db.session.flush()
    audit.record(
        AuditEntity.EXPENSE,
        expense.id,
        AuditAction.CREATE,
        {"booking_id": str(booking.id), "amount": expense.amount, "category": category.value},
    )
    if not _commit_or_rollback("Create expense"):
        return _failed("Create expense")
    return jsonify({"expense": expense_json(expense)}), 201


@main.route("/expenses/<expense_id>", methods=["DELETE"])
@write_required
def delete_expense(expense_id):
    expense = _get_or_404(Expense, expense_id)
    audit.record(AuditEntity.EXPENSE, expense.id, AuditAction.DELETE, {"amount": expense.amount})
    db.session.delete(expense)
    if not _commit_or_rollback("Delete expense"):
        return _failed("Delete expense")
    return jsonify({"success": True}), 200


# =========================================================
# Client invoices
# =========================================================
def generate_invoice_number() -> str:
    """
    KR-INV-<year>-<seq>. Not concurrency-safe on its own; create_client_invoice
    retries once on a unique-constraint clash.
    """
    year = utcnow_naive().year
    count = (
        db.session.query(sa.func.count(ClientInvoice.id))
        .filter(ClientInvoice.invoice_number.like(f"KR-INV-{year}-%"))
        .scalar()
        or 0
    ) + 1
    return f"KR-INV-{year}-{count:04d}"


def _recompute_invoice_totals(inv: ClientInvoice) -> None:
    inv.vat_amount, inv.total_amount = vat_breakdown(inv.subtotal, inv.vat_rate)


@main.route("/client-invoices", methods=["GET"])
@login_required
def list_client_invoices():
    q = ClientInvoice.query
    if not _include_deleted():
        q = q.filter(ClientInvoice.deleted_at.is_(None))

    term = clean_str(request.args.get("q"))
    if term:
        like = f"%{term}%"
        q = q.filter(or_(ClientInvoice.invoice_number.ilike(like), ClientInvoice.client_name.ilike(like)))

    booking_id = parse_uuid(request.args.get("booking_id"))
    if booking_id:
        q = q.filter(ClientInvoice.booking_id == booking_id)

    q = q.order_by(ClientInvoice.issue_date.desc(), ClientInvoice.created_at.desc())
    return jsonify(_paginated(q, client_invoice_json)), 200


@main.route("/client-invoices", methods=["POST"])
@write_required
def create_client_invoice():
    data = _json_body()
    errors = _require(data, "client_name", "subtotal")

    settings = AppSettings.current()
    inv = ClientInvoice(
        vat_rate=settings.default_vat_rate if settings else 0.0,
        currency=settings.default_currency if settings else "EUR",
    )
    errors += _apply_fields(inv, data, CLIENT_INVOICE_FIELDS)
    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    _recompute_invoice_totals(inv)
    explicit_number = bool(inv.invoice_number)

    for attempt in range(2):
        if not explicit_number:
            inv.invoice_number = generate_invoice_number()
        db.session.add(inv)
        try:
            db.session.flush()
            audit.record(
                AuditEntity.CLIENT_INVOICE,
                inv.id,
                AuditAction.CREATE,
                {"invoice_number": inv.invoice_number, "total_amount": inv.total_amount},
            )
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            if explicit_number or attempt == 1:
                return jsonify({"error": "invoice_number already exists"}), 409
            inv = _clone_client_invoice(inv)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Create client invoice failed")
            return _failed("Create client invoice")

    return jsonify({"invoice": client_invoice_json(inv)}), 201


def _clone_client_invoice(inv: ClientInvoice) -> ClientInvoice:
    # A rolled-back pending instance cannot be re-added; copy its column values.
    return ClientInvoice(
        booking_id=inv.booking_id,
        client_name=inv.client_name,
        billing_address=inv.billing_address,
        description=inv.description,
        subtotal=inv.subtotal,
        vat_rate=inv.vat_rate,
        vat_amount=inv.vat_amount,
        total_amount=inv.total_amount,
        currency=inv.currency,
        issue_date=inv.issue_date,
        notes=inv.notes,
    )


@main.route("/client-invoices/<invoice_id>", methods=["GET"])
@login_required
def get_client_invoice(invoice_id):
    inv = _get_or_404(ClientInvoice, invoice_id, include_deleted=_include_deleted())
    return jsonify({"invoice": client_invoice_json(inv)}), 200


@main.route("/client-invoices/<invoice_id>", methods=["PATCH"])
@write_required
def update_client_invoice(invoice_id):
    inv = _get_or_404(ClientInvoice, invoice_id)
    data = _json_body()
    for required in ("client_name", "invoice_number"):
        if required in data and data.get(required) in (None, ""):
            return jsonify({"error": f"{required} cannot be empty"}), 400

    errors = _apply_fields(inv, data, CLIENT_INVOICE_FIELDS)
    if errors:
        db.session.rollback()
        return jsonify({"error": "Validation failed", "details": errors}), 400

    _recompute_invoice_totals(inv)
    audit.record(AuditEntity.CLIENT_INVOICE, inv.id, AuditAction.UPDATE, {"fields": sorted(data)})
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "invoice_number already exists"}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Update client invoice failed")
        return _failed("Update client invoice")
    return jsonify({"invoice": client_invoice_json(inv)}), 200


@main.route("/client-invoices/<invoice_id>", methods=["DELETE"])
@write_required
def delete_client_invoice(invoice_id):
    inv = _get_or_404(ClientInvoice, invoice_id)
    inv.deleted_at = utcnow_naive()
    audit.record(AuditEntity.CLIENT_INVOICE, inv.id, AuditAction.DELETE, {"invoice_number": inv.invoice_number})
    if not _commit_or_rollback("Delete client invoice"):
        return _failed("Delete client invoice")
    return jsonify({"success": True}), 200


@main.route("/client-invoices/<invoice_id>/pdf", methods=["GET"])
@login_required
def client_invoice_pdf(invoice_id):
    inv = _get_or_404(ClientInvoice, invoice_id)
    pdf = render_client_invoice_pdf(inv, company_context())

    resp = make_response(pdf)
    resp.headers["Content-Type"] = "application/pdf"
    resp.headers["Content-Disposition"] = f'inline; filename="{inv.invoice_number}.pdf"'
    return resp


# =========================================================
# Supplier invoices
# =========================================================
@main.route("/supplier-invoices", methods=["GET"])
@login_required
def list_supplier_invoices():
    q = SupplierInvoice.query
    if not _include_deleted():
        q = q.filter(SupplierInvoice.deleted_at.is_(None))

    status = parse_enum(InvoicePaymentStatus, request.args.get("payment_status"))
    if status:
        q = q.filter(SupplierInvoice.payment_status == status)

    supplier = clean_str(request.args.get("supplier"))
    if supplier:
        q = q.filter(SupplierInvoice.supplier_name.ilike(f"%{supplier}%"))

    booking_id = parse_uuid(request.args.get("booking_id"))
    if booking_id:
        q = q.filter(SupplierInvoice.booking_id == booking_id)

    q = q.order_by(SupplierInvoice.issue_date.desc(), SupplierInvoice.created_at.desc())
    return jsonify(_paginated(q, supplier_invoice_json)), 200


@main.route("/supplier-invoices", methods=["POST"])
@write_required
def create_supplier_invoice():
    data = _json_body()
    errors = _require(data, "supplier_name", "amount", "issue_date")

    inv = SupplierInvoice(payment_status=InvoicePaymentStatus.TO_PAY)
    errors += _apply_fields(inv, data, SUPPLIER_INVOICE_FIELDS)
    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    db.session.add(inv)
    db.session.flush()
    audit.record(
        AuditEntity.SUPPLIER_INVOICE,
        inv.id,
        AuditAction.CREATE,
        {"supplier_name": inv.supplier_name, "amount": inv.amount},
    )
    if not _commit_or_rollback("Create supplier invoice"):
        return _failed("Create supplier invoice")
    return jsonify({"invoice": supplier_invoice_json(inv)}), 201


@main.route("/supplier-invoices/<invoice_id>", methods=["GET"])
@login_required
def get_supplier_invoice(invoice_id):
    inv = _get_or_404(SupplierInvoice, invoice_id, include_deleted=_include_deleted())
    return jsonify({"invoice": supplier_invoice_json(inv)}), 200


@main.route("/supplier-invoices/<invoice_id>", methods=["PATCH"])
@write_required
def update_supplier_invoice(invoice_id):
    inv = _get_or_404(SupplierInvoice, invoice_id)
    data = _json_body()
    for required in ("supplier_name", "amount", "issue_date"):
        if required in data and data.get(required) in (None, ""):
            return jsonify({"error": f"{required} cannot be empty"}), 400

    errors = _apply_fields(inv, data, SUPPLIER_INVOICE_FIELDS)
    if errors:
        db.session.rollback()
        return jsonify({"error": "Validation failed", "details": errors}), 400

    audit.record(AuditEntity.SUPPLIER_INVOICE, inv.id, AuditAction.UPDATE, {"fields": sorted(data)})
    if not _commit_or_rollback("Update supplier invoice"):
        return _failed("Update supplier invoice")
    return jsonify({"invoice": supplier_invoice_json(inv)}), 200


@main.route("/supplier-invoices/<invoice_id>/pay", methods=["POST"])
@write_required
def pay_supplier_invoice(invoice_id):
    inv = _get_or_404(SupplierInvoice, invoice_id)
    data = _json_body()
    if data.get("payment_proof_url"):
        inv.payment_proof_url = clean_str(data.get("payment_proof_url"))[:500]
    inv.payment_status = InvoicePaymentStatus.PAID
    audit.record(AuditEntity.SUPPLIER_INVOICE, inv.id, AuditAction.PAY, {"amount": inv.amount})
    if not _commit_or_rollback("Mark supplier invoice paid"):
        return _failed("Mark supplier invoice paid")
    return jsonify({"invoice": supplier_invoice_json(inv)}), 200


@main.route("/supplier-invoices/<invoice_id>", methods=["DELETE"])
@write_required
def delete_supplier_invoice(invoice_id):
    inv = _get_or_404(SupplierInvoice, invoice_id)
    inv.deleted_at = utcnow_naive()
    audit.record(AuditEntity.SUPPLIER_INVOICE, inv.id, AuditAction.DELETE, {"supplier_name": inv.supplier_name})
    if not _commit_or_rollback("Delete supplier invoice"):
        return _failed("Delete supplier invoice")
    return jsonify({"success": True}), 200


# =========================================================
# Fines
# =========================================================
@main.route("/fines", methods=["GET"])
@login_required
def list_fines():
    q = Fine.query
    if not _include_deleted():
        q = q.filter(Fine.deleted_at.is_(None))

    status = parse_enum(FinePaymentStatus, request.args.get("payment_status"))
    if status:
        q = q.filter(Fine.payment_status == status)

    plate = clean_str(request.args.get("car_plate"))
    if plate:
        q = q.filter(Fine.car_plate.ilike(f"%{plate}%"))

    booking_id = parse_uuid(request.args.get("booking_id"))
    if booking_id:
        q = q.filter(Fine.booking_id == booking_id)

    q = q.order_by(Fine.issue_date.desc(), Fine.created_at.desc())
    return jsonify(_paginated(q, fine_json)), 200


@main.route("/fines", methods=["POST"])
@write_required
def create_fine():
    data = _json_body()
    errors = _require(data, "amount")

    fine = Fine(payment_status=FinePaymentStatus.UNPAID)
    errors += _apply_fields(fine, data, FINE_FIELDS)
    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    # Plate defaults to the booking's car
    if fine.booking_id and not fine.car_plate:
        fine.car_plate = db.session.get(Booking, fine.booking_id).car_plate

    db.session.add(fine)
    db.session.flush()
    audit.record(AuditEntity.FINE, fine.id, AuditAction.CREATE, {"fine_number": fine.fine_number, "amount": fine.amount})
    if not _commit_or_rollback("Create fine"):
        return _failed("Create fine")
    return jsonify({"fine": fine_json(fine)}), 201


@main.route("/fines/<fine_id>", methods=["GET"])
@login_required
def get_fine(fine_id):
    fine = _get_or_404(Fine, fine_id, include_deleted=_include_deleted())
    return jsonify({"fine": fine_json(fine)}), 200


@main.route("/fines/<fine_id>", methods=["PATCH"])
@write_required
def update_fine(fine_id):
    fine = _get_or_404(Fine, fine_id)
    data = _json_body()
    if "amount" in data and data.get("amount") in (None, ""):
        return jsonify({"error": "amount cannot be empty"}), 400

    old_status = safe_enum_value(fine.payment_status)
    errors = _apply_fields(fine, data, FINE_FIELDS)
    if errors:
        db.session.rollback()
        return jsonify({"error": "Validation failed", "details": errors}), 400

    new_status = safe_enum_value(fine.payment_status)
    action = AuditAction.STATUS_CHANGE if new_status != old_status else AuditAction.UPDATE
    audit.record(AuditEntity.FINE, fine.id, action, {"fields": sorted(data), "payment_status": new_status})
    if not _commit_or_rollback("Update fine"):
        return _failed("Update fine")
    return jsonify({"fine": fine_json(fine)}), 200


@main.route("/fines/<fine_id>/pay", methods=["POST"])
@write_required
def pay_fine(fine_id):
    fine = _get_or_404(Fine, fine_id)
    data = _json_body()
    if data.get("payment_proof_url"):
        fine.payment_proof_url = clean_str(data.get("payment_proof_url"))[:500]
    fine.payment_status = FinePaymentStatus.PAID
    audit.record(AuditEntity.FINE, fine.id, AuditAction.PAY, {"amount": fine.amount})
    if not _commit_or_rollback("Mark fine paid"):
        return _failed("Mark fine paid")
    return jsonify({"fine": fine_json(fine)}), 200


@main.route("/fines/<fine_id>", methods=["DELETE"])
@write_required
def delete_fine(fine_id):
    fine = _get_or_404(Fine, fine_id)
    fine.deleted_at = utcnow_naive()
    audit.record(AuditEntity.FINE, fine.id, AuditAction.DELETE, {"fine_number": fine.fine_number})
    if not _commit_or_rollback("Delete fine"):
        return _failed("Delete fine")
    return jsonify({"success": True}), 200


# =========================================================
# Uploads (staff/admin)
# =========================================================
def _read_upload():
    f = request.files.get("file")
    if f is None:
        raise UploadRejected("No file provided")
    data = f.read()
    return validate_upload(
        data,
        f.filename,
        max_bytes=current_app.config.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
    )


@main.route("/uploads", methods=["POST"])
@write_required
def upload_file():
    bucket = clean_str(request.form.get("bucket"))
    if bucket not in BUCKETS:
        return jsonify({"error": "bucket must be one of: " + ", ".join(BUCKETS)}), 400

    try:
        upload = _read_upload()
    except UploadRejected as exc:
        current_app.logger.warning("Upload rejected: %s", exc)
        return jsonify({"error": str(exc)}), exc.status

    owner_id = parse_uuid(request.form.get("owner_id"))
    stored = store_upload(bucket, owner_id, upload)

    audit.record(
        AuditEntity.DOCUMENT,
        stored.sha256,
        AuditAction.UPLOAD,
        {"storage_key": stored.storage_key, "bucket": bucket, "size": stored.size, "mime_type": stored.mime_type, "sha256": stored.sha256},
    )
    if not _commit_or_rollback("Record upload"):
        return _failed("Record upload")

    out = stored.as_dict()
    out["url"] = signed_url(stored.storage_key)
    return jsonify(out), 201


@main.route("/uploads/signed-url", methods=["GET"])
@login_required
def get_signed_url():
    key = clean_str(request.args.get("key"))
    if not key or ".." in key.split("/"):
        return jsonify({"error": "key is required"}), 400
    ttl = parse_int(request.args.get("expires_in"))
    return jsonify({"url": signed_url(key, ttl)}), 200


# =========================================================
# Booking documents
# =========================================================
@main.route("/bookings/<booking_id>/documents", methods=["GET"])
@login_required
def list_booking_documents(booking_id):
    booking = _get_or_404(Booking, booking_id)
    docs = [d for d in booking.documents if d.deleted_at is None]
    docs.sort(key=lambda d: d.created_at)
    return jsonify({"items": [booking_document_json(d) for d in docs]}), 200


def store_booking_document(booking: Booking, upload, document_type: BookingDocumentType, user_id) -> BookingDocument:
    stored = store_upload("client-documents", booking.id, upload)
    doc = BookingDocument(
        booking=booking,
        document_type=document_type,
        file_name=stored.file_name,
        storage_key=stored.storage_key,
        file_size=stored.size,
        mime_type=stored.mime_type,
        file_sha256=stored.sha256,
        uploaded_by_user_id=user_id,
    )
    db.session.add(doc)
    db.session.flush()
    audit.record(
        AuditEntity.DOCUMENT,
        doc.id,
        AuditAction.UPLOAD,
        {"booking_id": str(booking.id), "document_type": document_type.value, "size": stored.size},
        user_id=user_id,
    )
    return doc


@main.route("/bookings/<booking_id>/documents", methods=["POST"])
@write_required
def upload_booking_document(booking_id):
    booking = _get_or_404(Booking, booking_id)
    doc_type = parse_enum(BookingDocumentType, request.form.get("document_type") or "other")
    if doc_type is None:
        return jsonify({"error": "document_type is invalid"}), 400

    try:
        upload = _read_upload()
    except UploadRejected as exc:
        return jsonify({"error": str(exc)}), exc.status

    doc = store_booking_document(booking, upload, doc_type, current_user.id)
    if not _commit_or_rollback("Upload booking document"):
        return _failed("Upload booking document")
    return jsonify({"document": booking_document_json(doc)}), 201


@main.route("/booking-documents/<document_id>", methods=["DELETE"])
@write_required
def delete_booking_document(document_id):
    doc = _get_or_404(BookingDocument, document_id)
    doc.deleted_at = utcnow_naive()
    audit.record(AuditEntity.DOCUMENT, doc.id, AuditAction.DELETE, {"booking_id": str(doc.booking_id)})
    if not _commit_or_rollback("Delete booking document"):
        return _failed("Delete booking document")
    return jsonify({"success": True}), 200
