# kingrent/public.py
from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, make_response, request

from .extensions import db, limiter
from .models import BookingAccessToken, BookingDocumentType, utcnow_naive
from .routes import store_booking_document
from .services.document_files import StorageKeyError, load_file_bytes, verify_signature
from .services.financials import payment_status
from .utils.parsers import iso, parse_enum, safe_enum_value
from .utils.uploads import UploadRejected, detect_mime_type, validate_upload

public = Blueprint("public", __name__)

# Document types a client may upload through the portal
CLIENT_DOCUMENT_TYPES = {
    BookingDocumentType.ID_CARD,
    BookingDocumentType.DRIVERS_LICENSE,
    BookingDocumentType.PASSPORT,
    BookingDocumentType.OTHER,
}


# =========================================================
# Client metadata helpers
# =========================================================
def _client_ip() -> str:
    xff = (request.headers.get("X-Forwarded-For") or "").strip()
    if xff:
        return xff.split(",")[0].strip()
    return (request.remote_addr or "").strip()


def _token_or_error(token: str):
    """
    Returns (access_token, None) or (None, response). Unknown tokens are 404,
    expired ones 410; neither reveals anything about the booking.
    """
    token = (token or "").strip()
    if not token:
        abort(404)

    tok = BookingAccessToken.query.filter(BookingAccessToken.token == token).first()
    if tok is None or tok.booking is None or tok.booking.deleted_at is not None:
        return None, (jsonify({"error": "Invalid link"}), 404)

    if not tok.is_valid(utcnow_naive()):
        return None, (jsonify({"error": "This link has expired"}), 410)

    return tok, None


def client_booking_json(booking) -> dict:
    """Client-safe view: no supplier prices, commission or internal notes."""
    balance = booking.balance_amount
    return {
        "reference_code": booking.reference_code,
        "client_name": booking.client_name,
        "car_model": booking.car_model,
        "delivery_datetime": iso(booking.delivery_datetime),
        "delivery_location": booking.delivery_location,
        "collection_datetime": iso(booking.collection_datetime),
        "collection_location": booking.collection_location,
        "status": safe_enum_value(booking.status),
        "currency": booking.currency,
        "amount_total": booking.amount_total,
        "amount_paid": booking.amount_paid,
        "balance_amount": balance,
        "payment_status": payment_status(booking.amount_paid, booking.amount_total),
        "payment_amount_option": booking.payment_amount_option,
        "balance_due_date": iso(booking.balance_due_date),
        "security_deposit_amount": booking.security_deposit_amount,
        "security_deposit_authorized": booking.security_deposit_authorized_at is not None,
        "documents": [
            {
                "document_type": safe_enum_value(d.document_type),
                "file_name": d.file_name,
                "created_at": iso(d.created_at),
            }
            for d in booking.documents
            if d.deleted_at is None
        ],
    }


# =========================================================
# Booking portal
# =========================================================
@public.route("/booking-form/<token>", methods=["GET"])
@limiter.limit("30 per minute")
def booking_form(token: str):
    tok, err = _token_or_error(token)
    if err:
        return err

    tok.touch()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Could not record portal access for token %s...", tok.token[:6])

    return jsonify({"booking": client_booking_json(tok.booking), "expires_at": iso(tok.expires_at)}), 200


@public.route("/booking-form/<token>/documents", methods=["POST"])
@limiter.limit("10 per minute")
def booking_form_upload(token: str):
    tok, err = _token_or_error(token)
    if err:
        return err

    doc_type = parse_enum(BookingDocumentType, request.form.get("document_type") or "other")
    if doc_type not in CLIENT_DOCUMENT_TYPES:
        return jsonify({"error": "document_type is not allowed"}), 400

    f = request.files.get("file")
    if f is None:
        return jsonify({"error": "No file provided"}), 400

    try:
        upload = validate_upload(
            f.read(),
            f.filename,
            max_bytes=current_app.config.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        )
    except UploadRejected as exc:
        current_app.logger.warning("Portal upload rejected from %s: %s", _client_ip(), exc)
        return jsonify({"error": str(exc)}), exc.status

    doc = store_booking_document(tok.booking, upload, doc_type, None)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Portal upload failed for booking %s", tok.booking.reference_code)
        return jsonify({"error": "Upload failed. Please try again."}), 500

    current_app.logger.info(
        "Client uploaded %s for booking %s from %s", doc_type.value, tok.booking.reference_code, _client_ip()
    )
    return (
        jsonify(
            {
                "document": {
                    "document_type": doc_type.value,
                    "file_name": doc.file_name,
                    "created_at": iso(doc.created_at),
                }
            }
        ),
        201,
    )


# =========================================================
# Signed file download
# =========================================================
@public.route("/files/<path:storage_key>", methods=["GET"], endpoint="download_file")
def download_file(storage_key: str):
    expires = request.args.get("expires")
    signature = request.args.get("signature") or ""

    if not verify_signature(storage_key, expires, signature):
        return jsonify({"error": "Invalid or expired link"}), 403

    try:
        data = load_file_bytes(storage_key)
    except (StorageKeyError, FileNotFoundError):
        abort(404)

    resp = make_response(data)
    resp.headers["Content-Type"] = detect_mime_type(data) or "application/octet-stream"
    resp.headers["Content-Disposition"] = f'inline; filename="{storage_key.rsplit("/", 1)[-1]}"'
    resp.headers["Cache-Control"] = "private, max-age=0, no-store"
    return resp

