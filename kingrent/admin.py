# kingrent/admin.py
from __future__ import annotations

import sqlalchemy as sa
from flask import Blueprint, current_app, jsonify, render_template, request
from flask_login import current_user
from sqlalchemy import desc

from kingrent.auth import user_json
from kingrent.config.company import company_context
from kingrent.extensions import db
from kingrent.models import (
    AppRole,
    AppSettings,
    AuditAction,
    AuditEntity,
    AuditLog,
    Booking,
    EmailTemplate,
    User,
    utcnow_naive,
)
from kingrent.services import audit
from kingrent.services.duplicates import SIMILARITY_THRESHOLD, detect_duplicates
from kingrent.services.mailer import (
    DEFAULT_BODIES,
    DEFAULT_SUBJECTS,
    MailerNotConfigured,
)
from kingrent.services.merge import MergeError, list_names, merge_names
from kingrent.services.reminders import run_payment_reminders, trigger_immediate_reminders
from kingrent.utils.guards import admin_required
from kingrent.utils.parsers import clean_str, iso, parse_bool, parse_enum, parse_float, parse_int, parse_uuid
from kingrent.utils.passwords import hash_password, validate_password

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

# -------------------------------------------------------------------
# Helpers / Constants
# -------------------------------------------------------------------
USER_NAME_MAXLEN = 120
USER_EMAIL_MAXLEN = 120
TEMPLATE_SUBJECT_MAXLEN = 255

ROLE_LABELS = {
    AppRole.ADMIN.value: "Administrator",
    AppRole.STAFF.value: "Staff",
    AppRole.READ_ONLY.value: "Read only",
}


def _commit_or_rollback(action: str) -> bool:
    try:
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s failed", action)
        return False


def _reject(message: str, status: int = 400):
    # drop half-applied changes before answering
    db.session.rollback()
    return jsonify({"error": message}), status


def _admin_count(exclude_user_id: int | None = None) -> int:
    q = User.query.filter(User.role == AppRole.ADMIN.value, User.is_active.is_(True))
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return q.count()


# -------------------------------------------------------------------
# Roles API
# GET /admin/roles
# -------------------------------------------------------------------
@admin_bp.route("/roles", methods=["GET"])
@admin_required
def get_roles():
    return (
        jsonify(
            {
                "current_role": getattr(current_user, "role", None),
                "roles": [{"key": k, "label": v} for k, v in ROLE_LABELS.items()],
            }
        ),
        200,
    )


# -------------------------------------------------------------------
# Users
# GET+POST /admin/users
# PATCH+DELETE /admin/users/<id>
# -------------------------------------------------------------------
@admin_bp.route("/users", methods=["GET"])
@admin_required
def users_list():
    q = clean_str(request.args.get("q"))

    query = User.query
    if q:
        like = f"%{q}%"
        query = query.filter(
            sa.or_(
                User.name.ilike(like),
                User.email.ilike(like),
                User.role.ilike(like),
            )
        )

    users = query.order_by(desc(User.id)).limit(200).all()
    return jsonify({"items": [user_json(u) for u in users]}), 200


@admin_bp.route("/users", methods=["POST"])
@admin_required
def create_user_api():
    data = request.get_json(silent=True) or {}

    name = clean_str(data.get("name"))
    email = clean_str(data.get("email")).lower()
    password = data.get("password") or ""
    role = clean_str(data.get("role")) or AppRole.STAFF.value

    if not name or not email or not password:
        return jsonify({"error": "name, email and password are required"}), 400

    if len(name) > USER_NAME_MAXLEN or len(email) > USER_EMAIL_MAXLEN or "@" not in email:
        return jsonify({"error": "Invalid name or email"}), 400

    if role not in ROLE_LABELS:
        return jsonify({"error": "Invalid role"}), 400

    ok, msg = validate_password(password)
    if not ok:
        return jsonify({"error": msg}), 400

    if User.query.filter(sa.func.lower(User.email) == email).first():
        return jsonify({"error": "User already exists"}), 409

    user = User(
        name=name,
        email=email,
        role=role,
        password_hash=hash_password(password),
        must_change_password=parse_bool(data.get("must_change_password", True)),
    )
    db.session.add(user)
    db.session.flush()
    audit.record(AuditEntity.USER, user.id, AuditAction.CREATE, {"email": email, "role": role})

    if not _commit_or_rollback("Create user"):
        return jsonify({"error": "Failed to create user"}), 500

    return jsonify({"message": "User created successfully", "user": user_json(user)}), 201


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@admin_required
def update_user(user_id: int):
    user = db.get_or_404(User, user_id)
    data = request.get_json(silent=True) or {}
    changes: dict = {}

    if "name" in data:
        name = clean_str(data.get("name"))
        if not name or len(name) > USER_NAME_MAXLEN:
            return _reject("Invalid name")
        user.name = name
        changes["name"] = name

    if "role" in data:
        role = clean_str(data.get("role"))
        if role not in ROLE_LABELS:
            return _reject("Invalid role")
        if user.role == AppRole.ADMIN.value and role != AppRole.ADMIN.value and _admin_count(user.id) == 0:
            return _reject("Cannot demote the last active admin")
        changes["role"] = {"from": user.role, "to": role}
        user.role = role

    if "is_active" in data:
        active = parse_bool(data.get("is_active"))
        if not active and user.id == current_user.id:
            return _reject("You cannot deactivate your own account")
        if not active and user.role == AppRole.ADMIN.value and _admin_count(user.id) == 0:
            return _reject("Cannot deactivate the last active admin")
        user.is_active = active
        changes["is_active"] = active

    if data.get("password"):
        ok, msg = validate_password(data.get("password"))
        if not ok:
            return _reject(msg)
        user.password_hash = hash_password(data.get("password"))
        user.password_changed_at = utcnow_naive()
        user.must_change_password = True
        user.failed_login_attempts = 0
        user.locked_until = None
        changes["password_reset"] = True

    if not changes:
        return _reject("Nothing to update")

    audit.record(AuditEntity.USER, user.id, AuditAction.UPDATE, changes)
    if not _commit_or_rollback("Update user"):
        return jsonify({"error": "Failed to update user"}), 500
    return jsonify({"user": user_json(user)}), 200


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@admin_required
def deactivate_user(user_id: int):
    """
    Users own audit rows, payments and chat messages: deactivate instead of deleting.
    """
    user = db.get_or_404(User, user_id)
    if user.id == current_user.id:
        return jsonify({"error": "You cannot deactivate your own account"}), 400
    if user.role == AppRole.ADMIN.value and _admin_count(user.id) == 0:
        return jsonify({"error": "Cannot deactivate the last active admin"}), 400

    user.is_active = False
    audit.record(AuditEntity.USER, user.id, AuditAction.DELETE, {"email": user.email})
    if not _commit_or_rollback("Deactivate user"):
        return jsonify({"error": "Failed to deactivate user"}), 500
    return jsonify({"success": True}), 200


# -------------------------------------------------------------------
# Name merge
# GET /admin/merge-names?type=client|supplier
# POST /admin/merge-names
# -------------------------------------------------------------------
@admin_bp.route("/merge-names", methods=["GET"])
@admin_required
def merge_names_list():
    kind = clean_str(request.args.get("type")) or "client"
    try:
        names = list_names(kind)
    except MergeError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"type": kind, "items": names}), 200


@admin_bp.route("/merge-names", methods=["POST"])
@admin_required
def merge_names_apply():
    data = request.get_json(silent=True) or {}
    kind = clean_str(data.get("type"))
    selected = data.get("selected_names")
    if not isinstance(selected, list):
        return jsonify({"error": "selected_names must be a list"}), 400

    try:
        result = merge_names(kind, data.get("canonical_name"), selected)
    except MergeError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400

    if not _commit_or_rollback("Merge names"):
        return jsonify({"error": "Failed to merge names"}), 500

    current_app.logger.info(
        "Merged %d %s name(s) into %r (%d rows)",
        len(result["merged_names"]),
        kind,
        result["canonical_name"],
        sum(result["rows_updated"].values()),
    )
    return jsonify(result), 200


# -------------------------------------------------------------------
# Duplicate customers
# GET /admin/duplicates
# -------------------------------------------------------------------
@admin_bp.route("/duplicates", methods=["GET"])
@admin_required
def duplicates():
    threshold = parse_float(request.args.get("threshold"))
    if threshold is None:
        threshold = SIMILARITY_THRESHOLD
    if not 0 < threshold <= 1:
        return jsonify({"error": "threshold must be in (0, 1]"}), 400

    groups = detect_duplicates(threshold)
    return jsonify({"threshold": threshold, "groups": [g.as_dict() for g in groups]}), 200


# -------------------------------------------------------------------
# Payment reminders
# POST /admin/reminders/run
# POST /admin/reminders/immediate
# -------------------------------------------------------------------
@admin_bp.route("/reminders/run", methods=["POST"])
@admin_required
def reminders_run():
    data = request.get_json(silent=True) or {}
    booking_id = None
    if data.get("booking_id"):
        booking_id = parse_uuid(data.get("booking_id"))
        if booking_id is None:
            return jsonify({"error": "booking_id is invalid"}), 400

    try:
        result = run_payment_reminders(booking_id=booking_id)
    except MailerNotConfigured as exc:
        current_app.logger.error("Reminder run aborted: %s", exc)
        return jsonify({"success": False, "error": "Email webhook not configured"}), 500

    return jsonify(result), 200


@admin_bp.route("/reminders/immediate", methods=["POST"])
@admin_required
def reminders_immediate():
    data = request.get_json(silent=True) or {}
    booking_id = parse_uuid(data.get("booking_id"))
    if booking_id is None:
        return jsonify({"error": "booking_id is required"}), 400

    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.deleted_at is not None:
        return jsonify({"error": "Booking not found"}), 404

    try:
        result = trigger_immediate_reminders(booking)
    except MailerNotConfigured as exc:
        current_app.logger.error("Immediate reminders aborted: %s", exc)
        return jsonify({"success": False, "error": "Email webhook not configured"}), 500

    return jsonify(result), 200


# -------------------------------------------------------------------
# Email templates
# GET+PUT /admin/email-templates/<template_type>
# -------------------------------------------------------------------
def _template_json(template_type: str, tpl: EmailTemplate | None) -> dict:
    if tpl is None:
        return {
            "template_type": template_type,
            "subject_line": DEFAULT_SUBJECTS[template_type],
            "html_content": None,
            "is_active": False,
            "is_default": True,
        }
    return {
        "template_type": tpl.template_type,
        "subject_line": tpl.subject_line,
        "html_content": tpl.html_content,
        "is_active": bool(tpl.is_active),
        "is_default": False,
        "updated_at": iso(tpl.updated_at),
    }


@admin_bp.route("/email-templates", methods=["GET"])
@admin_required
def email_templates_list():
    out = []
    for template_type in DEFAULT_BODIES:
        tpl = EmailTemplate.query.filter_by(template_type=template_type).first()
        out.append(_template_json(template_type, tpl))
    return jsonify({"items": out}), 200


@admin_bp.route("/email-templates/<template_type>", methods=["GET"])
@admin_required
def email_template_get(template_type: str):
    if template_type not in DEFAULT_BODIES:
        return jsonify({"error": "Unknown template type"}), 404
    tpl = EmailTemplate.query.filter_by(template_type=template_type).first()
    return jsonify(_template_json(template_type, tpl)), 200


@admin_bp.route("/email-templates/<template_type>", methods=["PUT"])
@admin_required
def email_template_put(template_type: str):
    if template_type not in DEFAULT_BODIES:
        return jsonify({"error": "Unknown template type"}), 404

    data = request.get_json(silent=True) or {}
    subject = clean_str(data.get("subject_line"))
    html = data.get("html_content") or ""

    if not subject or not html.strip():
        return jsonify({"error": "subject_line and html_content are required"}), 400
    if len(subject) > TEMPLATE_SUBJECT_MAXLEN:
        return jsonify({"error": "subject_line is too long"}), 400

    tpl = EmailTemplate.query.filter_by(template_type=template_type).first()
    if tpl is None:
        tpl = EmailTemplate(template_type=template_type, created_by_user_id=current_user.id)
        db.session.add(tpl)

    tpl.subject_line = subject
    tpl.html_content = html
    tpl.is_active = parse_bool(data.get("is_active", True))

    if not _commit_or_rollback("Save email template"):
        return jsonify({"error": "Failed to save template"}), 500
    return jsonify(_template_json(template_type, tpl)), 200


@admin_bp.route("/email-templates/<template_type>/preview", methods=["GET"])
@admin_required
def email_template_preview(template_type: str):
    """Default body rendered with sample values, for the template editor."""
    if template_type not in DEFAULT_BODIES:
        return jsonify({"error": "Unknown template type"}), 404

    sample = Booking(
        reference_code="KR-SAMPLE",
        client_name="Jane Doe",
        car_model="Range Rover Sport",
        delivery_datetime=utcnow_naive(),
        collection_datetime=utcnow_naive(),
        currency="EUR",
        amount_total=1500.0,
        amount_paid=500.0,
        security_deposit_amount=2000.0,
        balance_due_date=utcnow_naive(),
    )
    html = render_template(
        DEFAULT_BODIES[template_type],
        booking=sample,
        amount="1,000.00",
        portal_url="#",
        days_until_delivery=5,
        balance_due_date="-",
        company=company_context(),
    )
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}


# -------------------------------------------------------------------
# Company settings
# GET+PUT /admin/settings
# -------------------------------------------------------------------
SETTINGS_FIELDS = {
    "company_name": 160,
    "company_email": 120,
    "company_phone": 40,
    "company_address": 255,
    "logo_url": 500,
}


def _settings_json(s: AppSettings | None) -> dict:
    out = {"company": company_context()}
    if s is not None:
        out["default_vat_rate"] = s.default_vat_rate
        out["default_currency"] = s.default_currency
    else:
        out["default_vat_rate"] = 0.0
        out["default_currency"] = out["company"]["currency"]
    return out


@admin_bp.route("/settings", methods=["GET"])
@admin_required
def settings_get():
    return jsonify(_settings_json(AppSettings.current())), 200


@admin_bp.route("/settings", methods=["PUT"])
@admin_required
def settings_put():
    data = request.get_json(silent=True) or {}
    s = AppSettings.current()
    if s is None:
        s = AppSettings()
        db.session.add(s)

    for field, maxlen in SETTINGS_FIELDS.items():
        if field not in data:
            continue
        value = clean_str(data.get(field))
        if len(value) > maxlen:
            return _reject(f"{field} is too long")
        if field == "company_name" and not value:
            return _reject("company_name cannot be empty")
        setattr(s, field, value or None)

    if "default_vat_rate" in data:
        rate = parse_float(data.get("default_vat_rate"))
        if rate is None or rate < 0 or rate > 100:
            return _reject("default_vat_rate must be between 0 and 100")
        s.default_vat_rate = rate

    if "default_currency" in data:
        cur = clean_str(data.get("default_currency")).upper()
        if len(cur) != 3 or not cur.isalpha():
            return _reject("default_currency must be a 3-letter code")
        s.default_currency = cur

    if not _commit_or_rollback("Save settings"):
        return jsonify({"error": "Failed to save settings"}), 500
    return jsonify(_settings_json(s)), 200


# -------------------------------------------------------------------
# Audit log
# GET /admin/audit-logs?entity=&entity_id=&action=
# -------------------------------------------------------------------
@admin_bp.route("/audit-logs", methods=["GET"])
@admin_required
def audit_logs():
    q = AuditLog.query

    entity = parse_enum(AuditEntity, request.args.get("entity"))
    if entity:
        q = q.filter(AuditLog.entity == entity)

    entity_id = clean_str(request.args.get("entity_id"))
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    action = parse_enum(AuditAction, request.args.get("action"))
    if action:
        q = q.filter(AuditLog.action == action)

    limit = min(max(parse_int(request.args.get("limit")) or 100, 1), 500)
    rows = q.order_by(desc(AuditLog.created_at)).limit(limit).all()

    return (
        jsonify(
            {
                "items": [
                    {
                        "id": str(r.id),
                        "user_id": r.user_id,
                        "entity": r.entity.value,
                        "entity_id": r.entity_id,
                        "action": r.action.value,
                        "payload": r.payload_snapshot,
                        "created_at": iso(r.created_at),
                    }
                    for r in rows
                ]
            }
        ),
        200,
    )
