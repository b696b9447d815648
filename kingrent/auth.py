# kingrent/auth.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_user, logout_user, current_user, login_required

from .models import User, utcnow_naive
from .extensions import db, limiter, login_manager
from .utils.parsers import clean_str
from .utils.passwords import (
    MAX_FAILED_LOGINS,
    hash_password,
    is_locked_out,
    lockout_until,
    validate_password,
    verify_password,
)

auth = Blueprint("auth", __name__)


# =========================================================
# Flask-Login hooks
# =========================================================
@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


# =========================================================
# Helpers
# =========================================================
def user_json(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "is_active": bool(user.is_active),
        "must_change_password": bool(user.must_change_password),
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


def _commit_or_rollback(action: str) -> bool:
    try:
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s failed", action)
        return False


# =========================================================
# Login / Logout
# =========================================================
@auth.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = request.get_json(silent=True) or request.form
    email = clean_str(data.get("email")).lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter(db.func.lower(User.email) == email).first()
    if not user:
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "Account is disabled."}), 403

    if is_locked_out(user.locked_until):
        return jsonify({"error": "Account temporarily locked. Try again later."}), 423

    if not verify_password(user.password_hash, password):
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= MAX_FAILED_LOGINS:
            user.locked_until = lockout_until()
            user.failed_login_attempts = 0
            current_app.logger.warning("Locked account %s after repeated failures", user.email)
        _commit_or_rollback("Record failed login")
        return jsonify({"error": "Invalid email or password."}), 401

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = utcnow_naive()
    if not _commit_or_rollback("Login"):
        return jsonify({"error": "Login failed. Please try again."}), 500

    login_user(user, remember=bool(data.get("remember")))
    return jsonify({"user": user_json(user)}), 200


@auth.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True}), 200


@auth.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": user_json(current_user)}), 200


# =========================================================
# Change Password (Logged-in users)
# =========================================================
@auth.route("/change-password", methods=["POST"])
@login_required
def change_password():
    data = request.get_json(silent=True) or {}
    current_password = data.get("current_password") or ""
    new_password = data.get("new_password") or ""

    if not current_password or not new_password:
        return jsonify({"error": "current_password and new_password are required."}), 400

    if not verify_password(current_user.password_hash, current_password):
        return jsonify({"error": "Current password is incorrect."}), 400

    ok, msg = validate_password(new_password)
    if not ok:
        return jsonify({"error": msg}), 400

    if verify_password(current_user.password_hash, new_password):
        return jsonify({"error": "New password must be different from the current password."}), 400

    current_user.password_hash = hash_password(new_password)
    current_user.password_changed_at = utcnow_naive()
    current_user.must_change_password = False

    if not _commit_or_rollback("Change password"):
        return jsonify({"error": "Failed to update password. Please try again."}), 500

    return jsonify({"success": True}), 200
