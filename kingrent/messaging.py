# kingrent/messaging.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from kingrent.extensions import db
from kingrent.models import ChatEntityType, ChatMessage, ChatNotification
from kingrent.services.chat import (
    ChatError,
    ChatPermissionError,
    delete_message,
    list_messages,
    mark_read,
    notifications_for,
    post_message,
    thread_key,
    unread_counts,
)
from kingrent.utils.parsers import iso, parse_bool, parse_datetime, parse_enum, parse_int, parse_uuid

chat_bp = Blueprint("chat", __name__, url_prefix="/chat")


# =========================================================
# Helpers
# =========================================================
def _error(exc: ChatError):
    status = 403 if isinstance(exc, ChatPermissionError) else 400
    return jsonify({"error": str(exc)}), status


def _entity_type_or_400(raw: str):
    et = parse_enum(ChatEntityType, raw)
    if et is None:
        return None, (
            jsonify({"error": "entity_type must be one of: " + ", ".join(e.value for e in ChatEntityType)}),
            400,
        )
    return et, None


def message_json(m: ChatMessage) -> dict:
    return {
        "id": str(m.id),
        "entity_type": m.entity_type.value,
        "entity_id": str(m.entity_id) if m.entity_id else None,
        "user_id": m.user_id,
        "user_name": m.user.name if m.user else None,
        "message": m.message,
        "mentioned_users": list(m.mentioned_users or []),
        "parent_message_id": str(m.parent_message_id) if m.parent_message_id else None,
        "source": m.source,
        "created_at": iso(m.created_at),
    }


def notification_json(n: ChatNotification) -> dict:
    return {
        "id": str(n.id),
        "message_id": str(n.message_id),
        "notification_type": n.notification_type,
        "entity_type": n.entity_type.value,
        "entity_id": str(n.entity_id) if n.entity_id else None,
        "thread": thread_key(n.entity_type, n.entity_id),
        "read": bool(n.read),
        "created_at": iso(n.created_at),
        "message": message_json(n.message) if n.message else None,
    }


def _thread_get(entity_type, entity_id):
    since = None
    if request.args.get("since"):
        since = parse_datetime(request.args.get("since"))
        if since is None:
            return jsonify({"error": "since must be an ISO-8601 datetime"}), 400
    limit = min(max(parse_int(request.args.get("limit")) or 200, 1), 500)

    msgs = list_messages(entity_type, entity_id, since=since, limit=limit)
    return jsonify({"thread": thread_key(entity_type, entity_id), "items": [message_json(m) for m in msgs]}), 200


def _thread_post(entity_type, entity_id):
    data = request.get_json(silent=True) or {}

    parent_id = None
    if data.get("parent_message_id"):
        parent_id = parse_uuid(data.get("parent_message_id"))
        if parent_id is None:
            return jsonify({"error": "parent_message_id is invalid"}), 400

    try:
        msg = post_message(current_user, entity_type, entity_id, data.get("message"), parent_id)
        db.session.commit()
    except ChatError as exc:
        db.session.rollback()
        return _error(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Post chat message failed")
        return jsonify({"error": "Failed to post message"}), 500

    return jsonify({"message": message_json(msg)}), 201


# =========================================================
# Threads
# /chat/general/messages
# /chat/<entity_type>/<entity_id>/messages
# =========================================================
@chat_bp.route("/<entity_type>/messages", methods=["GET"])
@login_required
def thread_messages_general(entity_type):
    et, err = _entity_type_or_400(entity_type)
    if err:
        return err
    try:
        return _thread_get(et, None)
    except ChatError as exc:
        return _error(exc)


@chat_bp.route("/<entity_type>/messages", methods=["POST"])
@login_required
def post_general(entity_type):
    et, err = _entity_type_or_400(entity_type)
    if err:
        return err
    return _thread_post(et, None)


@chat_bp.route("/<entity_type>/<uuid:entity_id>/messages", methods=["GET"])
@login_required
def thread_messages(entity_type, entity_id):
    et, err = _entity_type_or_400(entity_type)
    if err:
        return err
    return _thread_get(et, entity_id)


@chat_bp.route("/<entity_type>/<uuid:entity_id>/messages", methods=["POST"])
@login_required
def post_to_thread(entity_type, entity_id):
    et, err = _entity_type_or_400(entity_type)
    if err:
        return err
    return _thread_post(et, entity_id)


@chat_bp.route("/messages/<uuid:message_id>", methods=["DELETE"])
@login_required
def remove_message(message_id):
    try:
        delete_message(current_user, message_id)
        db.session.commit()
    except ChatError as exc:
        db.session.rollback()
        if str(exc) == "Message not found":
            return jsonify({"error": str(exc)}), 404
        return _error(exc)
    return jsonify({"success": True}), 200


# =========================================================
# Notifications
# =========================================================
@chat_bp.route("/notifications", methods=["GET"])
@login_required
def notifications():
    unread_only = parse_bool(request.args.get("unread"))
    limit = min(max(parse_int(request.args.get("limit")) or 50, 1), 200)
    rows = notifications_for(current_user, unread_only=unread_only, limit=limit)
    return jsonify({"items": [notification_json(n) for n in rows]}), 200


@chat_bp.route("/unread-counts", methods=["GET"])
@login_required
def unread():
    counts = unread_counts(current_user)
    return jsonify({"total": sum(counts.values()), "threads": counts}), 200


@chat_bp.route("/mark-read", methods=["POST"])
@login_required
def mark_notifications_read():
    data = request.get_json(silent=True) or {}

    entity_type = None
    entity_id = None
    if data.get("entity_type"):
        entity_type, err = _entity_type_or_400(data.get("entity_type"))
        if err:
            return err
        if data.get("entity_id"):
            entity_id = parse_uuid(data.get("entity_id"))
            if entity_id is None:
                return jsonify({"error": "entity_id is invalid"}), 400

    updated = mark_read(current_user, entity_type, entity_id)
    db.session.commit()
    return jsonify({"success": True, "updated": updated}), 200
