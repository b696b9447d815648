# kingrent/services/chat.py
from __future__ import annotations

import re
import uuid
from datetime import datetime

import sqlalchemy as sa

from kingrent.extensions import db
from kingrent.models import (
    Booking,
    ChatEntityType,
    ChatMessage,
    ChatNotification,
    ClientInvoice,
    Fine,
    SupplierInvoice,
    User,
    utcnow_naive,
)

# @[Display Name](user_id)
MENTION_RE = re.compile(r"@\[([^\]]+)\]\(([^)]+)\)")

MAX_MESSAGE_LENGTH = 5000

_ENTITY_MODELS = {
    ChatEntityType.BOOKING: Booking,
    ChatEntityType.FINE: Fine,
    ChatEntityType.SUPPLIER_INVOICE: SupplierInvoice,
    ChatEntityType.CLIENT_INVOICE: ClientInvoice,
}


class ChatError(ValueError):
    pass


class ChatPermissionError(ChatError):
    pass


def extract_mentions(text: str) -> list[int]:
    """User ids mentioned in text, in order of first appearance, deduplicated."""
    ids: list[int] = []
    for _name, raw_id in MENTION_RE.findall(text or ""):
        try:
            uid = int(raw_id.strip())
        except ValueError:
            continue
        if uid not in ids:
            ids.append(uid)
    return ids


def thread_key(entity_type: ChatEntityType, entity_id) -> str:
    if entity_id is None:
        return entity_type.value
    return f"{entity_type.value}:{entity_id}"


def _resolve_thread(entity_type: ChatEntityType, entity_id: uuid.UUID | None) -> None:
    if entity_type == ChatEntityType.GENERAL:
        if entity_id is not None:
            raise ChatError("General chat does not take an entity id")
        return

    if entity_id is None:
        raise ChatError(f"{entity_type.value} chat requires an entity id")

    model = _ENTITY_MODELS[entity_type]
    if db.session.get(model, entity_id) is None:
        raise ChatError(f"{entity_type.value} {entity_id} not found")


# =========================================================
# Messages
# =========================================================
def post_message(
    author: User,
    entity_type: ChatEntityType,
    entity_id: uuid.UUID | None,
    text: str,
    parent_message_id: uuid.UUID | None = None,
) -> ChatMessage:
    body = (text or "").strip()
    if not body:
        raise ChatError("Message cannot be empty")
    if len(body) > MAX_MESSAGE_LENGTH:
        raise ChatError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters")

    _resolve_thread(entity_type, entity_id)

    if parent_message_id is not None:
        parent = db.session.get(ChatMessage, parent_message_id)
        if (
            parent is None
            or parent.deleted_at is not None
            or parent.entity_type != entity_type
            or parent.entity_id != entity_id
        ):
            raise ChatError("Reply target is not a message in this thread")

    mentioned = extract_mentions(body)
    known = set()
    if mentioned:
        known = {
            uid
            for (uid,) in db.session.query(User.id).filter(
                User.id.in_(mentioned), User.is_active.is_(True)
            )
        }
    mentioned = [uid for uid in mentioned if uid in known]

    msg = ChatMessage(
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=author.id,
        message=body,
        mentioned_users=mentioned,
        parent_message_id=parent_message_id,
        source="webapp",
    )
    db.session.add(msg)
    db.session.flush()

    for uid in mentioned:
        if uid == author.id:
            continue
        db.session.add(
            ChatNotification(
                user_id=uid,
                message_id=msg.id,
                notification_type="mention",
                entity_type=entity_type,
                entity_id=entity_id,
                read=False,
            )
        )

    return msg


def list_messages(
    entity_type: ChatEntityType,
    entity_id: uuid.UUID | None,
    since: datetime | None = None,
    limit: int = 200,
) -> list[ChatMessage]:
    q = ChatMessage.query.filter(
        ChatMessage.entity_type == entity_type,
        ChatMessage.deleted_at.is_(None),
    )
    if entity_id is None:
        q = q.filter(ChatMessage.entity_id.is_(None))
    else:
        q = q.filter(ChatMessage.entity_id == entity_id)
    if since is not None:
        q = q.filter(ChatMessage.created_at > since)
    return q.order_by(ChatMessage.created_at.asc()).limit(limit).all()


def delete_message(user: User, message_id: uuid.UUID) -> ChatMessage:
    msg = db.session.get(ChatMessage, message_id)
    if msg is None or msg.deleted_at is not None:
        raise ChatError("Message not found")
    if msg.user_id != user.id and not user.is_admin:
        raise ChatPermissionError("Only the author or an admin can delete this message")
    msg.deleted_at = utcnow_naive()
    return msg


# =========================================================
# Notifications
# =========================================================
def notifications_for(user: User, unread_only: bool = False, limit: int = 50) -> list[ChatNotification]:
    q = ChatNotification.query.filter(ChatNotification.user_id == user.id)
    if unread_only:
        q = q.filter(ChatNotification.read.is_(False))
    return q.order_by(ChatNotification.created_at.desc()).limit(limit).all()


def unread_counts(user: User) -> dict[str, int]:
    rows = (
        db.session.query(
            ChatNotification.entity_type,
            ChatNotification.entity_id,
            sa.func.count(),
        )
        .join(ChatMessage, ChatMessage.id == ChatNotification.message_id)
        .filter(
            ChatNotification.user_id == user.id,
            ChatNotification.read.is_(False),
            ChatMessage.deleted_at.is_(None),
        )
        .group_by(ChatNotification.entity_type, ChatNotification.entity_id)
        .all()
    )
    return {thread_key(et, eid): n for et, eid, n in rows}


def mark_read(
    user: User,
    entity_type: ChatEntityType | None = None,
    entity_id: uuid.UUID | None = None,
) -> int:
    """Marks the user's notifications read, optionally for one thread only."""
    q = ChatNotification.query.filter(
        ChatNotification.user_id == user.id,
        ChatNotification.read.is_(False),
    )
    if entity_type is not None:
        q = q.filter(ChatNotification.entity_type == entity_type)
        if entity_id is None:
            q = q.filter(ChatNotification.entity_id.is_(None))
        else:
            q = q.filter(ChatNotification.entity_id == entity_id)
    return q.update({ChatNotification.read: True}, synchronize_session=False)


def purge_thread(entity_type: ChatEntityType, entity_id: uuid.UUID) -> int:
    """Hard-deletes an entity's thread and its notifications. Caller commits."""
    in_thread = sa.and_(ChatMessage.entity_type == entity_type, ChatMessage.entity_id == entity_id)
    ChatNotification.query.filter(
        ChatNotification.message_id.in_(sa.select(ChatMessage.id).where(in_thread))
    ).delete(synchronize_session=False)
    return ChatMessage.query.filter(in_thread).delete(synchronize_session=False)
