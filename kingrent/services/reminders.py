# kingrent/services/reminders.py
"""
Balance and security-deposit reminder emails.

Scheduled path (periodic job):
  - balance: first reminder inside 7 days, resend inside 3 days after 4 quiet days,
    last resend inside 1 day after 2 quiet days. Bookings on a down-payment plan
    with a balance due date follow the due date instead.
  - deposit: first reminder inside 3 days, resend inside 1 day after 2 quiet days.
Immediate path (bookings created shortly before delivery):
  - ignores the day windows, at most one send per 2 hours.

Each booking is processed independently. A failure is logged and reported in the
results; the remaining bookings are still processed.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from kingrent.extensions import db
from kingrent.models import (
    AuditAction,
    AuditEntity,
    Booking,
    BookingStatus,
    BOOKING_TYPE_AGENCY,
    PAYMENT_OPTION_DOWN_PAYMENT,
    utcnow_naive,
)
from kingrent.services import audit
from kingrent.services.mailer import (
    TEMPLATE_BALANCE_REMINDER,
    TEMPLATE_DEPOSIT_REMINDER,
    MailerNotConfigured,
    post_email_webhook,
    render_reminder_email,
    webhook_timestamp,
)

TRIGGER_SCHEDULED = "scheduled"
TRIGGER_IMMEDIATE = "immediate"

REMINDER_BALANCE = "balance_payment"
REMINDER_DEPOSIT = "security_deposit"

IMMEDIATE_WINDOW_HOURS = 48
IMMEDIATE_MIN_GAP = timedelta(hours=2)


@dataclass(frozen=True)
class ReminderDecision:
    send: bool
    reminder_type: str | None = None

    def __bool__(self) -> bool:
        return self.send


_SKIP = ReminderDecision(False)


# =========================================================
# Time helpers
# =========================================================
def days_until(target: datetime, now: datetime) -> int:
    """Whole days until target, rounded up (a delivery in 30h is 2 days away)."""
    return math.ceil((target - now).total_seconds() / 86400)


def _older_than(sent_at: datetime | None, now: datetime, gap: timedelta) -> bool:
    return sent_at is None or (now - sent_at) > gap


# =========================================================
# Eligibility
# =========================================================
def should_send_balance_reminder(
    booking: Booking,
    now: datetime,
    *,
    immediate: bool = False,
) -> ReminderDecision:
    if booking.balance_amount <= 0:
        return _SKIP

    last = booking.balance_payment_reminder_sent_at

    if immediate:
        if _older_than(last, now, IMMEDIATE_MIN_GAP):
            return ReminderDecision(True, "balance_payment_immediate")
        return _SKIP

    if booking.balance_due_date and booking.payment_amount_option == PAYMENT_OPTION_DOWN_PAYMENT:
        days_due = days_until(booking.balance_due_date, now)
        if 0 <= days_due <= 1:
            if _older_than(last, now, timedelta(hours=12)):
                return ReminderDecision(True, REMINDER_BALANCE)
            return _SKIP
        if 1 < days_due <= 3 and last is None:
            return ReminderDecision(True, REMINDER_BALANCE)
        return _SKIP

    days = days_until(booking.delivery_datetime, now)

    if days <= 7 and last is None:
        return ReminderDecision(True, REMINDER_BALANCE)
    if days <= 3 and last is not None and (now - last) > timedelta(days=4):
        return ReminderDecision(True, REMINDER_BALANCE)
    if days <= 1 and last is not None and (now - last) > timedelta(days=2):
        return ReminderDecision(True, REMINDER_BALANCE)
    return _SKIP


def should_send_deposit_reminder(
    booking: Booking,
    now: datetime,
    *,
    immediate: bool = False,
) -> ReminderDecision:
    if float(booking.security_deposit_amount or 0) <= 0:
        return _SKIP
    if booking.security_deposit_authorized_at is not None:
        return _SKIP

    last = booking.security_deposit_reminder_sent_at

    if immediate:
        if _older_than(last, now, IMMEDIATE_MIN_GAP):
            return ReminderDecision(True, "security_deposit_immediate")
        return _SKIP

    days = days_until(booking.delivery_datetime, now)

    if days <= 3 and last is None:
        return ReminderDecision(True, REMINDER_DEPOSIT)
    if days <= 1 and last is not None and (now - last) > timedelta(days=2):
        return ReminderDecision(True, REMINDER_DEPOSIT)
    return _SKIP


# =========================================================
# Candidates
# =========================================================
def candidate_bookings(now: datetime, booking_id=None) -> list[Booking]:
    q = Booking.query.filter(
        Booking.status == BookingStatus.CONFIRMED,
        Booking.booking_type != BOOKING_TYPE_AGENCY,
        Booking.imported_from_email.is_(False),
        Booking.delivery_datetime > now,
        Booking.client_email.isnot(None),
        Booking.deleted_at.is_(None),
    )
    if booking_id is not None:
        q = q.filter(Booking.id == booking_id)
    return q.order_by(Booking.delivery_datetime.asc()).all()


# =========================================================
# Dispatch
# =========================================================
def _base_payload(booking: Booking, subject: str, html: str, days: int, reminder_type: str) -> dict:
    return {
        "to_email": booking.client_email,
        "to_name": booking.client_name,
        "email_subject": subject,
        "email_html": html,
        "booking_reference": booking.reference_code,
        "booking_car_model": booking.car_model,
        "booking_delivery_datetime": booking.delivery_datetime.isoformat(),
        "days_until_delivery": days,
        "reminder_type": reminder_type,
        "timestamp": webhook_timestamp(),
    }


def send_balance_reminder(booking: Booking, decision: ReminderDecision, days: int, now: datetime) -> None:
    amount = round(booking.balance_amount, 2)
    subject, html = render_reminder_email(
        TEMPLATE_BALANCE_REMINDER,
        booking,
        amount=amount,
        days_until_delivery=days,
    )
    payload = _base_payload(booking, subject, html, days, decision.reminder_type)
    payload["balance_amount"] = amount

    post_email_webhook(payload)

    booking.balance_payment_reminder_sent_at = now
    audit.record(
        AuditEntity.BOOKING,
        booking.id,
        AuditAction.REMINDER_SENT,
        {
            "reminder_type": decision.reminder_type,
            "balance_amount": amount,
            "days_until_delivery": days,
            "sent_to": booking.client_email,
        },
    )


def send_deposit_reminder(booking: Booking, decision: ReminderDecision, days: int, now: datetime) -> None:
    amount = round(float(booking.security_deposit_amount or 0), 2)
    subject, html = render_reminder_email(
        TEMPLATE_DEPOSIT_REMINDER,
        booking,
        amount=amount,
        days_until_delivery=days,
    )
    payload = _base_payload(booking, subject, html, days, decision.reminder_type)
    payload["security_deposit_amount"] = amount

    post_email_webhook(payload)

    booking.security_deposit_reminder_sent_at = now
    audit.record(
        AuditEntity.BOOKING,
        booking.id,
        AuditAction.REMINDER_SENT,
        {
            "reminder_type": decision.reminder_type,
            "security_deposit_amount": amount,
            "days_until_delivery": days,
            "sent_to": booking.client_email,
        },
    )


_CHECKS = (
    (REMINDER_BALANCE, should_send_balance_reminder, send_balance_reminder),
    (REMINDER_DEPOSIT, should_send_deposit_reminder, send_deposit_reminder),
)


def run_payment_reminders(
    booking_id=None,
    trigger: str = TRIGGER_SCHEDULED,
    now: datetime | None = None,
) -> dict:
    """
    Sends every due reminder. Commits after each successful send so that a later
    failure cannot roll back the "sent_at" stamp of an email that already went out.
    """
    if not current_app.config.get("PAYMENT_REMINDER_WEBHOOK_URL"):
        raise MailerNotConfigured("PAYMENT_REMINDER_WEBHOOK_URL is not configured")

    now = now or utcnow_naive()
    immediate = trigger == TRIGGER_IMMEDIATE
    bookings = candidate_bookings(now, booking_id)

    current_app.logger.info(
        "Processing payment reminders (trigger=%s, candidates=%d)", trigger, len(bookings)
    )

    sent = 0
    results: list[dict] = []

    for booking in bookings:
        days = days_until(booking.delivery_datetime, now)

        for kind, should_send, send in _CHECKS:
            decision = should_send(booking, now, immediate=immediate)
            if not decision:
                continue

            try:
                send(booking, decision, days, now)
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                current_app.logger.exception(
                    "Failed to send %s reminder for booking %s", kind, booking.reference_code
                )
                results.append(
                    {"booking_id": str(booking.id), "type": kind, "sent": False, "error": str(exc)}
                )
                continue

            sent += 1
            results.append({"booking_id": str(booking.id), "type": kind, "sent": True})
            current_app.logger.info(
                "Sent %s reminder for booking %s", decision.reminder_type, booking.reference_code
            )

    return {"success": True, "reminders_sent": sent, "results": results}


def hours_until(target: datetime, now: datetime) -> float:
    return (target - now).total_seconds() / 3600


def trigger_immediate_reminders(booking: Booking, now: datetime | None = None) -> dict:
    """
    Last-minute bookings: send reminders right away when delivery is within 48h.
    """
    now = now or utcnow_naive()
    hrs = hours_until(booking.delivery_datetime, now)

    if hrs > IMMEDIATE_WINDOW_HOURS:
        current_app.logger.info(
            "Booking %s delivers in %.2fh; skipping immediate reminders", booking.reference_code, hrs
        )
        return {
            "success": True,
            "message": "No immediate reminders needed",
            "hours_until_delivery": round(hrs, 2),
        }

    result = run_payment_reminders(booking_id=booking.id, trigger=TRIGGER_IMMEDIATE, now=now)

    audit.record(
        AuditEntity.BOOKING,
        booking.id,
        AuditAction.IMMEDIATE_REMINDERS_TRIGGERED,
        {
            "hours_until_delivery": round(hrs, 2),
            "reminders_sent": result["reminders_sent"],
            "reminder_sent_at": now.isoformat(),
        },
    )
    db.session.commit()

    failed = sum(1 for r in result["results"] if not r["sent"])
    if failed and not result["reminders_sent"]:
        message = "Immediate reminders failed"
    elif failed:
        message = f"Immediate reminders partially sent ({failed} failed)"
    elif result["reminders_sent"]:
        message = "Immediate reminders sent"
    else:
        message = "No reminders due"

    return {
        "success": failed == 0,
        "message": message,
        "booking_reference": booking.reference_code,
        "hours_until_delivery": round(hrs, 2),
        "reminders_sent": result["reminders_sent"],
        "results": result["results"],
    }
