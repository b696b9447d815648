# kingrent/services/mailer.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import requests
from flask import current_app, render_template

from kingrent.config.company import company_context
from kingrent.models import Booking, EmailTemplate

TEMPLATE_BALANCE_REMINDER = "balance_reminder"
TEMPLATE_DEPOSIT_REMINDER = "security_deposit_reminder"

DEFAULT_SUBJECTS = {
    TEMPLATE_BALANCE_REMINDER: "Balance Payment Reminder - {ref}",
    TEMPLATE_DEPOSIT_REMINDER: "Security Deposit Authorization Required - {ref}",
}

DEFAULT_BODIES = {
    TEMPLATE_BALANCE_REMINDER: "emails/balance_reminder.html",
    TEMPLATE_DEPOSIT_REMINDER: "emails/security_deposit_reminder.html",
}


class MailerNotConfigured(RuntimeError):
    pass


class WebhookDeliveryError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# =========================================================
# Helpers
# =========================================================
def _fmt_long_date(dt) -> str:
    # "7 March 2026"
    if not dt:
        return ""
    return f"{dt.day} {dt.strftime('%B %Y')}"


def portal_url(booking: Booking) -> str:
    domain = (current_app.config.get("APP_DOMAIN") or "").rstrip("/")
    tok = booking.latest_access_token()
    if tok:
        return f"{domain}/booking-form/{tok.token}"
    return domain


def fill_placeholders(text: str, values: Mapping[str, Any]) -> str:
    """Replaces every {{key}} occurrence; unknown placeholders are left in place."""
    out = text or ""
    for key, value in values.items():
        out = out.replace("{{" + key + "}}", "" if value is None else str(value))
    return out


def active_template(template_type: str) -> EmailTemplate | None:
    return EmailTemplate.query.filter_by(template_type=template_type, is_active=True).first()


# =========================================================
# Reminder emails
# =========================================================
def render_reminder_email(
    template_type: str,
    booking: Booking,
    *,
    amount: float,
    days_until_delivery: int,
) -> tuple[str, str]:
    """
    Returns (subject, html) for a balance or deposit reminder.

    An active EmailTemplate row wins; otherwise the packaged Jinja template is used.
    """
    if template_type not in DEFAULT_SUBJECTS:
        raise ValueError(f"Unknown email template type: {template_type}")

    company = company_context()
    url = portal_url(booking)
    amount_key = "balance_amount" if template_type == TEMPLATE_BALANCE_REMINDER else "deposit_amount"

    custom = active_template(template_type)
    if custom:
        subject = fill_placeholders(custom.subject_line, {"reference_code": booking.reference_code})
        html = fill_placeholders(
            custom.html_content,
            {
                "client_name": booking.client_name,
                "reference_code": booking.reference_code,
                amount_key: f"{amount:.2f}",
                "currency": booking.currency,
                "portalUrl": url,
                "company_name": company["name"],
                "logoUrl": company["logo_url"],
                "days_until_delivery": days_until_delivery,
                "balance_due_date": _fmt_long_date(booking.balance_due_date),
            },
        )
        return subject, html

    subject = DEFAULT_SUBJECTS[template_type].format(ref=booking.reference_code)
    html = render_template(
        DEFAULT_BODIES[template_type],
        booking=booking,
        amount=f"{amount:.2f}",
        portal_url=url,
        days_until_delivery=days_until_delivery,
        balance_due_date=_fmt_long_date(booking.balance_due_date),
        company=company,
    )
    return subject, html


# =========================================================
# Webhook dispatch
# =========================================================
def post_email_webhook(payload: dict) -> None:
    """
    Hands an email to the automation webhook. Raises on missing config or non-2xx.
    """
    url = current_app.config.get("PAYMENT_REMINDER_WEBHOOK_URL")
    if not url:
        raise MailerNotConfigured("PAYMENT_REMINDER_WEBHOOK_URL is not configured")

    timeout = current_app.config.get("WEBHOOK_TIMEOUT_SECONDS", 10)
    try:
        r = requests.post(url, json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise WebhookDeliveryError(f"Webhook request failed: {exc}") from exc

    if not r.ok:
        raise WebhookDeliveryError(
            f"Webhook failed: {r.status_code} {r.text[:200]}",
            status_code=r.status_code,
        )


def webhook_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
