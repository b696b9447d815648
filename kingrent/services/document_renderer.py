# kingrent/services/document_renderer.py
from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from flask import current_app, render_template
from weasyprint import HTML

from kingrent.config.company import company_context
from kingrent.utils.parsers import safe_enum_value

# Office timezone for dates printed on documents
OFFICE_TZ = ZoneInfo("Europe/Zurich")

PAYMENT_METHOD_LABELS = {
    "stripe": "Card (Stripe)",
    "wire": "Bank transfer",
    "pos": "Card terminal",
    "other": "Other",
}

PAYMENT_TYPE_LABELS = {
    "deposit": "Down payment",
    "balance": "Balance",
    "full": "Full payment",
}


def _now_local() -> datetime:
    return datetime.now(OFFICE_TZ)


def _receipt_number(payment: Any) -> str:
    # RCPT-<booking ref>-<first 8 of payment id>
    ref = getattr(getattr(payment, "booking", None), "reference_code", None) or "NA"
    return f"RCPT-{ref}-{str(payment.id)[:8].upper()}"


def _resolve_base_url(explicit: str | None) -> str:
    """
    WeasyPrint base_url resolves relative asset links. Routes pass request.url_root;
    CLI/shell rendering falls back to SERVER_NAME.
    """
    if explicit:
        return explicit if explicit.endswith("/") else (explicit + "/")

    server = current_app.config.get("SERVER_NAME")
    scheme = current_app.config.get("PREFERRED_URL_SCHEME", "http")
    if server:
        return f"{scheme}://{server}/"
    return "/"


def render_payment_receipt_pdf_bytes(payment: Any, base_url: str | None = None) -> bytes:
    """
    Returns PDF bytes for a payment receipt.
    No DB writes.
    """
    booking = payment.booking
    now_local = _now_local()
    method = safe_enum_value(payment.method)
    ptype = safe_enum_value(payment.type)

    balance_after = max(float(booking.amount_total or 0) - float(booking.amount_paid or 0), 0.0)

    html = render_template(
        "pdfs/payment_receipt.html",
        payment=payment,
        booking=booking,
        company=company_context(),
        receipt_number=_receipt_number(payment),
        method_label=PAYMENT_METHOD_LABELS.get(method, method),
        type_label=PAYMENT_TYPE_LABELS.get(ptype, ptype),
        paid_at=payment.paid_at.strftime("%d %b %Y %H:%M") if payment.paid_at else "-",
        balance_after=f"{balance_after:,.2f}",
        amount=f"{float(payment.amount or 0):,.2f}",
        doc_date=now_local.strftime("%d %b %Y"),
    )
    return HTML(string=html, base_url=_resolve_base_url(base_url)).write_pdf()
