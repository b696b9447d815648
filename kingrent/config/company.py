# kingrent/config/company.py
from __future__ import annotations

"""
Company identity defaults.

The admin-editable AppSettings row wins when present; these constants are the
fallback for emails and PDFs rendered before anyone has saved settings.
"""

# -----------------------------
# Canonical fields
# -----------------------------
COMPANY_NAME = "KingRent"
COMPANY_TAGLINE = "Premium car rental"
COMPANY_ADDRESS = "Geneva, Switzerland"
COMPANY_EMAIL = "bookings@kingrent.ch"
COMPANY_PHONE = "+41 22 000 00 00"
COMPANY_WEBSITE = "www.kingrent.ch"

# Relative to APP_DOMAIN when not absolute
COMPANY_LOGO_URL = "/king-rent-logo.png"

DEFAULT_CURRENCY = "EUR"


def company_context() -> dict:
    """
    Identity used by email and PDF templates.

    Values from the AppSettings row override the constants above.
    """
    from kingrent.models import AppSettings

    ctx = {
        "name": COMPANY_NAME,
        "tagline": COMPANY_TAGLINE,
        "address": COMPANY_ADDRESS,
        "email": COMPANY_EMAIL,
        "phone": COMPANY_PHONE,
        "website": COMPANY_WEBSITE,
        "logo_url": COMPANY_LOGO_URL,
        "currency": DEFAULT_CURRENCY,
    }

    settings = AppSettings.current()
    if settings:
        ctx["name"] = settings.company_name or ctx["name"]
        ctx["email"] = settings.company_email or ctx["email"]
        ctx["phone"] = settings.company_phone or ctx["phone"]
        ctx["address"] = settings.company_address or ctx["address"]
        ctx["logo_url"] = settings.logo_url or ctx["logo_url"]
        ctx["currency"] = settings.default_currency or ctx["currency"]
    return ctx
