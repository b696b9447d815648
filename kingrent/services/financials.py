# kingrent/services/financials.py
from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from datetime import datetime

import sqlalchemy as sa

from kingrent.extensions import db
from kingrent.models import Booking, Payment

MS_PER_DAY = 24 * 60 * 60 * 1000
MS_PER_HOUR = 60 * 60 * 1000


# =========================================================
# Rental days
# =========================================================
@dataclass(frozen=True)
class RentalDays:
    total_days: int
    full_days: int
    remaining_hours: float
    exceeds_tolerance: bool
    formatted_duration: str
    formatted_total: str

    def as_dict(self) -> dict:
        return asdict(self)


def _round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _fmt_hours(hours: float) -> str:
    # 2.0 -> "2", 2.5 -> "2.5"
    return f"{hours:g}"


def _plural(n: int, one: str, many: str) -> str:
    return one if n == 1 else many


def calculate_rental_days(
    delivery: datetime,
    collection: datetime,
    hour_tolerance: float = 1,
) -> RentalDays:
    """
    Billable rental days between delivery and collection.

    Every started 24h period counts once its remainder goes past hour_tolerance
    hours. A rental is never billed for less than one day.
    """
    diff_ms = (collection - delivery).total_seconds() * 1000

    if diff_ms <= 0:
        return RentalDays(
            total_days=1,
            full_days=0,
            remaining_hours=0,
            exceeds_tolerance=False,
            formatted_duration="0 days",
            formatted_total="1 Day",
        )

    full_days = int(diff_ms // MS_PER_DAY)
    remaining_ms = diff_ms - full_days * MS_PER_DAY
    remaining_hours = _round_half_up(remaining_ms / MS_PER_HOUR, 1)

    exceeds = remaining_hours > hour_tolerance
    total_days = full_days + 1 if exceeds else (full_days or 1)

    day_word = _plural(full_days, "day", "days")
    if remaining_hours > 0:
        formatted_duration = f"{full_days} {day_word} + {_fmt_hours(remaining_hours)}h"
    else:
        formatted_duration = f"{full_days} {day_word}"

    return RentalDays(
        total_days=total_days,
        full_days=full_days,
        remaining_hours=remaining_hours,
        exceeds_tolerance=exceeds,
        formatted_duration=formatted_duration,
        formatted_total=f"{total_days} {_plural(total_days, 'Day', 'Days')}",
    )


# =========================================================
# Booking money
# =========================================================
def net_from_gross(gross: float, vat_rate: float) -> float:
    rate = float(vat_rate or 0)
    return float(gross or 0) / (1 + rate / 100)


def financial_status(commission_net: float) -> str:
    if commission_net < 0:
        return "loss"
    if commission_net == 0:
        return "breakeven"
    return "profit"


def payment_status(amount_paid: float, amount_total: float) -> str:
    paid = float(amount_paid or 0)
    if paid == 0:
        return "unpaid"
    if paid >= float(amount_total or 0):
        return "paid"
    return "partial"


def booking_financials(booking: Booking) -> dict:
    expenses_total = sum(float(e.amount or 0) for e in booking.expenses)
    rental_price_net = net_from_gross(booking.rental_price_gross, booking.vat_rate)
    commission_net = rental_price_net - float(booking.supplier_price or 0) - expenses_total

    rental = calculate_rental_days(
        booking.delivery_datetime,
        booking.collection_datetime,
        booking.rental_day_hour_tolerance if booking.rental_day_hour_tolerance is not None else 1,
    )

    return {
        "booking_id": str(booking.id),
        "reference_code": booking.reference_code,
        "currency": booking.currency,
        "rental_price_gross": round(float(booking.rental_price_gross or 0), 2),
        "vat_rate": float(booking.vat_rate or 0),
        "rental_price_net": round(rental_price_net, 2),
        "supplier_price": round(float(booking.supplier_price or 0), 2),
        "other_costs_total": round(float(booking.other_costs_total or 0), 2),
        "expenses_total": round(expenses_total, 2),
        "commission_net": round(commission_net, 2),
        "financial_status": financial_status(round(commission_net, 2)),
        "amount_total": round(float(booking.amount_total or 0), 2),
        "amount_paid": round(float(booking.amount_paid or 0), 2),
        "balance_due": round(max(booking.balance_amount, 0.0), 2),
        "payment_status": payment_status(booking.amount_paid, booking.amount_total),
        "rental_days": rental.as_dict(),
    }


def vat_breakdown(subtotal: float, vat_rate: float) -> tuple[float, float]:
    """Returns (vat_amount, total), rounded to cents."""
    sub = float(subtotal or 0)
    vat = sub * float(vat_rate or 0) / 100
    return round(vat, 2), round(sub + vat, 2)


def recalculate_amount_paid(booking: Booking) -> float:
    """
    amount_paid = sum of the booking's payments. Flushes pending payment rows first;
    the caller commits.
    """
    db.session.flush()
    total = (
        db.session.query(sa.func.coalesce(sa.func.sum(Payment.amount), 0.0))
        .filter(Payment.booking_id == booking.id)
        .scalar()
    )
    booking.amount_paid = round(float(total or 0), 2)
    return booking.amount_paid
