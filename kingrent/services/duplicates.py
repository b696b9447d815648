# kingrent/services/duplicates.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from kingrent.models import Booking, ClientInvoice

SIMILARITY_THRESHOLD = 0.7
CONTAINMENT_SCORE = 0.85


@dataclass
class Customer:
    client_name: str
    client_email: str | None = None
    invoice_count: int = 0
    booking_count: int = 0
    total_amount: float = 0.0
    last_invoice_date: date | None = None
    currencies: set[str] = field(default_factory=set)

    def as_dict(self) -> dict:
        return {
            "client_name": self.client_name,
            "client_email": self.client_email,
            "invoice_count": self.invoice_count,
            "booking_count": self.booking_count,
            "total_amount": round(self.total_amount, 2),
            "last_invoice_date": self.last_invoice_date.isoformat() if self.last_invoice_date else None,
            "currencies": sorted(self.currencies),
        }


@dataclass
class DuplicateGroup:
    id: str
    reason: str
    customers: list[Customer]

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "reason": self.reason,
            "customers": [c.as_dict() for c in self.customers],
        }


# =========================================================
# Similarity
# =========================================================
def string_similarity(a: str | None, b: str | None) -> float:
    """
    1.0 for equal names (case-insensitive), 0.85 when one contains the other,
    otherwise the share of overlapping words: 2 * common / (words_a + words_b).
    Single-letter words (initials) are ignored.
    """
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE

    words1 = [w for w in s1.split() if len(w) > 1]
    words2 = [w for w in s2.split() if len(w) > 1]
    if not words1 or not words2:
        return 0.0

    common = [w1 for w1 in words1 if any(w1 == w2 or w1 in w2 or w2 in w1 for w2 in words2)]
    return (2 * len(common)) / (len(words1) + len(words2))


# =========================================================
# Customer aggregation
# =========================================================
def _key(name: str, email: str | None) -> tuple[str, str]:
    # exact spelling: "John Smith" and "john smith" stay separate entries
    return (name.strip(), (email or "").strip().lower())


def collect_customers() -> list[Customer]:
    """
    One entry per (name, email) pair seen on bookings or client invoices.
    Invoices carry no email; they attach to the first booking pair with the same name.
    """
    customers: dict[tuple[str, str], Customer] = {}
    by_name: dict[str, Customer] = {}

    bookings = (
        Booking.query.filter(Booking.deleted_at.is_(None))
        .order_by(Booking.created_at.asc())
        .all()
    )
    for b in bookings:
        name = (b.client_name or "").strip()
        if not name:
            continue
        k = _key(name, b.client_email)
        cust = customers.get(k)
        if cust is None:
            cust = Customer(client_name=name, client_email=(b.client_email or "").strip() or None)
            customers[k] = cust
            by_name.setdefault(name.lower(), cust)
        cust.booking_count += 1
        cust.total_amount += float(b.amount_total or 0)
        if b.currency:
            cust.currencies.add(b.currency)

    invoices = ClientInvoice.query.filter(ClientInvoice.deleted_at.is_(None)).all()
    for inv in invoices:
        name = (inv.client_name or "").strip()
        if not name:
            continue
        email = inv.booking.client_email if inv.booking is not None else None
        cust = customers.get(_key(name, email)) if email else by_name.get(name.lower())
        if cust is None:
            cust = Customer(client_name=name, client_email=(email or None))
            customers[_key(name, email)] = cust
            by_name.setdefault(name.lower(), cust)
        cust.invoice_count += 1
        if inv.currency:
            cust.currencies.add(inv.currency)
        if inv.issue_date and (cust.last_invoice_date is None or inv.issue_date > cust.last_invoice_date):
            cust.last_invoice_date = inv.issue_date

    return sorted(customers.values(), key=lambda c: c.client_name.lower())


# =========================================================
# Grouping
# =========================================================
def _norm_email(email: str | None) -> str:
    return (email or "").lower().strip()


def find_duplicate_groups(
    customers: Iterable[Customer],
    threshold: float = SIMILARITY_THRESHOLD,
) -> list[DuplicateGroup]:
    customers = list(customers)
    groups: list[DuplicateGroup] = []

    # 1) same email, more than one customer entry
    by_email: dict[str, list[Customer]] = {}
    for c in customers:
        email = _norm_email(c.client_email)
        if email:
            by_email.setdefault(email, []).append(c)

    for email, members in by_email.items():
        if len(members) > 1:
            groups.append(
                DuplicateGroup(
                    id=f"email_{email}",
                    reason=f'Same email "{email}" used with different names',
                    customers=members,
                )
            )

    # 2) similar names with different emails
    checked: set[str] = set()
    for c in customers:
        if c.client_name in checked:
            continue

        similar = [
            other
            for other in customers
            if other is not c
            and other.client_name not in checked
            and string_similarity(c.client_name, other.client_name) >= threshold
            and c.client_email != other.client_email
        ]
        if not similar:
            continue

        members = [c, *similar]
        for m in members:
            checked.add(m.client_name)

        names = sorted(m.client_name for m in members)
        groups.append(
            DuplicateGroup(
                id="similar_" + "_".join(names),
                reason="Similar names with different emails",
                customers=members,
            )
        )

    return groups


def detect_duplicates(threshold: float = SIMILARITY_THRESHOLD) -> list[DuplicateGroup]:
    return find_duplicate_groups(collect_customers(), threshold)
