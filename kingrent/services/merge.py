# kingrent/services/merge.py
from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa

from kingrent.extensions import db
from kingrent.models import (
    AuditAction,
    AuditEntity,
    Booking,
    ClientInvoice,
    SupplierInvoice,
)
from kingrent.services import audit

KIND_CLIENT = "client"
KIND_SUPPLIER = "supplier"


class MergeError(ValueError):
    pass


@dataclass(frozen=True)
class NameSource:
    model: type
    column: str
    # counted as "bookings" or "invoices" in the name list
    counts_as: str


SOURCES = {
    KIND_CLIENT: (
        NameSource(Booking, "client_name", "booking"),
        NameSource(ClientInvoice, "client_name", "invoice"),
    ),
    KIND_SUPPLIER: (
        NameSource(Booking, "supplier_name", "booking"),
        NameSource(SupplierInvoice, "supplier_name", "invoice"),
    ),
}


def _sources(kind: str) -> tuple[NameSource, ...]:
    try:
        return SOURCES[kind]
    except KeyError:
        raise MergeError(f"Unknown name type: {kind}") from None


def list_names(kind: str) -> list[dict]:
    """
    Every distinct spelling with its booking/invoice usage, sorted by name.
    Soft-deleted rows are ignored.
    """
    counts: dict[str, dict] = {}

    for src in _sources(kind):
        col = getattr(src.model, src.column)
        rows = (
            db.session.query(col, sa.func.count())
            .filter(col.isnot(None), col != "", src.model.deleted_at.is_(None))
            .group_by(col)
            .all()
        )
        for name, n in rows:
            entry = counts.setdefault(name, {"name": name, "booking_count": 0, "invoice_count": 0})
            entry[f"{src.counts_as}_count"] += n

    return sorted(counts.values(), key=lambda e: e["name"])


def merge_names(kind: str, canonical_name: str, selected_names: list[str]) -> dict:
    """
    Renames every row using one of selected_names (other than canonical) to canonical.
    One transaction for all tables; the caller commits.
    """
    sources = _sources(kind)
    canonical = (canonical_name or "").strip()
    selected = {n for n in (selected_names or []) if n and n.strip()}

    if not canonical:
        raise MergeError("canonical_name is required")
    if len(selected) < 2:
        raise MergeError("Select at least 2 names to merge")

    to_replace = sorted(selected - {canonical})

    updated: dict[str, int] = {}
    for src in sources:
        col = getattr(src.model, src.column)
        n = (
            db.session.query(src.model)
            .filter(col.in_(to_replace))
            .update({src.column: canonical}, synchronize_session=False)
        )
        updated[src.model.__tablename__] = updated.get(src.model.__tablename__, 0) + n

    audit.record(
        AuditEntity.BOOKING if kind == KIND_CLIENT else AuditEntity.SUPPLIER_INVOICE,
        f"merge:{kind}",
        AuditAction.MERGE,
        {
            "kind": kind,
            "canonical_name": canonical,
            "merged_names": to_replace,
            "rows_updated": updated,
        },
    )

    return {
        "canonical_name": canonical,
        "merged_names": to_replace,
        "rows_updated": updated,
    }
