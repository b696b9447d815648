# kingrent/utils/invoice_pdf.py

from __future__ import annotations

import io
from datetime import datetime, date

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.lib import colors
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle


def _fmt_date(d):
    if not d:
        return "-"
    if isinstance(d, (datetime, date)):
        return d.strftime("%d.%m.%Y")
    return str(d)


def _money(v, currency="EUR"):
    try:
        if v is None:
            return "-"
        return f"{currency} {float(v):,.2f}"
    except (TypeError, ValueError):
        return f"{currency} {v}"


def render_client_invoice_pdf(invoice, company: dict) -> bytes:
    """
    Render a ClientInvoice PDF (NO DB writes).
    Returns PDF bytes.
    """
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4

    DARK = colors.HexColor("#111827")
    GOLD = colors.HexColor("#c9a227")
    GRAY = colors.HexColor("#6b7280")
    LINE = colors.HexColor("#e5e7eb")

    currency = getattr(invoice, "currency", None) or company.get("currency") or "EUR"

    # --- Header bar ---
    c.setFillColor(DARK)
    c.rect(0, height - 28 * mm, width, 28 * mm, stroke=0, fill=1)

    c.setFillColor(GOLD)
    c.setFont("Helvetica-Bold", 16)
    c.drawString(18 * mm, height - 16 * mm, company.get("name") or "KingRent")

    c.setFillColor(colors.white)
    c.setFont("Helvetica", 9)
    c.drawString(18 * mm, height - 22 * mm, company.get("tagline") or "")

    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(width - 18 * mm, height - 14 * mm, f"INVOICE {invoice.invoice_number}")
    c.setFont("Helvetica", 9)
    c.drawRightString(width - 18 * mm, height - 20 * mm, f"Issue date: {_fmt_date(invoice.issue_date)}")

    # --- Billed to ---
    y = height - 40 * mm
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 11)
    c.drawString(18 * mm, y, "Billed To")
    y -= 6 * mm

    c.setStrokeColor(LINE)
    c.setFillColor(colors.white)
    c.roundRect(18 * mm, y - 22 * mm, width / 2 - 22 * mm, 22 * mm, 6, stroke=1, fill=1)

    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(22 * mm, y - 8 * mm, invoice.client_name or "-")
    if invoice.billing_address:
        c.setFont("Helvetica", 9)
        c.setFillColor(GRAY)
        c.drawString(22 * mm, y - 14 * mm, invoice.billing_address[:70])
        c.setFillColor(DARK)

    booking = getattr(invoice, "booking", None)
    if booking is not None:
        right_x = width / 2 + 2 * mm
        c.setFont("Helvetica", 9)
        c.drawString(right_x, y - 6 * mm, f"Booking: {booking.reference_code}")
        c.drawString(right_x, y - 11 * mm, f"Vehicle: {booking.car_model}")
        c.drawString(
            right_x,
            y - 16 * mm,
            f"Period: {_fmt_date(booking.delivery_datetime)} - {_fmt_date(booking.collection_datetime)}",
        )

    y -= 32 * mm

    # --- Lines table ---
    data = [["Description", "Amount"]]
    desc_lines = simpleSplit(invoice.description or "Car rental services", "Helvetica", 9, 122 * mm)
    data.append(["\n".join(desc_lines), _money(invoice.subtotal, currency)])

    table = Table(data, colWidths=[134 * mm, 40 * mm], hAlign="LEFT")
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, LINE),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ALIGN", (1, 0), (1, -1), "RIGHT"),
        ("PADDING", (0, 0), (-1, -1), 6),
    ]))
    _tw, th = table.wrapOn(c, width - 36 * mm, height)
    table.drawOn(c, 18 * mm, y - th)
    y = y - th - 10 * mm

    # --- Totals ---
    block_x = width - 18 * mm
    c.setFont("Helvetica", 9)
    c.setFillColor(GRAY)
    c.drawRightString(block_x - 45 * mm, y, "Subtotal")
    c.drawRightString(block_x - 45 * mm, y - 6 * mm, f"VAT ({float(invoice.vat_rate or 0):g}%)")
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 10)
    c.drawRightString(block_x - 45 * mm, y - 14 * mm, "Total")

    c.setFont("Helvetica", 9)
    c.drawRightString(block_x, y, _money(invoice.subtotal, currency))
    c.drawRightString(block_x, y - 6 * mm, _money(invoice.vat_amount, currency))
    c.setFont("Helvetica-Bold", 10)
    c.drawRightString(block_x, y - 14 * mm, _money(invoice.total_amount, currency))

    y -= 26 * mm

    # --- Notes ---
    if invoice.notes:
        c.setFont("Helvetica-Bold", 10)
        c.setFillColor(DARK)
        c.drawString(18 * mm, y, "Notes")
        c.setFont("Helvetica", 9)
        c.setFillColor(GRAY)
        for i, line in enumerate(simpleSplit(invoice.notes, "Helvetica", 9, width - 36 * mm)[:6]):
            c.drawString(18 * mm, y - (6 + i * 5) * mm, line)

    # --- Footer ---
    c.setFillColor(LINE)
    c.rect(0, 0, width, 12 * mm, stroke=0, fill=1)
    c.setFillColor(colors.HexColor("#374151"))
    c.setFont("Helvetica", 8)
    footer = " - ".join(x for x in (company.get("name"), company.get("address"), company.get("email")) if x)
    c.drawString(18 * mm, 4 * mm, footer)
    c.setFillColor(GRAY)
    c.drawRightString(width - 18 * mm, 4 * mm, f"Generated: {_fmt_date(date.today())}")

    c.showPage()
    c.save()

    pdf = buf.getvalue()
    buf.close()
    return pdf
