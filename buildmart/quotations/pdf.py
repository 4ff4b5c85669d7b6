"""Quotation PDF rendering.

The customer block comes from the linked Client when there is one, otherwise
from the linked Lead. A quotation with neither cannot be rendered.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from buildmart.core.config import Settings, get_settings
from buildmart.core.errors import ValidationFailedError
from buildmart.core.money import to_money
from buildmart.otel import get_tracer
from buildmart.quotations.models import Quotation


@dataclass(frozen=True)
class QuotationCustomer:
    name: str
    email: str | None
    phone: str | None
    address: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None


def build_customer_view(quotation: Quotation) -> QuotationCustomer:
    if quotation.client_id is not None and quotation.client is not None:
        client = quotation.client
        return QuotationCustomer(
            name=client.client_name,
            email=client.primary_email,
            phone=client.primary_phone,
            address=client.billing_address_street,
            city=client.billing_address_city,
            region=client.billing_address_region,
            postal_code=client.billing_address_postal_code,
        )
    if quotation.lead_id is not None and quotation.lead is not None:
        lead = quotation.lead
        return QuotationCustomer(name=lead.name, email=lead.email, phone=lead.phone)
    raise ValidationFailedError(
        "quotation must be linked to a client or lead",
        details={"quotation_id": str(quotation.id)},
    )


def _money(value: Decimal | None, symbol: str) -> str:
    return f"{symbol} {to_money(value):,.2f}"


def _text(value: object | None) -> str:
    return escape(str(value)) if value not in (None, "") else "-"


def render_quotation_pdf(quotation: Quotation, settings: Settings | None = None) -> bytes:
    settings = settings or get_settings()
    customer = build_customer_view(quotation)
    symbol = settings.currency_symbol

    with get_tracer("buildmart.quotations").start_as_current_span("quotation.render_pdf") as span:
        span.set_attribute("quotation.number", quotation.quotation_number)
        span.set_attribute("quotation.item_count", len(quotation.items))

        buff = BytesIO()
        doc = SimpleDocTemplate(
            buff,
            pagesize=A4,
            leftMargin=18 * mm,
            rightMargin=18 * mm,
            topMargin=16 * mm,
            bottomMargin=16 * mm,
            title=f"Quotation {quotation.quotation_number}",
        )

        styles = getSampleStyleSheet()
        styles.add(ParagraphStyle(name="SmallMuted", fontSize=9, leading=12, textColor=colors.grey))
        styles.add(ParagraphStyle(name="Right", fontSize=10, leading=12, alignment=TA_RIGHT))

        story: list = []
        header_left = Paragraph(
            f"<b>{_text(settings.company_name)}</b><br/>"
            f"{_text(settings.company_address)}<br/>"
            f"{_text(settings.company_phone)} | {_text(settings.company_email)}",
            styles["SmallMuted"],
        )
        header_right = Paragraph(
            f"<b>QUOTATION</b><br/>"
            f"No: {_text(quotation.quotation_number)}<br/>"
            f"Issued: {quotation.issue_date.strftime('%d-%b-%Y')}<br/>"
            f"Valid until: {quotation.valid_until.strftime('%d-%b-%Y')}",
            styles["Right"],
        )
        header_tbl = Table([[header_left, header_right]], colWidths=[90 * mm, 84 * mm])
        header_tbl.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ("LINEBELOW", (0, 0), (-1, -1), 0.6, colors.lightgrey),
        ]))
        story.append(header_tbl)
        story.append(Spacer(1, 10))

        location = ", ".join(part for part in (customer.address, customer.city, customer.region, customer.postal_code) if part)
        story.append(Paragraph("<b>Prepared for</b>", styles["Normal"]))
        story.append(Spacer(1, 4))
        story.append(Paragraph(
            f"<b>{_text(customer.name)}</b><br/>"
            f"{_text(location or None)}<br/>"
            f"{_text(customer.email)} | {_text(customer.phone)}",
            styles["SmallMuted"],
        ))
        story.append(Spacer(1, 10))

        data = [[
            Paragraph("<b>#</b>", styles["Normal"]),
            Paragraph("<b>Description</b>", styles["Normal"]),
            Paragraph("<b>Qty</b>", styles["Normal"]),
            Paragraph("<b>Unit price</b>", styles["Normal"]),
            Paragraph("<b>Amount</b>", styles["Normal"]),
        ]]
        for idx, item in enumerate(quotation.items, start=1):
            data.append([
                Paragraph(str(idx), styles["Normal"]),
                Paragraph(_text(item.description), styles["Normal"]),
                Paragraph(str(item.quantity), styles["Normal"]),
                Paragraph(_money(item.unit_price, symbol), styles["Normal"]),
                Paragraph(_money(item.line_total, symbol), styles["Normal"]),
            ])

        items_tbl = Table(data, colWidths=[10 * mm, 80 * mm, 16 * mm, 34 * mm, 34 * mm])
        items_tbl.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f1f5f9")),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("GRID", (0, 0), (-1, -1), 0.4, colors.lightgrey),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("ALIGN", (2, 1), (4, -1), "RIGHT"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#fcfcfd")]),
        ]))
        story.append(items_tbl)
        story.append(Spacer(1, 10))

        totals_tbl = Table(
            [
                ["Subtotal", _money(quotation.subtotal, symbol)],
                ["Discount", _money(quotation.discount, symbol)],
                ["Tax", _money(quotation.tax, symbol)],
                ["Total", _money(quotation.total, symbol)],
            ],
            colWidths=[60 * mm, 40 * mm],
            hAlign="RIGHT",
        )
        totals_tbl.setStyle(TableStyle([
            ("FONTSIZE", (0, 0), (-1, -1), 10),
            ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
            ("LINEABOVE", (0, 0), (-1, 0), 0.6, colors.lightgrey),
            ("LINEBELOW", (0, -1), (-1, -1), 0.8, colors.HexColor("#0f172a")),
            ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ]))
        story.append(totals_tbl)
        story.append(Spacer(1, 12))

        story.append(Paragraph("<b>Notes</b>", styles["Normal"]))
        story.append(Spacer(1, 4))
        notes = [line.strip() for line in (quotation.notes_to_customer or "").splitlines() if line.strip()]
        if not notes:
            story.append(Paragraph("-", styles["SmallMuted"]))
        for line in notes:
            story.append(Paragraph(escape(line), styles["SmallMuted"]))

        doc.build(story)
        return buff.getvalue()
