"""Printable invoice and purchase note PDFs."""

import io
from xml.sax.saxutils import escape

from django.utils import timezone
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.aggregate import MISSING_LABEL
from sales.services import amount_in_words

MARGIN = 15 * mm

_styles = getSampleStyleSheet()
SHOP_STYLE = ParagraphStyle("ShopName", parent=_styles["Heading1"], fontSize=18, alignment=1, spaceAfter=4)
CENTER_STYLE = ParagraphStyle("Center", parent=_styles["Normal"], fontSize=9, alignment=1)
TITLE_STYLE = ParagraphStyle("DocTitle", parent=_styles["Heading2"], alignment=1, spaceBefore=6, spaceAfter=8)
BODY_STYLE = ParagraphStyle("Body", parent=_styles["Normal"], fontSize=9, leading=12)

TABLE_STYLE = TableStyle(
    [
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#eeeeee")),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
)
TOTALS_STYLE = TableStyle(
    [
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (1, 0), (1, -1), "RIGHT"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 0.5, colors.black),
    ]
)


def _text(value):
    return escape(str(value)) if value not in (None, "") else MISSING_LABEL


def _money(value):
    return f"{value:,.2f}"


def _shop_header(shop):
    story = [Paragraph(_text(shop.name), SHOP_STYLE)]
    for line in (shop.address, shop.phone, shop.email):
        if line:
            story.append(Paragraph(escape(line), CENTER_STYLE))
    return story


def _party_block(rows):
    table = Table([[Paragraph(f"<b>{label}</b>", BODY_STYLE), Paragraph(_text(value), BODY_STYLE)] for label, value in rows])
    table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    return table


def _totals(rows):
    table = Table([[label, _money(value)] for label, value in rows], colWidths=[45 * mm, 35 * mm], hAlign="RIGHT")
    table.setStyle(TOTALS_STYLE)
    return table


def _render(story):
    buffer = io.BytesIO()
    document = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
    )
    document.build(story)
    return buffer.getvalue()


def invoice_pdf(shop, invoice):
    story = _shop_header(shop)
    story.append(Paragraph(f"INVOICE ({invoice.status_label})", TITLE_STYLE))
    story.append(
        _party_block(
            [
                ("Invoice No", invoice.invoice_number),
                ("Date", timezone.localtime(invoice.date).strftime("%d %b %Y %I:%M %p")),
                ("Customer", invoice.customer_name),
                ("Phone", invoice.customer_phone),
                ("Address", invoice.customer_address),
            ]
        )
    )
    story.append(Spacer(1, 6 * mm))

    lines = [["SL", "Description", "IMEI", "Price"]]
    for index, item in enumerate(invoice.items, start=1):
        lines.append([index, Paragraph(escape(f"{item.brand} {item.model_name}"), BODY_STYLE), item.imei, _money(item.price)])
    table = Table(lines, colWidths=[12 * mm, 80 * mm, 55 * mm, 30 * mm], repeatRows=1)
    table.setStyle(TABLE_STYLE)
    story.extend([table, Spacer(1, 4 * mm)])

    story.append(
        _totals(
            [
                ("Subtotal", invoice.subtotal),
                ("Discount", invoice.discount),
                ("VAT", invoice.vat),
                ("Paid", invoice.paid_amount),
                ("Due", invoice.due_amount),
                ("Total", invoice.total),
            ]
        )
    )
    story.append(Spacer(1, 4 * mm))
    story.append(Paragraph(f"<b>In words:</b> {amount_in_words(invoice.total)}", BODY_STYLE))

    for payment in invoice.payments:
        detail = f"<b>Payment:</b> {escape(str(payment.method))}"
        if payment.reference != MISSING_LABEL:
            detail += f" ({escape(payment.reference)})"
        if payment.transaction_id:
            detail += f" Txn {escape(payment.transaction_id)}"
        story.append(Paragraph(detail, BODY_STYLE))
    if invoice.narration:
        story.append(Paragraph(f"<b>Note:</b> {escape(invoice.narration)}", BODY_STYLE))
    if shop.prepared_by:
        story.extend([Spacer(1, 10 * mm), Paragraph(f"Prepared by: {escape(shop.prepared_by)}", BODY_STYLE)])
    return _render(story)


def purchase_note_pdf(shop, purchase):
    story = _shop_header(shop)
    story.append(Paragraph("PURCHASE NOTE", TITLE_STYLE))
    story.append(
        _party_block(
            [
                ("Purchase No", purchase.purchase_number),
                ("Date", timezone.localtime(purchase.date).strftime("%d %b %Y %I:%M %p")),
                ("Supplier", purchase.supplier_name),
                ("Phone", purchase.supplier_phone),
                ("Address", purchase.supplier_address),
            ]
        )
    )
    story.append(Spacer(1, 6 * mm))

    lines = [["SL", "Item", "IMEIs", "Qty", "Cost", "Amount"]]
    for index, item in enumerate(purchase.items, start=1):
        lines.append(
            [
                index,
                Paragraph(escape(f"{item.brand} {item.model_name}"), BODY_STYLE),
                Paragraph(escape(", ".join(item.imeis)), BODY_STYLE),
                item.quantity,
                _money(item.cost_price),
                _money(item.line_total),
            ]
        )
    table = Table(lines, colWidths=[10 * mm, 45 * mm, 62 * mm, 12 * mm, 24 * mm, 27 * mm], repeatRows=1)
    table.setStyle(TABLE_STYLE)
    story.extend([table, Spacer(1, 4 * mm)])

    story.append(
        _totals(
            [
                ("Subtotal", purchase.subtotal),
                ("VAT", purchase.vat),
                ("Discount", purchase.discount),
                ("Paid", purchase.paid_amount),
                ("Due", purchase.due_amount),
                ("Total", purchase.total),
            ]
        )
    )
    story.append(Spacer(1, 4 * mm))
    story.append(Paragraph(f"<b>In words:</b> {amount_in_words(purchase.total)}", BODY_STYLE))
    if purchase.note:
        story.append(Paragraph(f"<b>Note:</b> {escape(purchase.note)}", BODY_STYLE))
    return _render(story)
