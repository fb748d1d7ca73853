"""
PDF generation for invoices (reportlab, rendered to an in-memory buffer).
"""

from __future__ import annotations

import html
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.core.config import get_settings
from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger
from app.models.invoice import Invoice
from app.models.order import Order

logger = get_logger(__name__)


def _fmt(amount) -> str:
    return f"${amount:,.2f}"


class PDFGenerator:
    """Invoice PDF rendering service"""

    def __init__(self, company_name: Optional[str] = None):
        self.company_name = company_name or get_settings().COMPANY_NAME

    def render_invoice(self, invoice: Invoice, order: Order) -> bytes:
        """Invoice + its items -> PDF bytes. Rendering failures raise ServiceUnavailableError."""
        try:
            return self._render(invoice, order)
        except Exception as e:
            logger.error("Invoice PDF generation failed", invoice_id=invoice.id, error=str(e))
            raise ServiceUnavailableError("Failed to generate invoice PDF", code="pdf_failed")

    def _render(self, invoice: Invoice, order: Order) -> bytes:
        buf = BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=A4,
            rightMargin=2 * cm,
            leftMargin=2 * cm,
            topMargin=2 * cm,
            bottomMargin=2 * cm,
            title=f"Invoice {invoice.invoice_number}",
        )
        story = []
        styles = getSampleStyleSheet()

        # Header
        story.append(Paragraph(f"<b>{html.escape(self.company_name)}</b>", styles["Title"]))
        story.append(Spacer(1, 0.5 * cm))
        story.append(Paragraph(f"<b>Invoice {html.escape(invoice.invoice_number)}</b>", styles["Heading2"]))
        story.append(Paragraph(f"Date: {invoice.created_at.strftime('%Y-%m-%d')}", styles["Normal"]))
        if invoice.due_date:
            story.append(Paragraph(f"Due: {invoice.due_date.strftime('%Y-%m-%d')}", styles["Normal"]))
        story.append(Paragraph(f"Order: {html.escape(order.order_number)}", styles["Normal"]))
        story.append(Spacer(1, 0.5 * cm))

        if order.client_name:
            story.append(Paragraph("<b>Bill to:</b>", styles["Heading3"]))
            story.append(Paragraph(html.escape(order.client_name), styles["Normal"]))
            if order.client_email:
                story.append(Paragraph(html.escape(order.client_email), styles["Normal"]))
            story.append(Spacer(1, 0.5 * cm))

        # Items table
        table_data = [["Description", "Qty", "Unit price", "Amount"]]
        for item in invoice.items:
            table_data.append(
                [
                    Paragraph(html.escape(item.description), styles["Normal"]),
                    str(item.quantity),
                    _fmt(item.unit_price),
                    _fmt(item.amount),
                ]
            )
        table_data.append(["", "", "Total:", _fmt(invoice.amount)])

        table = Table(table_data, colWidths=[9 * cm, 2 * cm, 3 * cm, 3 * cm])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("BOTTOMPADDING", (0, 0), (-1, 0), 10),
                    ("BACKGROUND", (0, -1), (-1, -1), colors.lightgrey),
                    ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
                ]
            )
        )
        story.append(table)
        story.append(Spacer(1, 1 * cm))

        if invoice.payment_link:
            story.append(Paragraph(f"Pay online: {html.escape(invoice.payment_link)}", styles["Normal"]))
        if invoice.notes:
            story.append(Paragraph(html.escape(invoice.notes), styles["Italic"]))

        doc.build(story)
        data = buf.getvalue()
        logger.info("Invoice PDF generated", invoice_id=invoice.id, size=len(data))
        return data


def get_pdf_generator() -> PDFGenerator:
    return PDFGenerator()


__all__ = ["PDFGenerator", "get_pdf_generator"]
