"""
Placeholder invoice document delivery.

Rendering and mailing are not implemented; these functions only confirm that
the invoice exists for the caller and echo its identifiers.
"""
from __future__ import annotations

import logging
import re

from .records import InvoiceDetail, Principal

logger = logging.getLogger(__name__)


def safe_filename(value: str) -> str:
    return re.sub(r'[^A-Za-z0-9._-]+', '-', value).strip('-') or 'invoice'


def render_invoice_pdf(detail: InvoiceDetail, principal: Principal) -> tuple[str, bytes]:
    """Return ``(filename, content)`` for the invoice document."""
    number = detail.invoice.invoice_number
    logger.info("PDF generation request for invoice %s by %s", number, principal.email)
    return f"invoice-{safe_filename(number)}.pdf", f"PDF content for invoice {number}".encode('utf-8')


def send_invoice_email(detail: InvoiceDetail, principal: Principal) -> str:
    number = detail.invoice.invoice_number
    recipient = detail.client.email if detail.client else ''
    logger.info("Email send request for invoice %s by %s (to %s)", number, principal.email, recipient or 'n/a')
    return f"Email for invoice {number} would be sent here."
