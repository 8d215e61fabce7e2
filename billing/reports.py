from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from .calculations import round_money, total_paid
from .records import ClientRecord, ClientRevenue, InvoiceRecord, InvoiceStatus, PaymentRecord, SummaryReport

OUTSTANDING_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE})
SETTLED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})
REVENUE_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID})
RECENT_PAYMENT_WINDOW = dt.timedelta(days=30)

PaymentIndex = Mapping[uuid.UUID, Sequence[PaymentRecord]]


def index_payments(payments: Iterable[PaymentRecord]) -> dict[uuid.UUID, list[PaymentRecord]]:
    index: dict[uuid.UUID, list[PaymentRecord]] = {}
    for payment in payments:
        index.setdefault(payment.invoice_id, []).append(payment)
    return index


def is_overdue(invoice: InvoiceRecord, now: dt.datetime) -> bool:
    # A due date counts from the start of that day.
    if not invoice.due_date or invoice.status in SETTLED_STATUSES:
        return False
    return dt.datetime.combine(invoice.due_date, dt.time.min, tzinfo=now.tzinfo) < now


def summarize(invoices: Iterable[InvoiceRecord], payments: PaymentIndex, *, now: dt.datetime) -> SummaryReport:
    today = now.date()
    window_start = today - RECENT_PAYMENT_WINDOW
    outstanding = Decimal('0')
    overdue = Decimal('0')
    paid_recently = Decimal('0')

    for invoice in invoices:
        invoice_payments = payments.get(invoice.id, ())
        balance = invoice.total_amount - total_paid(invoice_payments)
        if balance > 0 and invoice.status in OUTSTANDING_STATUSES:
            outstanding += balance
            if is_overdue(invoice, now):
                overdue += balance
        for payment in invoice_payments:
            if window_start <= payment.payment_date <= today:
                paid_recently += payment.amount

    return SummaryReport(
        total_outstanding=round_money(outstanding),
        total_overdue=round_money(overdue),
        paid_last_30_days=round_money(paid_recently),
    )


def revenue_by_client(
    clients: Iterable[ClientRecord],
    invoices: Iterable[InvoiceRecord],
    payments: PaymentIndex,
) -> list[ClientRevenue]:
    """Money received per client, largest first; clients with nothing received are left out."""
    invoices_by_client: dict[uuid.UUID, list[InvoiceRecord]] = {}
    for invoice in invoices:
        if invoice.status in REVENUE_STATUSES:
            invoices_by_client.setdefault(invoice.client_id, []).append(invoice)

    rows = []
    for client in clients:
        client_invoices = invoices_by_client.get(client.id, [])
        revenue = sum((total_paid(payments.get(inv.id, ())) for inv in client_invoices), Decimal('0'))
        revenue = round_money(revenue)
        if revenue > 0:
            rows.append(ClientRevenue(
                client_id=client.id,
                client_name=client.name,
                invoice_count=len(client_invoices),
                total_revenue=revenue,
            ))
    rows.sort(key=lambda row: row.total_revenue, reverse=True)
    return rows
