"""
Business operations for settings, clients, invoices, payments and reports.

Every function takes the store and the authenticated principal explicitly.
Records owned by another user are reported as missing, never as forbidden,
so callers cannot probe for other users' ids.
"""
from __future__ import annotations

import datetime as dt
import logging
import re
import uuid
from typing import Any, Iterable, Optional

from django.conf import settings as django_settings
from django.utils import timezone

from . import calculations, reports
from .exceptions import AuthorizationError, NotFoundError, ValidationError
from .records import (
    ClientRecord,
    ClientRevenue,
    InvoiceDetail,
    InvoiceRecord,
    InvoiceStatus,
    InvoiceTemplate,
    LineItem,
    PaymentRecord,
    Principal,
    RecurrenceFrequency,
    SettingsRecord,
    SummaryReport,
)
from .stores import BillingStore

logger = logging.getLogger(__name__)

INVOICE_SEQUENCE = 'invoice'
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
CURRENCY_RE = re.compile(r'^[A-Za-z]{3}$')

SETTINGS_FIELDS = (
    'company_name',
    'company_address',
    'company_logo_url',
    'default_currency',
    'default_tax_rate',
    'invoice_template',
)
INVOICE_FIELDS = frozenset({
    'client_id',
    'invoice_date',
    'due_date',
    'status',
    'notes',
    'currency',
    'global_tax_rate',
    'is_recurring',
    'recurrence_frequency',
    'recurrence_interval',
    'recurrence_end_date',
    'items',
})


def _config(name: str, default):
    return getattr(django_settings, name, default)


def _as_uuid(value, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(field, 'must be a valid id.')


def _require_text(value, field: str, message: str) -> str:
    text = str(value or '').strip()
    if not text:
        raise ValidationError(field, message)
    return text


def _clean_currency(value, field: str = 'currency') -> str:
    if not isinstance(value, str) or not CURRENCY_RE.match(value.strip()):
        raise ValidationError(field, 'must be a 3-letter currency code.')
    return value.strip().upper()


def _clean_date(value, field: str, *, required: bool = False) -> Optional[dt.date]:
    if value in (None, ''):
        if required:
            raise ValidationError(field, 'a valid date is required.')
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    raise ValidationError(field, 'a valid date is required.')


def normalize_email(value, field: str = 'email') -> str:
    email = (value or '').strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError(field, 'a valid email is required.')
    return email


# --- Settings -----------------------------------------------------------------

def default_settings(principal: Principal) -> SettingsRecord:
    return SettingsRecord(
        user_id=principal.id,
        company_name=f"{principal.name}'s Company" if principal.name else '',
        default_currency=_config('BILLING_DEFAULT_CURRENCY', 'USD'),
    )


def get_settings(store: BillingStore, principal: Principal) -> SettingsRecord:
    record = store.settings.get(principal.id)
    if record is None:
        record = store.settings.save(default_settings(principal))
    return record


def update_settings(store: BillingStore, principal: Principal, **changes) -> SettingsRecord:
    """Apply a partial update; keys left out keep their stored value."""
    unknown = set(changes) - set(SETTINGS_FIELDS)
    if unknown:
        raise ValidationError(sorted(unknown)[0], 'unknown settings field.')
    record = get_settings(store, principal)
    if 'default_currency' in changes:
        changes['default_currency'] = _clean_currency(changes['default_currency'], 'default_currency')
    if 'default_tax_rate' in changes:
        rate = calculations.validate_tax_rate(changes['default_tax_rate'], 'default_tax_rate')
        if rate is None:
            raise ValidationError('default_tax_rate', 'must be between 0 and 100.')
        changes['default_tax_rate'] = rate
    if 'invoice_template' in changes and changes['invoice_template'] not in InvoiceTemplate.values:
        raise ValidationError('invoice_template', f"must be one of {', '.join(InvoiceTemplate.values)}.")
    for name in ('company_name', 'company_address', 'company_logo_url'):
        if name in changes:
            changes[name] = (changes[name] or '').strip()
    for name, value in changes.items():
        setattr(record, name, value)
    record = store.settings.save(record)
    logger.info("Settings updated for user: %s", principal.email)
    return record


# --- Clients ------------------------------------------------------------------

def list_clients(store: BillingStore, principal: Principal, *, search: Optional[str] = None) -> list[ClientRecord]:
    clients = store.clients.filter(owner_id=principal.id)
    term = (search or '').strip().lower()
    if term:
        clients = [c for c in clients if term in c.name.lower() or term in c.email.lower()]
    clients.sort(key=lambda c: (c.created_at or timezone.now(), c.name))
    return clients


def get_client(store: BillingStore, principal: Principal, client_id) -> ClientRecord:
    client = store.clients.get(_as_uuid(client_id, 'client_id'))
    if client is None or client.owner_id != principal.id:
        raise NotFoundError('Client', client_id)
    return client


def _client_values(name, email, phone, address, notes) -> dict[str, Any]:
    return {
        'name': _require_text(name, 'name', 'client name is required.'),
        'email': normalize_email(email),
        'phone': (phone or '').strip(),
        'address': (address or '').strip(),
        'notes': (notes or '').strip(),
    }


def create_client(
    store: BillingStore,
    principal: Principal,
    *,
    name: str,
    email: str,
    phone: str = '',
    address: str = '',
    notes: str = '',
) -> ClientRecord:
    values = _client_values(name, email, phone, address, notes)
    now = timezone.now()
    client = store.clients.add(ClientRecord(owner_id=principal.id, created_at=now, updated_at=now, **values))
    logger.info("Client created for user %s: %s", principal.email, client.email)
    return client


def update_client(
    store: BillingStore,
    principal: Principal,
    client_id,
    *,
    name: str,
    email: str,
    phone: str = '',
    address: str = '',
    notes: str = '',
) -> ClientRecord:
    client = get_client(store, principal, client_id)
    for key, value in _client_values(name, email, phone, address, notes).items():
        setattr(client, key, value)
    client.updated_at = timezone.now()
    client = store.clients.update(client)
    logger.info("Client updated for user %s: %s", principal.email, client.email)
    return client


def delete_client(store: BillingStore, principal: Principal, client_id) -> None:
    # Invoices keep their client_id and client_name snapshot.
    client = get_client(store, principal, client_id)
    store.clients.delete(client.id)
    logger.info("Client deleted by user %s: %s", principal.email, client.id)


# --- Invoices -----------------------------------------------------------------

def next_invoice_number(store: BillingStore, *, today: Optional[dt.date] = None) -> str:
    today = today or timezone.localdate()
    return calculations.format_invoice_number(
        store.next_sequence(INVOICE_SEQUENCE),
        year=today.year,
        prefix=_config('INVOICE_PREFIX', 'INV'),
    )


def _line_items(raw_items) -> list[LineItem]:
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError('items', 'at least one item is required.')
    items = []
    for index, raw in enumerate(raw_items):
        if isinstance(raw, LineItem):
            items.append(raw)
        elif isinstance(raw, dict):
            items.append(LineItem(
                description=raw.get('description', ''),
                quantity=raw.get('quantity'),
                unit_price=raw.get('unit_price'),
                tax_rate=raw.get('tax_rate'),
            ))
        else:
            raise ValidationError(f"items[{index}]", 'must be an object.')
    return calculations.validate_line_items(items)


def _prepare_invoice(store: BillingStore, principal: Principal, data: dict[str, Any]) -> dict[str, Any]:
    """Validate a full invoice payload and return the record fields it sets."""
    unknown = set(data) - INVOICE_FIELDS
    if unknown:
        raise ValidationError(sorted(unknown)[0], 'unknown invoice field.')
    if 'client_id' not in data:
        raise ValidationError('client_id', 'valid client ID is required.')
    client = get_client(store, principal, data['client_id'])

    status = data.get('status')
    if status not in InvoiceStatus.values:
        raise ValidationError('status', 'invalid invoice status.')

    global_tax_rate = calculations.validate_tax_rate(data.get('global_tax_rate'), 'global_tax_rate')
    items = _line_items(data.get('items'))
    currency = data.get('currency')
    if currency in (None, ''):
        currency = get_settings(store, principal).default_currency
    currency = _clean_currency(currency)

    is_recurring = bool(data.get('is_recurring', False))
    recurrence = {
        'recurrence_frequency': '',
        'recurrence_interval': None,
        'recurrence_end_date': None,
    }
    if is_recurring:
        frequency = data.get('recurrence_frequency') or ''
        if frequency and frequency not in RecurrenceFrequency.values:
            raise ValidationError('recurrence_frequency', f"must be one of {', '.join(RecurrenceFrequency.values)}.")
        interval = data.get('recurrence_interval')
        if interval is not None:
            if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
                raise ValidationError('recurrence_interval', 'must be a whole number of at least 1.')
        recurrence.update({
            'recurrence_frequency': frequency,
            'recurrence_interval': interval,
            'recurrence_end_date': _clean_date(data.get('recurrence_end_date'), 'recurrence_end_date'),
        })

    return {
        'client_id': client.id,
        'client_name': client.name,
        'invoice_date': _clean_date(data.get('invoice_date'), 'invoice_date', required=True),
        'due_date': _clean_date(data.get('due_date'), 'due_date'),
        'status': status,
        'notes': (data.get('notes') or '').strip(),
        'currency': currency,
        'global_tax_rate': global_tax_rate,
        'is_recurring': is_recurring,
        'items': items,
        'total_amount': calculations.calculate_invoice_total(items, global_tax_rate),
        **recurrence,
    }


def list_invoices(
    store: BillingStore,
    principal: Principal,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
) -> list[InvoiceRecord]:
    invoices = store.invoices.filter(owner_id=principal.id)
    term = (search or '').strip().lower()
    if term:
        invoices = [
            inv for inv in invoices
            if term in inv.invoice_number.lower() or term in (inv.client_name or '').lower()
        ]
    if status:
        invoices = [inv for inv in invoices if inv.status == status]
    invoices.sort(key=lambda inv: (inv.invoice_date, inv.invoice_number), reverse=True)
    return invoices


def get_invoice(store: BillingStore, principal: Principal, invoice_id) -> InvoiceRecord:
    invoice = store.invoices.get(_as_uuid(invoice_id, 'invoice_id'))
    if invoice is None or invoice.owner_id != principal.id:
        raise NotFoundError('Invoice', invoice_id)
    return invoice


def get_invoice_detail(store: BillingStore, principal: Principal, invoice_id) -> InvoiceDetail:
    invoice = get_invoice(store, principal, invoice_id)
    client = store.clients.get(invoice.client_id)
    if client is not None and client.owner_id != principal.id:
        client = None
    payments = store.payments.filter(invoice_id=invoice.id)
    return InvoiceDetail(
        invoice=invoice,
        client=client,
        amount_paid=calculations.round_money(calculations.total_paid(payments)),
        balance_due=calculations.round_money(calculations.balance_due(invoice.total_amount, payments)),
    )


def create_invoice(store: BillingStore, principal: Principal, **data) -> InvoiceRecord:
    values = _prepare_invoice(store, principal, data)
    now = timezone.now()
    invoice = store.invoices.add(InvoiceRecord(
        owner_id=principal.id,
        invoice_number=next_invoice_number(store),
        created_at=now,
        updated_at=now,
        **values,
    ))
    logger.info("Invoice created by %s: %s", principal.email, invoice.invoice_number)
    return invoice


def update_invoice(store: BillingStore, principal: Principal, invoice_id, **data) -> InvoiceRecord:
    """Replace every editable field and recompute the total from scratch."""
    invoice_id = _as_uuid(invoice_id, 'invoice_id')
    with store.invoice_lock(invoice_id):
        invoice = get_invoice(store, principal, invoice_id)
        for key, value in _prepare_invoice(store, principal, data).items():
            setattr(invoice, key, value)
        invoice.updated_at = timezone.now()
        invoice = store.invoices.update(invoice)
    logger.info("Invoice updated by %s: %s", principal.email, invoice.invoice_number)
    return invoice


def delete_invoice(store: BillingStore, principal: Principal, invoice_id) -> None:
    invoice_id = _as_uuid(invoice_id, 'invoice_id')
    with store.invoice_lock(invoice_id):
        invoice = get_invoice(store, principal, invoice_id)
        with store.atomic():
            removed = store.payments.delete_where(invoice_id=invoice.id)
            store.invoices.delete(invoice.id)
    logger.info("Invoice deleted by %s: %s (%d payments removed)", principal.email, invoice.invoice_number, removed)


# --- Payments -----------------------------------------------------------------

def record_payment(
    store: BillingStore,
    principal: Principal,
    invoice_id,
    *,
    amount,
    payment_date,
    payment_method: str,
    notes: str = '',
) -> PaymentRecord:
    """
    Append a payment and move the invoice to ``paid`` or ``partially_paid``.

    The whole read-total-then-write-status cycle runs under the invoice lock,
    so concurrent payments against one invoice cannot lose an update.
    """
    amount, payment_date, payment_method = calculations.validate_payment(amount, payment_date, payment_method)
    invoice_id = _as_uuid(invoice_id, 'invoice_id')
    with store.invoice_lock(invoice_id):
        invoice = get_invoice(store, principal, invoice_id)
        now = timezone.now()
        payment = store.payments.add(PaymentRecord(
            invoice_id=invoice.id,
            owner_id=principal.id,
            amount=amount,
            payment_date=payment_date,
            payment_method=payment_method,
            notes=(notes or '').strip(),
            created_at=now,
        ))
        paid = calculations.total_paid(store.payments.filter(invoice_id=invoice.id))
        invoice.status = calculations.status_after_payment(
            invoice.status,
            paid,
            invoice.total_amount,
            override_cancelled=_config('BILLING_PAYMENT_OVERRIDES_CANCELLED', True),
        )
        invoice.updated_at = now
        store.invoices.update(invoice)
    logger.info(
        "Payment recorded for invoice %s by %s: %s (status %s)",
        invoice.invoice_number,
        principal.email,
        payment.amount,
        invoice.status,
    )
    return payment


def list_payments(store: BillingStore, principal: Principal, invoice_id) -> list[PaymentRecord]:
    invoice = get_invoice(store, principal, invoice_id)
    payments = [p for p in store.payments.filter(invoice_id=invoice.id) if p.owner_id == principal.id]
    payments.sort(key=lambda p: (p.payment_date, p.created_at or timezone.now()))
    return payments


def get_payment(store: BillingStore, principal: Principal, payment_id) -> PaymentRecord:
    payment = store.payments.get(_as_uuid(payment_id, 'payment_id'))
    if payment is None or payment.owner_id != principal.id:
        raise NotFoundError('Payment', payment_id)
    return payment


# --- Reports ------------------------------------------------------------------

def _payments_for(store: BillingStore, invoices: Iterable[InvoiceRecord]):
    payments = []
    for invoice in invoices:
        payments.extend(store.payments.filter(invoice_id=invoice.id))
    return reports.index_payments(payments)


def summary_report(store: BillingStore, principal: Principal, *, now: Optional[dt.datetime] = None) -> SummaryReport:
    invoices = store.invoices.filter(owner_id=principal.id)
    return reports.summarize(invoices, _payments_for(store, invoices), now=now or timezone.localtime())


def revenue_report(store: BillingStore, principal: Principal, *, user_id=None) -> list[ClientRevenue]:
    target_id = principal.id if user_id in (None, '') else _as_uuid(user_id, 'user_id')
    if target_id != principal.id and not principal.is_admin:
        raise AuthorizationError('Only administrators can report on another user.')
    invoices = store.invoices.filter(owner_id=target_id)
    clients = store.clients.filter(owner_id=target_id)
    return reports.revenue_by_client(clients, invoices, _payments_for(store, invoices))
