"""
Plain records passed between the service layer and the stores.

The service layer never sees ORM instances; each store converts its own rows
to and from these dataclasses, so the same business code runs on any backend.
"""
from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from django.db import models


class Role(models.TextChoices):
    USER = 'user', 'User'
    ADMIN = 'admin', 'Admin'


class InvoiceStatus(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    PARTIALLY_PAID = 'partially_paid', 'Partially paid'
    OVERDUE = 'overdue', 'Overdue'
    CANCELLED = 'cancelled', 'Cancelled'


class RecurrenceFrequency(models.TextChoices):
    DAILY = 'daily', 'Daily'
    WEEKLY = 'weekly', 'Weekly'
    MONTHLY = 'monthly', 'Monthly'
    YEARLY = 'yearly', 'Yearly'
    ONCE = 'once', 'Once'


class InvoiceTemplate(models.TextChoices):
    DEFAULT = 'default', 'Default'
    MODERN = 'modern', 'Modern'
    CLASSIC = 'classic', 'Classic'


@dataclass(frozen=True)
class Principal:
    """Authenticated caller handed over by the identity boundary."""

    id: uuid.UUID
    email: str
    name: str = ''
    roles: tuple[str, ...] = (Role.USER,)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles


@dataclass
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Optional[Decimal] = None


@dataclass
class SettingsRecord:
    user_id: uuid.UUID
    company_name: str = ''
    company_address: str = ''
    company_logo_url: str = ''
    default_currency: str = 'USD'
    default_tax_rate: Decimal = Decimal('0')
    invoice_template: str = InvoiceTemplate.DEFAULT


@dataclass
class ClientRecord:
    owner_id: uuid.UUID
    name: str
    email: str
    phone: str = ''
    address: str = ''
    notes: str = ''
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


@dataclass
class InvoiceRecord:
    owner_id: uuid.UUID
    client_id: uuid.UUID
    # Snapshot of the client's name when the invoice was last saved; it is not
    # refreshed when the client is renamed or deleted.
    client_name: str
    invoice_number: str
    invoice_date: dt.date
    items: list[LineItem]
    total_amount: Decimal
    status: str = InvoiceStatus.DRAFT
    due_date: Optional[dt.date] = None
    notes: str = ''
    currency: str = 'USD'
    global_tax_rate: Optional[Decimal] = None
    is_recurring: bool = False
    recurrence_frequency: str = ''
    recurrence_interval: Optional[int] = None
    recurrence_end_date: Optional[dt.date] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


@dataclass
class PaymentRecord:
    invoice_id: uuid.UUID
    owner_id: uuid.UUID
    amount: Decimal
    payment_date: dt.date
    payment_method: str
    notes: str = ''
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: Optional[dt.datetime] = None


@dataclass
class InvoiceDetail:
    """Invoice plus the figures and client record a document generator needs."""

    invoice: InvoiceRecord
    client: Optional[ClientRecord]
    amount_paid: Decimal
    balance_due: Decimal


@dataclass(frozen=True)
class SummaryReport:
    total_outstanding: Decimal
    total_overdue: Decimal
    paid_last_30_days: Decimal


@dataclass(frozen=True)
class ClientRevenue:
    client_id: uuid.UUID
    client_name: str
    invoice_count: int
    total_revenue: Decimal
