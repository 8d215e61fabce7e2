from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from django.db import IntegrityError, transaction
from django.db.models import F

from ..exceptions import ConflictError, NotFoundError
from ..models import Client, Invoice, InvoiceLine, Payment, Sequence, UserSettings
from ..records import ClientRecord, InvoiceRecord, LineItem, PaymentRecord, SettingsRecord
from .base import BillingStore, Repository, SettingsRepository

CLIENT_FIELDS = ('name', 'email', 'phone', 'address', 'notes')
INVOICE_FIELDS = (
    'client_id',
    'client_name',
    'invoice_number',
    'invoice_date',
    'due_date',
    'notes',
    'currency',
    'global_tax_rate',
    'is_recurring',
    'recurrence_frequency',
    'recurrence_interval',
    'recurrence_end_date',
    'total_amount',
    'status',
)
PAYMENT_FIELDS = ('amount', 'payment_date', 'payment_method', 'notes')
SETTINGS_FIELDS = (
    'company_name',
    'company_address',
    'company_logo_url',
    'default_currency',
    'default_tax_rate',
    'invoice_template',
)


class ModelRepository(Repository):
    model = None
    resource = ''
    fields: tuple[str, ...] = ()

    def to_record(self, obj):
        raise NotImplementedError

    def get_queryset(self):
        return self.model.objects.all()

    def _save(self, obj, **kwargs):
        try:
            with transaction.atomic():
                obj.save(**kwargs)
        except IntegrityError as exc:
            raise ConflictError(f"{self.resource} conflicts with an existing record.") from exc

    def add(self, record):
        obj = self.model(id=record.id, owner_id=record.owner_id, **{name: getattr(record, name) for name in self.fields})
        self._save(obj, force_insert=True)
        return self.to_record(obj)

    def get(self, record_id: uuid.UUID):
        obj = self.get_queryset().filter(pk=record_id).first()
        return self.to_record(obj) if obj else None

    def update(self, record):
        obj = self.get_queryset().filter(pk=record.id).first()
        if obj is None:
            raise NotFoundError(self.resource, record.id)
        for name in self.fields:
            setattr(obj, name, getattr(record, name))
        self._save(obj)
        return self.to_record(obj)

    def delete(self, record_id: uuid.UUID) -> bool:
        deleted, _ = self.model.objects.filter(pk=record_id).delete()
        return bool(deleted)

    def filter(self, **criteria) -> list:
        return [self.to_record(obj) for obj in self.get_queryset().filter(**criteria)]


class ClientRepository(ModelRepository):
    model = Client
    resource = 'Client'
    fields = CLIENT_FIELDS

    def to_record(self, obj: Client) -> ClientRecord:
        return ClientRecord(
            id=obj.id,
            owner_id=obj.owner_id,
            created_at=obj.created_at,
            updated_at=obj.updated_at,
            **{name: getattr(obj, name) for name in self.fields},
        )


class InvoiceRepository(ModelRepository):
    model = Invoice
    resource = 'Invoice'
    fields = INVOICE_FIELDS

    def get_queryset(self):
        return Invoice.objects.prefetch_related('lines')

    def to_record(self, obj: Invoice) -> InvoiceRecord:
        items = [
            LineItem(
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
            )
            for line in obj.lines.all()
        ]
        return InvoiceRecord(
            id=obj.id,
            owner_id=obj.owner_id,
            items=items,
            created_at=obj.created_at,
            updated_at=obj.updated_at,
            **{name: getattr(obj, name) for name in self.fields},
        )

    def _write_lines(self, invoice: Invoice, items: list[LineItem]) -> None:
        invoice.lines.all().delete()
        InvoiceLine.objects.bulk_create([
            InvoiceLine(
                invoice=invoice,
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                tax_rate=item.tax_rate,
            )
            for position, item in enumerate(items)
        ])

    def add(self, record: InvoiceRecord) -> InvoiceRecord:
        with transaction.atomic():
            obj = Invoice(id=record.id, owner_id=record.owner_id, **{name: getattr(record, name) for name in self.fields})
            self._save(obj, force_insert=True)
            self._write_lines(obj, record.items)
        return self.get(obj.pk)

    def update(self, record: InvoiceRecord) -> InvoiceRecord:
        with transaction.atomic():
            obj = Invoice.objects.filter(pk=record.id).first()
            if obj is None:
                raise NotFoundError(self.resource, record.id)
            for name in self.fields:
                setattr(obj, name, getattr(record, name))
            self._save(obj)
            self._write_lines(obj, record.items)
        return self.get(obj.pk)


class PaymentRepository(ModelRepository):
    model = Payment
    resource = 'Payment'
    fields = PAYMENT_FIELDS

    def add(self, record: PaymentRecord) -> PaymentRecord:
        obj = Payment(
            id=record.id,
            invoice_id=record.invoice_id,
            owner_id=record.owner_id,
            **{name: getattr(record, name) for name in self.fields},
        )
        self._save(obj, force_insert=True)
        return self.to_record(obj)

    def to_record(self, obj: Payment) -> PaymentRecord:
        return PaymentRecord(
            id=obj.id,
            invoice_id=obj.invoice_id,
            owner_id=obj.owner_id,
            created_at=obj.created_at,
            **{name: getattr(obj, name) for name in self.fields},
        )


class DjangoSettingsRepository(SettingsRepository):
    def get(self, user_id: uuid.UUID) -> Optional[SettingsRecord]:
        obj = UserSettings.objects.filter(user_id=user_id).first()
        if obj is None:
            return None
        return SettingsRecord(user_id=obj.user_id, **{name: getattr(obj, name) for name in SETTINGS_FIELDS})

    def save(self, record: SettingsRecord) -> SettingsRecord:
        UserSettings.objects.update_or_create(
            user_id=record.user_id,
            defaults={name: getattr(record, name) for name in SETTINGS_FIELDS},
        )
        return self.get(record.user_id)


class DjangoStore(BillingStore):
    """Store backed by the project database through the Django ORM."""

    def __init__(self):
        self.clients = ClientRepository()
        self.invoices = InvoiceRepository()
        self.payments = PaymentRepository()
        self.settings = DjangoSettingsRepository()

    def next_sequence(self, name: str) -> int:
        with transaction.atomic():
            Sequence.objects.get_or_create(name=name)
            counter = Sequence.objects.select_for_update().get(name=name)
            counter.value = F('value') + 1
            counter.save(update_fields=['value'])
            counter.refresh_from_db(fields=['value'])
            return counter.value

    @contextmanager
    def invoice_lock(self, invoice_id: uuid.UUID) -> Iterator[None]:
        with transaction.atomic():
            # Row lock on backends that support it; SQLite serialises writers anyway.
            list(Invoice.objects.select_for_update().filter(pk=invoice_id).values_list('pk', flat=True))
            yield

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with transaction.atomic():
            yield
