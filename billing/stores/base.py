from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import ContextManager, Generic, Optional, TypeVar

from ..records import ClientRecord, InvoiceRecord, PaymentRecord, SettingsRecord

RecordT = TypeVar('RecordT')


class Repository(ABC, Generic[RecordT]):
    """Storage for one record type, keyed by ``id``."""

    @abstractmethod
    def add(self, record: RecordT) -> RecordT:
        """Insert ``record`` and return the stored copy."""

    @abstractmethod
    def get(self, record_id: uuid.UUID) -> Optional[RecordT]:
        """Return the record or None."""

    @abstractmethod
    def update(self, record: RecordT) -> RecordT:
        """Replace the stored record with the same id and return the stored copy."""

    @abstractmethod
    def delete(self, record_id: uuid.UUID) -> bool:
        """Remove the record; False when nothing was stored under ``record_id``."""

    @abstractmethod
    def filter(self, **criteria) -> list[RecordT]:
        """Records whose attributes equal every value in ``criteria``."""

    def delete_where(self, **criteria) -> int:
        removed = 0
        for record in self.filter(**criteria):
            if self.delete(record.id):
                removed += 1
        return removed


class SettingsRepository(ABC):
    @abstractmethod
    def get(self, user_id: uuid.UUID) -> Optional[SettingsRecord]:
        pass

    @abstractmethod
    def save(self, record: SettingsRecord) -> SettingsRecord:
        pass


class BillingStore(ABC):
    """
    Persistence boundary for the billing services.

    Implementations must make ``next_sequence`` atomic and make
    ``invoice_lock`` exclusive per invoice id; everything else is plain CRUD.
    """

    clients: Repository[ClientRecord]
    invoices: Repository[InvoiceRecord]
    payments: Repository[PaymentRecord]
    settings: SettingsRepository

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Increment the named counter and return its new value, starting at 1."""

    @abstractmethod
    def invoice_lock(self, invoice_id: uuid.UUID) -> ContextManager[None]:
        """Serialise read-modify-write cycles on one invoice."""

    @abstractmethod
    def atomic(self) -> ContextManager[None]:
        """Group several writes so they land together."""
