from __future__ import annotations

import copy
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from typing import Iterator, Optional

from ..exceptions import ConflictError, NotFoundError
from ..records import SettingsRecord
from .base import BillingStore, Repository, RecordT, SettingsRepository


class InMemoryRepository(Repository[RecordT]):
    def __init__(self, resource: str, lock: threading.RLock, unique_together: tuple[tuple[str, ...], ...] = ()):
        self.resource = resource
        self._lock = lock
        self._rows: dict[uuid.UUID, RecordT] = {}
        self._unique_together = unique_together

    def _check_unique(self, record: RecordT) -> None:
        for fields in self._unique_together:
            key = tuple(getattr(record, name) for name in fields)
            for row in self._rows.values():
                if row.id != record.id and tuple(getattr(row, name) for name in fields) == key:
                    raise ConflictError(
                        f"{self.resource} with this {' and '.join(fields)} already exists.",
                        field=fields[-1],
                    )

    def add(self, record: RecordT) -> RecordT:
        with self._lock:
            if record.id in self._rows:
                raise ConflictError(f"{self.resource} {record.id} already exists.", field='id')
            self._check_unique(record)
            self._rows[record.id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def get(self, record_id: uuid.UUID) -> Optional[RecordT]:
        with self._lock:
            row = self._rows.get(record_id)
            return copy.deepcopy(row) if row is not None else None

    def update(self, record: RecordT) -> RecordT:
        with self._lock:
            if record.id not in self._rows:
                raise NotFoundError(self.resource, record.id)
            self._check_unique(record)
            self._rows[record.id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def delete(self, record_id: uuid.UUID) -> bool:
        with self._lock:
            return self._rows.pop(record_id, None) is not None

    def filter(self, **criteria) -> list[RecordT]:
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._rows.values()
                if all(getattr(row, name) == value for name, value in criteria.items())
            ]

    def __contains__(self, record_id) -> bool:
        with self._lock:
            return record_id in self._rows


class InMemorySettingsRepository(SettingsRepository):
    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._rows: dict[uuid.UUID, SettingsRecord] = {}

    def get(self, user_id: uuid.UUID) -> Optional[SettingsRecord]:
        with self._lock:
            row = self._rows.get(user_id)
            return copy.deepcopy(row) if row is not None else None

    def save(self, record: SettingsRecord) -> SettingsRecord:
        with self._lock:
            self._rows[record.user_id] = copy.deepcopy(record)
            return copy.deepcopy(record)


class InMemoryStore(BillingStore):
    """Process-local store for tests and single-process demos."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: dict[str, int] = defaultdict(int)
        self._invoice_locks: dict[uuid.UUID, threading.Lock] = {}
        self.clients = InMemoryRepository('Client', self._lock, unique_together=(('owner_id', 'email'),))
        self.invoices = InMemoryRepository('Invoice', self._lock, unique_together=(('invoice_number',),))
        self.payments = InMemoryRepository('Payment', self._lock)
        self.settings = InMemorySettingsRepository(self._lock)

    def next_sequence(self, name: str) -> int:
        with self._lock:
            self._counters[name] += 1
            return self._counters[name]

    @contextmanager
    def invoice_lock(self, invoice_id: uuid.UUID) -> Iterator[None]:
        with self._lock:
            lock = self._invoice_locks.setdefault(invoice_id, threading.Lock())
        try:
            with lock:
                yield
        finally:
            with self._lock:
                # Deleted or unknown invoices do not keep a lock around.
                if invoice_id not in self.invoices and self._invoice_locks.get(invoice_id) is lock:
                    del self._invoice_locks[invoice_id]

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            yield
