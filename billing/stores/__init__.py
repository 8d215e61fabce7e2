from __future__ import annotations

from functools import lru_cache

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver
from django.utils.module_loading import import_string

from .base import BillingStore, Repository, SettingsRepository

DEFAULT_STORE = 'billing.stores.orm.DjangoStore'


@lru_cache(maxsize=None)
def _load_store(path: str) -> BillingStore:
    return import_string(path)()


def get_store() -> BillingStore:
    """Return the process-wide store named by ``settings.BILLING_STORE``."""
    return _load_store(getattr(settings, 'BILLING_STORE', DEFAULT_STORE))


@receiver(setting_changed)
def _reset_store(setting, **kwargs):
    if setting == 'BILLING_STORE':
        _load_store.cache_clear()


__all__ = ['BillingStore', 'Repository', 'SettingsRepository', 'get_store']
