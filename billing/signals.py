import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .permissions import principal_for
from .services import get_settings
from .stores import get_store

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_settings_for_new_user(sender, instance, created: bool, **kwargs):
    """Every user starts with a settings record carrying the defaults."""
    if kwargs.get('raw') or not created:
        return
    get_settings(get_store(), principal_for(instance))
    logger.debug("Default settings created for %s", instance.email)
