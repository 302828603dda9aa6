import logging

from django.apps import AppConfig
from django.db.models.signals import post_migrate

logger = logging.getLogger(__name__)


def init_mappings_after_migrate(sender, **kwargs):
    """Called automatically after migrations to seed configured product mappings."""
    from .services.product_mapping import ensure_default_product_mappings

    logger.info("[Billing] Running ensure_default_product_mappings() after migrate…")
    ensure_default_product_mappings()


class BillingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'billing'

    def ready(self):
        # Seed mappings from BILLING_DEFAULT_PRODUCT_MAPPINGS after every migrate run
        post_migrate.connect(init_mappings_after_migrate, sender=self)
