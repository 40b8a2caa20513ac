"""Django Fulfillment configuration.

All settings can be overridden in your Django settings.py.

Example:
    # settings.py
    FULFILLMENT_CATALOG_READER = 'shop.catalog.ShopCatalogReader'
    FULFILLMENT_NOTIFIER = 'shop.telegram.TelegramNotifier'
    FULFILLMENT_ORDER_NUMBER_PREFIX = 'ORD-'
"""

from django.conf import settings


DEFAULTS = {
    # Dotted path to a CatalogReader subclass
    'CATALOG_READER': 'django_fulfillment.catalog.ModelCatalogReader',
    # Dotted path to a BaseNotifier subclass
    'NOTIFIER': 'django_fulfillment.notifier.LoggingNotifier',
    'ORDER_NUMBER_PREFIX': 'ORD-',
    'ORDER_NUMBER_PAD_WIDTH': 6,
    'ORDER_NUMBER_INCLUDE_YEAR': True,
    # How many times the allocator retries after losing candidate rows to a
    # concurrent claim before raising ConflictingUpdateError
    'ALLOCATION_ATTEMPTS': 3,
    # Walk all-auto orders through delivering -> completed after allocation
    'AUTO_COMPLETE': False,
}


def get_setting(name: str, default=None):
    """Get a setting with FULFILLMENT_ prefix.

    Read on every call so tests can override settings.
    """
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f"FULFILLMENT_{name}", default)


# =============================================================================
# DEFAULT SETTINGS REFERENCE
# =============================================================================

# FULFILLMENT_CATALOG_READER = 'django_fulfillment.catalog.ModelCatalogReader'
# FULFILLMENT_NOTIFIER = 'django_fulfillment.notifier.LoggingNotifier'
# FULFILLMENT_ORDER_NUMBER_PREFIX = 'ORD-'
# FULFILLMENT_ORDER_NUMBER_PAD_WIDTH = 6
# FULFILLMENT_ORDER_NUMBER_INCLUDE_YEAR = True
# FULFILLMENT_ALLOCATION_ATTEMPTS = 3
# FULFILLMENT_AUTO_COMPLETE = False
