"""Django Fulfillment - Digital goods orders with credential allocation.

Provides:
- Product: Store catalog entry (auto or manual delivery)
- Order / OrderLineItem: Orders with immutable price snapshots
- CredentialUnit: Allocatable secrets, claimed exactly once
- OrderEvent: Append-only audit trail of order changes
- OrderSequence: Per-store order numbering

Usage:
    INSTALLED_APPS = [
        ...
        'django_fulfillment',
    ]

    # Optional overrides
    FULFILLMENT_NOTIFIER = 'myapp.notify.TelegramNotifier'
    FULFILLMENT_CATALOG_READER = 'myapp.catalog.ShopCatalogReader'

See conf.py for all configuration options and api.py for the public API.
"""

__version__ = "0.1.0"
