"""Pytest configuration for django-fulfillment tests."""

from decimal import Decimal

import pytest

from django_fulfillment.models import DeliveryMode, Product
from django_fulfillment.notifier import MemoryNotifier
from django_fulfillment.pool import add_units

STORE = 'store-1'


@pytest.fixture(autouse=True)
def outbox():
    """Empty the in-memory notifier around every test."""
    MemoryNotifier.clear()
    yield MemoryNotifier.outbox
    MemoryNotifier.clear()


@pytest.fixture
def store_id():
    return STORE


def make_product(name, price='100.00', delivery_mode=DeliveryMode.AUTO, store_id=STORE, **extra):
    return Product.objects.create(
        store_id=store_id,
        name=name,
        price=Decimal(price),
        currency=extra.pop('currency', 'RUB'),
        delivery_mode=delivery_mode,
        **extra,
    )


def stock(product, count, prefix='acct'):
    """Add `count` credential units to a product's pool."""
    return add_units(
        product.pk,
        [{'login': f'{prefix}{i}@example.com', 'password': f'pw-{i}'} for i in range(count)],
    )


@pytest.fixture
def auto_product(db):
    """An auto-delivered product (P1)."""
    return make_product(
        "Streaming account, 1 month",
        price='199.00',
        instructions="Log in at example.com and do not change the password.",
    )


@pytest.fixture
def second_auto_product(db):
    return make_product("VPN key, 1 year", price='350.00')


@pytest.fixture
def manual_product(db):
    """A product an operator must confirm (P2)."""
    return make_product("Account upgrade", price='500.00', delivery_mode=DeliveryMode.MANUAL)


@pytest.fixture
def stocked_auto_product(auto_product):
    """auto_product with three free units."""
    stock(auto_product, 3)
    return auto_product


def line(product, quantity=1):
    return {'product_id': str(product.pk), 'quantity': quantity}
