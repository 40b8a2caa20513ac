"""Tests for fulfillment models."""
from datetime import date
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction

from django_fulfillment.exceptions import ImmutableSnapshotError
from django_fulfillment.ledger import create_order
from django_fulfillment.models import (
    CredentialUnit,
    DeliveryMode,
    Order,
    OrderSequence,
    OrderStatus,
)
from django_fulfillment.money import Money
from tests.conftest import STORE, line, stock


@pytest.mark.django_db
class TestOrderLineItem:
    """Line items are snapshots."""

    def test_line_total(self, auto_product):
        order = create_order(STORE, [line(auto_product, 2)], buyer_ref='tg:1')
        item = order.line_items.get()
        assert item.line_total == Money("398.00", "RUB")

    def test_saved_line_item_cannot_be_modified(self, auto_product):
        order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        item = order.line_items.get()
        item.quantity = 5
        with pytest.raises(ImmutableSnapshotError):
            item.save()

    def test_snapshot_survives_catalog_change(self, auto_product):
        order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        auto_product.price = Decimal('999.00')
        auto_product.delivery_mode = DeliveryMode.MANUAL
        auto_product.save()

        item = order.line_items.get()
        assert item.unit_price == Decimal('199.00')
        assert item.delivery_mode == DeliveryMode.AUTO
        assert not order.needs_confirmation


@pytest.mark.django_db
class TestOrder:
    """Tests for the Order model."""

    def test_defaults(self, auto_product):
        order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        assert order.status == OrderStatus.NEW
        assert order.version == 1
        assert order.notes == ''
        assert order.stock_shortfall is False
        assert not order.is_terminal

    def test_total_property(self, auto_product):
        order = create_order(STORE, [line(auto_product, 3)], buyer_ref='tg:1')
        assert order.total == Money("597.00", "RUB")

    def test_needs_confirmation_computed_from_items(self, auto_product, manual_product):
        auto_order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        mixed_order = create_order(
            STORE, [line(auto_product), line(manual_product)], buyer_ref='tg:1'
        )
        assert auto_order.needs_confirmation is False
        assert mixed_order.needs_confirmation is True

    def test_is_terminal_from_db_value(self, auto_product):
        order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        Order.objects.filter(pk=order.pk).update(status='completed')
        order.refresh_from_db()
        assert order.is_terminal

    def test_order_number_unique_per_store(self, auto_product):
        order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        with pytest.raises(IntegrityError), transaction.atomic():
            Order.objects.create(
                store_id=STORE,
                order_number=order.order_number,
                total_amount=Decimal('1'),
                currency='RUB',
                buyer_ref='tg:2',
            )

    def test_pending_attention_queryset(self, auto_product, manual_product):
        auto_order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        manual_order = create_order(STORE, [line(manual_product)], buyer_ref='tg:1')
        short_order = create_order(STORE, [line(auto_product)], buyer_ref='tg:1')
        Order.objects.filter(pk=short_order.pk).update(stock_shortfall=True)

        pending = set(Order.objects.pending_attention().values_list('pk', flat=True))
        assert pending == {manual_order.pk, short_order.pk}
        assert auto_order.pk not in pending


@pytest.mark.django_db
class TestCredentialUnit:
    """Tests for the CredentialUnit model."""

    def test_claimed_unit_requires_order(self, auto_product):
        unit = stock(auto_product, 1)[0]
        with pytest.raises(IntegrityError), transaction.atomic():
            CredentialUnit.objects.filter(pk=unit.pk).update(claimed=True)

    def test_free_queryset(self, auto_product, second_auto_product):
        stock(auto_product, 2)
        stock(second_auto_product, 1)
        assert CredentialUnit.objects.for_product(auto_product.pk).free().count() == 2


@pytest.mark.django_db
class TestOrderSequence:
    """Tests for OrderSequence formatting."""

    def test_formatted_value_with_year(self):
        seq = OrderSequence(store_id=STORE, prefix='ORD-', current_value=42)
        assert seq.formatted_value == f"ORD-{date.today().year}-000042"

    def test_formatted_value_without_year(self):
        seq = OrderSequence(
            store_id=STORE, prefix='A', current_value=7, pad_width=3, include_year=False
        )
        assert seq.formatted_value == "A007"
