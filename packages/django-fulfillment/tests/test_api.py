"""Tests for the public API."""
import dataclasses
from unittest import mock

import pytest
from django.db import OperationalError

from django_fulfillment import api
from django_fulfillment.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from django_fulfillment.money import Money
from tests.conftest import STORE, line, stock


@pytest.mark.django_db
class TestCreateOrder:

    def test_returns_id_number_and_total(self, stocked_auto_product):
        result = api.create_order(STORE, [line(stocked_auto_product, 2)], buyer_ref='tg:1')
        assert set(result) == {'order_id', 'order_number', 'total'}
        assert result['total'] == Money('398.00', 'RUB')
        assert result['order_number'].startswith('ORD-')

    def test_checkout_details_kept(self, stocked_auto_product):
        result = api.create_order(
            STORE,
            [line(stocked_auto_product)],
            buyer_ref='tg:1',
            buyer_name='Ivan',
            payment_method='card',
        )
        view = api.get_order(result['order_id'])
        assert view.buyer_name == 'Ivan'
        assert view.payment_method == 'card'

    def test_validation_error_propagates(self, db):
        with pytest.raises(ValidationError):
            api.create_order(STORE, [], buyer_ref='tg:1')


@pytest.mark.django_db
class TestOrderView:

    def test_view_fields(self, stocked_auto_product, manual_product):
        result = api.create_order(
            STORE, [line(stocked_auto_product, 2), line(manual_product)], buyer_ref='tg:1'
        )
        view = api.get_order(result['order_id'])

        assert view.status == 'new'
        assert view.needs_confirmation is True
        assert not view.is_terminal
        assert [item.allocated for item in view.line_items] == [2, 0]
        assert list(view.allocation) == [str(stocked_auto_product.pk)]
        assert len(view.allocation[str(stocked_auto_product.pk)]) == 2
        assert view.line_items[0].line_total == Money('398.00', 'RUB')

    def test_view_is_frozen(self, stocked_auto_product):
        result = api.create_order(STORE, [line(stocked_auto_product)], buyer_ref='tg:1')
        view = api.get_order(result['order_id'])
        with pytest.raises(dataclasses.FrozenInstanceError):
            view.status = 'cancelled'

    def test_view_carries_no_secrets(self, stocked_auto_product):
        result = api.create_order(STORE, [line(stocked_auto_product)], buyer_ref='tg:1')
        view = api.get_order(result['order_id'])
        assert 'acct0@example.com' not in repr(view)

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            api.get_order('00000000-0000-0000-0000-000000000000')


@pytest.mark.django_db
class TestMixedOrderScenario:
    """Auto + manual order walked through by an operator."""

    def test_full_flow(self, auto_product, manual_product):
        stock(auto_product, 3)
        stock(manual_product, 1, prefix='upg')

        result = api.create_order(
            STORE, [line(auto_product, 1), line(manual_product, 1)], buyer_ref='tg:1'
        )
        order_id = result['order_id']
        assert result['total'] == Money('699.00', 'RUB')

        pending = api.list_orders(store_id=STORE, pending_attention=True)
        assert [v.order_id for v in pending] == [order_id]

        view = api.confirm_order(order_id, actor='op:anna')
        assert view.status == 'processing'
        assert [item.allocated for item in view.line_items] == [1, 1]
        assert api.list_orders(store_id=STORE, pending_attention=True) == []

        api.annotate(order_id, 'Credentials sent, enjoy', actor='op:anna')
        view = api.advance_order(order_id, 'delivering', actor='op:anna')
        view = api.advance_order(order_id, 'completed', actor='op:anna')
        assert view.is_terminal
        assert 'Message to buyer: Credentials sent, enjoy' in view.notes

        with pytest.raises(InvalidTransitionError):
            api.annotate(order_id, 'Anything else?')
        api.add_note(order_id, 'Closed', actor='op:anna')
        assert api.get_order(order_id).notes.endswith('op:anna: Closed')

    def test_cancel(self, stocked_auto_product):
        result = api.create_order(STORE, [line(stocked_auto_product)], buyer_ref='tg:1')
        view = api.cancel_order(result['order_id'], reason='Fraud check failed')
        assert view.status == 'cancelled'
        assert view.cancel_reason == 'Fraud check failed'
        assert [item.allocated for item in view.line_items] == [0]


@pytest.mark.django_db
class TestStorageErrors:

    def test_database_error_wrapped(self, stocked_auto_product):
        with mock.patch(
            'django_fulfillment.lifecycle.place_order',
            side_effect=OperationalError('database is locked'),
        ):
            with pytest.raises(StorageError) as exc_info:
                api.create_order(STORE, [line(stocked_auto_product)], buyer_ref='tg:1')
        assert isinstance(exc_info.value.__cause__, OperationalError)
