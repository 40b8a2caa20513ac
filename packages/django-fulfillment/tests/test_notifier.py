"""Tests for buyer and operator notifications."""
import logging

import pytest

from django_fulfillment import lifecycle, notifier
from django_fulfillment.exceptions import InsufficientStockError
from django_fulfillment.notifier import (
    Audience,
    BaseNotifier,
    Kind,
    LoggingNotifier,
    MemoryNotifier,
    Notification,
    SendResult,
)
from tests.conftest import STORE, line, stock


class ExplodingNotifier(BaseNotifier):
    provider_name = "exploding"

    def send(self, notification):
        raise ConnectionError("chat API unreachable")


def kinds(outbox):
    return [n.kind for n in outbox]


@pytest.mark.django_db
class TestNotificationsOnCommit:
    """Notifications go out after the transaction commits."""

    def test_auto_order_delivers_credentials(
        self, stocked_auto_product, outbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            order = lifecycle.place_order(STORE, [line(stocked_auto_product, 2)], 'tg:1')

        assert kinds(outbox) == [Kind.CREDENTIALS_DELIVERED, Kind.STATUS_CHANGED]
        delivered = outbox[0]
        assert delivered.audience == Audience.BUYER
        assert delivered.buyer_ref == 'tg:1'
        assert delivered.order_number == order.order_number
        credentials = delivered.payload['credentials']
        assert len(credentials) == 2
        assert credentials[0]['secret']['login'].endswith('@example.com')
        assert credentials[0]['instructions'] == stocked_auto_product.instructions
        assert credentials[0]['product_name'] == stocked_auto_product.name

    def test_nothing_sent_before_commit(self, stocked_auto_product, outbox, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks() as callbacks:
            lifecycle.place_order(STORE, [line(stocked_auto_product)], 'tg:1')
        assert outbox == []
        assert len(callbacks) == 2

    def test_manual_order_notifies_operator(
        self, manual_product, outbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.place_order(STORE, [line(manual_product)], 'tg:1')
        assert kinds(outbox) == [Kind.CONFIRMATION_REQUIRED]
        assert outbox[0].audience == Audience.OPERATOR

    def test_shortfall_notifies_operator_only(
        self, auto_product, outbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.place_order(STORE, [line(auto_product, 2)], 'tg:1')
        assert kinds(outbox) == [Kind.STOCK_SHORTFALL]
        assert outbox[0].payload['shortfall'][str(auto_product.pk)]['available'] == 0

    def test_mixed_order_short_of_stock_alerts_both(
        self, auto_product, manual_product, outbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.place_order(STORE, [line(auto_product), line(manual_product)], 'tg:1')
        assert kinds(outbox) == [Kind.STOCK_SHORTFALL, Kind.CONFIRMATION_REQUIRED]
        assert {n.audience for n in outbox} == {Audience.OPERATOR}

    def test_cancel_notifies_buyer(
        self, stocked_auto_product, outbox, django_capture_on_commit_callbacks
    ):
        order = lifecycle.place_order(STORE, [line(stocked_auto_product)], 'tg:1')
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.cancel_order(order.pk, reason='Buyer asked')
        assert kinds(outbox) == [Kind.ORDER_CANCELLED]
        assert 'Buyer asked' in outbox[0].text
        assert 'credentials' not in outbox[0].payload

    def test_message_to_buyer(self, stocked_auto_product, outbox, django_capture_on_commit_callbacks):
        order = lifecycle.place_order(STORE, [line(stocked_auto_product)], 'tg:1')
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.send_message(order.pk, 'Check your inbox', actor='op:anna')
        assert kinds(outbox) == [Kind.OPERATOR_MESSAGE]
        assert outbox[0].text == 'Check your inbox'

    def test_advance_notifies_status(self, stocked_auto_product, outbox, django_capture_on_commit_callbacks):
        order = lifecycle.place_order(STORE, [line(stocked_auto_product)], 'tg:1')
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.advance_order(order.pk, 'delivering')
        assert kinds(outbox) == [Kind.STATUS_CHANGED]
        assert outbox[0].payload == {'from_status': 'processing', 'to_status': 'delivering'}

    def test_failed_confirm_sends_no_credentials(
        self, manual_product, outbox, django_capture_on_commit_callbacks
    ):
        order = lifecycle.place_order(STORE, [line(manual_product)], 'tg:1')
        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(InsufficientStockError):
                lifecycle.confirm_order(order.pk)
        assert kinds(outbox) == [Kind.STOCK_SHORTFALL]

    def test_confirm_delivers_all_units(
        self, stocked_auto_product, manual_product, outbox, django_capture_on_commit_callbacks
    ):
        stock(manual_product, 1, prefix='upg')
        order = lifecycle.place_order(
            STORE, [line(stocked_auto_product), line(manual_product)], 'tg:1'
        )
        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.confirm_order(order.pk, actor='op:anna')
        delivered = outbox[0]
        assert delivered.kind == Kind.CREDENTIALS_DELIVERED
        assert {c['product_id'] for c in delivered.payload['credentials']} == {
            str(stocked_auto_product.pk),
            str(manual_product.pk),
        }


class TestDeliver:
    """deliver() never raises into the caller."""

    def notification(self):
        return Notification(
            kind=Kind.STATUS_CHANGED,
            audience=Audience.BUYER,
            store_id=STORE,
            order_id='1',
            order_number='ORD-1',
            buyer_ref='tg:1',
            text='Order ORD-1 is now processing.',
        )

    def test_memory_notifier(self, outbox):
        result = notifier.deliver(self.notification())
        assert result.success
        assert result.provider == 'memory'
        assert len(outbox) == 1

    def test_transport_failure_is_reported(self, settings, caplog):
        settings.FULFILLMENT_NOTIFIER = 'tests.test_notifier.ExplodingNotifier'
        with caplog.at_level(logging.ERROR, logger='django_fulfillment.notifier'):
            result = notifier.deliver(self.notification())
        assert not result.success
        assert 'unreachable' in result.error
        assert 'ORD-1' in caplog.text

    def test_logging_notifier_hides_secrets(self, caplog):
        n = Notification(
            kind=Kind.CREDENTIALS_DELIVERED,
            audience=Audience.BUYER,
            store_id=STORE,
            order_id='1',
            order_number='ORD-1',
            buyer_ref='tg:1',
            text='Your order ORD-1 is ready.',
            payload={'credentials': [{'secret': {'password': 'hunter2'}}]},
        )
        with caplog.at_level(logging.DEBUG, logger='django_fulfillment.notifier'):
            result = LoggingNotifier().send(n)
        assert result.success
        assert 'hunter2' not in caplog.text

    def test_send_result_helpers(self):
        assert SendResult.ok('x', 'id-1').message_id == 'id-1'
        assert SendResult.fail('x', 'boom').error == 'boom'

    def test_get_notifier_uses_setting(self):
        assert isinstance(notifier.get_notifier(), MemoryNotifier)
