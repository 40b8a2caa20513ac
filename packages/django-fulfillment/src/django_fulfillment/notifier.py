"""Notifier: what to tell the buyer and the operator, and when.

The engine builds Notification objects and hands them to the configured
notifier (settings.FULFILLMENT_NOTIFIER) through transaction.on_commit(),
so nothing is sent for a transaction that rolls back and no network call
runs while credential rows are locked.

Transport is up to the notifier implementation. Bundled:
- LoggingNotifier: writes to the log, never logs secrets
- MemoryNotifier: keeps an in-process outbox, for tests and local runs
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from django.db import transaction
from django.utils.module_loading import import_string

from django_fulfillment.conf import get_setting

logger = logging.getLogger(__name__)


class Audience:
    BUYER = 'buyer'
    OPERATOR = 'operator'


class Kind:
    CREDENTIALS_DELIVERED = 'credentials_delivered'
    STATUS_CHANGED = 'status_changed'
    ORDER_CANCELLED = 'order_cancelled'
    OPERATOR_MESSAGE = 'operator_message'
    CONFIRMATION_REQUIRED = 'confirmation_required'
    STOCK_SHORTFALL = 'stock_shortfall'


@dataclass(frozen=True)
class Notification:
    """A message the engine wants delivered."""

    kind: str
    audience: str
    store_id: str
    order_id: str
    order_number: str
    buyer_ref: str
    text: str
    payload: dict = field(default_factory=dict)


@dataclass
class SendResult:
    """Result of a send operation."""

    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, provider: str, message_id: str = "") -> "SendResult":
        return cls(success=True, provider=provider, message_id=message_id)

    @classmethod
    def fail(cls, provider: str, error: str) -> "SendResult":
        return cls(success=False, provider=provider, error=error)


class BaseNotifier(ABC):
    """Abstract base class for notifiers."""

    provider_name: str = "base"

    @abstractmethod
    def send(self, notification: Notification) -> SendResult:
        """Deliver a notification and return the result."""
        raise NotImplementedError


class LoggingNotifier(BaseNotifier):
    """Notifier that logs instead of sending (for development)."""

    provider_name = "logging"

    def send(self, notification):
        fake_message_id = f"log-{uuid.uuid4().hex[:12]}"
        logger.info(
            f"NOTIFY {notification.audience} [{notification.kind}] "
            f"order={notification.order_number} buyer={notification.buyer_ref}: "
            f"{notification.text}"
        )
        credentials = notification.payload.get('credentials')
        if credentials:
            logger.debug(f"{len(credentials)} credential(s) attached (not logged)")
        return SendResult.ok(provider=self.provider_name, message_id=fake_message_id)


class MemoryNotifier(BaseNotifier):
    """Notifier that appends to a process-wide outbox."""

    provider_name = "memory"
    outbox: list = []

    def send(self, notification):
        MemoryNotifier.outbox.append(notification)
        return SendResult.ok(
            provider=self.provider_name,
            message_id=f"mem-{len(MemoryNotifier.outbox)}",
        )

    @classmethod
    def clear(cls):
        cls.outbox.clear()


def get_notifier() -> BaseNotifier:
    """Instantiate the configured notifier."""
    notifier_class = import_string(get_setting('NOTIFIER'))
    return notifier_class()


def deliver(notification: Notification) -> SendResult:
    """Send now. Transport failures are logged and reported, not raised.

    By the time this runs the order change is committed; a failed message
    must not turn a successful transition into an error for the caller.
    """
    notifier = get_notifier()
    try:
        result = notifier.send(notification)
    except Exception as e:
        logger.exception(
            f"Notifier {notifier.provider_name} failed for order "
            f"{notification.order_number} ({notification.kind})"
        )
        return SendResult.fail(provider=notifier.provider_name, error=str(e))
    if not result.success:
        logger.warning(
            f"Notifier {result.provider} rejected {notification.kind} for order "
            f"{notification.order_number}: {result.error}"
        )
    return result


def enqueue(notification: Notification) -> None:
    """Send after the current transaction commits."""
    transaction.on_commit(lambda: deliver(notification))


# =============================================================================
# BUILDERS
# =============================================================================


def _base(order, kind, audience, text, payload=None) -> Notification:
    return Notification(
        kind=kind,
        audience=audience,
        store_id=order.store_id,
        order_id=str(order.pk),
        order_number=order.order_number,
        buyer_ref=order.buyer_ref,
        text=text,
        payload=payload or {},
    )


def credentials_delivered(order, units, instructions=None) -> Notification:
    """Buyer message carrying the claimed credentials.

    Args:
        order: The order the units were claimed for
        units: Iterable of CredentialUnit
        instructions: Optional {product_id: text} shown with each product
    """
    instructions = instructions or {}
    names = {item.product_id: item.product_name for item in order.line_items.all()}
    credentials = [
        {
            'product_id': unit.product_id,
            'product_name': names.get(unit.product_id, ''),
            'secret': unit.secret,
            'instructions': instructions.get(unit.product_id, ''),
        }
        for unit in units
    ]
    return _base(
        order,
        Kind.CREDENTIALS_DELIVERED,
        Audience.BUYER,
        f"Your order {order.order_number} is ready.",
        payload={'credentials': credentials},
    )


def status_changed(order, from_status) -> Notification:
    return _base(
        order,
        Kind.STATUS_CHANGED,
        Audience.BUYER,
        f"Order {order.order_number} is now {order.get_status_display().lower()}.",
        payload={'from_status': from_status, 'to_status': order.status},
    )


def order_cancelled(order, reason) -> Notification:
    return _base(
        order,
        Kind.ORDER_CANCELLED,
        Audience.BUYER,
        f"Order {order.order_number} was cancelled: {reason}",
        payload={'reason': reason},
    )


def operator_message(order, text) -> Notification:
    return _base(order, Kind.OPERATOR_MESSAGE, Audience.BUYER, text)


def confirmation_required(order) -> Notification:
    return _base(
        order,
        Kind.CONFIRMATION_REQUIRED,
        Audience.OPERATOR,
        f"Order {order.order_number} needs confirmation.",
    )


def stock_shortfall(order, shortfall) -> Notification:
    products = ", ".join(sorted(shortfall))
    return _base(
        order,
        Kind.STOCK_SHORTFALL,
        Audience.OPERATOR,
        f"Order {order.order_number} is short of stock for: {products}",
        payload={'shortfall': shortfall},
    )
