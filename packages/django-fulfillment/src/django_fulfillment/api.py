"""Public API for order fulfillment.

This is the interface for storefronts and operator tools. Import and use
these functions:

    from django_fulfillment import api

    # Storefront checkout
    result = api.create_order(store_id, [{'product_id': pid, 'quantity': 2}], buyer_ref='tg:42')

    # Operator actions
    api.confirm_order(result['order_id'], actor='op:anna')
    api.advance_order(result['order_id'], 'delivering', actor='op:anna')
    api.cancel_order(result['order_id'], reason='Buyer asked', actor='op:anna')
    api.annotate(result['order_id'], 'Please reply with your email', actor='op:anna')

Views returned here never carry credential secrets; those travel only in
the buyer notification.
"""
import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.db import DatabaseError

from . import lifecycle, pool
from .exceptions import StorageError
from .ledger import get_order as _get_order
from .ledger import list_orders as _list_orders
from .models import TERMINAL_STATUSES, DeliveryMode, Order, OrderStatus
from .money import Money


@dataclass(frozen=True)
class LineItemView:
    position: int
    product_id: str
    product_name: str
    unit_price: Money
    quantity: int
    line_total: Money
    delivery_mode: str
    allocated: int


@dataclass(frozen=True)
class OrderView:
    """Read-only snapshot of an order for callers outside the engine."""

    order_id: str
    store_id: str
    order_number: str
    status: str
    total: Money
    buyer_ref: str
    buyer_name: str
    contact_phone: str
    customer_notes: str
    payment_method: str
    needs_confirmation: bool
    stock_shortfall: bool
    shortfall: dict
    notes: str
    cancel_reason: str
    line_items: tuple
    allocation: dict
    created_at: datetime
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES


def _storage_errors(func):
    """Re-raise database failures as StorageError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DatabaseError as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e

    return wrapper


def to_view(order: Order) -> OrderView:
    """Build an OrderView from an Order."""
    summary = pool.allocation_summary(order)
    items = tuple(
        LineItemView(
            position=item.position,
            product_id=item.product_id,
            product_name=item.product_name,
            unit_price=Money(item.unit_price, item.currency),
            quantity=item.quantity,
            line_total=item.line_total,
            delivery_mode=item.delivery_mode,
            allocated=len(summary.get(item.product_id, [])),
        )
        for item in order.line_items.all()
    )
    return OrderView(
        order_id=str(order.pk),
        store_id=order.store_id,
        order_number=order.order_number,
        status=str(order.status),
        total=order.total,
        buyer_ref=order.buyer_ref,
        buyer_name=order.buyer_name,
        contact_phone=order.contact_phone,
        customer_notes=order.customer_notes,
        payment_method=order.payment_method,
        needs_confirmation=any(item.delivery_mode == DeliveryMode.MANUAL for item in items),
        stock_shortfall=order.stock_shortfall,
        shortfall=dict(order.shortfall_detail or {}),
        notes=order.notes,
        cancel_reason=order.cancel_reason,
        line_items=items,
        allocation=summary,
        created_at=order.created_at,
        confirmed_at=order.confirmed_at,
        completed_at=order.completed_at,
        cancelled_at=order.cancelled_at,
    )


@_storage_errors
def create_order(store_id, items, buyer_ref, **details) -> dict:
    """Checkout: create an order and run automatic fulfillment.

    Args:
        store_id: The store selling the items
        items: [{'product_id': ..., 'quantity': n}, ...]
        buyer_ref: Opaque buyer reference
        **details: buyer_name, contact_phone, customer_notes, payment_method

    Returns:
        {'order_id': str, 'order_number': str, 'total': Money}
    """
    order = lifecycle.place_order(store_id, items, buyer_ref, **details)
    return {
        'order_id': str(order.pk),
        'order_number': order.order_number,
        'total': order.total,
    }


@_storage_errors
def get_order(order_id) -> OrderView:
    return to_view(_get_order(order_id))


@_storage_errors
def list_orders(**filters) -> list:
    """Orders matching the filters of ledger.list_orders, as views."""
    return [to_view(order) for order in _list_orders(**filters)]


@_storage_errors
def confirm_order(order_id, actor: str = '') -> OrderView:
    return to_view(lifecycle.confirm_order(order_id, actor=actor))


@_storage_errors
def advance_order(order_id, to_status: str, actor: str = '') -> OrderView:
    return to_view(lifecycle.advance_order(order_id, to_status, actor=actor))


@_storage_errors
def cancel_order(order_id, reason: str, actor: str = '') -> OrderView:
    return to_view(lifecycle.cancel_order(order_id, reason, actor=actor))


@_storage_errors
def annotate(order_id, text: str, actor: str = '') -> None:
    """Send a message to the buyer; it is also kept in the order notes."""
    lifecycle.send_message(order_id, text, actor=actor)


@_storage_errors
def add_note(order_id, text: str, actor: str = '') -> None:
    """Internal operator note, not shown to the buyer."""
    lifecycle.add_note(order_id, text, actor=actor)
