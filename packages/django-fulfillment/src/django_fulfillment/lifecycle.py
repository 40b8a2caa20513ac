"""Fulfillment state machine.

    new -> processing -> delivering -> completed
    new -> cancelled
    processing -> cancelled

`completed` and `cancelled` are terminal. Every transition runs in one
transaction holding the order row lock (select_for_update), so a cancel and
a confirm on the same order never interleave. Status writes are also checked
against `Order.version`; a stale write raises ConflictingUpdateError.

Classification is computed, never stored: an order needs confirmation iff
one of its line items is `manual`.

- all-auto order with stock: allocated at checkout and moved to processing
- any shortfall: stays new, flagged, no units kept
- manual or mixed order: auto items allocated at checkout, the rest waits for
  an operator's confirm_order() or cancel_order()
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from django_fulfillment import notifier, pool
from django_fulfillment.catalog import get_catalog_reader
from django_fulfillment.conf import get_setting
from django_fulfillment.exceptions import (
    ConflictingUpdateError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from django_fulfillment.ledger import (
    next_order_number,
    prepare_order,
    record_event,
    save_order,
    update_notes,
)
from django_fulfillment.models import Order, OrderEvent, OrderStatus

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    OrderStatus.NEW: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.DELIVERING, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERING: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Operator-driven forward steps after confirmation
ADVANCE_STEPS = {
    OrderStatus.PROCESSING: OrderStatus.DELIVERING,
    OrderStatus.DELIVERING: OrderStatus.COMPLETED,
}


def needs_confirmation(order: Order) -> bool:
    return order.needs_confirmation


def can_transition(from_status: str, to_status: str) -> bool:
    try:
        return OrderStatus(to_status) in ALLOWED_TRANSITIONS[OrderStatus(from_status)]
    except ValueError:
        return False


def _order_pk(order_or_id):
    return order_or_id.pk if isinstance(order_or_id, Order) else order_or_id


def _lock(order_or_id) -> Order:
    """Re-read an order under a row lock. Must run inside a transaction."""
    order_id = _order_pk(order_or_id)
    try:
        return Order.objects.select_for_update().get(pk=order_id)
    except (Order.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError(f"Order {order_id} not found")


def _check_transition(order: Order, to_status: str) -> None:
    if order.is_terminal:
        raise InvalidTransitionError(
            f"Order {order.order_number} is {order.status}; no further transitions",
            current_status=order.status,
            requested_status=to_status,
        )
    if not can_transition(order.status, to_status):
        raise InvalidTransitionError(
            f"Order {order.order_number} cannot go from {order.status} to {to_status}",
            current_status=order.status,
            requested_status=to_status,
        )


def _save(order: Order, **fields) -> Order:
    """Write fields with a version check and bump the version."""
    now = timezone.now()
    if 'status' in fields:
        fields['status'] = OrderStatus(fields['status']).value
    updated = Order.objects.filter(pk=order.pk, version=order.version).update(
        version=F('version') + 1,
        updated_at=now,
        **fields,
    )
    if updated != 1:
        raise ConflictingUpdateError(
            f"Order {order.order_number} was changed concurrently (version {order.version})"
        )
    for name, value in fields.items():
        setattr(order, name, value)
    order.version += 1
    order.updated_at = now
    return order


def _instructions_for(order: Order) -> dict:
    product_ids = list(order.line_items.values_list('product_id', flat=True))
    products = get_catalog_reader().get_products(order.store_id, product_ids)
    return {product_id: info.instructions for product_id, info in products.items()}


def _flag_shortfall(order: Order, shortfall: dict, actor: str = '') -> None:
    _save(order, stock_shortfall=True, shortfall_detail=shortfall)
    record_event(
        order,
        OrderEvent.Action.SHORTFALL,
        from_status=order.status,
        actor=actor,
        detail={'shortfall': shortfall},
    )
    notifier.enqueue(notifier.stock_shortfall(order, shortfall))
    logger.warning(f"Order {order.order_number} flagged for stock shortfall: {shortfall}")


def _enter_processing(order: Order, actor: str = '') -> None:
    """new -> processing once every line item holds its units."""
    from_status = order.status
    _save(
        order,
        status=OrderStatus.PROCESSING,
        confirmed_at=timezone.now(),
        stock_shortfall=False,
        shortfall_detail={},
    )
    summary = pool.allocation_summary(order)
    record_event(
        order,
        OrderEvent.Action.CONFIRMED,
        from_status=from_status,
        to_status=order.status,
        actor=actor,
        detail={'allocation': summary, 'automatic': not actor},
    )
    units = list(pool.allocated_units(order))
    notifier.enqueue(notifier.credentials_delivered(order, units, _instructions_for(order)))
    notifier.enqueue(notifier.status_changed(order, from_status))
    logger.info(
        f"Order {order.order_number} confirmed by {actor or 'system'}: "
        f"{len(units)} unit(s) delivered"
    )


def _advance(order: Order, to_status: str, actor: str = '') -> None:
    if order.is_terminal or ADVANCE_STEPS.get(OrderStatus(order.status)) != to_status:
        raise InvalidTransitionError(
            f"Order {order.order_number} cannot advance from {order.status} to {to_status}",
            current_status=order.status,
            requested_status=to_status,
        )
    from_status = order.status
    fields = {'status': to_status}
    if to_status == OrderStatus.COMPLETED:
        fields['completed_at'] = timezone.now()
    _save(order, **fields)
    record_event(
        order,
        OrderEvent.Action.ADVANCED,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
    )
    notifier.enqueue(notifier.status_changed(order, from_status))
    logger.info(f"Order {order.order_number} advanced {from_status} -> {to_status}")


def place_order(store_id, items, buyer_ref, actor: str = '', **details) -> Order:
    """
    Checkout: create the order and run automatic fulfillment.

    Auto line items are allocated all-or-nothing right away. A shortfall
    never cancels the order and never delivers part of it: the order stays
    `new` with `stock_shortfall` set, holding no units. A mixed or manual
    order also raises the operator's confirmation alert, shortfall or not.

    Args:
        store_id: The store selling the items
        items: [{'product_id': ..., 'quantity': n}, ...]
        buyer_ref: Opaque buyer reference
        actor: Who placed the order, empty for the storefront
        **details: Checkout details passed to ledger.save_order

    Returns:
        The order in its post-checkout state

    Raises:
        ValidationError: see ledger.prepare_order; no number is used
        ConflictingUpdateError: stock kept being taken by concurrent
            checkouts; no order was written, safe to retry
    """
    draft = prepare_order(store_id, items, buyer_ref)
    # Issued and committed before checkout: the store's sequence row is not
    # locked while units are allocated. A rolled-back checkout leaves a gap.
    order_number = next_order_number(store_id)

    with transaction.atomic():
        order = _lock(save_order(draft, order_number, **details))
        line_items = list(order.line_items.all())
        auto_requests = [(i.product_id, i.quantity) for i in line_items if not i.is_manual]
        manual = any(i.is_manual for i in line_items)

        if auto_requests:
            try:
                allocated = pool.allocate_many(order, auto_requests)
            except InsufficientStockError as e:
                _flag_shortfall(order, e.shortfall, actor)
                if manual:
                    notifier.enqueue(notifier.confirmation_required(order))
                return order
            record_event(
                order,
                OrderEvent.Action.ALLOCATED,
                from_status=order.status,
                actor=actor,
                detail={
                    'allocation': {
                        product_id: [unit.pk for unit in units]
                        for product_id, units in allocated.items()
                    }
                },
            )

        if manual:
            notifier.enqueue(notifier.confirmation_required(order))
            logger.info(f"Order {order.order_number} awaits operator confirmation")
            return order

        _enter_processing(order)
        if get_setting('AUTO_COMPLETE'):
            _advance(order, OrderStatus.DELIVERING)
            _advance(order, OrderStatus.COMPLETED)
        return order


def confirm_order(order_id, actor: str = '') -> Order:
    """
    Operator confirmation: new -> processing.

    Allocates every line item that does not hold units yet, all or nothing.
    On shortfall the order stays `new`, the shortfall is recorded on the
    order and InsufficientStockError is raised.

    Raises:
        NotFoundError, InvalidTransitionError, InsufficientStockError,
        ConflictingUpdateError
    """
    error = None
    with transaction.atomic():
        order = _lock(order_id)
        _check_transition(order, OrderStatus.PROCESSING)

        held = set(pool.allocated_units(order).values_list('product_id', flat=True))
        outstanding = [
            (item.product_id, item.quantity)
            for item in order.line_items.all()
            if item.product_id not in held
        ]
        try:
            pool.allocate_many(order, outstanding)
        except InsufficientStockError as e:
            _flag_shortfall(order, e.shortfall, actor)
            error = e
        else:
            _enter_processing(order, actor)

    if error is not None:
        raise error
    return order


def advance_order(order_id, to_status: str, actor: str = '') -> Order:
    """
    Operator step forward: processing -> delivering -> completed.

    One step per call; skipping a state is an InvalidTransitionError.

    Raises:
        ValidationError: to_status is not an order status at all; the order
            is not read
        NotFoundError, InvalidTransitionError
    """
    if to_status not in OrderStatus.values:
        raise ValidationError(f"Unknown order status {to_status!r}")
    with transaction.atomic():
        order = _lock(order_id)
        _advance(order, to_status, actor)
    return order


def cancel_order(order_id, reason: str, actor: str = '') -> Order:
    """
    Cancel a new or processing order and return its units to the pool.

    Raises:
        ValidationError: reason is blank
        NotFoundError, InvalidTransitionError
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A cancellation reason is required")
    reason = reason.strip()

    with transaction.atomic():
        order = _lock(order_id)
        _check_transition(order, OrderStatus.CANCELLED)
        from_status = order.status

        released = pool.release_all(order)
        if released:
            record_event(
                order,
                OrderEvent.Action.RELEASED,
                from_status=from_status,
                actor=actor,
                detail={'released': released},
            )
        _save(
            order,
            status=OrderStatus.CANCELLED,
            cancelled_at=timezone.now(),
            cancel_reason=reason,
            stock_shortfall=False,
            shortfall_detail={},
        )
        update_notes(order, f"Cancelled: {reason}", author=actor, record=False)
        record_event(
            order,
            OrderEvent.Action.CANCELLED,
            from_status=from_status,
            to_status=order.status,
            actor=actor,
            detail={'reason': reason, 'released': released},
        )
        notifier.enqueue(notifier.order_cancelled(order, reason))

    logger.info(
        f"Order {order.order_number} cancelled by {actor or 'system'} "
        f"({sum(released.values())} unit(s) released): {reason}"
    )
    return order


def send_message(order_id, text: str, actor: str = '') -> Order:
    """
    Message the buyer about a non-terminal order. Status is unchanged.

    The message is also appended to the order notes.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message text cannot be empty")
    text = text.strip()

    with transaction.atomic():
        order = _lock(order_id)
        if order.is_terminal:
            raise InvalidTransitionError(
                f"Order {order.order_number} is {order.status}; messages are closed",
                current_status=order.status,
            )
        update_notes(order, f"Message to buyer: {text}", author=actor, record=False)
        record_event(
            order,
            OrderEvent.Action.MESSAGE,
            from_status=order.status,
            actor=actor,
            detail={'text': text},
        )
        notifier.enqueue(notifier.operator_message(order, text))
    return order


def add_note(order_id, text: str, actor: str = '') -> Order:
    """Internal operator note; allowed in every status, buyer is not told."""
    with transaction.atomic():
        order = _lock(order_id)
        return update_notes(order, text, author=actor)
