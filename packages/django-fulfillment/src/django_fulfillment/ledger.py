"""Order ledger: creating, reading and annotating orders.

Orders are written once with their line items in a single transaction and
afterwards changed only by django_fulfillment.lifecycle. Notes are appended
in the database (no read-modify-write), so concurrent annotations never
overwrite each other.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, models, transaction
from django.db.models import Case, F, Value, When
from django.db.models.functions import Concat
from django.utils import timezone

from django_fulfillment.catalog import CatalogReader, get_catalog_reader
from django_fulfillment.conf import get_setting
from django_fulfillment.exceptions import (
    CurrencyMismatchError,
    NotFoundError,
    ValidationError,
)
from django_fulfillment.models import Order, OrderEvent, OrderLineItem, OrderSequence
from django_fulfillment.money import Money
from django_fulfillment.pool import validate_quantity

logger = logging.getLogger(__name__)

NOTE_SEPARATOR = "\n\n"


def next_order_number(store_id: str, scope: str = 'order') -> str:
    """
    Get the store's next order number atomically.

    Uses select_for_update() so concurrent checkouts of the same store never
    receive the same number. Different stores have independent counters.

    Returns:
        The formatted number, e.g. "ORD-2026-000001"
    """
    with transaction.atomic():
        try:
            seq = OrderSequence.objects.select_for_update().get(store_id=store_id, scope=scope)
        except OrderSequence.DoesNotExist:
            try:
                with transaction.atomic():
                    OrderSequence.objects.create(
                        store_id=store_id,
                        scope=scope,
                        prefix=get_setting('ORDER_NUMBER_PREFIX'),
                        pad_width=get_setting('ORDER_NUMBER_PAD_WIDTH'),
                        include_year=get_setting('ORDER_NUMBER_INCLUDE_YEAR'),
                    )
            except IntegrityError:
                # Another checkout created the row first
                pass
            seq = OrderSequence.objects.select_for_update().get(store_id=store_id, scope=scope)

        seq.current_value += 1
        seq.save(update_fields=['current_value'])
        return seq.formatted_value


def _normalize_items(items) -> list:
    """Validate requested items and merge repeated products, keeping first position."""
    if not items:
        raise ValidationError("An order needs at least one line item")

    merged = {}
    for item in items:
        if not isinstance(item, Mapping):
            raise ValidationError(f"Line item must be a mapping, got {type(item).__name__}")
        product_id = item.get('product_id')
        if product_id in (None, ''):
            raise ValidationError("Line item is missing product_id")
        quantity = item.get('quantity')
        validate_quantity(quantity)
        product_id = str(product_id)
        merged[product_id] = merged.get(product_id, 0) + quantity
    return list(merged.items())


@dataclass(frozen=True)
class OrderDraft:
    """A validated cart, priced from the catalog, not yet written."""

    store_id: str
    buyer_ref: str
    currency: str
    total: Money
    lines: tuple  # ((product_id, ProductInfo, quantity), ...) in cart order


def prepare_order(
    store_id: str,
    items: Iterable[Mapping],
    buyer_ref: str,
    catalog: Optional[CatalogReader] = None,
) -> OrderDraft:
    """
    Validate a cart against the catalog without writing anything.

    Raises:
        ValidationError: empty order, bad quantity, unknown or inactive
            product, negative price, mixed currencies
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not buyer_ref:
        raise ValidationError("buyer_ref is required")

    requested = _normalize_items(list(items))
    reader = catalog or get_catalog_reader()
    products = reader.get_products(store_id, [product_id for product_id, _ in requested])

    unknown = [product_id for product_id, _ in requested if product_id not in products]
    if unknown:
        raise ValidationError(f"Unknown product id(s) for store {store_id}: {', '.join(unknown)}")

    inactive = [product_id for product_id, _ in requested if not products[product_id].is_active]
    if inactive:
        raise ValidationError(f"Product(s) not available for sale: {', '.join(inactive)}")

    currency = products[requested[0][0]].price.currency
    line_totals = []
    for product_id, quantity in requested:
        price = products[product_id].price
        if price.is_negative():
            raise ValidationError(f"Product {product_id} has a negative price")
        if price.currency != currency:
            raise CurrencyMismatchError(
                f"Order mixes {currency} and {price.currency} products"
            )
        line_totals.append(price * quantity)

    return OrderDraft(
        store_id=store_id,
        buyer_ref=buyer_ref,
        currency=currency,
        total=Money.sum(line_totals, currency),
        lines=tuple(
            (product_id, products[product_id], quantity) for product_id, quantity in requested
        ),
    )


@transaction.atomic
def save_order(
    draft: OrderDraft,
    order_number: str,
    buyer_name: str = '',
    contact_phone: str = '',
    customer_notes: str = '',
    payment_method: str = '',
) -> Order:
    """Write a prepared order and its snapshot line items in status `new`."""
    order = Order.objects.create(
        store_id=draft.store_id,
        order_number=order_number,
        total_amount=draft.total.amount,
        currency=draft.currency,
        buyer_ref=draft.buyer_ref,
        buyer_name=buyer_name,
        contact_phone=contact_phone,
        customer_notes=customer_notes,
        payment_method=payment_method,
    )
    OrderLineItem.objects.bulk_create([
        OrderLineItem(
            order=order,
            position=position,
            product_id=product_id,
            product_name=info.name,
            unit_price=info.price.amount,
            currency=draft.currency,
            quantity=quantity,
            delivery_mode=info.delivery_mode,
        )
        for position, (product_id, info, quantity) in enumerate(draft.lines, start=1)
    ])
    record_event(
        order,
        OrderEvent.Action.CREATED,
        to_status=order.status,
        detail={
            'total': str(draft.total.amount),
            'currency': draft.currency,
            'lines': len(draft.lines),
        },
    )

    logger.info(
        f"Created order {order.order_number} for store {draft.store_id}: "
        f"{len(draft.lines)} line(s), total {draft.total}"
    )
    return order


def create_order(
    store_id: str,
    items: Iterable[Mapping],
    buyer_ref: str,
    buyer_name: str = '',
    contact_phone: str = '',
    customer_notes: str = '',
    payment_method: str = '',
    catalog: Optional[CatalogReader] = None,
) -> Order:
    """
    Create an order in status `new` with snapshot line items.

    The order number is issued before the order is written. Outside a
    transaction the number commits on its own, so a failed write leaves a
    gap in the numbering rather than holding the store's sequence row.

    Args:
        store_id: The store selling the items
        items: [{'product_id': ..., 'quantity': n}, ...]
        buyer_ref: Opaque buyer reference
        buyer_name, contact_phone, customer_notes, payment_method: checkout details
        catalog: CatalogReader to use (defaults to the configured one)

    Returns:
        The persisted Order

    Raises:
        ValidationError: see prepare_order; nothing is written and no
            number is used
    """
    draft = prepare_order(store_id, items, buyer_ref, catalog=catalog)
    return save_order(
        draft,
        next_order_number(store_id),
        buyer_name=buyer_name,
        contact_phone=contact_phone,
        customer_notes=customer_notes,
        payment_method=payment_method,
    )


def get_order(order_id) -> Order:
    """Fetch an order by id. Raises NotFoundError."""
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError(f"Order {order_id} not found")


def list_orders(
    store_id: Optional[str] = None,
    status: Optional[str] = None,
    buyer_ref: Optional[str] = None,
    needs_confirmation: Optional[bool] = None,
    stock_shortfall: Optional[bool] = None,
    pending_attention: bool = False,
) -> models.QuerySet:
    """Return orders matching the filter, newest first. No side effects."""
    orders = Order.objects.all()
    if store_id is not None:
        orders = orders.for_store(store_id)
    if status is not None:
        orders = orders.with_status(status)
    if buyer_ref is not None:
        orders = orders.for_buyer(buyer_ref)
    if needs_confirmation is True:
        orders = orders.needing_confirmation()
    elif needs_confirmation is False:
        orders = orders.auto_only()
    if stock_shortfall is not None:
        orders = orders.filter(stock_shortfall=stock_shortfall)
    if pending_attention:
        orders = orders.pending_attention()
    return orders.order_by('-created_at', '-pk')


def format_note(text: str, author: str = '', when=None) -> str:
    """Render one note block: "[2026-10-18T09:30:00+00:00] author: text"."""
    when = when or timezone.now()
    prefix = f"[{when.isoformat(timespec='seconds')}]"
    if author:
        return f"{prefix} {author}: {text}"
    return f"{prefix} {text}"


def update_notes(order: Order, text: str, author: str = '', record: bool = True) -> Order:
    """
    Append a timestamped note to an order's operator notes.

    Existing notes are never rewritten; the new block is concatenated in the
    database. Works in any status, including terminal ones.

    Raises:
        ValidationError: text is blank
    """
    if not text or not text.strip():
        raise ValidationError("Note text cannot be empty")

    block = format_note(text.strip(), author)
    with transaction.atomic():
        updated = Order.objects.filter(pk=order.pk).update(
            notes=Case(
                When(notes='', then=Value(block)),
                default=Concat(F('notes'), Value(NOTE_SEPARATOR + block)),
                output_field=models.TextField(),
            ),
            updated_at=timezone.now(),
        )
        if not updated:
            raise NotFoundError(f"Order {order.pk} not found")
        if record:
            record_event(
                order,
                OrderEvent.Action.NOTE,
                from_status=order.status,
                to_status=order.status,
                actor=author,
                detail={'text': text.strip()},
            )
    order.refresh_from_db(fields=['notes', 'updated_at'])
    return order


def record_event(
    order: Order,
    action: str,
    from_status: str = '',
    to_status: str = '',
    actor: str = '',
    detail: Optional[dict] = None,
) -> OrderEvent:
    """Append an entry to the order's audit trail."""
    return OrderEvent.objects.create(
        order=order,
        action=action,
        from_status=from_status,
        to_status=to_status or from_status,
        actor=actor or '',
        detail=detail or {},
    )
