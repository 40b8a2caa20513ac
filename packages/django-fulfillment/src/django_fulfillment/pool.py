"""Credential pool and allocator.

Allocation is a conditional bulk update, never a read-then-write exposed to
callers:

1. pick up to N free candidate rows for the product, row-locked in pk
   order on backends with SELECT ... FOR UPDATE
2. UPDATE ... SET claimed=true WHERE pk IN (candidates) AND claimed=false
3. if fewer than N rows changed, roll the savepoint back

So a call either claims exactly N units for the order or leaves the pool
untouched. Locking is per product rows; unrelated products never wait on
each other.
"""

import logging
from collections import defaultdict

from django.db import transaction
from django.utils import timezone

from django_fulfillment.conf import get_setting
from django_fulfillment.exceptions import (
    ConflictingUpdateError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from django_fulfillment.models import TERMINAL_STATUSES, CredentialUnit, Order, OrderStatus

logger = logging.getLogger(__name__)


class _ShortClaim(Exception):
    """Fewer rows transitioned than requested; unwinds the savepoint."""

    def __init__(self, claimed):
        super().__init__(claimed)
        self.claimed = claimed


def validate_quantity(quantity) -> None:
    """Quantities are positive ints. bool is rejected even though it is an int."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


def free_count(product_id) -> int:
    """Number of unclaimed units for a product."""
    return CredentialUnit.objects.for_product(product_id).free().count()


def allocated_units(order, product_id=None):
    """Units claimed by an order, optionally for one product only."""
    units = CredentialUnit.objects.claimed_by(order)
    if product_id is not None:
        units = units.for_product(product_id)
    return units.order_by('pk')


def allocation_summary(order) -> dict:
    """Return {product_id: [unit ids]} for everything the order holds."""
    summary = defaultdict(list)
    for unit_id, product_id in allocated_units(order).values_list('pk', 'product_id'):
        summary[product_id].append(unit_id)
    return dict(summary)


def add_units(product_id, secrets) -> list:
    """Restock a product with new credential units.

    Args:
        product_id: The product the units belong to
        secrets: Iterable of opaque payloads (dicts), one per unit

    Returns:
        List of created CredentialUnit
    """
    product_id = str(product_id)
    units = [CredentialUnit(product_id=product_id, secret=secret) for secret in secrets]
    if not units:
        raise ValidationError("Restock requires at least one credential")
    for unit in units:
        if not unit.secret:
            raise ValidationError("Credential payload cannot be empty")
    with transaction.atomic():
        created = CredentialUnit.objects.bulk_create(units)
    logger.info(f"Restocked product {product_id} with {len(created)} credential(s)")
    return created


def _check_claimable(order, product_id, quantity) -> None:
    """Units may only be claimed for an open order, for a line it contains."""
    status = Order.objects.filter(pk=order.pk).values_list('status', flat=True).first()
    if status is None:
        raise NotFoundError(f"Order {order.pk} not found")
    if OrderStatus(status) in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Order {order.order_number} is {status}; it cannot claim units",
            current_status=status,
        )
    line_quantity = (
        order.line_items.filter(product_id=product_id)
        .values_list('quantity', flat=True)
        .first()
    )
    if line_quantity is None:
        raise ValidationError(
            f"Order {order.order_number} has no line item for product {product_id}"
        )
    if line_quantity != quantity:
        raise ValidationError(
            f"Order {order.order_number} has {line_quantity} of {product_id} on its line, "
            f"{quantity} requested"
        )


def _claim(order, product_id, quantity, now) -> int:
    """Transition up to `quantity` free units to claimed. Returns rows changed."""
    candidates = (
        CredentialUnit.objects.for_product(product_id)
        .free()
        .order_by('pk')
        .select_for_update()
    )
    candidate_ids = list(candidates.values_list('pk', flat=True)[:quantity])
    if len(candidate_ids) < quantity:
        return len(candidate_ids)

    return CredentialUnit.objects.filter(pk__in=candidate_ids, claimed=False).update(
        claimed=True,
        claimed_by_order=order,
        claimed_at=now,
    )


def allocate(order, product_id, quantity: int) -> list:
    """Claim exactly `quantity` free units of a product for an order.

    Idempotent per (order, product): if the order already holds units of the
    product, those are returned and nothing new is claimed. The order must be
    open and have a line item of exactly `quantity` units of the product.

    Args:
        order: The Order the units are claimed for
        product_id: The product whose pool to draw from
        quantity: Positive number of units

    Returns:
        List of CredentialUnit claimed by the order for this product

    Raises:
        ValidationError: quantity is not a positive int, or does not match the
            order's line item for the product
        InvalidTransitionError: the order is completed or cancelled
        InsufficientStockError: fewer than `quantity` units are free; the
            pool is unchanged
        ConflictingUpdateError: units exist but kept being taken by
            concurrent allocators
    """
    validate_quantity(quantity)
    product_id = str(product_id)
    attempts = max(1, int(get_setting('ALLOCATION_ATTEMPTS')))

    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                _check_claimable(order, product_id, quantity)
                existing = list(allocated_units(order, product_id))
                if existing:
                    return existing

                claimed = _claim(order, product_id, quantity, timezone.now())
                if claimed < quantity:
                    raise _ShortClaim(claimed)
                units = list(allocated_units(order, product_id))
        except _ShortClaim:
            available = free_count(product_id)
            if available < quantity:
                logger.warning(
                    f"Insufficient stock for {product_id}: order {order.order_number} "
                    f"requested {quantity}, {available} free"
                )
                raise InsufficientStockError(
                    f"Product {product_id} has {available} free unit(s), {quantity} requested",
                    shortfall={product_id: {'requested': quantity, 'available': available}},
                )
            logger.info(
                f"Lost claim race for {product_id} (order {order.order_number}), "
                f"attempt {attempt}/{attempts}"
            )
            continue

        logger.info(
            f"Allocated {len(units)} unit(s) of {product_id} to order {order.order_number}"
        )
        return units

    raise ConflictingUpdateError(
        f"Could not claim {quantity} unit(s) of {product_id} for order "
        f"{order.order_number} after {attempts} attempt(s)"
    )


def allocate_many(order, requests) -> dict:
    """Allocate several products for one order, all or nothing.

    Args:
        order: The Order to allocate for
        requests: Iterable of (product_id, quantity)

    Returns:
        {product_id: [CredentialUnit]}

    Raises:
        InsufficientStockError: with the shortfall of every short product;
            no units are kept for any product
    """
    # Sorted so concurrent orders lock product rows in the same order
    requests = sorted((str(product_id), quantity) for product_id, quantity in requests)
    allocated = {}
    shortfall = {}
    with transaction.atomic():
        for product_id, quantity in requests:
            try:
                allocated[product_id] = allocate(order, product_id, quantity)
            except InsufficientStockError as e:
                shortfall.update(e.shortfall)
        if shortfall:
            # Discard the claims made for the products that did have stock
            transaction.set_rollback(True)
    if shortfall:
        raise InsufficientStockError(
            f"Order {order.order_number} is short of stock for {len(shortfall)} product(s)",
            shortfall=shortfall,
        )
    return allocated


def release(order, product_id) -> int:
    """Return an order's units of one product to the pool.

    No-op (returns 0) when the order holds none.
    """
    product_id = str(product_id)
    with transaction.atomic():
        released = allocated_units(order, product_id).update(
            claimed=False,
            claimed_by_order=None,
            claimed_at=None,
        )
    if released:
        logger.info(
            f"Released {released} unit(s) of {product_id} from order {order.order_number}"
        )
    return released


def release_all(order) -> dict:
    """Release everything an order holds. Returns {product_id: count}."""
    released = {}
    with transaction.atomic():
        product_ids = sorted(set(allocated_units(order).values_list('product_id', flat=True)))
        for product_id in product_ids:
            released[product_id] = release(order, product_id)
    return released
