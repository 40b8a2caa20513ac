"""Models for the credential pool, order ledger and fulfillment audit trail.

Tables:
- Product: default catalog backend (read-only from the engine's side)
- CredentialUnit: one allocatable secret belonging to a product
- Order / OrderLineItem: the durable order record with snapshot line items
- OrderEvent: append-only trail of transitions and operator actions
- OrderSequence: per-store counters for human-readable order numbers

Products are referenced by id string from CredentialUnit and OrderLineItem,
not by FK, so a catalog kept outside this app works the same way.
"""
import uuid
from datetime import date

from django.db import models
from django.db.models import Exists, OuterRef, Q

from django_fulfillment.exceptions import ImmutableSnapshotError
from django_fulfillment.money import Money


SNAPSHOT_VERSION = 1


class DeliveryMode(models.TextChoices):
    AUTO = 'auto', 'Automatic'
    MANUAL = 'manual', 'Operator confirmation'


class OrderStatus(models.TextChoices):
    NEW = 'new', 'New'
    PROCESSING = 'processing', 'Processing'
    DELIVERING = 'delivering', 'Delivering'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class TimeStampedModel(models.Model):
    """Abstract base model with created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Product(TimeStampedModel):
    """
    Catalog entry used by ModelCatalogReader.

    Catalog management lives outside this app; the engine only reads
    price, currency and delivery mode at checkout time.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Store that sells this product",
    )
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=19, decimal_places=4)
    currency = models.CharField(max_length=8, default='RUB')
    delivery_mode = models.CharField(
        max_length=10,
        choices=DeliveryMode.choices,
        default=DeliveryMode.AUTO,
    )
    is_active = models.BooleanField(default=True)
    instructions = models.TextField(
        blank=True,
        default='',
        help_text="Usage instructions sent to the buyer with the credentials",
    )

    class Meta:
        app_label = 'django_fulfillment'
        constraints = [
            models.CheckConstraint(
                condition=Q(price__gte=0),
                name="product_price_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.price} {self.currency}, {self.delivery_mode})"


def _manual_items_exist():
    return Exists(
        OrderLineItem.objects.filter(
            order=OuterRef('pk'),
            delivery_mode=DeliveryMode.MANUAL,
        )
    )


class OrderQuerySet(models.QuerySet):
    """Custom queryset for Order model."""

    def for_store(self, store_id):
        return self.filter(store_id=store_id)

    def with_status(self, status):
        return self.filter(status=status)

    def for_buyer(self, buyer_ref):
        return self.filter(buyer_ref=buyer_ref)

    def needing_confirmation(self):
        """Orders holding at least one manual line item."""
        return self.filter(_manual_items_exist())

    def auto_only(self):
        return self.exclude(_manual_items_exist())

    def with_shortfall(self):
        return self.filter(stock_shortfall=True)

    def pending_attention(self):
        """New orders an operator has to look at: manual items or short stock."""
        return (
            self.filter(status=OrderStatus.NEW)
            .annotate(has_manual_items=_manual_items_exist())
            .filter(Q(has_manual_items=True) | Q(stock_shortfall=True))
        )

    def open(self):
        return self.exclude(status__in=TERMINAL_STATUSES)


class Order(TimeStampedModel):
    """
    Order aggregate.

    Created at checkout, mutated only through django_fulfillment.lifecycle,
    never deleted (cancellation is a status). `version` is bumped on every
    status change and checked on save to detect lost updates.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store_id = models.CharField(max_length=64, db_index=True)
    order_number = models.CharField(max_length=50)
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.NEW,
        db_index=True,
    )

    total_amount = models.DecimalField(max_digits=19, decimal_places=4)
    currency = models.CharField(max_length=8)

    # Buyer
    buyer_ref = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Opaque buyer reference, e.g. a messenger user id",
    )
    buyer_name = models.CharField(max_length=255, blank=True, default='')
    contact_phone = models.CharField(max_length=50, blank=True, default='')
    customer_notes = models.TextField(blank=True, default='')
    payment_method = models.CharField(max_length=100, blank=True, default='')

    # Operator notes: append-only, one timestamped block per note
    notes = models.TextField(blank=True, default='')

    stock_shortfall = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Allocation failed for lack of stock; operator must act",
    )
    shortfall_detail = models.JSONField(default=dict, blank=True)
    cancel_reason = models.TextField(blank=True, default='')

    version = models.PositiveIntegerField(default=1)

    confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        app_label = 'django_fulfillment'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['store_id', 'order_number'],
                name='unique_order_number_per_store',
            ),
            models.CheckConstraint(
                condition=Q(total_amount__gte=0),
                name='order_total_non_negative',
            ),
        ]

    def __str__(self):
        return f"Order {self.order_number} - {self.total_amount} {self.currency} ({self.status})"

    @property
    def total(self) -> Money:
        return Money(self.total_amount, self.currency)

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    @property
    def needs_confirmation(self) -> bool:
        """True iff at least one line item requires operator confirmation."""
        return self.line_items.filter(delivery_mode=DeliveryMode.MANUAL).exists()


class OrderLineItem(models.Model):
    """
    Line item on an order.

    Snapshot of the catalog entry at checkout time. Later catalog edits
    (price, delivery mode) never reach existing orders, and the row itself
    cannot be changed once written.
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='line_items',
    )
    position = models.PositiveSmallIntegerField()
    snapshot_version = models.PositiveSmallIntegerField(default=SNAPSHOT_VERSION)

    product_id = models.CharField(max_length=255, db_index=True)
    product_name = models.CharField(max_length=255)
    unit_price = models.DecimalField(max_digits=19, decimal_places=4)
    currency = models.CharField(max_length=8)
    quantity = models.PositiveIntegerField()
    delivery_mode = models.CharField(max_length=10, choices=DeliveryMode.choices)

    class Meta:
        app_label = 'django_fulfillment'
        ordering = ['position']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'product_id'],
                name='unique_product_per_order',
            ),
            models.UniqueConstraint(
                fields=['order', 'position'],
                name='unique_position_per_order',
            ),
            models.CheckConstraint(
                condition=Q(quantity__gt=0),
                name='orderlineitem_quantity_positive',
            ),
            models.CheckConstraint(
                condition=Q(unit_price__gte=0),
                name='orderlineitem_price_non_negative',
            ),
        ]

    def __str__(self):
        return f"{self.quantity}x {self.product_name}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableSnapshotError(
                f"Line item {self.pk} of order {self.order_id} is a snapshot and cannot be modified"
            )
        super().save(*args, **kwargs)

    @property
    def line_total(self) -> Money:
        return Money(self.unit_price, self.currency) * self.quantity

    @property
    def is_manual(self) -> bool:
        return self.delivery_mode == DeliveryMode.MANUAL


class CredentialUnitQuerySet(models.QuerySet):
    """Custom queryset for CredentialUnit model."""

    def for_product(self, product_id):
        return self.filter(product_id=str(product_id))

    def free(self):
        return self.filter(claimed=False)

    def claimed_by(self, order):
        return self.filter(claimed_by_order=order)


class CredentialUnit(models.Model):
    """
    One allocatable secret, e.g. a single account's login and password.

    The payload is opaque to the engine. A claimed unit always points at
    the order that claimed it (enforced by a check constraint).
    """

    product_id = models.CharField(max_length=255, db_index=True)
    secret = models.JSONField(help_text="Opaque credential payload")
    claimed = models.BooleanField(default=False)
    claimed_by_order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='credential_units',
    )
    claimed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = CredentialUnitQuerySet.as_manager()

    class Meta:
        app_label = 'django_fulfillment'
        ordering = ['pk']
        indexes = [
            models.Index(fields=['product_id', 'claimed'], name='credunit_product_claimed_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(claimed=True, claimed_by_order__isnull=False)
                    | Q(claimed=False, claimed_by_order__isnull=True)
                ),
                name='credentialunit_claim_has_order',
            ),
        ]

    def __str__(self):
        state = f"claimed by {self.claimed_by_order_id}" if self.claimed else "free"
        return f"Credential #{self.pk} for {self.product_id} ({state})"


class OrderEvent(models.Model):
    """
    Immutable record of a transition or operator action on an order.

    Ordered by creation, this is the linear audit trail of the order.
    """

    class Action(models.TextChoices):
        CREATED = 'created', 'Created'
        ALLOCATED = 'allocated', 'Allocated'
        SHORTFALL = 'shortfall', 'Stock shortfall'
        CONFIRMED = 'confirmed', 'Confirmed'
        ADVANCED = 'advanced', 'Advanced'
        CANCELLED = 'cancelled', 'Cancelled'
        RELEASED = 'released', 'Released'
        MESSAGE = 'message', 'Message sent'
        NOTE = 'note', 'Note added'

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name='events',
    )
    action = models.CharField(max_length=20, choices=Action.choices, db_index=True)
    from_status = models.CharField(max_length=20, blank=True, default='')
    to_status = models.CharField(max_length=20, blank=True, default='')
    actor = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Operator reference, empty for system actions",
    )
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        app_label = 'django_fulfillment'
        ordering = ['created_at', 'pk']

    def __str__(self):
        if self.from_status != self.to_status:
            return f"{self.action}: {self.from_status} -> {self.to_status}"
        return f"{self.action} ({self.to_status})"

    @property
    def is_system(self) -> bool:
        return not self.actor


class OrderSequence(models.Model):
    """
    Order number counter, one row per (store, scope).

    Incremented under select_for_update() by ledger.next_order_number().
    Produces numbers like "ORD-2026-000123".
    """

    store_id = models.CharField(max_length=64)
    scope = models.CharField(max_length=50, default='order')
    prefix = models.CharField(max_length=20, blank=True, default='')
    current_value = models.PositiveBigIntegerField(default=0)
    pad_width = models.PositiveSmallIntegerField(default=6)
    include_year = models.BooleanField(default=True)

    class Meta:
        app_label = 'django_fulfillment'
        constraints = [
            models.UniqueConstraint(
                fields=['store_id', 'scope'],
                name='unique_sequence_per_store_scope',
            ),
        ]

    def __str__(self):
        return f"{self.scope} ({self.store_id}): {self.current_value}"

    @property
    def formatted_value(self) -> str:
        number = str(self.current_value).zfill(self.pad_width)
        if self.include_year:
            return f"{self.prefix}{date.today().year}-{number}"
        return f"{self.prefix}{number}"
