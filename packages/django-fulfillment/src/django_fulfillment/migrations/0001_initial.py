# Generated manually for standalone django-fulfillment package

import uuid

import django.db.models.deletion
from django.db import migrations, models


DELIVERY_MODES = [("auto", "Automatic"), ("manual", "Operator confirmation")]

ORDER_STATUSES = [
    ("new", "New"),
    ("processing", "Processing"),
    ("delivering", "Delivering"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
]

EVENT_ACTIONS = [
    ("created", "Created"),
    ("allocated", "Allocated"),
    ("shortfall", "Stock shortfall"),
    ("confirmed", "Confirmed"),
    ("advanced", "Advanced"),
    ("cancelled", "Cancelled"),
    ("released", "Released"),
    ("message", "Message sent"),
    ("note", "Note added"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "store_id",
                    models.CharField(
                        db_index=True,
                        help_text="Store that sells this product",
                        max_length=64,
                    ),
                ),
                ("name", models.CharField(max_length=255)),
                ("price", models.DecimalField(decimal_places=4, max_digits=19)),
                ("currency", models.CharField(default="RUB", max_length=8)),
                (
                    "delivery_mode",
                    models.CharField(
                        choices=DELIVERY_MODES, default="auto", max_length=10
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "instructions",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Usage instructions sent to the buyer with the credentials",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("price__gte", 0)),
                        name="product_price_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("store_id", models.CharField(db_index=True, max_length=64)),
                ("order_number", models.CharField(max_length=50)),
                (
                    "status",
                    models.CharField(
                        choices=ORDER_STATUSES,
                        db_index=True,
                        default="new",
                        max_length=20,
                    ),
                ),
                ("total_amount", models.DecimalField(decimal_places=4, max_digits=19)),
                ("currency", models.CharField(max_length=8)),
                (
                    "buyer_ref",
                    models.CharField(
                        db_index=True,
                        help_text="Opaque buyer reference, e.g. a messenger user id",
                        max_length=255,
                    ),
                ),
                ("buyer_name", models.CharField(blank=True, default="", max_length=255)),
                ("contact_phone", models.CharField(blank=True, default="", max_length=50)),
                ("customer_notes", models.TextField(blank=True, default="")),
                ("payment_method", models.CharField(blank=True, default="", max_length=100)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "stock_shortfall",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Allocation failed for lack of stock; operator must act",
                    ),
                ),
                ("shortfall_detail", models.JSONField(blank=True, default=dict)),
                ("cancel_reason", models.TextField(blank=True, default="")),
                ("version", models.PositiveIntegerField(default=1)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("store_id", "order_number"),
                        name="unique_order_number_per_store",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("total_amount__gte", 0)),
                        name="order_total_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderLineItem",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("position", models.PositiveSmallIntegerField()),
                ("snapshot_version", models.PositiveSmallIntegerField(default=1)),
                ("product_id", models.CharField(db_index=True, max_length=255)),
                ("product_name", models.CharField(max_length=255)),
                ("unit_price", models.DecimalField(decimal_places=4, max_digits=19)),
                ("currency", models.CharField(max_length=8)),
                ("quantity", models.PositiveIntegerField()),
                (
                    "delivery_mode",
                    models.CharField(choices=DELIVERY_MODES, max_length=10),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="django_fulfillment.order",
                    ),
                ),
            ],
            options={
                "ordering": ["position"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("order", "product_id"),
                        name="unique_product_per_order",
                    ),
                    models.UniqueConstraint(
                        fields=("order", "position"),
                        name="unique_position_per_order",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gt", 0)),
                        name="orderlineitem_quantity_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("unit_price__gte", 0)),
                        name="orderlineitem_price_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CredentialUnit",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("product_id", models.CharField(db_index=True, max_length=255)),
                ("secret", models.JSONField(help_text="Opaque credential payload")),
                ("claimed", models.BooleanField(default=False)),
                ("claimed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "claimed_by_order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credential_units",
                        to="django_fulfillment.order",
                    ),
                ),
            ],
            options={
                "ordering": ["pk"],
                "indexes": [
                    models.Index(
                        fields=["product_id", "claimed"],
                        name="credunit_product_claimed_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("claimed", True), ("claimed_by_order__isnull", False)),
                            models.Q(("claimed", False), ("claimed_by_order__isnull", True)),
                            _connector="OR",
                        ),
                        name="credentialunit_claim_has_order",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "action",
                    models.CharField(choices=EVENT_ACTIONS, db_index=True, max_length=20),
                ),
                ("from_status", models.CharField(blank=True, default="", max_length=20)),
                ("to_status", models.CharField(blank=True, default="", max_length=20)),
                (
                    "actor",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Operator reference, empty for system actions",
                        max_length=255,
                    ),
                ),
                ("detail", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="django_fulfillment.order",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "pk"],
            },
        ),
        migrations.CreateModel(
            name="OrderSequence",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("store_id", models.CharField(max_length=64)),
                ("scope", models.CharField(default="order", max_length=50)),
                ("prefix", models.CharField(blank=True, default="", max_length=20)),
                ("current_value", models.PositiveBigIntegerField(default=0)),
                ("pad_width", models.PositiveSmallIntegerField(default=6)),
                ("include_year", models.BooleanField(default=True)),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("store_id", "scope"),
                        name="unique_sequence_per_store_scope",
                    ),
                ],
            },
        ),
    ]
