"""Catalog reader: read-only product lookups for checkout.

The engine never writes to the catalog. It asks a CatalogReader for the
price, currency and delivery mode of a product at order creation time and
snapshots the answer into the order's line items.

The reader is resolved from settings.FULFILLMENT_CATALOG_READER, so a shop
with its own product tables plugs in a subclass:

    class ShopCatalogReader(CatalogReader):
        def get_product(self, store_id, product_id):
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils.module_loading import import_string

from django_fulfillment.conf import get_setting
from django_fulfillment.models import DeliveryMode, Product
from django_fulfillment.money import Money


@dataclass(frozen=True)
class ProductInfo:
    """What the engine needs to know about a product."""

    product_id: str
    store_id: str
    name: str
    price: Money
    delivery_mode: str
    is_active: bool = True
    instructions: str = ''

    @property
    def is_manual(self) -> bool:
        return self.delivery_mode == DeliveryMode.MANUAL


class CatalogReader(ABC):
    """Abstract base class for catalog lookups."""

    @abstractmethod
    def get_product(self, store_id: str, product_id: str) -> Optional[ProductInfo]:
        """Return the product sold by `store_id`, or None if unknown.

        Products of other stores must be reported as unknown.
        """
        raise NotImplementedError

    def get_products(self, store_id: str, product_ids) -> dict:
        """Return {product_id: ProductInfo} for the ids that exist."""
        found = {}
        for product_id in product_ids:
            info = self.get_product(store_id, product_id)
            if info is not None:
                found[str(product_id)] = info
        return found


class ModelCatalogReader(CatalogReader):
    """Catalog reader backed by the bundled Product model."""

    def get_product(self, store_id, product_id):
        try:
            product = Product.objects.get(pk=product_id, store_id=store_id)
        except (Product.DoesNotExist, DjangoValidationError, ValueError):
            # Malformed UUIDs are simply unknown products
            return None
        return self._to_info(product)

    def get_products(self, store_id, product_ids):
        valid_ids = []
        for product_id in product_ids:
            try:
                valid_ids.append(Product._meta.pk.to_python(product_id))
            except DjangoValidationError:
                continue
        products = Product.objects.filter(store_id=store_id, pk__in=valid_ids)
        return {str(p.pk): self._to_info(p) for p in products}

    @staticmethod
    def _to_info(product: Product) -> ProductInfo:
        return ProductInfo(
            product_id=str(product.pk),
            store_id=product.store_id,
            name=product.name,
            price=Money(product.price, product.currency),
            delivery_mode=product.delivery_mode,
            is_active=product.is_active,
            instructions=product.instructions,
        )


def get_catalog_reader() -> CatalogReader:
    """Instantiate the configured catalog reader."""
    reader_class = import_string(get_setting('CATALOG_READER'))
    return reader_class()
