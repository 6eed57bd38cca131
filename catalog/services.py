# catalog/services.py
import logging
from typing import NamedTuple, Optional

from django.db import IntegrityError, models, transaction
from django.db.models import F, Value
from django.db.models.functions import Greatest

from .models import Product

logger = logging.getLogger(__name__)


class CatalogError(Exception): pass


class DuplicateSlug(CatalogError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"A product with slug '{slug}' already exists.")


class StockDecrement(NamedTuple):
    product_id: int
    quantity: int
    clamped: bool


def find_product(product_id) -> Optional[Product]:
    try:
        return Product.objects.filter(pk=int(product_id)).first()
    except (TypeError, ValueError):
        return None


def is_active_and_in_stock(product_id, quantity: int) -> bool:
    product = find_product(product_id)
    return bool(product and product.is_active and product.stock_quantity >= quantity)


def decrement_stock(product_id, quantity: int) -> Optional[StockDecrement]:
    """Atomically take ``quantity`` units off a product's stock.

    The row is locked and the new stock is written by one UPDATE that floors
    at zero in SQL, so a write that lands between the read and the update is
    never overwritten. If concurrent orders oversold the product the stock
    stops at zero instead of going negative. Returns ``None`` when the
    product no longer exists.
    """
    with transaction.atomic():
        stock = (
            Product.objects.select_for_update()
            .filter(pk=product_id)
            .values_list("stock_quantity", flat=True)
            .first()
        )
        if stock is None:
            return None
        Product.objects.filter(pk=product_id).update(
            stock_quantity=Greatest(
                F("stock_quantity") - quantity, Value(0), output_field=models.PositiveIntegerField()
            )
        )

    clamped = stock < quantity
    if clamped:
        logger.warning(
            "Stock for product %s could not cover %s unit(s); clamped to 0 (oversold).",
            product_id, quantity,
        )
    return StockDecrement(product_id, quantity, clamped)


def save_product(product: Product) -> Product:
    """Persist a product, translating slug collisions into ``DuplicateSlug``."""
    try:
        with transaction.atomic():
            product.save()
    except IntegrityError:
        if Product.objects.filter(slug=product.slug).exclude(pk=product.pk).exists():
            raise DuplicateSlug(product.slug)
        raise
    return product


def soft_delete_product(product: Product) -> Product:
    if product.is_active:
        product.is_active = False
        product.save(update_fields=["is_active", "updated_at"])
    return product
