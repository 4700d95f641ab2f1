"""
Stock Ledger - regional stock mutations.

Every decrement is a single conditional UPDATE:

    UPDATE stock SET quantity_grams = quantity_grams - :amount
    WHERE product_id = :product AND region = :region AND quantity_grams >= :amount

so concurrent reservations on the same (product, region) row are serialized
by the database and can never drive the quantity below zero. Callers that
need several reservations to succeed or fail together (order creation) wrap
them in a transaction.
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from accounts.models import normalize_region
from core.exceptions import (
    DuplicateStockError,
    InsufficientStockError,
    ProductNotFoundError,
    StockNotFoundError,
    StockValidationError,
)
from .models import Product, Stock

logger = logging.getLogger(__name__)


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise StockValidationError(f"Quantity must be an integer number of grams, got {quantity!r}")
    if quantity < 0:
        raise StockValidationError(f"Quantity cannot be negative, got {quantity}")
    return quantity


def reserve(product_id, region: str, amount_grams: int) -> None:
    """
    Atomically take ``amount_grams`` from the (product, region) stock row.

    Raises:
        InsufficientStockError: If the row is missing or holds less than requested
    """
    region = normalize_region(region)
    updated = Stock.objects.filter(
        product_id=product_id,
        region=region,
        quantity_grams__gte=amount_grams,
    ).update(
        quantity_grams=F('quantity_grams') - amount_grams,
        updated_at=timezone.now(),
    )
    if not updated:
        logger.info(
            f"Reservation refused: product {product_id} in {region}, {amount_grams}g requested"
        )
        raise InsufficientStockError(product_id, region, amount_grams)

    logger.debug(f"Reserved {amount_grams}g of product {product_id} in {region}")


def available_grams(product_id, region: str) -> int:
    """Current quantity for (product, region); 0 when no row exists."""
    quantity = Stock.objects.filter(
        product_id=product_id,
        region=normalize_region(region),
    ).values_list('quantity_grams', flat=True).first()
    return quantity or 0


def create_stock(product_id, region: str, quantity_grams: int) -> Stock:
    """
    Admin stock intake: create the row for (product, region).

    Raises:
        StockValidationError: Bad region or quantity
        ProductNotFoundError: Unknown product
        DuplicateStockError: A row for (product, region) already exists
    """
    region = normalize_region(region)
    if not region:
        raise StockValidationError("Region is required")
    quantity_grams = _validate_quantity(quantity_grams)

    if not Product.objects.filter(pk=product_id).exists():
        raise ProductNotFoundError(product_id)

    try:
        with transaction.atomic():
            stock = Stock.objects.create(
                product_id=product_id,
                region=region,
                quantity_grams=quantity_grams,
            )
    except IntegrityError:
        raise DuplicateStockError(product_id, region)

    logger.info(f"Created stock #{stock.id}: product {product_id} in {region}, {quantity_grams}g")
    return stock


def adjust(stock_id, new_quantity_grams: int) -> Stock:
    """
    Admin manual adjustment: unconditionally set the quantity.

    Raises:
        StockValidationError: Negative or non-integer quantity
        StockNotFoundError: Unknown stock row
    """
    new_quantity_grams = _validate_quantity(new_quantity_grams)

    updated = Stock.objects.filter(pk=stock_id).update(
        quantity_grams=new_quantity_grams,
        updated_at=timezone.now(),
    )
    if not updated:
        raise StockNotFoundError(stock_id)

    logger.info(f"Stock #{stock_id} adjusted to {new_quantity_grams}g")
    return Stock.objects.select_related('product').get(pk=stock_id)


def delete_stock(stock_id) -> None:
    deleted, _ = Stock.objects.filter(pk=stock_id).delete()
    if not deleted:
        raise StockNotFoundError(stock_id)
    logger.info(f"Deleted stock #{stock_id}")
