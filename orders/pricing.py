"""
Pricing Snapshot Calculator.

Totals are computed from catalog prices read at order-creation time; prices
sent by clients are never used.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable

from core.exceptions import (
    EmptyOrderItemsError,
    InvalidQuantityError,
    ProductUnavailableError,
)

CENT = Decimal('0.01')
HUNDRED_GRAMS = Decimal('100')


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity_grams: int


def line_cost(price_per_100g, quantity_grams: int) -> Decimal:
    """Unrounded cost of ``quantity_grams`` at ``price_per_100g``."""
    return Decimal(str(price_per_100g)) / HUNDRED_GRAMS * quantity_grams


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_total(items: Iterable[LineItem], prices: Dict[int, Decimal]) -> Decimal:
    """
    Sum of line costs, rounded half-up to the cent.

    Args:
        items: Line items of the order (must be non-empty)
        prices: Price per 100 g of every *active* product, keyed by product id

    Raises:
        EmptyOrderItemsError: If there are no items
        InvalidQuantityError: If any quantity is not positive
        ProductUnavailableError: If any product is missing from ``prices``
    """
    items = list(items)
    if not items:
        raise EmptyOrderItemsError()

    missing = {item.product_id for item in items if item.product_id not in prices}
    if missing:
        raise ProductUnavailableError(missing)

    total = Decimal('0')
    for idx, item in enumerate(items):
        if item.quantity_grams <= 0:
            raise InvalidQuantityError(idx, item.quantity_grams)
        total += line_cost(prices[item.product_id], item.quantity_grams)

    return round_money(total)
