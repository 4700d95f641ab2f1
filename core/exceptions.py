"""
Domain exceptions and the DRF exception handler.

Categories:
    - AuthRequiredError: no caller identity
    - OrderValidationError: bad input, always raised before any mutation
    - ConsistencyError: a conditional write lost (stock, status claim)
    - NotFoundError: unknown order / stock row / product / user
    - ConflictError: duplicate stock row, or a user that still owns orders
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class MarketError(Exception):
    """Base exception for all marketplace domain errors."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'error'
    retryable = False

    def __init__(self, message: str, code: str = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(self.message)


class AuthRequiredError(MarketError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = 'auth_required'

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


# =============================================================================
# Validation errors
# =============================================================================

class OrderValidationError(MarketError):
    """Raised when request input is invalid. Nothing has been mutated."""
    default_code = 'validation_error'


class NoRegionOnProfileError(OrderValidationError):
    default_code = 'no_region_on_profile'

    def __init__(self, user_id=None):
        self.user_id = user_id
        super().__init__("User has no region set")


class EmptyOrderItemsError(OrderValidationError):
    default_code = 'empty_order_items'

    def __init__(self):
        super().__init__("Order must contain at least one item")


class InvalidQuantityError(OrderValidationError):
    default_code = 'invalid_quantity'

    def __init__(self, index: int, quantity):
        self.index = index
        self.quantity = quantity
        super().__init__(
            f"Item {index}: quantity must be a positive multiple of 50 grams, got {quantity!r}"
        )


class ProductUnavailableError(OrderValidationError):
    default_code = 'product_unavailable'

    def __init__(self, product_ids):
        self.product_ids = sorted(product_ids, key=str)
        super().__init__(f"Products not found or inactive: {self.product_ids}")


class PaymentFieldsRejectedError(OrderValidationError):
    default_code = 'payment_fields_rejected'

    def __init__(self, fields):
        self.fields = sorted(fields)
        super().__init__("Payment card number and CVC are not accepted")


class InvalidShippingAddressError(OrderValidationError):
    default_code = 'invalid_shipping_address'


class InvalidPaymentDetailsError(OrderValidationError):
    default_code = 'invalid_payment_details'


class InvalidStatusError(OrderValidationError):
    default_code = 'invalid_status'

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid status: {value!r}")


class InvalidTransitionError(OrderValidationError):
    default_code = 'invalid_transition'

    def __init__(self, order_id, current: str, target: str, expected: str = None):
        self.order_id = order_id
        self.current = current
        self.target = target
        self.expected = expected
        message = f"Order {order_id} cannot move from '{current}' to '{target}'"
        if expected:
            message += f" (next allowed status is '{expected}')"
        super().__init__(message)


class BatchTooLargeError(OrderValidationError):
    default_code = 'batch_too_large'

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Batch of {size} ids exceeds the maximum of {limit}")


class StockValidationError(OrderValidationError):
    default_code = 'invalid_stock'


class InvalidRegionError(OrderValidationError):
    default_code = 'invalid_region'

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid region: {value!r}")


class SelfDeleteError(OrderValidationError):
    default_code = 'cannot_delete_self'

    def __init__(self):
        super().__init__("Admins cannot delete their own account")


# =============================================================================
# Consistency / concurrency errors
# =============================================================================

class ConsistencyError(MarketError):
    """A conditional write did not match; the caller should refresh."""
    status_code = status.HTTP_409_CONFLICT
    default_code = 'consistency_error'
    retryable = True


class InsufficientStockError(ConsistencyError):
    """Raised when there's not enough stock for an order item."""
    default_code = 'insufficient_stock'

    def __init__(self, product_id, region: str, requested: int):
        self.product_id = product_id
        self.region = region
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} in {region}: "
            f"requested {requested}g"
        )


class ConcurrentModificationError(ConsistencyError):
    default_code = 'concurrent_modification'

    def __init__(self, order_id, expected_status: str):
        self.order_id = order_id
        self.expected_status = expected_status
        super().__init__(
            f"Order {order_id} is no longer '{expected_status}', please refresh"
        )


class AlreadyTerminalError(ConsistencyError):
    default_code = 'already_terminal'

    def __init__(self, order_id, current_status: str):
        self.order_id = order_id
        self.current_status = current_status
        super().__init__(
            f"Order {order_id} is already {current_status}"
        )


# =============================================================================
# Not found / conflict
# =============================================================================

class NotFoundError(MarketError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'not_found'


class OrderNotFoundError(NotFoundError):
    default_code = 'order_not_found'

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class StockNotFoundError(NotFoundError):
    default_code = 'stock_not_found'

    def __init__(self, stock_id):
        self.stock_id = stock_id
        super().__init__(f"Stock entry {stock_id} not found")


class ProductNotFoundError(NotFoundError):
    default_code = 'product_not_found'

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class UserNotFoundError(NotFoundError):
    default_code = 'user_not_found'

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class ConflictError(MarketError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'conflict'


class DuplicateStockError(ConflictError):
    default_code = 'duplicate_stock'

    def __init__(self, product_id, region: str):
        self.product_id = product_id
        self.region = region
        super().__init__(
            f"Stock for product {product_id} in region '{region}' already exists"
        )


class UserHasOrdersError(ConflictError):
    default_code = 'user_has_orders'

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"User {user_id} has orders and cannot be deleted")


def custom_exception_handler(exc, context):
    """
    Translate domain errors into consistent JSON responses and fall back to
    DRF's handler for everything else.
    """
    if isinstance(exc, MarketError):
        return Response(
            {
                'error': exc.code,
                'detail': exc.message,
                'retryable': exc.retryable,
            },
            status=exc.status_code,
        )

    response = exception_handler(exc, context)
    if response is not None:
        return response

    logger.exception(f"Unhandled exception: {exc}")
    return Response(
        {
            'error': 'server_error',
            'detail': 'An unexpected error occurred',
            'retryable': False,
        },
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
