"""
Celery tasks for order processing.

Tasks:
    - send_order_confirmation: Async notification after an order is placed
    - progress_due_orders: Periodic auto-progress sweep (Celery beat)
"""
import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def send_order_confirmation(self, order_id: int):
    """
    Async task triggered after an order is committed.

    Args:
        order_id: ID of the placed order

    Returns:
        Dict with confirmation details
    """
    from orders.models import Order

    try:
        order = Order.objects.select_related('user').prefetch_related(
            'items__product'
        ).get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order #{order_id} not found for confirmation")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if order.status == Order.Status.CANCELLED:
        logger.warning(
            f"Order {order.order_number} was cancelled before confirmation, skipping"
        )
        return {
            'status': 'skipped',
            'message': f'Order {order_id} is cancelled'
        }

    items_summary = [
        f"  - {item.quantity_grams}g {item.product.name} @ ${item.price_per_100g}/100g"
        for item in order.items.all()
    ]

    confirmation_message = f"""
    ===============================================
    ORDER RECEIVED - {order.order_number}
    ===============================================
    Customer: {order.user}
    Region: {order.region}
    Status: {order.status}
    Total: ${order.total_amount}

    Items:
    {chr(10).join(items_summary)}

    Placed: {order.created_at.strftime('%Y-%m-%d %H:%M:%S')}
    ===============================================
    """

    logger.info(confirmation_message)

    return {
        'status': 'success',
        'order_id': order.id,
        'message': f'Confirmation sent for order {order.order_number}'
    }


@shared_task
def progress_due_orders(max_per_run: int = None):
    """
    One auto-progress tick.

    Errors are logged and swallowed so the beat schedule keeps running; due
    orders left behind are picked up on the next tick.
    """
    from orders.progressor import OrderProgressor, ProgressorConfig

    config = ProgressorConfig.from_settings()
    if not config.enabled:
        logger.debug("Auto-progress is disabled, skipping tick")
        return {'status': 'disabled', 'progressed': 0}

    try:
        progressed = OrderProgressor(config).run_once(max_per_run=max_per_run)
    except Exception as e:
        logger.exception(f"Auto-progress tick failed: {e}")
        return {'status': 'error', 'progressed': 0}

    return {'status': 'success', 'progressed': progressed}
