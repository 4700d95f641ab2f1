"""
Status Transition Engine.

Every status change is a compare-and-swap on the status column:

    UPDATE orders_order
    SET status = :next, <next>_at = COALESCE(<next>_at, :now), updated_at = :now
    WHERE id = :id AND status = :expected

A zero row count means another worker (admin or scheduler) changed the order
first. Nothing here reads a status and writes it back unconditionally.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from django.db import models, transaction
from django.db.models import F, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.exceptions import (
    AlreadyTerminalError,
    BatchTooLargeError,
    ConcurrentModificationError,
    InvalidStatusError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderValidationError,
)
from . import lifecycle
from .models import Order, OrderNote

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 200

DEFAULT_CANCEL_REASON = 'Cancelled by admin'

# Reasons reported for skipped ids in a batch advance
SKIP_INVALID_ID = 'invalid_id'
SKIP_NOT_FOUND = 'not_found'
SKIP_TERMINAL = 'terminal'
SKIP_RACE = 'race'
SKIP_DUPLICATE = 'duplicate'


@dataclass
class TransitionResult:
    order: Order
    prev_status: str
    next_status: str


@dataclass
class CancelResult:
    order: Order
    cancelled_at: object
    reason: str


@dataclass
class BatchResult:
    ok: List[int] = field(default_factory=list)
    skipped: List[dict] = field(default_factory=list)


def _stamp_expression(status: str, now):
    ts_field = lifecycle.timestamp_field(status)
    return Coalesce(F(ts_field), Value(now, output_field=models.DateTimeField()))


def claim_transition(order_id, from_status, to_status: str, now=None) -> bool:
    """
    Move ``order_id`` to ``to_status`` only if it is still in ``from_status``.

    ``from_status`` may be a single status or a collection of acceptable
    current statuses. The first-entry timestamp of ``to_status`` is set only
    if it was empty.

    Returns:
        True if this caller won the claim, False otherwise
    """
    now = now or timezone.now()
    queryset = Order.objects.filter(pk=order_id)
    if isinstance(from_status, str):
        queryset = queryset.filter(status=from_status)
    else:
        queryset = queryset.filter(status__in=list(from_status))

    updated = queryset.update(
        status=to_status,
        updated_at=now,
        **{lifecycle.timestamp_field(to_status): _stamp_expression(to_status, now)},
    )
    return updated == 1


def _current_status(order_id) -> Optional[str]:
    return Order.objects.filter(pk=order_id).values_list('status', flat=True).first()


def _load(order_id) -> Order:
    return Order.objects.prefetch_related('items__product', 'admin_notes').get(pk=order_id)


def advance_order(order_id) -> TransitionResult:
    """
    Advance one order a single step along the status flow.

    Raises:
        OrderNotFoundError: Unknown id
        AlreadyTerminalError: Order is delivered or cancelled
        ConcurrentModificationError: Someone else moved the order first
    """
    current = _current_status(order_id)
    if current is None:
        raise OrderNotFoundError(order_id)

    nxt = lifecycle.next_status(current)
    if nxt is None:
        raise AlreadyTerminalError(order_id, current)

    if not claim_transition(order_id, current, nxt):
        logger.warning(f"Advance of order #{order_id} from {current} lost to a concurrent update")
        raise ConcurrentModificationError(order_id, current)

    logger.info(f"Order #{order_id} advanced {current} -> {nxt}")
    return TransitionResult(order=_load(order_id), prev_status=current, next_status=nxt)


def parse_order_id(raw) -> Optional[int]:
    """Positive integer ids, also accepted as digit strings; None otherwise."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
        return value if value > 0 else None
    return None


def advance_many(order_ids: Iterable, max_batch: int = MAX_BATCH_SIZE) -> BatchResult:
    """
    Advance each order one step, independently and in the given order.

    Each id ends up in exactly one of ``ok`` or ``skipped`` (with a reason of
    invalid_id, not_found, terminal, race or duplicate). A repeated id is
    processed once; later occurrences are skipped as duplicate.

    Raises:
        OrderValidationError: Empty batch
        BatchTooLargeError: More than ``max_batch`` ids
    """
    order_ids = list(order_ids or [])
    if not order_ids:
        raise OrderValidationError("ids must be a non-empty list")
    if len(order_ids) > max_batch:
        raise BatchTooLargeError(len(order_ids), max_batch)

    result = BatchResult()
    seen = set()

    for raw in order_ids:
        order_id = parse_order_id(raw)
        if order_id is None:
            result.skipped.append({'id': raw, 'reason': SKIP_INVALID_ID})
            continue
        if order_id in seen:
            result.skipped.append({'id': order_id, 'reason': SKIP_DUPLICATE})
            continue
        seen.add(order_id)

        current = _current_status(order_id)
        if current is None:
            result.skipped.append({'id': order_id, 'reason': SKIP_NOT_FOUND})
            continue

        nxt = lifecycle.next_status(current)
        if nxt is None:
            result.skipped.append({'id': order_id, 'reason': SKIP_TERMINAL})
            continue

        if claim_transition(order_id, current, nxt):
            result.ok.append(order_id)
        else:
            result.skipped.append({'id': order_id, 'reason': SKIP_RACE})

    logger.info(
        f"Batch advance: {len(result.ok)} advanced, {len(result.skipped)} skipped"
    )
    return result


def cancel_order(order_id, reason: str = None) -> CancelResult:
    """
    Cancel a non-terminal order and record the reason as an admin note.

    Raises:
        OrderNotFoundError: Unknown id
        AlreadyTerminalError: Order is (or concurrently became) delivered or cancelled
    """
    reason = (reason or '').strip() or DEFAULT_CANCEL_REASON

    current = _current_status(order_id)
    if current is None:
        raise OrderNotFoundError(order_id)
    if lifecycle.is_terminal(current):
        raise AlreadyTerminalError(order_id, current)

    now = timezone.now()
    with transaction.atomic():
        claimed = claim_transition(
            order_id, lifecycle.NON_TERMINAL_STATUSES, lifecycle.CANCELLED, now=now
        )
        if not claimed:
            latest = _current_status(order_id)
            if latest is None:
                raise OrderNotFoundError(order_id)
            raise AlreadyTerminalError(order_id, latest)

        OrderNote.objects.create(order_id=order_id, at=now, note=reason)

    logger.info(f"Order #{order_id} cancelled from {current}: {reason}")
    order = _load(order_id)
    return CancelResult(order=order, cancelled_at=order.cancelled_at, reason=reason)


def update_status(order_id, target_status: str, note: str = None) -> TransitionResult:
    """
    Strict admin status change: only the immediate successor is accepted.

    Cancellation is not reachable here; it has its own entry point.

    Raises:
        InvalidStatusError: Unknown status value
        OrderNotFoundError: Unknown id
        AlreadyTerminalError: Order is delivered or cancelled
        InvalidTransitionError: Target is not the next status
        ConcurrentModificationError: Someone else moved the order first
    """
    if not lifecycle.is_valid_status(target_status):
        raise InvalidStatusError(target_status)

    current = _current_status(order_id)
    if current is None:
        raise OrderNotFoundError(order_id)
    if lifecycle.is_terminal(current):
        raise AlreadyTerminalError(order_id, current)

    expected = lifecycle.next_status(current)
    if target_status != expected:
        raise InvalidTransitionError(order_id, current, target_status, expected)

    now = timezone.now()
    with transaction.atomic():
        if not claim_transition(order_id, current, target_status, now=now):
            raise ConcurrentModificationError(order_id, current)
        note = (note or '').strip()
        if note:
            OrderNote.objects.create(order_id=order_id, at=now, note=note)

    logger.info(f"Order #{order_id} status set {current} -> {target_status}")
    return TransitionResult(order=_load(order_id), prev_status=current, next_status=target_status)
