"""
Auto-Progress Scheduler.

Advances orders that have stayed in a status longer than the configured
delay, one order at a time:

    while progressed < max_per_run:
        for status in pending, confirmed, preparing, out_for_delivery:
            claim the oldest due order in status, re-selecting on a lost claim
        stop when a full pass found nothing due

Several workers may run this at once. There is no lock or leader election:
each advancement is the same conditional update used by admin actions
(orders.transitions.claim_transition), so a due order is advanced by exactly
one worker and the losers simply move on.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Iterable, Mapping, Optional

from django.conf import settings
from django.utils import timezone

from core.durations import parse_duration
from . import lifecycle
from .models import Order
from .transitions import claim_transition

logger = logging.getLogger(__name__)

DEFAULT_DELAYS = {
    lifecycle.PENDING: '1m',
    lifecycle.CONFIRMED: '2m',
    lifecycle.PREPARING: '3m',
    lifecycle.OUT_FOR_DELIVERY: '3m',
}
DEFAULT_INTERVAL = '30s'
DEFAULT_MAX_PER_RUN = 500


def _default_delays() -> Dict[str, timedelta]:
    return {status: parse_duration(value) for status, value in DEFAULT_DELAYS.items()}


@dataclass(frozen=True)
class ProgressorConfig:
    """
    Scheduler settings.

    A status missing from ``delays`` is never advanced automatically; a zero
    delay makes orders due as soon as they enter the status.
    """
    enabled: bool = False
    delays: Mapping[str, timedelta] = field(default_factory=_default_delays)
    interval: timedelta = timedelta(seconds=30)
    max_per_run: int = DEFAULT_MAX_PER_RUN

    def __post_init__(self):
        unknown = set(self.delays) - set(lifecycle.NON_TERMINAL_STATUSES)
        if unknown:
            raise ValueError(f"Delays configured for non-progressable statuses: {sorted(unknown)}")
        if self.max_per_run < 1:
            raise ValueError("max_per_run must be at least 1")

    @classmethod
    def from_mapping(cls, options: Optional[Mapping]) -> 'ProgressorConfig':
        """
        Build a config from a settings-style dict:

            {'ENABLED': True, 'DELAYS': {'pending': '1m', ...},
             'INTERVAL': '30s', 'MAX_PER_RUN': 500}
        """
        options = options or {}
        raw_delays = options.get('DELAYS') or DEFAULT_DELAYS
        delays = {
            status: parse_duration(value)
            for status, value in raw_delays.items()
            if value not in (None, '')
        }
        return cls(
            enabled=bool(options.get('ENABLED', False)),
            delays=delays,
            interval=parse_duration(options.get('INTERVAL') or DEFAULT_INTERVAL),
            max_per_run=int(options.get('MAX_PER_RUN') or DEFAULT_MAX_PER_RUN),
        )

    @classmethod
    def from_settings(cls) -> 'ProgressorConfig':
        return cls.from_mapping(getattr(settings, 'ORDER_AUTOPROGRESS', None))

    def delay_for(self, status: str) -> Optional[timedelta]:
        return self.delays.get(status)

    def cutoff_for(self, status: str, now) -> Optional[object]:
        """Orders that entered ``status`` at or before this instant are due."""
        delay = self.delay_for(status)
        if delay is None:
            return None
        return now - delay


class OrderProgressor:
    """Runs scheduler sweeps against the order table."""

    def __init__(self, config: ProgressorConfig, clock: Callable = timezone.now):
        self.config = config
        self.clock = clock

    def find_due_order(self, status: str, now, exclude: Iterable[int] = ()) -> Optional[int]:
        """Id of the oldest order due in ``status``, tie-broken by creation time."""
        cutoff = self.config.cutoff_for(status, now)
        if cutoff is None:
            return None

        ts_field = lifecycle.timestamp_field(status)
        queryset = Order.objects.filter(status=status, **{f'{ts_field}__lte': cutoff})
        if exclude:
            queryset = queryset.exclude(pk__in=list(exclude))
        return (
            queryset.order_by(ts_field, 'created_at', 'id')
            .values_list('id', flat=True)
            .first()
        )

    def advance_one_due(self, status: str) -> Optional[int]:
        """
        Claim and advance one due order in ``status``.

        A lost claim is not counted; the next oldest due order is tried until
        one is won or none is due.

        Returns:
            The advanced order id, or None if nothing due could be claimed
        """
        nxt = lifecycle.next_status(status)
        if nxt is None:
            return None

        lost = set()
        while True:
            now = self.clock()
            order_id = self.find_due_order(status, now, exclude=lost)
            if order_id is None:
                return None

            if claim_transition(order_id, status, nxt, now=now):
                logger.debug(f"Auto-advanced order #{order_id} {status} -> {nxt}")
                return order_id

            logger.debug(f"Order #{order_id} was advanced by another worker")
            lost.add(order_id)

    def run_once(self, max_per_run: int = None) -> int:
        """
        Sweep until ``max_per_run`` orders moved or nothing is due.

        Returns:
            Number of orders advanced
        """
        limit = max_per_run or self.config.max_per_run
        progressed = 0

        while progressed < limit:
            advanced_in_cycle = False
            for status in lifecycle.NON_TERMINAL_STATUSES:
                if self.advance_one_due(status) is not None:
                    progressed += 1
                    advanced_in_cycle = True
                    # start again from the first status
                    break
            if not advanced_in_cycle:
                break

        if progressed:
            logger.info(f"Auto-progress advanced {progressed} orders")
        return progressed
