"""
Order lifecycle rules.

    pending -> confirmed -> preparing -> out_for_delivery -> delivered
    any non-terminal status -> cancelled

No database access here; the transition engine and the scheduler both read
these tables.
"""
from typing import Optional

PENDING = 'pending'
CONFIRMED = 'confirmed'
PREPARING = 'preparing'
OUT_FOR_DELIVERY = 'out_for_delivery'
DELIVERED = 'delivered'
CANCELLED = 'cancelled'

STATUS_FLOW = (PENDING, CONFIRMED, PREPARING, OUT_FOR_DELIVERY, DELIVERED)

ALL_STATUSES = STATUS_FLOW + (CANCELLED,)

TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

NON_TERMINAL_STATUSES = tuple(s for s in STATUS_FLOW if s not in TERMINAL_STATUSES)

_SUCCESSORS = dict(zip(STATUS_FLOW, STATUS_FLOW[1:]))


def next_status(current: str) -> Optional[str]:
    """Successor of ``current`` in the flow, or None for terminal/unknown statuses."""
    return _SUCCESSORS.get(current)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def is_valid_status(status) -> bool:
    return status in ALL_STATUSES


def timestamp_field(status: str) -> str:
    """Name of the Order column recording when ``status`` was first entered."""
    if status not in ALL_STATUSES:
        raise ValueError(f"Unknown order status: {status!r}")
    return f'{status}_at'
