"""
Duration literals used by configuration: "45s", "2m", "3h", "7d".
"""
import re
from datetime import timedelta

DURATION_RE = re.compile(r'^\s*(\d+)([smhd])\s*$', re.IGNORECASE)

_UNITS = {
    's': 'seconds',
    'm': 'minutes',
    'h': 'hours',
    'd': 'days',
}


def parse_duration(value) -> timedelta:
    """
    Parse a duration literal of the form ``<digits><unit>``.

    Accepts an existing timedelta unchanged. Units are s, m, h and d,
    case-insensitive.

    Raises:
        ValueError: If the value is not a valid duration literal
    """
    if isinstance(value, timedelta):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Duration must be a string like '2m', got {value!r}")

    match = DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration {value!r}, expected e.g. '45s', '2m', '3h', '7d'")

    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit.lower()]: int(amount)})
