"""
Nanosecond timestamp helpers.

Tranche dates travel as decimal strings of nanoseconds since the epoch.
A month is a fixed number of days (30 by default), not a calendar month.
"""

import time
from typing import Optional

NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_DAY = 24 * 60 * 60 * NANOS_PER_SECOND


def now_nanos() -> int:
    return time.time_ns()


def resolve_now(now: Optional[int]) -> int:
    return now_nanos() if now is None else now


def days_to_nanos(days: int) -> int:
    return days * NANOS_PER_DAY


def months_to_nanos(months: int, days_per_month: int = 30) -> int:
    return months * days_per_month * NANOS_PER_DAY


def parse_nanos(value: str) -> int:
    """Parse a nanosecond timestamp string. Raises ValueError if malformed."""
    if value is None:
        raise ValueError("timestamp is missing")
    text = str(value).strip()
    if not text or not text.lstrip("-").isdigit():
        raise ValueError(f"not an integer timestamp: {value!r}")
    return int(text)


def is_nanos(value: Optional[str]) -> bool:
    try:
        parse_nanos(value)
    except ValueError:
        return False
    return True


def days_until(target: int, now: int) -> int:
    """Whole days until target, rounded down."""
    return (target - now) // NANOS_PER_DAY
