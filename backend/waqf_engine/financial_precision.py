"""
WAQF AMOUNT ARITHMETIC

Amounts are stored as floats with cent precision. Anything that moves a
balance is computed in Decimal:
1. Floats enter through their string form, so 0.1 stays 0.1
2. Intermediate results keep full precision
3. Half-up rounding to cents happens once, when a value is stored
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
import math
import logging

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Number = Union[float, int, str, Decimal]


class FinancialPrecisionError(Exception):
    """An amount that cannot take part in a balance calculation."""
    pass


def to_decimal(value: Number) -> Decimal:
    """Exact Decimal for value, without rounding."""
    if isinstance(value, Decimal):
        return value
    # bool is an int subclass; a flag is never an amount
    if isinstance(value, bool):
        raise FinancialPrecisionError(f"Boolean {value} is not an amount")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise FinancialPrecisionError(f"Non-finite amount: {value}")
        return Decimal(repr(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"Not a number: '{value}'")
    raise FinancialPrecisionError(f"Unsupported amount type {type(value).__name__}")


def round_financial(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_float(value: Number) -> float:
    """Cent-rounded float, the form amounts are stored in."""
    return float(round_financial(value))


def is_finite_amount(value: float) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def safe_add(*values: Number) -> Decimal:
    return sum((to_decimal(v) for v in values), ZERO)


def safe_subtract(minuend: Number, subtrahend: Number) -> Decimal:
    return to_decimal(minuend) - to_decimal(subtrahend)


def safe_multiply(amount: Number, factor: Number) -> Decimal:
    return to_decimal(amount) * to_decimal(factor)


def safe_divide(numerator: Number, denominator: Number) -> Decimal:
    """Quotient, or zero when the denominator is zero (an empty base has no share)."""
    denom = to_decimal(denominator)
    if denom == ZERO:
        return ZERO
    return to_decimal(numerator) / denom


def calculate_percentage(amount: Number, percentage: Number) -> Decimal:
    """percentage% of amount, e.g. calculate_percentage(1000, 10) == 100"""
    return safe_multiply(amount, safe_divide(percentage, HUNDRED))


def within_tolerance(a: Number, b: Number, tolerance: Number = CENTS) -> bool:
    return abs(safe_subtract(a, b)) <= to_decimal(tolerance)
