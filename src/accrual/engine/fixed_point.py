"""Fixed-point arithmetic for reward accounting.

Key Concepts:
- Every fractional quantity is a scaled integer: 1.0 == SCALE == 10**18
- Every division floors (truncates toward zero for non-negative operands)
- Products are formed in a wide intermediate and checked against a 256-bit bound
  before scaling down, so an overflow is reported instead of wrapped
"""

from decimal import ROUND_FLOOR, Decimal
from typing import Union

from .errors import ArithmeticOverflow, InvalidAmount

PRECISION_DECIMALS = 18
SCALE = 10 ** PRECISION_DECIMALS
ONE = SCALE  # Neutral multiplier (1.0x)
MAX_UINT256 = 2 ** 256 - 1


def check_bounds(value: int, label: str = "value") -> int:
    """Raise if value is negative or exceeds the 256-bit range."""
    if value < 0:
        raise InvalidAmount(f"{label} must be non-negative, got {value}")
    if value > MAX_UINT256:
        raise ArithmeticOverflow(f"{label} exceeds 256-bit range")
    return value


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Compute floor(a * b / denominator) with a checked wide intermediate.

    Args:
        a: First factor (non-negative)
        b: Second factor (non-negative)
        denominator: Divisor (positive)

    Returns:
        Floored quotient

    Raises:
        ArithmeticOverflow: If a * b leaves the 256-bit range
        ZeroDivisionError: If denominator is zero
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    product = check_bounds(a, "a") * check_bounds(b, "b")
    check_bounds(product, "product")
    return product // denominator


def checked_add(a: int, b: int) -> int:
    return check_bounds(a + b, "sum")


def checked_sub(a: int, b: int) -> int:
    """Subtract, refusing to go below zero."""
    result = a - b
    if result < 0:
        raise ArithmeticOverflow(f"underflow: {a} - {b}")
    return result


def to_fixed(value: Union[int, float, str, Decimal], scale: int = SCALE) -> int:
    """
    Convert a human-readable number to a scaled integer.

    Floats go through their decimal string form so 1.1 becomes exactly
    1_100_000_000_000_000_000 rather than its binary approximation.
    """
    if isinstance(value, float):
        value = repr(value)
    scaled = Decimal(value) * scale
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_fixed(value: int, scale: int = SCALE) -> float:
    """Convert a scaled integer to float for display only."""
    return value / scale
