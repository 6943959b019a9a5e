"""
Module: fee_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for money columns.
    Centralizes precision and rounding so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the fee kernel.  All monetary amounts use Decimal.
    - round_money() and round_whole() are the only sanctioned rounding
      functions for financial values.
    - MONEY_EPSILON (one paisa) is the single tolerance used for
      "fully paid" and drift comparisons.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# GST / cess percentage, e.g. 18.000000
Rate = Annotated[Decimal, Numeric(9, 6)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
MONEY_EPSILON = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """
    Coerce a numeric input to Decimal.

    Floats are converted through ``str`` so that 0.1 becomes Decimal("0.1")
    and not its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    Example:
        round_money(Decimal("10.555")) -> Decimal("10.56")
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def round_whole(value: Decimal) -> Decimal:
    """Round to the nearest whole currency unit (half up)."""
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def floor_whole(value: Decimal) -> Decimal:
    """Floor to a whole currency unit."""
    return value.quantize(Decimal("1"), rounding=ROUND_FLOOR)


def money_equal(a: Decimal, b: Decimal, epsilon: Decimal = MONEY_EPSILON) -> bool:
    """True when two amounts differ by no more than ``epsilon``."""
    return abs(to_decimal(a) - to_decimal(b)) <= epsilon
