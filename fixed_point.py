"""
Fixed-point helpers for the performance fee calculator.

All settlement math runs on integers scaled by 10**18, the same precision the
fund's share token uses. Conversions from human-readable values floor toward
zero, matching integer division truncation in the settlement formulas.
"""

from decimal import Decimal, localcontext, ROUND_FLOOR
from typing import Union

SHARE_UNIT = 10 ** 18
RATE_UNIT = 10 ** 18
MAX_BPS = 10_000

Number = Union[int, str, Decimal]


def to_fixed(value: Number, unit: int = SHARE_UNIT) -> int:
    """
    Convert a decimal quantity to fixed point.

    Args:
        value: Quantity as int, str or Decimal (e.g. "1.5")
        unit: Scale of one whole unit (default 10**18)

    Returns:
        Integer number of base units, floored

    Raises:
        ValueError: If value is a float or not a finite number
    """
    if isinstance(value, float):
        raise ValueError("Floats are not accepted, pass a str or Decimal instead")
    with localcontext() as ctx:
        ctx.prec = 80
        d = Decimal(value)
        if not d.is_finite():
            raise ValueError(f"Cannot convert non-finite value {value!r} to fixed point")
        return int((d * unit).to_integral_value(rounding=ROUND_FLOOR))


def from_fixed(value: int, unit: int = SHARE_UNIT) -> Decimal:
    """Convert a fixed-point integer back to a Decimal."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(value) / Decimal(unit)


def asset_unit(decimals: int) -> int:
    """One whole unit of an asset with the given number of decimals."""
    return 10 ** decimals


def rate_from_fraction(fraction: Number) -> int:
    """Scale a fee fraction (e.g. "0.1" for 10%) to RATE_UNIT."""
    return to_fixed(fraction, RATE_UNIT)


def rate_from_bps(bps: int) -> int:
    """
    Scale a rate given in basis points to RATE_UNIT.

    Example: 1000 bps = 10% = 0.1 * 10**18
    """
    return int(bps) * RATE_UNIT // MAX_BPS


def mul_div(a: int, b: int, denominator: int) -> int:
    """Floor of a * b / denominator."""
    return a * b // denominator
