"""Redondeo compartido (mitad hacia arriba, pasos de 0.5 unidades)."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from dosis_tool.errors import InvalidInputError


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round ``value`` to ``ndigits`` decimals, ties away from zero.

    Python's ``round`` uses banker's rounding (``round(0.25, 1) == 0.2``);
    glucose values and carb totals are shown rounded half-up instead.

    Args:
        value: Number to round.
        ndigits: Decimals to keep (0 for integers).

    Returns:
        Rounded value as float.

    Raises:
        InvalidInputError: If ``value`` is not finite or has too many digits
            to be rounded.
    """
    if not math.isfinite(value):
        raise InvalidInputError(f"cannot round {value}")
    quantum = Decimal(1).scaleb(-ndigits)
    try:
        rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidInputError(f"value out of range: {value}") from None
    return float(rounded)


def round_to_half(value: float) -> float:
    """Round to the nearest 0.5 insulin unit (ties go up)."""
    doubled = value * 2
    if not math.isfinite(doubled):
        raise InvalidInputError(f"dose out of range: {value}")
    return math.floor(doubled + 0.5) / 2
