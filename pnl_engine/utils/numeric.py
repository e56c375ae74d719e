"""
Numeric coercion and guarded arithmetic.

Source rows arrive with heterogeneous numeric encodings (floats, ints,
numeric strings, nulls). Everything that flows into an aggregate passes
through ``to_number`` so that the engine only ever sees finite floats, and
every ratio goes through ``safe_divide`` so that degenerate denominators
produce 0 instead of NaN or infinity.
"""

import math
from numbers import Real
from typing import Any


def to_number(value: Any) -> float:
    """
    Coerce an arbitrary value into a finite float.

    Finite reals pass through, numeric strings are parsed after trimming,
    and anything else (None, booleans, blank or non-numeric strings, NaN,
    infinities) becomes 0.0. Never raises.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, Real):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning ``default`` for zero/non-finite denominators or results."""
    if not denominator or not math.isfinite(denominator) or not math.isfinite(numerator):
        return default
    result = numerator / denominator
    return result if math.isfinite(result) else default


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return max(lower, min(upper, value))


def percentage_change(current: float, previous: float) -> float:
    """
    Percentage change from ``previous`` to ``current``.

    A zero or non-finite previous value yields +100 when current is
    positive, -100 when negative, and 0 otherwise. The result is always
    finite.

    >>> percentage_change(150, 100)
    50.0
    >>> percentage_change(5, 0)
    100.0
    """
    current = to_number(current)
    if not previous or not math.isfinite(previous):
        if current > 0:
            return 100.0
        if current < 0:
            return -100.0
        return 0.0
    change = (current - previous) / abs(previous) * 100
    return change if math.isfinite(change) else 0.0


def percent_of(part: float, whole: float) -> float:
    """``part`` as a percentage of ``whole``, 0 when ``whole`` is zero."""
    return safe_divide(part, whole) * 100
