from __future__ import annotations

from collections.abc import Iterable

DEFAULT_PRECISION = 2


def round_hours(value: float, precision: int = DEFAULT_PRECISION) -> float:
    """Round an hour quantity to the fixed precision used for comparisons.

    Both sides of an equality check must go through this; -0.0 becomes 0.0.
    """
    return round(float(value), precision) + 0.0


def sum_hours(values: Iterable[float], precision: int = DEFAULT_PRECISION) -> float:
    return round_hours(sum(values), precision)


def format_hours(hours: float) -> str:
    """Return a compact duration label: "8h", "30m", "7h 30m"."""
    h = int(hours)
    m = int(round((hours - h) * 60))
    if m == 60:
        h, m = h + 1, 0
    if m == 0:
        return f"{h}h"
    if h == 0:
        return f"{m}m"
    return f"{h}h {m}m"


def _strip_trailing_zero(x: float) -> str:
    s = f"{x:.2f}"
    if s.endswith(".00"):
        return s[:-3]
    if s.endswith("0"):
        return s[:-1]
    return s


def format_quantity(hours: float) -> str:
    """Decimal label for a grid cell ("8", "7.5", "0.25")."""
    return _strip_trailing_zero(hours)
