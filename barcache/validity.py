"""Validity predicates for memoized values.

A value that fails its predicate is never returned as a cache hit and is
never committed.
"""
from __future__ import annotations

import math
from typing import Any, Callable

Validity = Callable[[Any], bool]


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def always_valid(value: Any) -> bool:
    return True


def not_nan(value: Any) -> bool:
    """Anything except None and NaN. Non-numeric values pass."""
    if value is None:
        return False
    number = _as_float(value)
    if number is None:
        return True
    return not math.isnan(number)


def finite(value: Any) -> bool:
    number = _as_float(value)
    return number is not None and math.isfinite(number)


def strictly_positive(value: Any) -> bool:
    """Finite and > 0 (volatilities, prices)."""
    number = _as_float(value)
    return number is not None and math.isfinite(number) and number > 0


def all_of(*predicates: Validity) -> Validity:
    def _check(value: Any) -> bool:
        return all(p(value) for p in predicates)

    return _check
