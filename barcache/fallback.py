"""Fallback value selection for one evaluation chain."""
from __future__ import annotations

import math
import threading
from typing import Any, Generic, TypeVar

from barcache.validity import Validity, not_nan
from core.types import FallbackMode

T = TypeVar("T")


class FallbackPolicy(Generic[T]):
    """
    Picks what an evaluation returns when it has nothing better.

    REPEAT_LAST returns the last value this chain returned, provided it is
    still valid; otherwise (and always under USE_DEFAULT) the default.
    """

    def __init__(
        self,
        mode: FallbackMode = FallbackMode.USE_DEFAULT,
        default: Any = math.nan,
        validity: Validity = not_nan,
    ) -> None:
        self.mode = mode
        self.default = default
        self._validity = validity
        self._last_good: Any = default
        self._lock = threading.Lock()

    @classmethod
    def from_flag(
        cls, repeat_last_value: bool, default: Any = math.nan, validity: Validity = not_nan
    ) -> FallbackPolicy[T]:
        mode = FallbackMode.REPEAT_LAST if repeat_last_value else FallbackMode.USE_DEFAULT
        return cls(mode, default, validity)

    @property
    def last_good(self) -> Any:
        return self._last_good

    def value(self) -> T:
        with self._lock:
            last = self._last_good
        if self.mode is FallbackMode.REPEAT_LAST and self._validity(last):
            return last
        return self.default

    def remember(self, value: T) -> None:
        """Record a value the chain returned successfully."""
        with self._lock:
            self._last_good = value

    def reset(self) -> None:
        with self._lock:
            self._last_good = self.default
