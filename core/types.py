"""
Canonical types for the bar cache engine.
Engine modules import their enums and value objects from here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Hashable, TypeVar

T = TypeVar("T")

# ============================================================
# Enums
# ============================================================


class Scope(Enum):
    """Visibility class of a series cache."""
    PRIVATE = "private"
    SHARED = "shared"


class FallbackMode(Enum):
    REPEAT_LAST = "repeat_last"
    USE_DEFAULT = "use_default"


class FailurePolicy(Enum):
    """What the evaluator does with an exception raised by a compute callback."""
    SWALLOW = "swallow"
    RETHROW = "rethrow"


class FailureKind(Enum):
    COMPUTE_FAILURE = "compute_failure"
    INVALID_RESULT = "invalid_result"
    RECOVERY_MISS = "recovery_miss"
    CONCURRENCY_CONFLICT = "concurrency_conflict"


class Severity(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def level(self) -> int:
        return _SEVERITY_LEVELS[self]


_SEVERITY_LEVELS = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


# ============================================================
# Value objects
# ============================================================


@dataclass(frozen=True)
class Entry(Generic[T]):
    """One memoized point of a series cache."""
    timestamp: Hashable
    value: T
    valid: bool = True


@dataclass(frozen=True)
class CacheKey:
    """Identity of one series cache.

    ``text`` is the derived identity string; two keys with the same text
    address the same series, whatever produced them.
    """
    owner_id: str
    scope: Scope
    discriminator: str = ""
    text: str = ""

    @property
    def is_shared(self) -> bool:
        return self.scope is Scope.SHARED

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class EvaluationContext:
    """Per-call position in the host's series. Never outlives one call."""
    bar_index: int
    timestamp: Any
    total_bars: int
    is_final_bar_included: bool = True

    @property
    def effective_bars(self) -> int:
        """Bar count with an unfinished final bar excluded."""
        if self.is_final_bar_included:
            return self.total_bars
        return self.total_bars - 1

    @property
    def is_first(self) -> bool:
        return self.bar_index == 0

    @property
    def is_live_edge(self) -> bool:
        return self.bar_index >= self.effective_bars - 1

    def clamped(self) -> EvaluationContext:
        """Copy with ``bar_index`` pulled back inside the window."""
        if self.total_bars <= 0 or self.bar_index < self.total_bars:
            return self
        return EvaluationContext(
            bar_index=self.total_bars - 1,
            timestamp=self.timestamp,
            total_bars=self.total_bars,
            is_final_bar_included=self.is_final_bar_included,
        )


@dataclass(frozen=True)
class ComputeResult(Generic[T]):
    """Typed outcome of a compute callback."""
    success: bool
    value: T | None = None

    @classmethod
    def ok(cls, value: T) -> ComputeResult[T]:
        return cls(True, value)

    @classmethod
    def fail(cls, value: T | None = None) -> ComputeResult[T]:
        return cls(False, value)


@dataclass(frozen=True)
class RecalcRequest:
    """A "please recalculate" message posted by a timer thread."""
    owner_id: str
    requested_at: datetime
