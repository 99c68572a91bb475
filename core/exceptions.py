# core/exceptions.py
"""
Exceptions for the bar cache engine.

Expected failures of a compute step travel as ``ComputeResult`` values;
the classes here cover programming errors, configuration problems, the
shared store boundary and the opt-in rethrow policy.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional


class BarCacheError(Exception):
    """Base exception for the bar cache engine."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details: Dict[str, Any] = dict(details) if details else {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.code and self.code != self.__class__.__name__:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            parts.append(f"(details: {self.details})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )


class ConfigurationError(BarCacheError):
    """Invalid engine configuration."""


class CacheKeyError(BarCacheError):
    """A cache key could not be derived from the given parts."""


# ── Shared store ─────────────────────────────────────────────


class SharedStoreError(BarCacheError):
    """Base shared key-value store error."""


class SharedStoreUnavailableError(SharedStoreError):
    """The shared store rejected or could not take a write."""


class SeriesNotFoundError(SharedStoreError):
    """No series is published under the requested shared key."""


class SeriesDecodeError(SharedStoreError):
    """A shared blob could not be decoded into a series."""


# ── Evaluation ───────────────────────────────────────────────


class ComputeError(BarCacheError):
    """A compute callback raised while the rethrow policy is active.

    The original exception is chained as ``__cause__``.
    """


class RecalcError(BarCacheError):
    """Forced recalculation could not be scheduled."""
