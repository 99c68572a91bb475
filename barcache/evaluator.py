# barcache/evaluator.py
"""
Bar window evaluator: memoized per-bar evaluation for one chain.

Per call, in order:

1. The fallback value is taken first, so an empty series returns at once.
2. ``total_bars <= 0`` returns the fallback.
3. A valid entry at ``now`` is returned (cache hit).
4. At bar 0 over a non-empty store, the latest valid entry not after
   ``now`` is returned without being copied under ``now``.
5. Points behind the live edge that were never cached return the
   fallback. They are never computed.
6. At the live edge the compute callback runs. A valid result is
   committed and returned; anything else yields the fallback.
"""
from __future__ import annotations

import time
import traceback
from typing import Any, Callable, Generic, Iterable, Optional, Sequence, TypeVar, Union

import pandas as pd

from barcache.bridge import SeriesCacheHandle
from barcache.fallback import FallbackPolicy
from barcache.recovery import recover
from core.exceptions import ComputeError
from core.types import ComputeResult, EvaluationContext, FailureKind, FailurePolicy, Severity
from utils.logger import DiagnosticLog, get_logger
from utils.metrics import SessionMetrics

log = get_logger(__name__)

T = TypeVar("T")

ComputeFn = Callable[
    [SeriesCacheHandle[Any], Any, int, Sequence[Any]],
    Union[ComputeResult[Any], tuple],
]


def _as_result(raw: Any) -> ComputeResult[Any]:
    if isinstance(raw, ComputeResult):
        return raw
    if isinstance(raw, tuple) and len(raw) == 2:
        return ComputeResult(bool(raw[0]), raw[1])
    raise TypeError(
        f"Compute callback must return ComputeResult or (success, value), got {raw!r}"
    )


class BarWindowEvaluator(Generic[T]):
    """Runs the per-bar memoization procedure over one series cache handle."""

    def __init__(
        self,
        handle: SeriesCacheHandle[T],
        fallback: FallbackPolicy[T],
        *,
        diagnostics: Optional[DiagnosticLog] = None,
        metrics: Optional[SessionMetrics] = None,
        failure_policy: FailurePolicy = FailurePolicy.SWALLOW,
        print_in_main_log: bool = True,
    ) -> None:
        self.handle = handle
        self.fallback = fallback
        self.diagnostics = diagnostics or DiagnosticLog(__name__)
        self.metrics = metrics
        self.failure_policy = failure_policy
        self.print_in_main_log = print_in_main_log
        self._results: list[Any] = []

    @property
    def scope(self) -> str:
        return self.handle.scope.value

    # ------------------------------------------------------------------
    # Per-bar
    # ------------------------------------------------------------------

    def evaluate(
        self,
        ctx: EvaluationContext,
        compute: ComputeFn,
        args: Sequence[Any] = (),
    ) -> T:
        fallback_value = self.fallback.value()
        if ctx.total_bars <= 0:
            return fallback_value

        if ctx.bar_index >= ctx.total_bars:
            self.diagnostics.log(
                f"bar_index >= total_bars ({ctx.bar_index} >= {ctx.total_bars}) "
                f"for {self.handle.key.text}",
                Severity.WARNING,
            )
            ctx = ctx.clamped()

        now = ctx.timestamp
        entry = self.handle.get(now)
        if entry is not None and entry.valid:
            self.fallback.remember(entry.value)
            if self.metrics is not None:
                self.metrics.record_hit(self.scope)
            return entry.value

        if self.metrics is not None:
            self.metrics.record_miss(self.scope)

        if ctx.is_first and len(self.handle) > 0:
            recovered = recover(self.handle, now)
            if recovered is not None:
                self.fallback.remember(recovered.value)
                if self.metrics is not None:
                    self.metrics.record_recovery(self.scope)
                return recovered.value
            if self.metrics is not None:
                self.metrics.record_failure(FailureKind.RECOVERY_MISS, self.scope)

        if not ctx.is_live_edge:
            return fallback_value

        return self._compute(ctx, compute, args, fallback_value)

    def evaluate_at(
        self,
        bar_index: int,
        timestamp: Any,
        total_bars: int,
        compute: ComputeFn,
        args: Sequence[Any] = (),
        is_final_bar_included: bool = True,
    ) -> T:
        ctx = EvaluationContext(bar_index, timestamp, total_bars, is_final_bar_included)
        return self.evaluate(ctx, compute, args)

    def _compute(
        self,
        ctx: EvaluationContext,
        compute: ComputeFn,
        args: Sequence[Any],
        fallback_value: T,
    ) -> T:
        now = ctx.timestamp
        started = time.perf_counter()
        try:
            result = _as_result(compute(self.handle, now, ctx.bar_index, args))
        except Exception as e:
            self._report(FailureKind.COMPUTE_FAILURE)
            self.diagnostics.log(
                f"Compute for {self.handle.key.text} at {now} raised "
                f"{type(e).__name__}: {e}\n{traceback.format_exc()}",
                Severity.ERROR,
                surface_to_main=self.print_in_main_log,
            )
            if self.failure_policy is FailurePolicy.RETHROW:
                raise ComputeError(
                    f"Compute for {self.handle.key.text} failed at bar {ctx.bar_index}",
                    details={"key": self.handle.key.text, "timestamp": str(now)},
                ) from e
            return fallback_value
        finally:
            if self.metrics is not None:
                self.metrics.record_compute(self.scope, time.perf_counter() - started)

        if not result.success:
            self._report(FailureKind.COMPUTE_FAILURE)
            return fallback_value

        if not self.handle.validity(result.value):
            self._report(FailureKind.INVALID_RESULT)
            self.diagnostics.log(
                f"Invalid value {result.value!r} for {self.handle.key.text} at {now}",
                Severity.DEBUG,
            )
            return fallback_value

        self.fallback.remember(result.value)
        self.handle.commit(now, result.value)
        return result.value

    def _report(self, kind: FailureKind) -> None:
        if self.metrics is not None:
            self.metrics.record_failure(kind, self.scope)

    # ------------------------------------------------------------------
    # Whole series
    # ------------------------------------------------------------------

    def evaluate_stream(
        self,
        timestamps: Iterable[Any],
        compute: ComputeFn,
        args: Sequence[Any] = (),
        is_final_bar_included: bool = True,
    ) -> pd.Series:
        """Evaluate every bar of ``timestamps`` in order.

        Returns a Series of results indexed by timestamp.
        """
        if isinstance(timestamps, pd.Series):
            stamps = list(timestamps.tolist())
        else:
            stamps = list(timestamps)

        total = len(stamps)
        if total == 0:
            self._results.clear()
            return pd.Series(dtype=float)

        if len(self._results) > total:
            del self._results[total:]
        elif len(self._results) < total:
            self._results.extend([self.fallback.default] * (total - len(self._results)))

        for bar_index, ts in enumerate(stamps):
            ctx = EvaluationContext(bar_index, ts, total, is_final_bar_included)
            self._results[bar_index] = self.evaluate(ctx, compute, args)

        return pd.Series(list(self._results), index=pd.Index(stamps))
