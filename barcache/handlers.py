# barcache/handlers.py
"""
Shared-series handlers: one agent publishes an indicator series under a
well-known key, other agents (or the lab) read it back bar by bar.
"""
from __future__ import annotations

import math
import threading
from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from barcache.evaluator import BarWindowEvaluator
from barcache.keys import global_values_key, series_key
from barcache.session import EngineSession
from barcache.validity import not_nan
from core.exceptions import CacheKeyError, SeriesNotFoundError
from core.types import ComputeResult, Scope, Severity
from utils.logger import get_logger

log = get_logger(__name__)

EXPIRY_FORMAT = "%Y-%m-%d"


def option_series_key(symbol: str, expiry: date | datetime | None = None) -> str:
    """Symbol key of an option series: ``<symbol>_<yyyy-mm-dd>``."""
    if expiry is None:
        return series_key(symbol)
    return series_key(symbol, expiry.strftime(EXPIRY_FORMAT))


class _SharedSeriesHandler:
    """Per-symbol evaluators over shared series, created on demand."""

    readonly = False

    def __init__(self, session: EngineSession, repeat_last_value: bool = False) -> None:
        self.session = session
        self.repeat_last_value = bool(repeat_last_value)
        self.owner_id = session.new_owner_id(type(self).__name__)
        self._evaluators: Dict[str, BarWindowEvaluator[float]] = {}
        self._lock = threading.Lock()

    def _warn(self, message: str) -> None:
        self.session.diagnostics.log(
            f"[{self.owner_id}] {message}", Severity.WARNING, surface_to_main=True
        )

    def _evaluator(self, cash_key: str) -> BarWindowEvaluator[float]:
        with self._lock:
            ev = self._evaluators.get(cash_key)
            if ev is None:
                ev = self.session.evaluator(
                    cash_key,
                    scope=Scope.SHARED,
                    validity=not_nan,
                    repeat_last_value=self.repeat_last_value,
                    default=math.nan,
                    allow_write=not self.readonly,
                )
                self._evaluators[cash_key] = ev
            return ev


class SaveToSharedCache(_SharedSeriesHandler):
    """Publishes an externally computed indicator into the shared tier.

    Only runs in agent mode; in the lab it would overwrite what live
    agents publish.
    """

    def __init__(
        self,
        session: EngineSession,
        values_name: str,
        repeat_last_value: bool = False,
        agent_name: Optional[str] = None,
    ) -> None:
        super().__init__(session, repeat_last_value)
        self.values_name = values_name
        self.agent_name = session.agent_name if agent_name is None else agent_name

    def cash_key(self, symbol_key: str) -> str:
        return global_values_key(self.agent_name, self.values_name, symbol_key)

    @staticmethod
    def _take_value(handle, now, bar_index: int, args: Sequence[Any]) -> ComputeResult[float]:
        value = args[0]
        if isinstance(value, (list, tuple, pd.Series)):
            items = list(value)
            if bar_index >= len(items):
                return ComputeResult.fail(math.nan)
            value = items[bar_index]
        try:
            number = float(value)
        except (TypeError, ValueError):
            return ComputeResult.fail(math.nan)
        if not math.isfinite(number):
            return ComputeResult.fail(math.nan)
        return ComputeResult.ok(number)

    def execute(
        self,
        symbol_key: str,
        value: float,
        bar_index: int,
        timestamp: Any,
        total_bars: int,
    ) -> float:
        """Memoize ``value`` at ``timestamp``; returns what the chain now holds."""
        if not self.session.agent_mode:
            return math.nan
        try:
            number = float(value)
        except (TypeError, ValueError):
            return math.nan
        if not math.isfinite(number):
            return math.nan
        try:
            key = self.cash_key(symbol_key)
        except CacheKeyError as e:
            self._warn(str(e))
            return math.nan
        return self._evaluator(key).evaluate_at(
            bar_index, timestamp, total_bars, self._take_value, (number,)
        )

    def execute_stream(
        self,
        symbol_key: str,
        timestamps: Sequence[Any],
        values: Sequence[float],
        is_final_bar_included: bool = True,
    ) -> pd.Series:
        if not self.session.agent_mode or len(values) == 0:
            return pd.Series(dtype=float)
        try:
            key = self.cash_key(symbol_key)
        except CacheKeyError as e:
            self._warn(str(e))
            return pd.Series(dtype=float)
        return self._evaluator(key).evaluate_stream(
            timestamps, self._take_value, (list(values),), is_final_bar_included
        )


class LoadFromSharedCache(_SharedSeriesHandler):
    """Reads a series another agent publishes.

    ``agent_name`` is the publisher, not the agent this handler runs in.
    A missing series raises ``SeriesNotFoundError`` when ``strict``
    (defaults to the session's agent mode); otherwise it is reported and
    NaN is returned.
    """

    readonly = True

    def __init__(
        self,
        session: EngineSession,
        agent_name: str,
        values_name: str,
        override_symbol: str = "",
        repeat_last_value: bool = False,
        strict: Optional[bool] = None,
    ) -> None:
        super().__init__(session, repeat_last_value)
        self.agent_name = agent_name
        self.values_name = values_name
        self.override_symbol = override_symbol
        self.strict = session.agent_mode if strict is None else bool(strict)

    def cash_key(self, symbol_key: str) -> str:
        symbol = self.override_symbol.strip() or symbol_key
        return global_values_key(self.agent_name, self.values_name, symbol)

    def _exists(self, cash_key: str) -> bool:
        if self.session.bridge.contains(self.session.keys.shared(cash_key)):
            return True
        return self.session.shared_store.get(cash_key) is not None

    def _resolve(self, symbol_key: str) -> Optional[str]:
        try:
            key = self.cash_key(symbol_key)
        except CacheKeyError as e:
            self._warn(str(e))
            return None
        if self._exists(key):
            return key
        msg = (
            f"There is no series {key!r} in the shared cache. Probably agent "
            f"{self.agent_name!r} has to be started to collect {self.values_name!r}."
        )
        if self.strict:
            raise SeriesNotFoundError(msg, details={"key": key})
        self._warn(msg)
        return None

    def _read(self, handle, now, bar_index: int, args: Sequence[Any]) -> ComputeResult[float]:
        handle.refresh()
        entry = handle.get(now)
        if entry is not None and entry.valid:
            return ComputeResult.ok(entry.value)
        if not self.repeat_last_value:
            return ComputeResult.fail(math.nan)
        latest = handle.scan_latest_not_after(now)
        return ComputeResult.ok(latest.value if latest is not None else math.nan)

    def execute(
        self,
        symbol_key: str,
        bar_index: int,
        timestamp: Any,
        total_bars: int,
    ) -> float:
        key = self._resolve(symbol_key)
        if key is None:
            return math.nan
        return self._evaluator(key).evaluate_at(bar_index, timestamp, total_bars, self._read)

    def execute_stream(
        self,
        symbol_key: str,
        timestamps: Sequence[Any],
        is_final_bar_included: bool = True,
    ) -> pd.Series:
        key = self._resolve(symbol_key)
        if key is None:
            return pd.Series(dtype=float)
        return self._evaluator(key).evaluate_stream(
            timestamps, self._read, is_final_bar_included=is_final_bar_included
        )
