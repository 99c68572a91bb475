# barcache/session.py
"""
Engine session: everything one host session owns.

A session carries the metrics/identity service, diagnostics, key
registry, tiered cache bridge and recalc queue. Nothing here is process
global; two sessions in one process share only what they are explicitly
given (typically a shared ``KeyValueStore``).
"""
from __future__ import annotations

import math
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from barcache.bridge import TieredCacheBridge
from barcache.evaluator import BarWindowEvaluator
from barcache.fallback import FallbackPolicy
from barcache.keys import CacheKeyRegistry
from barcache.recalc import Heartbeat, RecalcSignal
from barcache.shared import KeyValueStore, create_key_value_store
from barcache.validity import Validity, not_nan
from config.settings import CONFIG, Config
from core.types import FailurePolicy, Scope
from utils.logger import DiagnosticLog, get_logger, setup_logging_from_config
from utils.metrics import SessionMetrics

log = get_logger(__name__)


class EngineSession:
    """Session-scoped entry point of the engine.

    Opening a session applies the configured log level and log directory.

    Usage:
        with EngineSession(agent_name="ivs") as session:
            ev = session.evaluator(session.new_owner_id("iv"))
            value = ev.evaluate_at(i, ts, n, compute)
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        agent_name: str = "",
        agent_mode: bool = True,
        shared_store: Optional[KeyValueStore] = None,
        config: Optional[Config] = None,
        metrics: Optional[SessionMetrics] = None,
    ) -> None:
        cfg = config or CONFIG
        self.config = cfg
        setup_logging_from_config(cfg)
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.agent_name = agent_name
        self.agent_mode = bool(agent_mode)
        self.metrics = metrics or SessionMetrics(self.session_id)
        self.diagnostics = DiagnosticLog(
            f"barcache.session.{self.session_id}",
            max_records=cfg.engine.max_recent_log_records,
        )
        self.keys = CacheKeyRegistry()
        self.shared_store = (
            shared_store if shared_store is not None
            else create_key_value_store(cfg.shared)
        )
        self.bridge = TieredCacheBridge(
            self.shared_store,
            save_period=cfg.shared.save_period,
            allow_write=cfg.shared.allow_write,
            metrics=self.metrics,
        )
        self.recalc = RecalcSignal()
        self._heartbeats: List[Heartbeat] = []
        self._markers: Dict[str, Tuple[bool, Optional[datetime]]] = {}
        self._lock = threading.Lock()
        self._closed = False
        log.info(
            "Engine session %s opened (agent_mode=%s, backend=%s)",
            self.session_id, self.agent_mode, type(self.shared_store).__name__,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def new_owner_id(self, prefix: str = "chain") -> str:
        """Unique chain id within this session."""
        return f"{prefix}{self.metrics.next_instance_id()}"

    def evaluator(
        self,
        owner_id: str,
        *,
        scope: Scope = Scope.PRIVATE,
        discriminator: str = "",
        validity: Validity = not_nan,
        repeat_last_value: Optional[bool] = None,
        default: Any = math.nan,
        failure_policy: Optional[FailurePolicy] = None,
        allow_write: Optional[bool] = None,
    ) -> BarWindowEvaluator[Any]:
        """Evaluator for one chain over the series named by the key parts."""
        engine = self.config.engine
        key = self.keys.resolve(owner_id, scope, discriminator)
        handle = self.bridge.fetch_or_create(key, validity, allow_write=allow_write)
        repeat = engine.repeat_last_value if repeat_last_value is None else repeat_last_value
        fallback: FallbackPolicy[Any] = FallbackPolicy.from_flag(repeat, default, validity)
        return BarWindowEvaluator(
            handle,
            fallback,
            diagnostics=self.diagnostics,
            metrics=self.metrics,
            failure_policy=failure_policy or engine.failure_policy,
            print_in_main_log=engine.print_in_main_log,
        )

    def heartbeat(
        self,
        owner_id: str,
        delay_ms: Optional[int] = None,
        only_when: Optional[Callable[[], bool]] = None,
    ) -> Heartbeat:
        """Started heartbeat posting to this session's recalc queue."""
        if delay_ms is None:
            delay_ms = self.config.engine.heartbeat_delay_ms
        beat = Heartbeat(
            self.recalc,
            delay_ms,
            only_when,
            owner_id=owner_id,
            metrics=self.metrics,
            diagnostics=self.diagnostics,
        )
        with self._lock:
            self._heartbeats.append(beat)
        return beat.start()

    # ------------------------------------------------------------------
    # Handler-initialized markers
    # ------------------------------------------------------------------

    def mark_initialized(self, owner_id: str, now: datetime, state: bool = True) -> None:
        with self._lock:
            self._markers[owner_id] = (bool(state), now)

    def is_initialized(self, owner_id: str, now: datetime) -> Tuple[bool, Optional[datetime]]:
        """(initialized, marker time); set only if marked strictly before ``now``."""
        with self._lock:
            state, marked_at = self._markers.get(owner_id, (False, None))
        if marked_at is None:
            return False, None
        return bool(state and marked_at < now), marked_at

    def initialized_today(self, owner_id: str, now: datetime) -> bool:
        initialized, marked_at = self.is_initialized(owner_id, now)
        return initialized and marked_at is not None and marked_at.date() == now.date()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            beats, self._heartbeats = self._heartbeats, []
        for beat in beats:
            beat.stop()
        flushed = self.bridge.flush()
        released = self.bridge.release_private()
        log.info(
            "Engine session %s closed (%d shared flushed, %d private released)",
            self.session_id, flushed, released,
        )

    def __enter__(self) -> EngineSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"EngineSession(id={self.session_id!r}, agent_mode={self.agent_mode}, "
            f"series={len(self.bridge)})"
        )
