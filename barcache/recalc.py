# barcache/recalc.py
"""
Forced recalculation.

A ``Heartbeat`` timer never touches series caches. When it fires it
posts a ``RecalcRequest`` onto a ``RecalcSignal`` queue, and the single
evaluation loop drains the queue and recalculates on its own thread.
"""
from __future__ import annotations

import queue
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from core.exceptions import RecalcError
from core.types import RecalcRequest, Severity
from utils.logger import DiagnosticLog, get_logger
from utils.metrics import SessionMetrics

log = get_logger(__name__)

# Replacements of a dead timer tolerated before it is reported as an error
MAX_TIMER_PROBLEMS = 3


class RecalcSignal:
    """Thread-safe queue of "please recalculate" requests."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[RecalcRequest]" = queue.Queue()

    def post(self, owner_id: str) -> RecalcRequest:
        request = RecalcRequest(owner_id=owner_id, requested_at=datetime.now())
        self._queue.put(request)
        return request

    def wait(self, timeout: Optional[float] = None) -> Optional[RecalcRequest]:
        """Next request, or None if nothing arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[RecalcRequest]:
        """Pending requests, one per owner (the latest), in the order of those."""
        latest: Dict[str, RecalcRequest] = {}
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                break
            latest.pop(request.owner_id, None)
            latest[request.owner_id] = request
        return list(latest.values())

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class Heartbeat:
    """
    Periodic timer posting recalc requests for one owner.

    ``only_when`` gates each beat (e.g. "only while the market is open");
    a beat it rejects is skipped but the timer keeps running. If the gate
    raises, the timer stops and the next ``rearm()`` replaces it and counts
    a problem against the owner. A ``rearm()`` during a beat in progress
    is not a problem.
    """

    def __init__(
        self,
        signal: RecalcSignal,
        delay_ms: int,
        only_when: Optional[Callable[[], bool]] = None,
        *,
        owner_id: str = "heartbeat",
        metrics: Optional[SessionMetrics] = None,
        diagnostics: Optional[DiagnosticLog] = None,
    ) -> None:
        if int(delay_ms) <= 0:
            raise RecalcError(
                "Heartbeat delay must be positive", details={"delay_ms": delay_ms}
            )
        self.signal = signal
        self.delay_ms = int(delay_ms)
        self.only_when = only_when
        self.owner_id = owner_id
        self._metrics = metrics
        self._diagnostics = diagnostics or DiagnosticLog(__name__)
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._started = False
        self._stopped = False
        self._in_flight = 0
        self._beats = 0

    @property
    def beats(self) -> int:
        return self._beats

    @property
    def is_running(self) -> bool:
        with self._lock:
            alive = self._timer is not None or self._in_flight > 0
            return alive and not self._stopped

    def start(self) -> Heartbeat:
        with self._lock:
            if self._stopped:
                raise RecalcError(
                    "Heartbeat was stopped", details={"owner_id": self.owner_id}
                )
            self._started = True
            if self._timer is None:
                self._arm_locked()
        return self

    def _arm_locked(self) -> None:
        timer = threading.Timer(self.delay_ms / 1000.0, self._fire)
        timer.daemon = True
        timer.name = f"heartbeat-{self.owner_id}"
        self._timer = timer
        timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._timer = None
            self._in_flight += 1

        try:
            allowed = self.only_when is None or bool(self.only_when())
        except Exception as e:
            with self._lock:
                self._in_flight -= 1
            self._diagnostics.log(
                f"Heartbeat gate for {self.owner_id} raised {type(e).__name__}: {e}",
                Severity.ERROR,
            )
            return

        if allowed:
            self.signal.post(self.owner_id)
            self._beats += 1

        with self._lock:
            self._in_flight -= 1
            if not self._stopped and self._timer is None:
                self._arm_locked()

    def rearm(self) -> None:
        """Restart the countdown from now."""
        with self._lock:
            if self._stopped:
                return
            dead = self._started and self._timer is None and self._in_flight == 0
            if self._timer is not None:
                self._timer.cancel()
            self._started = True
            self._arm_locked()

        if self._metrics is None:
            return
        if not dead:
            self._metrics.reset_problem(self.owner_id)
            return
        problems = self._metrics.bump_problem(self.owner_id)
        severity = Severity.ERROR if problems > MAX_TIMER_PROBLEMS else Severity.WARNING
        self._diagnostics.log(
            f"Heartbeat timer for {self.owner_id} was dead and has been replaced "
            f"({problems} problem(s))",
            severity,
            surface_to_main=problems > MAX_TIMER_PROBLEMS,
        )

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def __repr__(self) -> str:
        return (
            f"Heartbeat(owner_id={self.owner_id!r}, delay_ms={self.delay_ms}, "
            f"running={self.is_running})"
        )
