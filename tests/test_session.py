import logging
import math
from datetime import datetime, timedelta

import pytest

from barcache.session import EngineSession
from barcache.shared import InMemoryKeyValueStore, RedisKeyValueStore
from config.settings import CONFIG
from core.exceptions import RecalcError
from core.types import ComputeResult, FailurePolicy, FallbackMode, Scope
from utils.logger import LoggerManager, teardown_logging


def _const(value):
    return lambda h, t, i, a: ComputeResult.ok(value)


def test_owner_ids_are_unique_per_session(session) -> None:
    assert session.new_owner_id("iv") == "iv0"
    assert session.new_owner_id("iv") == "iv1"
    other = EngineSession("other", shared_store=InMemoryKeyValueStore())
    assert other.new_owner_id("iv") == "iv0"


def test_private_chains_are_isolated(session, bar_times) -> None:
    a = session.evaluator("a")
    b = session.evaluator("b")

    a.evaluate_at(0, bar_times[0], 1, _const(1.0))
    b.evaluate_at(0, bar_times[0], 1, _const(2.0))

    assert a.handle.get(bar_times[0]).value == 1.0
    assert b.handle.get(bar_times[0]).value == 2.0


def test_discriminator_gives_independent_series(session, bar_times) -> None:
    bid = session.evaluator("iv", discriminator="bid")
    ask = session.evaluator("iv", discriminator="ask")

    bid.evaluate_at(0, bar_times[0], 1, _const(0.2))

    assert len(bid.handle) == 1
    assert len(ask.handle) == 0


def test_shared_series_visible_to_another_session(bar_times) -> None:
    remote = InMemoryKeyValueStore()
    writer = EngineSession("w", shared_store=remote)
    ev = writer.evaluator("GCMQ_w_iv_RI", scope=Scope.SHARED, allow_write=True)
    ev.evaluate_at(0, bar_times[0], 1, _const(0.3))
    writer.close()

    reader = EngineSession("r", shared_store=remote)
    seen = reader.evaluator("GCMQ_w_iv_RI", scope=Scope.SHARED)
    calls = []

    result = seen.evaluate_at(
        0, bar_times[0], 1, lambda h, t, i, a: calls.append(1) or (True, 9.9)
    )

    assert result == 0.3
    assert calls == []
    reader.close()


def test_evaluator_defaults_follow_config(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_REPEAT_LAST_VALUE", "1")
    monkeypatch.setenv("BARCACHE_FAILURE_POLICY", "rethrow")
    monkeypatch.setenv("BARCACHE_PRINT_IN_MAIN_LOG", "0")
    CONFIG.reload()

    with EngineSession("cfg", shared_store=InMemoryKeyValueStore()) as s:
        ev = s.evaluator("x")
        assert ev.fallback.mode is FallbackMode.REPEAT_LAST
        assert ev.failure_policy is FailurePolicy.RETHROW
        assert ev.print_in_main_log is False

        explicit = s.evaluator("y", repeat_last_value=False,
                               failure_policy=FailurePolicy.SWALLOW)
        assert explicit.fallback.mode is FallbackMode.USE_DEFAULT
        assert explicit.failure_policy is FailurePolicy.SWALLOW


def test_redis_backend_selected_from_config(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_SHARED_BACKEND", "redis")
    CONFIG.reload()

    s = EngineSession("redis")
    assert isinstance(s.shared_store, RedisKeyValueStore)


def test_initialized_markers(session) -> None:
    t0 = datetime(2024, 3, 1, 10, 0)

    assert session.is_initialized("h", t0) == (False, None)

    session.mark_initialized("h", t0)
    assert session.is_initialized("h", t0) == (False, t0)
    assert session.is_initialized("h", t0 + timedelta(minutes=1)) == (True, t0)
    assert session.initialized_today("h", t0 + timedelta(hours=1)) is True
    assert session.initialized_today("h", t0 + timedelta(days=1)) is False

    session.mark_initialized("h", t0, state=False)
    assert session.is_initialized("h", t0 + timedelta(minutes=1))[0] is False


def test_markers_are_not_published(session) -> None:
    session.mark_initialized("h", datetime(2024, 3, 1))
    session.close()
    assert len(session.shared_store) == 0


def test_session_heartbeat_feeds_recalc_queue(session) -> None:
    beat = session.heartbeat("iv", delay_ms=5)

    request = session.recalc.wait(timeout=2.0)

    assert request is not None and request.owner_id == "iv"
    session.close()
    assert not beat.is_running


def test_close_flushes_and_releases(bar_times) -> None:
    remote = InMemoryKeyValueStore()
    s = EngineSession("c", shared_store=remote)
    s.evaluator("priv").evaluate_at(0, bar_times[0], 1, _const(1.0))
    s.evaluator("GCMQ_c", scope=Scope.SHARED, allow_write=True).evaluate_at(
        0, bar_times[0], 1, _const(2.0)
    )
    assert remote.get("GCMQ_c") is None

    s.close()
    s.close()

    assert s.closed
    assert remote.get("GCMQ_c") is not None
    assert len(s.bridge) == 1


def test_nan_default_is_returned_for_uncached_history(session, bar_times) -> None:
    ev = session.evaluator("hist")
    assert math.isnan(ev.evaluate_at(3, bar_times[3], 10, _const(1.0)))


def test_explicit_zero_heartbeat_delay_rejected(session) -> None:
    with pytest.raises(RecalcError):
        session.heartbeat("iv", delay_ms=0)


def test_session_applies_logging_config(tmp_path, monkeypatch) -> None:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("BARCACHE_LOG_DIR", str(log_dir))
    monkeypatch.setenv("BARCACHE_LOG_LEVEL", "DEBUG")
    CONFIG.reload()
    try:
        with EngineSession("logs", shared_store=InMemoryKeyValueStore()):
            manager = LoggerManager()
            first = manager.log_file
            assert first is not None and first.parent == log_dir
            assert manager.level == logging.DEBUG

        with EngineSession("again", shared_store=InMemoryKeyValueStore()):
            assert LoggerManager().log_file == first
    finally:
        teardown_logging()
