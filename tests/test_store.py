import math
import threading
from datetime import datetime, timedelta

import pytest

from barcache.fallback import FallbackPolicy
from barcache.guard import commit, with_write_lock, write_locked
from barcache.keys import CacheKeyRegistry, global_values_key, series_key
from barcache.recovery import recover
from barcache.store import SeriesCache
from barcache.validity import finite, not_nan, strictly_positive
from core.exceptions import CacheKeyError
from core.types import FallbackMode, Scope

T1 = datetime(2024, 3, 1, 10, 0)
T2 = datetime(2024, 3, 1, 10, 1)
T3 = datetime(2024, 3, 1, 10, 2)


# ---------------------------------------------------------------------------
# SeriesCache
# ---------------------------------------------------------------------------


def test_get_missing_is_none() -> None:
    assert SeriesCache().get(T1) is None


def test_put_overwrites_same_timestamp() -> None:
    store = SeriesCache()
    commit(store, T1, 1.0)
    commit(store, T1, 2.0)

    assert len(store) == 1
    assert store.get(T1).value == 2.0


def test_get_reports_validity() -> None:
    store = SeriesCache(not_nan)
    commit(store, T1, float("nan"))

    entry = store.get(T1)
    assert entry is not None
    assert entry.valid is False
    assert store.get(T1, validity=lambda v: True).valid is True


def test_none_can_be_stored() -> None:
    store = SeriesCache()
    commit(store, T1, None)
    assert store.get(T1) is not None
    assert T1 in store


def test_scan_latest_not_after() -> None:
    store = SeriesCache()
    commit(store, T3, 3.0)
    commit(store, T1, 1.0)

    assert store.scan_latest_not_after(T2).value == 1.0
    assert store.scan_latest_not_after(T3).timestamp == T3
    assert store.scan_latest_not_after(T1 - timedelta(minutes=1)) is None


def test_scan_empty_store() -> None:
    assert SeriesCache().scan_latest_not_after(T3) is None


def test_to_series_is_sorted() -> None:
    store = SeriesCache()
    commit(store, T3, 3.0)
    commit(store, T1, 1.0)

    series = store.to_series()
    assert list(series.index) == [T1, T3]
    assert list(series.values) == [1.0, 3.0]
    assert store.timestamps() == [T1, T3]


def test_snapshot_is_a_copy() -> None:
    store = SeriesCache()
    commit(store, T1, 1.0)
    snap = store.snapshot()
    commit(store, T2, 2.0)
    assert snap == {T1: 1.0}


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


def test_with_write_lock_returns_action_result() -> None:
    store = SeriesCache()
    assert with_write_lock(store, lambda: store.put(T1, 1.0) or "done") == "done"
    assert store.get(T1).value == 1.0


def test_write_lock_is_per_store() -> None:
    a = SeriesCache()
    b = SeriesCache()
    acquired = threading.Event()

    def _write_b() -> None:
        commit(b, T1, 1.0)
        acquired.set()

    with write_locked(a):
        worker = threading.Thread(target=_write_b)
        worker.start()
        assert acquired.wait(timeout=2.0)
        worker.join()


def test_concurrent_writers_on_different_timestamps_both_survive() -> None:
    store = SeriesCache()
    start = threading.Barrier(2)
    base = datetime(2024, 1, 1)

    def _writer(offset: int) -> None:
        start.wait()
        for i in range(500):
            commit(store, base + timedelta(seconds=2 * i + offset), float(offset))

    threads = [threading.Thread(target=_writer, args=(n,)) for n in (0, 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 1000
    assert store.get(base).value == 0.0
    assert store.get(base + timedelta(seconds=1)).value == 1.0


def test_scan_during_concurrent_writes_does_not_fail() -> None:
    store = SeriesCache()
    base = datetime(2024, 1, 1)
    stop = threading.Event()
    errors: list[Exception] = []

    def _writer() -> None:
        i = 0
        while not stop.is_set():
            commit(store, base + timedelta(seconds=i), float(i))
            i += 1

    def _reader() -> None:
        try:
            for _ in range(200):
                store.scan_latest_not_after(base + timedelta(days=1))
        except Exception as e:  # pragma: no cover - failure path
            errors.append(e)

    writer = threading.Thread(target=_writer)
    writer.start()
    try:
        _reader()
    finally:
        stop.set()
        writer.join()
    assert errors == []


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def test_private_keys_differ_per_owner_and_discriminator() -> None:
    reg = CacheKeyRegistry()
    a = reg.resolve("iv1")
    b = reg.resolve("iv2")
    c = reg.resolve("iv1", discriminator="bid")

    assert len({a.text, b.text, c.text}) == 3
    assert a.scope is Scope.PRIVATE
    assert reg.resolve("iv1") is a


def test_shared_key_text_is_the_presented_string() -> None:
    reg = CacheKeyRegistry()
    key = reg.shared("GCMQ_agent_iv_RI")
    assert key.text == "GCMQ_agent_iv_RI"
    assert key.is_shared
    assert str(key) == key.text


def test_private_and_shared_never_collide() -> None:
    reg = CacheKeyRegistry()
    assert reg.resolve("x").text != reg.resolve("x", Scope.SHARED).text


def test_blank_owner_rejected() -> None:
    with pytest.raises(CacheKeyError):
        CacheKeyRegistry().resolve("  ")


def test_global_values_key() -> None:
    assert global_values_key("Agent", "IV", "RI_2024-03-21") == "GCMQ_Agent_IV_RI_2024-03-21"
    with pytest.raises(CacheKeyError):
        global_values_key("Agent", "", "RI")


def test_series_key_skips_blank_parts() -> None:
    assert series_key("RI", "", " 2024-03-21 ") == "RI_2024-03-21"


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


def test_recover_latest_not_after() -> None:
    store = SeriesCache(not_nan)
    commit(store, T1, 1.0)
    commit(store, T3, 3.0)

    entry = recover(store, T2)

    assert entry is not None
    assert entry.value == 1.0
    assert entry.timestamp == T1
    assert T2 not in store


def test_recover_does_not_skip_invalid_latest() -> None:
    store = SeriesCache(not_nan)
    commit(store, T1, 1.0)
    commit(store, T2, float("nan"))

    assert recover(store, T3) is None


def test_recover_empty_store() -> None:
    assert recover(SeriesCache(), T3) is None


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


def test_use_default_ignores_last_good() -> None:
    policy = FallbackPolicy(FallbackMode.USE_DEFAULT)
    policy.remember(5.0)
    assert math.isnan(policy.value())


def test_repeat_last_returns_last_good() -> None:
    policy = FallbackPolicy.from_flag(True)
    assert math.isnan(policy.value())
    policy.remember(5.0)
    assert policy.value() == 5.0
    policy.reset()
    assert math.isnan(policy.value())


def test_repeat_last_with_custom_default() -> None:
    policy = FallbackPolicy.from_flag(True, default=0.0, validity=strictly_positive)
    policy.remember(-1.0)
    assert policy.value() == 0.0


# ---------------------------------------------------------------------------
# Validity
# ---------------------------------------------------------------------------


def test_validity_predicates() -> None:
    assert not_nan(1.0) and not not_nan(float("nan")) and not not_nan(None)
    assert not_nan("text")
    assert finite(2) and not finite(float("inf"))
    assert strictly_positive(0.1) and not strictly_positive(0.0)
    assert not strictly_positive(True)
