# barcache/bridge.py
"""
Tiered cache bridge: in-process series stores over a shared key-value tier.

Private keys live only in this bridge. Shared keys are loaded from the
shared tier on first fetch and, for writable handles, snapshots are
pushed back every ``save_period`` accepted writes. The forward always
happens after the write lock is released.
"""
from __future__ import annotations

import threading
from typing import Any, Generic, Hashable, Optional, TypeVar

import pandas as pd

from barcache.guard import commit, write_locked
from barcache.shared import KeyValueStore
from barcache.store import SeriesCache
from barcache.validity import Validity, always_valid
from core.exceptions import SeriesDecodeError, SharedStoreError
from core.types import CacheKey, Entry, Scope
from utils.logger import get_logger
from utils.metrics import SessionMetrics
from utils.serialization import decode_series, encode_series

log = get_logger(__name__)

T = TypeVar("T")


class WriteThrottle:
    """Says "forward now" on every ``save_period``-th accepted write."""

    def __init__(self, save_period: int = 2) -> None:
        self.save_period = max(1, int(save_period))
        self._accepted = 0
        self._lock = threading.Lock()

    @property
    def accepted(self) -> int:
        with self._lock:
            return self._accepted

    def accept(self) -> bool:
        with self._lock:
            self._accepted += 1
            return self._accepted % self.save_period == 0


class SeriesCacheHandle(Generic[T]):
    """
    Typed view of one series store.

    Handles are cheap: every fetch returns a fresh view over the cached
    store, carrying the caller's validity predicate and write permission.
    """

    def __init__(
        self,
        key: CacheKey,
        store: SeriesCache[T],
        *,
        validity: Validity = always_valid,
        writable: bool = True,
        remote: Optional[KeyValueStore] = None,
        throttle: Optional[WriteThrottle] = None,
        metrics: Optional[SessionMetrics] = None,
    ) -> None:
        self.key = key
        self.store = store
        self.validity = validity
        self.writable = writable
        self._remote = remote
        self._throttle = throttle
        self._metrics = metrics

    @property
    def scope(self) -> Scope:
        return self.key.scope

    @property
    def forwards(self) -> bool:
        return self.key.is_shared and self.writable and self._remote is not None

    def get(self, timestamp: Hashable) -> Optional[Entry[T]]:
        return self.store.get(timestamp, self.validity)

    def scan_latest_not_after(self, timestamp: Any) -> Optional[Entry[T]]:
        return self.store.scan_latest_not_after(timestamp, self.validity)

    def commit(self, timestamp: Hashable, value: T) -> bool:
        """Store ``value`` at ``timestamp``; True if a snapshot was forwarded."""
        commit(self.store, timestamp, value)
        if not self.forwards or self._throttle is None:
            return False
        if not self._throttle.accept():
            return False
        return self._forward()

    def flush(self) -> bool:
        """Forward a snapshot now, regardless of the throttle."""
        if not self.forwards:
            return False
        return self._forward()

    def _forward(self) -> bool:
        snapshot = self.store.snapshot()
        try:
            blob = encode_series(snapshot)
        except (TypeError, ValueError) as e:
            log.warning("Snapshot of %s cannot be encoded: %s", self.key.text, e)
            return False
        try:
            self._remote.put(self.key.text, blob)
        except SharedStoreError as e:
            log.warning("Snapshot of %s not forwarded: %s", self.key.text, e)
            return False
        if self._metrics is not None:
            self._metrics.record_shared_write(self.key.text)
            self._metrics.set_series_size(self.key.text, len(snapshot))
        return True

    def refresh(self) -> int:
        """Merge the shared tier's copy over local entries; remote wins."""
        if not self.key.is_shared or self._remote is None:
            return 0
        blob = self._remote.get(self.key.text)
        if blob is None:
            return 0
        try:
            entries = decode_series(blob)
        except SeriesDecodeError as e:
            log.warning("Ignoring undecodable shared series %s: %s", self.key.text, e)
            return 0
        with write_locked(self.store):
            return self.store.merge(entries)

    def to_series(self) -> pd.Series:
        return self.store.to_series()

    def __len__(self) -> int:
        return len(self.store)

    def __contains__(self, timestamp: object) -> bool:
        return timestamp in self.store

    def __repr__(self) -> str:
        mode = "rw" if self.writable else "ro"
        return f"SeriesCacheHandle({self.key.text!r}, {mode}, entries={len(self)})"


class TieredCacheBridge:
    """
    Owns every series store of one session.

    ``fetch_or_create`` never fails for a well-formed key: a key nobody has
    seen yields an empty store.
    """

    def __init__(
        self,
        remote: Optional[KeyValueStore] = None,
        save_period: int = 2,
        allow_write: bool = False,
        metrics: Optional[SessionMetrics] = None,
    ) -> None:
        self.remote = remote
        self.save_period = max(1, int(save_period))
        self.allow_write = bool(allow_write)
        self._metrics = metrics
        self._stores: dict[str, SeriesCache[Any]] = {}
        self._throttles: dict[str, WriteThrottle] = {}
        self._writable_keys: dict[str, CacheKey] = {}
        self._lock = threading.RLock()

    def fetch_or_create(
        self,
        key: CacheKey,
        validity: Validity = always_valid,
        allow_write: Optional[bool] = None,
    ) -> SeriesCacheHandle[Any]:
        writable = self.allow_write if allow_write is None else bool(allow_write)
        if not key.is_shared:
            writable = True

        created = False
        with self._lock:
            store = self._stores.get(key.text)
            if store is None:
                store = SeriesCache(validity, name=key.text)
                self._stores[key.text] = store
                created = True
            throttle = None
            if key.is_shared:
                throttle = self._throttles.setdefault(
                    key.text, WriteThrottle(self.save_period)
                )
                if writable:
                    self._writable_keys[key.text] = key

        handle: SeriesCacheHandle[Any] = SeriesCacheHandle(
            key,
            store,
            validity=validity,
            writable=writable,
            remote=self.remote if key.is_shared else None,
            throttle=throttle,
            metrics=self._metrics,
        )
        if created:
            log.info("History %s not found in cache, creating", key.text)
            if key.is_shared:
                loaded = handle.refresh()
                if loaded:
                    log.info("Loaded %d shared entries for %s", loaded, key.text)
        return handle

    def contains(self, key: CacheKey) -> bool:
        with self._lock:
            return key.text in self._stores

    def flush(self) -> int:
        """Forward every writable shared series; returns how many were sent."""
        with self._lock:
            targets = [(k, self._stores[t], self._throttles[t]) for t, k in self._writable_keys.items()]
        sent = 0
        for key, store, throttle in targets:
            handle: SeriesCacheHandle[Any] = SeriesCacheHandle(
                key, store, writable=True, remote=self.remote,
                throttle=throttle, metrics=self._metrics,
            )
            if handle.flush():
                sent += 1
        return sent

    def release_private(self) -> int:
        """Drop private stores; they do not outlive the session."""
        with self._lock:
            private = [t for t, s in self._stores.items() if t not in self._throttles]
            for text in private:
                del self._stores[text]
        return len(private)

    def __len__(self) -> int:
        with self._lock:
            return len(self._stores)
