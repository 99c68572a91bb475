# barcache/store.py
"""Time-keyed store: the memo behind one cache key.

Timestamps match exactly; there is no tolerance. Insertion order carries
no meaning, timestamp order only matters to ``scan_latest_not_after``.
"""
from __future__ import annotations

import threading
from typing import Any, Generic, Hashable, Iterator, Mapping, TypeVar

import pandas as pd

from barcache.validity import Validity, always_valid
from core.types import Entry

T = TypeVar("T")

# Module-level sentinel so that None can be a stored value
_MISSING = object()


class SeriesCache(Generic[T]):
    """Mapping of timestamp -> value with a validity predicate.

    ``put`` and ``merge`` mutate and must run under the store's write lock
    (see ``barcache.guard``). ``get`` takes no lock. Scans copy the items
    under the lock and iterate the copy, so a concurrent writer never
    breaks an in-flight scan.
    """

    def __init__(self, validity: Validity = always_valid, name: str = "") -> None:
        self.name = name
        self._validity = validity
        self._data: dict[Hashable, T] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def validity(self) -> Validity:
        return self._validity

    def _entry(self, timestamp: Hashable, value: Any, validity: Validity | None) -> Entry[T]:
        check = validity or self._validity
        return Entry(timestamp, value, bool(check(value)))

    def get(self, timestamp: Hashable, validity: Validity | None = None) -> Entry[T] | None:
        """Entry stored at exactly ``timestamp`` (valid or not), else None."""
        value = self._data.get(timestamp, _MISSING)
        if value is _MISSING:
            return None
        return self._entry(timestamp, value, validity)

    def put(self, timestamp: Hashable, value: T) -> None:
        """Overwrite the entry at ``timestamp``. Caller holds the write lock."""
        self._data[timestamp] = value

    def merge(self, entries: Mapping[Hashable, T]) -> int:
        """Overwrite with every entry of ``entries``. Caller holds the write lock."""
        self._data.update(entries)
        return len(entries)

    def scan_latest_not_after(
        self, timestamp: Any, validity: Validity | None = None
    ) -> Entry[T] | None:
        """Entry with the greatest timestamp <= ``timestamp``, else None.

        Full scan on purpose: direct hits dominate, recoveries are rare.
        """
        found_key: Any = _MISSING
        found_value: Any = None
        for key, value in self.items():
            if key > timestamp:
                continue
            if found_key is _MISSING or found_key < key:
                found_key = key
                found_value = value
        if found_key is _MISSING:
            return None
        return self._entry(found_key, found_value, validity)

    def items(self) -> list[tuple[Hashable, T]]:
        """Snapshot of the entries."""
        with self._lock:
            return list(self._data.items())

    def snapshot(self) -> dict[Hashable, T]:
        with self._lock:
            return dict(self._data)

    def timestamps(self) -> list[Hashable]:
        return sorted(ts for ts, _ in self.items())

    def to_series(self) -> pd.Series:
        """Entries as a pandas Series sorted by timestamp."""
        data = self.snapshot()
        if not data:
            return pd.Series(dtype=float)
        return pd.Series(data).sort_index()

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, timestamp: object) -> bool:
        return timestamp in self._data

    def __iter__(self) -> Iterator[Hashable]:
        return iter([ts for ts, _ in self.items()])

    def __repr__(self) -> str:
        return f"SeriesCache(name={self.name!r}, entries={len(self)})"
