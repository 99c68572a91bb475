"""Per-store write lock discipline.

The lock belongs to the ``SeriesCache`` instance, never to the module, so
writers on different series never wait on each other. Concurrent writers
on one series resolve last-writer-wins per timestamp.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Hashable, Iterator, TypeVar

from barcache.store import SeriesCache

R = TypeVar("R")


@contextmanager
def write_locked(store: SeriesCache[Any]) -> Iterator[SeriesCache[Any]]:
    with store.lock:
        yield store


def with_write_lock(store: SeriesCache[Any], action: Callable[[], R]) -> R:
    """Run ``action`` while holding ``store``'s write lock."""
    with write_locked(store):
        return action()


def commit(store: SeriesCache[Any], timestamp: Hashable, value: Any) -> None:
    """Single guarded insert: the whole critical section."""
    with write_locked(store):
        store.put(timestamp, value)
