"""First-bar recovery.

When the host window restarts at bar 0 (sliding window reset or a cold
start over a warm store) the engine answers from the latest earlier
entry instead of leaving the window blank.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from core.types import Entry


class _Scannable(Protocol):
    def scan_latest_not_after(self, timestamp: Any) -> Optional[Entry[Any]]:
        ...

    def __len__(self) -> int:
        ...


def recover(store: _Scannable, now: Any) -> Optional[Entry[Any]]:
    """Latest entry at or before ``now`` if it is valid, else None.

    Only the single latest entry is considered; an invalid one is not
    skipped in favour of an older valid one.
    """
    if len(store) == 0:
        return None
    entry = store.scan_latest_not_after(now)
    if entry is None or not entry.valid:
        return None
    return entry
