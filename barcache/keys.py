"""Cache key derivation.

Private keys are derived from the owning chain and never collide with
another chain. Shared keys are explicit strings: every caller presenting
the same string reaches the same series.
"""
from __future__ import annotations

import threading

from core.exceptions import CacheKeyError
from core.types import CacheKey, Scope
from utils.logger import get_logger

log = get_logger(__name__)

GLOBAL_VALUES_PREFIX = "GCMQ"
PRIVATE_NAMESPACE = "local"


def _require(name: str, value: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise CacheKeyError(f"{name} must not be blank", details={name: value})
    return text


def series_key(*parts: str) -> str:
    """Join non-blank parts with underscores."""
    return "_".join(str(p).strip() for p in parts if str(p or "").strip())


def global_values_key(agent_name: str, values_name: str, symbol: str) -> str:
    """Well-known key a saver publishes under and a loader reads from.

    Raises:
        CacheKeyError: any part is blank.
    """
    agent = _require("agent_name", agent_name)
    values = _require("values_name", values_name)
    sym = _require("symbol", symbol)
    return f"{GLOBAL_VALUES_PREFIX}_{agent}_{values}_{sym}"


class CacheKeyRegistry:
    """Resolves (owner, scope, discriminator) triples to interned ``CacheKey``s."""

    def __init__(self) -> None:
        self._keys: dict[tuple[str, Scope, str], CacheKey] = {}
        self._lock = threading.Lock()

    def resolve(
        self,
        owner_id: str,
        scope: Scope = Scope.PRIVATE,
        discriminator: str = "",
    ) -> CacheKey:
        owner = _require("owner_id", owner_id)
        disc = str(discriminator or "").strip()
        ident = (owner, scope, disc)

        with self._lock:
            key = self._keys.get(ident)
            if key is None:
                if scope is Scope.SHARED:
                    text = series_key(owner, disc)
                else:
                    text = ":".join(p for p in (PRIVATE_NAMESPACE, owner, disc) if p)
                key = CacheKey(owner_id=owner, scope=scope, discriminator=disc, text=text)
                self._keys[ident] = key
                log.debug("Resolved %s key %s", scope.value, text)
            return key

    def shared(self, name: str) -> CacheKey:
        """Shared key for an explicit, already-derived string."""
        return self.resolve(name, Scope.SHARED)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
