"""Bar cache engine package exports with lazy imports.

Importing ``barcache`` stays cheap; submodules (and pandas, redis) load
on first attribute access.
"""

from __future__ import annotations

from importlib import import_module

_LAZY_EXPORTS = {
    # Session
    "EngineSession": (".session", "EngineSession"),
    # Evaluation
    "BarWindowEvaluator": (".evaluator", "BarWindowEvaluator"),
    "FallbackPolicy": (".fallback", "FallbackPolicy"),
    "recover": (".recovery", "recover"),
    # Stores
    "SeriesCache": (".store", "SeriesCache"),
    "with_write_lock": (".guard", "with_write_lock"),
    "write_locked": (".guard", "write_locked"),
    "SeriesCacheHandle": (".bridge", "SeriesCacheHandle"),
    "TieredCacheBridge": (".bridge", "TieredCacheBridge"),
    "WriteThrottle": (".bridge", "WriteThrottle"),
    # Keys
    "CacheKeyRegistry": (".keys", "CacheKeyRegistry"),
    "global_values_key": (".keys", "global_values_key"),
    "series_key": (".keys", "series_key"),
    # Shared tier
    "KeyValueStore": (".shared", "KeyValueStore"),
    "InMemoryKeyValueStore": (".shared", "InMemoryKeyValueStore"),
    "RedisKeyValueStore": (".shared", "RedisKeyValueStore"),
    "create_key_value_store": (".shared", "create_key_value_store"),
    # Forced recalculation
    "Heartbeat": (".recalc", "Heartbeat"),
    "RecalcSignal": (".recalc", "RecalcSignal"),
    # Handlers
    "SaveToSharedCache": (".handlers", "SaveToSharedCache"),
    "LoadFromSharedCache": (".handlers", "LoadFromSharedCache"),
    # Validity
    "always_valid": (".validity", "always_valid"),
    "not_nan": (".validity", "not_nan"),
    "finite": (".validity", "finite"),
    "strictly_positive": (".validity", "strictly_positive"),
}

__all__ = list(_LAZY_EXPORTS.keys())


def __getattr__(name: str):
    target = _LAZY_EXPORTS.get(str(name))
    if target is None:
        raise AttributeError(f"module 'barcache' has no attribute {name!r}")
    mod_name, attr_name = target
    module = import_module(mod_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
