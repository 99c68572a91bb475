"""Utility package exports with lazy imports.

This keeps package import lightweight and avoids importing numpy and
pandas unless a serialization helper is requested.
"""

from __future__ import annotations

from importlib import import_module

_LAZY_EXPORTS = {
    # Logging
    "log": (".logger", "log"),
    "get_logger": (".logger", "get_logger"),
    "setup_logging": (".logger", "setup_logging"),
    "setup_logging_from_config": (".logger", "setup_logging_from_config"),
    "teardown_logging": (".logger", "teardown_logging"),
    "DiagnosticLog": (".logger", "DiagnosticLog"),
    # Metrics
    "MetricsRegistry": (".metrics", "MetricsRegistry"),
    "SessionMetrics": (".metrics", "SessionMetrics"),
    # Serialization
    "to_serializable": (".serialization", "to_serializable"),
    "encode_series": (".serialization", "encode_series"),
    "decode_series": (".serialization", "decode_series"),
}

__all__ = list(_LAZY_EXPORTS.keys())


def __getattr__(name: str):
    target = _LAZY_EXPORTS.get(str(name))
    if target is None:
        raise AttributeError(f"module 'utils' has no attribute {name!r}")
    mod_name, attr_name = target
    module = import_module(mod_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
