from __future__ import annotations

import math
import os
from typing import Final

ENV_PREFIX: Final[str] = "BARCACHE_"

_TRUTHY_ENV: Final[frozenset[str]] = frozenset(
    {"1", "true", "yes", "on"}
)


def env_name(name: str) -> str:
    """Prefix a bare setting name with the engine's env namespace."""
    text = str(name or "").strip()
    if text.startswith(ENV_PREFIX):
        return text
    return f"{ENV_PREFIX}{text}"


def env_flag(name: str, default: str = "0") -> bool:
    """Read boolean-like env flags using a shared truthy policy."""
    return str(os.environ.get(name, default)).strip().lower() in _TRUTHY_ENV


def env_text(name: str, default: str | None = "") -> str:
    """Read text env value with deterministic string normalization."""
    return str(os.environ.get(name, default) or "")


def env_int(name: str, default: int = 0, minimum: int | None = None) -> int:
    """Read integer env values with safe fallback on invalid input.

    ``minimum`` clamps the parsed value (the default is never clamped).
    """
    raw = os.environ.get(name)
    if raw is None:
        return int(default)

    text = str(raw).strip()
    if not text:
        return int(default)

    try:
        value = int(text)
    except (TypeError, ValueError):
        return int(default)
    if minimum is not None and value < minimum:
        return int(minimum)
    return value


def env_float(name: str, default: float = 0.0) -> float:
    """Read float env values; NaN, inf and garbage fall back to default."""
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return float(default)
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return float(default)
    if math.isnan(value) or math.isinf(value):
        return float(default)
    return value
