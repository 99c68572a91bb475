"""Serialization helpers for series blobs stored in the shared key-value store.

A series is encoded as JSON::

    {"version": 1, "kind": "datetime", "entries": [["2024-01-02T10:00:00", 1.5], ...]}

``kind`` records how timestamps were written so they decode back to
values that compare equal to the originals (exact-match lookups depend
on it). NaN values survive the round trip.
"""
from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import numpy as np
import pandas as pd

from core.exceptions import SeriesDecodeError

SERIES_BLOB_VERSION = 1


def to_serializable(obj: Any) -> Any:
    """Convert an object to a JSON-serializable representation.

    Handles numpy scalars and arrays, datetimes, enums, paths and dataclasses.
    """
    if obj is None:
        return None
    if isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return [to_serializable(item) for item in obj.tolist()]
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, time):
        return obj.strftime("%H:%M:%S")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if is_dataclass(obj):
        return {f.name: to_serializable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, (list, tuple)):
        return [to_serializable(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    return str(obj)


def _timestamp_kind(timestamps: list[Any]) -> str:
    if not timestamps:
        return "datetime"
    if all(isinstance(t, np.datetime64) for t in timestamps):
        return "datetime64"
    if all(isinstance(t, datetime) for t in timestamps):
        # pandas keeps nanoseconds that datetime cannot hold
        if any(isinstance(t, pd.Timestamp) for t in timestamps):
            return "timestamp"
        return "datetime"
    if all(isinstance(t, date) and not isinstance(t, datetime) for t in timestamps):
        return "date"
    if all(
        isinstance(t, (int, float, np.integer, np.floating)) and not isinstance(t, bool)
        for t in timestamps
    ):
        return "number"
    if all(isinstance(t, str) for t in timestamps):
        return "text"
    raise TypeError(
        "Series timestamps must be all of one kind: datetimes, dates, "
        "numpy datetime64, numbers or strings"
    )


def _encode_timestamp(ts: Any, kind: str) -> Any:
    if kind in ("datetime", "timestamp", "date"):
        return ts.isoformat()
    if kind == "datetime64":
        return str(ts)
    if kind == "number":
        return to_serializable(ts)
    return ts


def _decode_timestamp(raw: Any, kind: str) -> Any:
    if kind == "datetime":
        return datetime.fromisoformat(str(raw))
    if kind == "timestamp":
        return pd.Timestamp(str(raw))
    if kind == "date":
        return date.fromisoformat(str(raw))
    if kind == "datetime64":
        return np.datetime64(str(raw))
    if kind == "number":
        if isinstance(raw, (int, float)):
            return raw
        raise ValueError(f"Expected numeric timestamp, got {raw!r}")
    return str(raw)


def encode_series(series: Mapping[Any, Any]) -> bytes:
    """Encode a timestamp -> value mapping into a JSON blob."""
    items = list(series.items())
    kind = _timestamp_kind([ts for ts, _ in items])
    payload = {
        "version": SERIES_BLOB_VERSION,
        "kind": kind,
        "entries": [
            [_encode_timestamp(ts, kind), to_serializable(value)]
            for ts, value in items
        ],
    }
    return json.dumps(payload, allow_nan=True, separators=(",", ":")).encode("utf-8")


def decode_series(blob: bytes | str | None) -> dict[Any, Any]:
    """Decode a blob produced by ``encode_series``.

    Raises:
        SeriesDecodeError: the blob is not a series of a known version.
    """
    if blob is None:
        return {}
    try:
        text = blob.decode("utf-8") if isinstance(blob, (bytes, bytearray)) else str(blob)
        payload = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise SeriesDecodeError(f"Series blob is not valid JSON: {e}") from e

    if not isinstance(payload, dict) or payload.get("version") != SERIES_BLOB_VERSION:
        raise SeriesDecodeError(
            "Unsupported series blob",
            details={"version": payload.get("version") if isinstance(payload, dict) else None},
        )

    kind = str(payload.get("kind", "datetime"))
    result: dict[Any, Any] = {}
    try:
        for raw_ts, value in payload.get("entries", []):
            result[_decode_timestamp(raw_ts, kind)] = value
    except (TypeError, ValueError) as e:
        raise SeriesDecodeError(f"Malformed series entry: {e}") from e
    return result
