"""Typed application of plain dict values onto config dataclasses."""
from __future__ import annotations

from dataclasses import fields
from enum import Enum
from typing import Any, Callable

_TRUE_WORDS = frozenset({"1", "true", "yes", "on", "y"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off", "n"})


def _coerce_bool(value: Any) -> tuple[bool, bool]:
    """Parse bools, 0/1 numbers and yes/no style words.

    Returns (ok, parsed_value); parsed_value is meaningless when not ok.
    """
    if isinstance(value, bool):
        return True, value
    if isinstance(value, (int, float)):
        return (value in (0, 1)), bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS or word in _FALSE_WORDS:
            return True, word in _TRUE_WORDS
    return False, False


def _coerce_enum(enum_cls: type[Enum], value: Any) -> Enum:
    """Resolve an enum member from its value or (case-insensitive) name."""
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip().lower()
    for member in enum_cls:
        if str(member.value).lower() == text or member.name.lower() == text:
            return member
    raise ValueError(f"{value!r} is not a valid {enum_cls.__name__}")


def _number(kind: type) -> Callable[[Any], Any]:
    def _convert(value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected {kind.__name__}, got {type(value).__name__}")
        return kind(value)

    return _convert


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected str, got {type(value).__name__}")
    return value


def _converter_for(current: Any) -> Callable[[Any], Any] | None:
    # bool before int: bool is an int subtype
    if isinstance(current, bool):
        def _bool(value: Any) -> bool:
            ok, parsed = _coerce_bool(value)
            if not ok:
                raise ValueError("not a bool")
            return parsed
        return _bool
    if isinstance(current, Enum):
        return lambda value: _coerce_enum(type(current), value)
    if isinstance(current, int):
        return _number(int)
    if isinstance(current, float):
        return _number(float)
    if isinstance(current, str) or current is None:
        return _text
    return None


def _safe_dataclass_from_dict(dc_instance: Any, data: dict[str, Any]) -> list[str]:
    """Apply ``data`` onto ``dc_instance`` field by field.

    Values that do not fit the field's current type are skipped and
    reported; the returned list holds one warning per skipped key.
    """
    if not isinstance(data, dict):
        return [f"Expected dict, got {type(data).__name__}"]

    known = {f.name for f in fields(dc_instance)}
    warnings_list: list[str] = []

    for key, value in data.items():
        if key not in known:
            warnings_list.append(f"Unknown field '{key}' - ignored")
            continue

        current = getattr(dc_instance, key)
        convert = _converter_for(current)
        if convert is None:
            warnings_list.append(f"Unsupported field type for '{key}'")
            continue

        try:
            setattr(dc_instance, key, convert(value))
        except TypeError:
            warnings_list.append(
                f"Type mismatch for '{key}': expected "
                f"{type(current).__name__}, got {type(value).__name__}"
            )
        except ValueError as e:
            kind = "bool field" if isinstance(current, bool) else "field"
            warnings_list.append(f"Bad value for {kind} '{key}': {value!r} - {e}")

    return warnings_list


def _dataclass_to_dict(dc_instance: Any) -> dict[str, Any]:
    """Field values as a dict, enums written as their values."""
    return {
        f.name: (v.value if isinstance(v, Enum) else v)
        for f in fields(dc_instance)
        for v in (getattr(dc_instance, f.name),)
    }
