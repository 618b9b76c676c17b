"""Helpers for safely working with dynamic (untyped) structures.

Use these at boundaries where we ingest JSON from ``swift package
dump-package``, ``xcodebuild -list -json``, the release API, or TOML config.
They provide runtime validation and static type narrowing.
"""

from __future__ import annotations

import json
from typing import Mapping, TypeGuard, cast

StrDict = dict[str, object]
ObjList = list[object]

__all__ = [
    "StrDict",
    "ObjList",
    "is_str_dict",
    "as_str_dict",
    "as_obj_list",
    "get_str",
    "get_int",
    "get_float",
    "get_table",
    "get_list",
    "get_str_list",
    "parse_json_object",
]


def is_str_dict(obj: object) -> TypeGuard[StrDict]:
    """Return True if obj is a dict with string keys."""
    if not isinstance(obj, dict):
        return False
    d = cast(dict[object, object], obj)
    return all(isinstance(k, str) for k in d.keys())


def as_str_dict(obj: object) -> StrDict | None:
    """Return obj as StrDict if it matches, else None."""
    if is_str_dict(obj):
        return obj
    return None


def as_obj_list(obj: object) -> ObjList | None:
    """Return obj as ObjList if it is a list, else None."""
    if isinstance(obj, list):
        return cast(ObjList, obj)
    return None


def get_str(table: Mapping[str, object], key: str) -> str | None:
    """Get a string value from a mapping, stripping whitespace.

    Returns None if missing, not a str, or empty after stripping.
    """
    value = table.get(key)
    if not isinstance(value, str):
        return None
    s = value.strip()
    return s or None


def get_int(table: Mapping[str, object], key: str) -> int | None:
    value = table.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def get_float(table: Mapping[str, object], key: str) -> float | None:
    """Get a number (int or float) as float; booleans are rejected."""
    value = table.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def get_table(table: Mapping[str, object], key: str) -> StrDict | None:
    """Get a nested table (dict with string keys) from a mapping."""
    return as_str_dict(table.get(key))


def get_list(table: Mapping[str, object], key: str) -> ObjList | None:
    return as_obj_list(table.get(key))


def get_str_list(table: Mapping[str, object], key: str) -> list[str]:
    """Get the non-empty string items of a list value (missing -> [])."""
    items = get_list(table, key) or []
    return [item.strip() for item in items if isinstance(item, str) and item.strip()]


def parse_json_object(text: str) -> StrDict | None:
    """Parse ``text`` as a JSON object.

    Tool output sometimes carries warning lines before the payload, so parsing
    starts at the first ``{``. Returns None when no object can be decoded.
    """
    start = text.find("{")
    if start < 0:
        return None
    try:
        data: object = json.loads(text[start:])
    except json.JSONDecodeError:
        return None
    return as_str_dict(data)
