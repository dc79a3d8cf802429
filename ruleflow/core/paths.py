"""
Path accessors and value semantics shared by the interpreter and closures.

Paths are dotted field names with optional bracket indexes:
``order.items[0].sku`` and ``order.items.0.sku`` address the same value.
All functions operate on plain trees of dict / list / scalar values; no
expression is ever evaluated, only fields are traversed.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

_MISSING = object()

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")

_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_RADIX_RE = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)")
_INFINITY_RE = re.compile(r"([+-]?)Infinity")


# ── Path parsing ──────────────────────────────────────────────────────────────


def parse_path(path: str) -> list[str | int]:
    """Split ``a.b[0].c`` into ``["a", "b", 0, "c"]``.

    Bracketed indexes become ints; dotted segments stay strings even when
    numeric (they are matched against list indexes at lookup time).
    """
    if not isinstance(path, str):
        raise TypeError(f"Path must be a string, got {type(path).__name__}")
    segments: list[str | int] = []
    for name, index in _SEGMENT_RE.findall(path.strip()):
        segments.append(int(index) if index else name)
    return segments


def _child(container: Any, segment: str | int) -> Any:
    if isinstance(container, dict):
        if segment in container:
            return container[segment]
        if isinstance(segment, int) and str(segment) in container:
            return container[str(segment)]
        return _MISSING
    if isinstance(container, (list, tuple)):
        try:
            idx = int(segment)
        except (TypeError, ValueError):
            return _MISSING
        if 0 <= idx < len(container):
            return container[idx]
        return _MISSING
    return _MISSING


# ── Accessors ─────────────────────────────────────────────────────────────────


def get_path(root: Any, path: str, default: Any = None) -> Any:
    """Return the value at *path* under *root*, or *default* if any segment is missing."""
    segments = parse_path(path)
    if not segments:
        return default
    value = root
    for segment in segments:
        value = _child(value, segment)
        if value is _MISSING:
            return default
    return value


def has_path(root: Any, path: str) -> bool:
    return get_path(root, path, _MISSING) is not _MISSING


def set_path(root: dict, path: str, value: Any) -> dict:
    """Write *value* at *path*, creating intermediate containers as needed.

    Missing or scalar intermediates are replaced by a dict, or by a list when
    the next segment is an index (``[0]`` or ``.0``). Returns *root*.
    """
    segments = parse_path(path)
    if not segments:
        raise ValueError("Cannot set an empty path")

    node: Any = root
    for segment, nxt in zip(segments, segments[1:]):
        current = _child(node, segment)
        if not isinstance(current, (dict, list)):
            current = [] if _is_index(nxt) else {}
            _assign(node, segment, current)
        node = current
    _assign(node, segments[-1], value)
    return root


def delete_path(root: Any, path: str) -> bool:
    """Remove the value at *path*. Returns True if something was removed."""
    segments = parse_path(path)
    if not segments:
        return False
    parent = root
    for segment in segments[:-1]:
        parent = _child(parent, segment)
        if parent is _MISSING:
            return False
    last = segments[-1]
    if isinstance(parent, dict):
        key = last if last in parent else str(last)
        if key in parent:
            del parent[key]
            return True
        return False
    if isinstance(parent, list):
        try:
            idx = int(last)
        except (TypeError, ValueError):
            return False
        if 0 <= idx < len(parent):
            del parent[idx]
            return True
    return False


def _is_index(segment: str | int) -> bool:
    return isinstance(segment, int) or segment.isdecimal()


def _assign(node: Any, segment: str | int, value: Any) -> None:
    if isinstance(node, list):
        idx = int(segment)
        if idx >= len(node):
            node.extend([None] * (idx + 1 - len(node)))
        node[idx] = value
    elif isinstance(node, dict):
        node[segment] = value
    else:
        raise TypeError(f"Cannot set {segment!r} on {type(node).__name__}")


# ── Value semantics ───────────────────────────────────────────────────────────


def is_truthy(value: Any) -> bool:
    """Loose truthiness: false only for None, False, 0, NaN and "".

    Empty lists and mappings are truthy, unlike Python's ``bool()``.
    """
    if value is None or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> float:
    """Coerce *value* to a float; anything non-numeric becomes NaN.

    Strings follow JavaScript ``Number()``: decimal and exponent literals,
    unsigned ``0x`` / ``0o`` / ``0b`` literals and ``Infinity``. Underscores,
    ``inf`` and ``nan`` are not numbers.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        if _NUMBER_RE.fullmatch(text):
            return float(text)
        if _RADIX_RE.fullmatch(text):
            return float(int(text, 0))
        infinity = _INFINITY_RE.fullmatch(text)
        if infinity:
            return -math.inf if infinity.group(1) == "-" else math.inf
        return math.nan
    return math.nan


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality where booleans never equal numbers and NaN equals NaN."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(deep_equal(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(deep_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, float) and isinstance(right, float):
        if math.isnan(left) and math.isnan(right):
            return True
    return left == right


def deep_merge(base: dict, override: dict) -> dict:
    """Return a new dict: *override* merged over *base*, recursing into nested dicts."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def to_display_string(value: Any) -> str:
    """String form used when a placeholder is embedded inside a larger string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)
