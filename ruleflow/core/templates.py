"""Resolve ``${...}`` placeholders in step parameters.

A string that is exactly one placeholder resolves to the raw value (any type,
possibly None). Placeholders embedded in a longer string are replaced by the
string form of their value, with None rendering as an empty string.

Placeholder roots:
    ${state.order.total}      → state (also the default: ${order.total})
    ${runtime.scheduler.job}  → runtime
    ${params.limit}           → the closure's own parameters (alias: parameters.)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ruleflow.core.paths import get_path, to_display_string

_FULL_RE = re.compile(r"^\$\{([^}]+)\}$")
_EMBEDDED_RE = re.compile(r"\$\{([^}]+)\}")


@dataclass
class TemplateContext:
    state: dict[str, Any]
    runtime: dict[str, Any]
    parameters: dict[str, Any] = field(default_factory=dict)


def lookup(expression: str, context: TemplateContext) -> Any:
    """Resolve one placeholder body (without ``${``/``}``) against *context*."""
    path = expression.strip()
    if path.startswith("state."):
        return get_path(context.state, path[len("state."):])
    if path.startswith("runtime."):
        return get_path(context.runtime, path[len("runtime."):])
    if path.startswith("params."):
        return get_path(context.parameters or {}, path[len("params."):])
    if path.startswith("parameters."):
        return get_path(context.parameters or {}, path[len("parameters."):])
    return get_path(context.state, path)


def has_placeholder(value: str) -> bool:
    return bool(_EMBEDDED_RE.search(value))


def resolve_string(value: str, context: TemplateContext) -> Any:
    full = _FULL_RE.match(value)
    if full:
        return lookup(full.group(1), context)
    return _EMBEDDED_RE.sub(lambda m: to_display_string(lookup(m.group(1), context)), value)


def resolve_dynamic_values(value: Any, context: TemplateContext) -> Any:
    """Recursively resolve placeholders in strings, lists and dicts.

    Other scalars are returned unchanged, so resolving an already-resolved
    value is a no-op.
    """
    if isinstance(value, str):
        return resolve_string(value, context)
    if isinstance(value, list):
        return [resolve_dynamic_values(item, context) for item in value]
    if isinstance(value, tuple):
        return tuple(resolve_dynamic_values(item, context) for item in value)
    if isinstance(value, dict):
        return {key: resolve_dynamic_values(val, context) for key, val in value.items()}
    return value
