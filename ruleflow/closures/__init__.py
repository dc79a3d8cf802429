"""Closures: built-ins, the @closure plugin decorator, and config-declared closures."""

from ruleflow.closures.plugin import (
    closure,
    define_closure,
    get_registered_closures,
    load_plugin_modules,
    register_closure,
    reset_closure_registry,
)

__all__ = [
    "closure",
    "define_closure",
    "get_registered_closures",
    "load_plugin_modules",
    "register_closure",
    "reset_closure_registry",
]
