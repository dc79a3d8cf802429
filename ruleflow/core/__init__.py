"""Interpreter core: path accessors, template resolver, registries, flow engine.

Import the engine from ``ruleflow.core.engine``; this package stays import-light
because the built-in closures depend on ``ruleflow.core.paths``.
"""
