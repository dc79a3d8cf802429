"""@closure decorator for registering functions as ruleflow closures.

Usage:
    @closure(
        name="discount",
        description="Compute an order discount",
        parameters=[{"name": "total", "type": "number", "required": True}],
    )
    async def discount(state, context):
        return context.parameters["total"] * 0.1

Handlers always take ``(state, context)``; parameters are declared explicitly
because they arrive resolved in ``context.parameters``, not as arguments.

Decorated closures are collected in a process-wide registry that runners copy
into their engine. Registration is write-once: a second closure with the same
name raises DuplicateNameError. ``reset_closure_registry()`` is for tests.
"""

import importlib
import logging
from typing import Any, Callable, Optional

from ruleflow.exceptions import ConfigurationError, DuplicateNameError
from ruleflow.types import ClosureDefinition, ClosureParameter, ClosureSignature

logger = logging.getLogger(__name__)

# Global registry for decorated closures, filled at import time
_registered_closures: dict[str, ClosureDefinition] = {}


def define_closure(
    func: Callable[..., Any],
    name: str = None,
    description: str = None,
    parameters: Optional[list] = None,
    functional_params: Optional[list[str]] = None,
    allow_additional_parameters: bool = False,
    returns: Optional[dict] = None,
    mutates: Optional[list[str]] = None,
) -> ClosureDefinition:
    """Build a ClosureDefinition for *func* without registering it anywhere."""
    closure_name = name or func.__name__
    closure_desc = description or (func.__doc__ or "").strip().split("\n")[0] or None

    signature = ClosureSignature(
        description=closure_desc,
        parameters=[
            p if isinstance(p, ClosureParameter) else ClosureParameter.model_validate(p)
            for p in (parameters or [])
        ],
        allow_additional_parameters=allow_additional_parameters,
        returns=returns,
        mutates=mutates or [],
    )
    return ClosureDefinition(
        name=closure_name,
        handler=func,
        description=closure_desc,
        signature=signature,
        functional_params=functional_params or [],
    )


def register_closure(definition: ClosureDefinition) -> None:
    """Add *definition* to the process-wide registry.

    Raises:
        DuplicateNameError: if the name is already registered
    """
    if not definition.name:
        raise ValueError("Registered closure must have a name")
    if definition.name in _registered_closures:
        raise DuplicateNameError(
            f"Closure '{definition.name}' already registered",
            name=definition.name,
            kind="closure",
        )
    _registered_closures[definition.name] = definition


def closure(
    name: str = None,
    description: str = None,
    parameters: Optional[list] = None,
    functional_params: Optional[list[str]] = None,
    allow_additional_parameters: bool = False,
    returns: Optional[dict] = None,
    mutates: Optional[list[str]] = None,
    register: bool = True,
):
    """Decorator turning a ``(state, context)`` function into a ruleflow closure.

    Args:
        name: Closure name (defaults to function name)
        description: Closure description (defaults to first docstring line)
        parameters: Parameter descriptors (dicts or ClosureParameter)
        functional_params: Parameters passed through as raw step lists
        allow_additional_parameters: Accept parameters not listed in *parameters*
        returns: Return value descriptor, informational
        mutates: State paths the closure writes, informational
        register: Add to the process-wide registry (False for engine built-ins)
    """
    def decorator(func):
        definition = define_closure(
            func,
            name=name,
            description=description,
            parameters=parameters,
            functional_params=functional_params,
            allow_additional_parameters=allow_additional_parameters,
            returns=returns,
            mutates=mutates,
        )
        if register:
            register_closure(definition)
        func._ruleflow_closure = definition
        return func

    return decorator


def get_registered_closures() -> list[ClosureDefinition]:
    """Return all closures registered via @closure / register_closure."""
    return list(_registered_closures.values())


def reset_closure_registry() -> None:
    """Forget every registered closure. Test isolation only."""
    _registered_closures.clear()


def load_plugin_modules(module_names) -> list[str]:
    """Import each named module so its ``@closure`` decorators register.

    Returns the names of closures registered by the imports.

    Raises:
        ConfigurationError: if a module cannot be imported
    """
    before = set(_registered_closures)
    for module_name in module_names:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
            raise ConfigurationError(
                f"Cannot import closure plugin module '{module_name}': {exc}",
                details={"module": module_name},
            ) from exc
    added = [name for name in _registered_closures if name not in before]
    if added:
        logger.info("Loaded %d plugin closures: %s", len(added), ", ".join(added))
    return added
