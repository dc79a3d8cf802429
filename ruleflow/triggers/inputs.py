"""Input plugin registry: maps an input ``type`` to the code that wires it to the engine.

An input plugin validates its config entry against ``schema`` (a pydantic
model) and then ``initialize(config, context)`` connects the trigger source
to ``context.engine.execute``. It may return an InputPluginResult carrying a
cleanup callable and named services (``{"scheduler": RunnerScheduler}``).

Registration is process-wide and write-once per type. ``register_builtin_inputs``
adds ``scheduler`` and ``init``.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import BaseModel, ValidationError

from ruleflow.exceptions import ConfigurationError, DuplicateNameError, UnknownInputTypeError

logger = logging.getLogger(__name__)


@dataclass
class InputPluginContext:
    engine: Any
    logger: Any
    metadata: dict[str, Any] = field(default_factory=dict)
    event_sink: Any = None


@dataclass
class InputPluginResult:
    cleanup: Optional[Callable[[], Union[None, Awaitable[None]]]] = None
    services: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InputPlugin:
    type: str
    schema: type[BaseModel]
    initialize: Callable[[Any, InputPluginContext], Any]


_plugins: dict[str, InputPlugin] = {}


def register_input_plugin(plugin: InputPlugin) -> None:
    """Register *plugin* under its ``type``.

    Raises:
        DuplicateNameError: if a plugin with the same type already exists
    """
    if plugin.type in _plugins:
        raise DuplicateNameError(
            f"Input plugin with type '{plugin.type}' already registered",
            name=plugin.type,
            kind="input",
        )
    _plugins[plugin.type] = plugin
    logger.debug("Registered input plugin %s", plugin.type)


def get_input_plugin(input_type: str) -> InputPlugin:
    """Raises:
        UnknownInputTypeError: if no plugin handles *input_type*
    """
    try:
        return _plugins[input_type]
    except KeyError:
        raise UnknownInputTypeError(
            f"No input plugin registered for type '{input_type}'", input_type=input_type
        ) from None


def get_input_plugins() -> list[InputPlugin]:
    return list(_plugins.values())


def reset_input_plugins() -> None:
    """Forget every registered plugin. Test isolation only."""
    _plugins.clear()


def register_builtin_inputs() -> None:
    """Register the ``scheduler`` and ``init`` plugins unless already present."""
    from ruleflow.triggers.init import INIT_INPUT
    from ruleflow.triggers.scheduler import SCHEDULER_INPUT

    for plugin in (SCHEDULER_INPUT, INIT_INPUT):
        if plugin.type not in _plugins:
            register_input_plugin(plugin)


def validate_input_config(entry: Union[BaseModel, dict]) -> tuple[InputPlugin, BaseModel]:
    """Resolve the plugin for *entry* and validate the entry against its schema."""
    data = entry.model_dump() if isinstance(entry, BaseModel) else dict(entry)
    input_type = data.get("type")
    if not input_type:
        raise ConfigurationError("Input entry is missing a 'type'", details={"input": data})
    plugin = get_input_plugin(input_type)
    try:
        return plugin, plugin.schema.model_validate(data)
    except ValidationError as exc:
        violations = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(
            f"Invalid '{input_type}' input configuration",
            details={"violations": violations},
        ) from exc


@dataclass
class InitializedInputs:
    services: dict[str, Any] = field(default_factory=dict)
    cleanups: list[Callable] = field(default_factory=list)

    async def cleanup(self) -> None:
        """Run every plugin cleanup, last initialized first. Failures are logged."""
        while self.cleanups:
            fn = self.cleanups.pop()
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Input cleanup raised")


async def initialize_inputs(
    inputs: Iterable[Union[BaseModel, dict]],
    engine: Any,
    logger: Any = None,
    metadata: Optional[dict] = None,
    event_sink: Any = None,
) -> InitializedInputs:
    """Initialize each configured input in order.

    If any input fails, the inputs already started are cleaned up before the
    error propagates.

    Raises:
        UnknownInputTypeError: an entry's type has no registered plugin
        ConfigurationError: an entry fails its plugin's schema, or two inputs
            provide the same service (only one scheduler per runner)
    """
    context = InputPluginContext(
        engine=engine,
        logger=logger if logger is not None else logging.getLogger(__name__),
        metadata=metadata or {},
        event_sink=event_sink,
    )
    initialized = InitializedInputs()
    try:
        for entry in inputs:
            plugin, config = validate_input_config(entry)
            result = plugin.initialize(config, context)
            if inspect.isawaitable(result):
                result = await result
            if result is None:
                continue
            if result.cleanup is not None:
                initialized.cleanups.append(result.cleanup)
            for key, service in result.services.items():
                if key in initialized.services:
                    raise ConfigurationError(
                        f"Only a single '{key}' input is supported per runner",
                        details={"service": key},
                    )
                initialized.services[key] = service
    except Exception:
        await initialized.cleanup()
        raise
    return initialized
