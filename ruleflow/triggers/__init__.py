"""ruleflow triggers: event sink, scheduler, and input plugins (scheduler, init)."""

from ruleflow.triggers.event_bus import (
    EventBus, EVENT_JOB_STARTED, EVENT_JOB_COMPLETED, EVENT_JOB_FAILED, EVENT_INIT_COMPLETED,
)
from ruleflow.triggers.inputs import (
    InitializedInputs,
    InputPlugin,
    InputPluginContext,
    InputPluginResult,
    get_input_plugin,
    get_input_plugins,
    initialize_inputs,
    register_builtin_inputs,
    register_input_plugin,
    reset_input_plugins,
)
from ruleflow.triggers.scheduler import RunnerScheduler, create_scheduler_input, parse_duration

__all__ = [
    "EventBus",
    "EVENT_JOB_STARTED",
    "EVENT_JOB_COMPLETED",
    "EVENT_JOB_FAILED",
    "EVENT_INIT_COMPLETED",
    "InitializedInputs",
    "InputPlugin",
    "InputPluginContext",
    "InputPluginResult",
    "get_input_plugin",
    "get_input_plugins",
    "initialize_inputs",
    "register_builtin_inputs",
    "register_input_plugin",
    "reset_input_plugins",
    "RunnerScheduler",
    "create_scheduler_input",
    "parse_duration",
]
