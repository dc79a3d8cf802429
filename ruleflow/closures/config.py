"""Closures declared in runner YAML rather than in Python.

Three kinds are supported:

- ``template: set-state``: write the configured ``value`` (templates resolved
  at call time) to ``target``; without one, the ``value`` parameter is used
- ``template: respond``: write ``{status, headers?, body}`` to ``state.response``;
  step parameters override the configured defaults
- ``type: flow``: run the configured steps through ``runtime["engine"]``; the
  caller's parameters are inherited by every invoke step of the sub-flow
"""

import logging
import math

from ruleflow.config.schema import (
    FlowClosureConfig, RespondClosureConfig, SetStateClosureConfig,
)
from ruleflow.core.paths import deep_merge, get_path, set_path, to_number
from ruleflow.core.templates import TemplateContext, resolve_dynamic_values
from ruleflow.exceptions import ClosureExecutionError, MissingEngineReferenceError
from ruleflow.types import ClosureDefinition, ClosureParameter, ClosureSignature

logger = logging.getLogger(__name__)


def _template_context(state, context) -> TemplateContext:
    return TemplateContext(state=state, runtime=context.runtime, parameters=context.parameters)


def build_set_state_closure(entry: SetStateClosureConfig) -> ClosureDefinition:
    def handler(state, context):
        templates = _template_context(state, context)
        source = entry.value if entry.value is not None else context.parameters.get("value")
        value = resolve_dynamic_values(source, templates) if source is not None else None

        current = get_path(state, entry.target)
        if entry.merge and isinstance(current, dict) and isinstance(value, dict):
            value = deep_merge(current, value)
        set_path(state, entry.target, value)
        return get_path(state, entry.target)

    return ClosureDefinition(
        name=entry.name,
        handler=handler,
        description=entry.description,
        signature=ClosureSignature(
            description=entry.description or "Assigns a static template value into state.",
            parameters=[ClosureParameter(
                name="value", type="any",
                description="Used when the closure has no configured value.",
            )],
            returns={"type": "any"},
            mutates=["state"],
        ),
    )


def build_respond_closure(entry: RespondClosureConfig) -> ClosureDefinition:
    def handler(state, context):
        templates = _template_context(state, context)
        params = context.parameters
        body = params["body"] if params.get("body") is not None else entry.body
        headers = params["headers"] if params.get("headers") else entry.headers
        status = params["status"] if params.get("status") is not None else entry.status

        status = to_number(resolve_dynamic_values(status, templates))
        if math.isnan(status) or math.isinf(status):
            raise ClosureExecutionError(
                f"Closure '{entry.name}' resolved a non-numeric status", closure_name=entry.name
            )

        response = {"status": int(status)}
        if headers:
            response["headers"] = resolve_dynamic_values(headers, templates)
        response["body"] = resolve_dynamic_values(body, templates) if body is not None else None
        state["response"] = response
        return response

    return ClosureDefinition(
        name=entry.name,
        handler=handler,
        description=entry.description,
        signature=ClosureSignature(
            description=entry.description or "Responds with a static payload and status.",
            parameters=[
                ClosureParameter(name="status", type="number", description="Status override."),
                ClosureParameter(name="headers", type="object", description="Headers override map."),
                ClosureParameter(name="body", type="any", description="Body override."),
            ],
            returns={"type": "object"},
            mutates=["state.response"],
        ),
    )


def build_flow_closure(entry: FlowClosureConfig) -> ClosureDefinition:
    steps = list(entry.steps)

    async def handler(state, context):
        engine = context.runtime.get("engine")
        if engine is None:
            raise MissingEngineReferenceError(
                f"Flow closure '{entry.name}' must run inside a FlowEngine", closure_name=entry.name
            )
        return await engine.run_steps(steps, state, context.runtime, context.parameters or None)

    return ClosureDefinition(
        name=entry.name,
        handler=handler,
        description=entry.description,
        signature=ClosureSignature(
            description=entry.description or f"Flow closure {entry.name}",
            allow_additional_parameters=True,
        ),
    )


_BUILDERS = {
    SetStateClosureConfig: build_set_state_closure,
    RespondClosureConfig: build_respond_closure,
    FlowClosureConfig: build_flow_closure,
}


def build_closures(entries) -> list[ClosureDefinition]:
    """Turn validated ``closures:`` entries into ClosureDefinitions, in order."""
    closures = []
    for entry in entries:
        builder = _BUILDERS[type(entry)]
        closures.append(builder(entry))
        logger.debug("Built %s closure %s", type(entry).__name__, entry.name)
    return closures
