"""Built-in closures, pre-registered in every FlowEngine.

State writers: assign, respond. Side effect: log. Predicates: truthy, equals,
greaterThan, lessThan, includes. Measure: length. Iteration: forEach.
"""

import logging
import math

from ruleflow.closures.plugin import closure
from ruleflow.core.paths import (
    deep_equal, deep_merge, get_path, is_truthy, set_path, to_number,
)
from ruleflow.exceptions import ClosureExecutionError, MissingEngineReferenceError

logger = logging.getLogger(__name__)

_LOG_METHODS = {
    "trace": "debug",
    "debug": "debug",
    "info": "info",
    "warn": "warning",
    "warning": "warning",
    "error": "error",
    "fatal": "critical",
    "critical": "critical",
}

_COMPARE_PARAMS = [
    {"name": "left", "type": "any", "required": True},
    {"name": "right", "type": "any", "required": True},
]


@closure(
    name="assign",
    register=False,
    description="Write or merge a value into state at a dot-notation path.",
    parameters=[
        {"name": "target", "type": "string", "description": "State path to write. Without it the value is only returned."},
        {"name": "value", "type": "any", "description": "Value or template expression to store."},
        {"name": "merge", "type": "boolean", "description": "Deep-merge mappings instead of replacing."},
    ],
    returns={"type": "any", "description": "The value stored at target."},
    mutates=["state"],
)
def assign(state, context):
    params = context.parameters
    target = params.get("target")
    value = params.get("value")
    if target is None:
        return value
    if not isinstance(target, str) or not target:
        raise ClosureExecutionError("assign 'target' must be a non-empty string", closure_name="assign")

    if is_truthy(params.get("merge")):
        current = get_path(state, target)
        if isinstance(current, dict) and isinstance(value, dict):
            value = deep_merge(current, value)
    set_path(state, target, value)
    return get_path(state, target)


@closure(
    name="respond",
    register=False,
    description="Set state.response so the calling input can answer its request.",
    parameters=[
        {"name": "status", "type": "number", "description": "Status code, default 200."},
        {"name": "headers", "type": "object", "description": "Response headers."},
        {"name": "body", "type": "any", "description": "Response payload."},
    ],
    returns={"type": "object", "description": "The response envelope."},
    mutates=["state.response"],
)
def respond(state, context):
    params = context.parameters
    raw_status = params.get("status")
    status = 200 if raw_status is None else to_number(raw_status)
    if isinstance(status, float) and (math.isnan(status) or math.isinf(status)):
        raise ClosureExecutionError(f"respond 'status' is not numeric: {raw_status!r}", closure_name="respond")

    response = {"status": int(status)}
    if params.get("headers") is not None:
        response["headers"] = params["headers"]
    response["body"] = params.get("body")
    state["response"] = response
    return response


@closure(
    name="log",
    register=False,
    description="Log a message through runtime['logger'] or the ruleflow logger.",
    parameters=[
        {"name": "message", "type": "string", "required": True},
        {"name": "level", "type": "string", "description": "trace, debug, info, warn, error or fatal."},
    ],
    returns={"type": "string"},
)
def log(state, context):
    params = context.parameters
    message = params.get("message", "ruleflow log")
    level = str(params.get("level") or "info").lower()
    method = _LOG_METHODS.get(level, "info")

    target = context.runtime.get("logger") or logger
    log_fn = getattr(target, method, None) or getattr(target, "info", None)
    if callable(log_fn):
        log_fn(message)
    else:
        logger.info(message)
    return message


@closure(
    name="truthy",
    register=False,
    description="True unless value is absent, null, false, 0, NaN or an empty string.",
    parameters=[{"name": "value", "type": "any", "required": True}],
    returns={"type": "boolean"},
)
def truthy(state, context):
    return is_truthy(context.parameters.get("value"))


@closure(
    name="equals",
    register=False,
    description="Deep structural equality between left and right.",
    parameters=_COMPARE_PARAMS,
    returns={"type": "boolean"},
)
def equals(state, context):
    return deep_equal(context.parameters.get("left"), context.parameters.get("right"))


@closure(
    name="greaterThan",
    register=False,
    description="left > right after numeric coercion; false when either side is not numeric.",
    parameters=_COMPARE_PARAMS,
    returns={"type": "boolean"},
)
def greater_than(state, context):
    left = to_number(context.parameters.get("left"))
    right = to_number(context.parameters.get("right"))
    if math.isnan(left) or math.isnan(right):
        return False
    return left > right


@closure(
    name="lessThan",
    register=False,
    description="left < right after numeric coercion; false when either side is not numeric.",
    parameters=_COMPARE_PARAMS,
    returns={"type": "boolean"},
)
def less_than(state, context):
    left = to_number(context.parameters.get("left"))
    right = to_number(context.parameters.get("right"))
    if math.isnan(left) or math.isnan(right):
        return False
    return left < right


@closure(
    name="includes",
    register=False,
    description="Membership test over a list, a string, or a mapping's values.",
    parameters=[
        {"name": "collection", "type": "any", "required": True},
        {"name": "value", "type": "any", "required": True},
    ],
    returns={"type": "boolean"},
)
def includes(state, context):
    collection = context.parameters.get("collection")
    value = context.parameters.get("value")
    if isinstance(collection, (list, tuple)):
        return any(deep_equal(item, value) for item in collection)
    if isinstance(collection, str):
        # substring match only against string needles
        return isinstance(value, str) and value in collection
    if isinstance(collection, dict):
        return any(deep_equal(item, value) for item in collection.values())
    return False


@closure(
    name="length",
    register=False,
    description="Length of a list or string, key count of a mapping, 0 otherwise.",
    parameters=[
        {"name": "target", "type": "string", "description": "State path to measure. If omitted, use value."},
        {"name": "value", "type": "any", "description": "Literal collection to measure."},
    ],
    returns={"type": "number"},
)
def length(state, context):
    target = context.parameters.get("target")
    value = get_path(state, target) if target else context.parameters.get("value")
    if isinstance(value, (list, tuple, str, dict)):
        return len(value)
    return 0


@closure(
    name="forEach",
    register=False,
    description="Run nested steps once per item of collection.",
    parameters=[
        {"name": "collection", "type": "any", "required": True, "description": "List to iterate over."},
        {"name": "steps", "type": "flowSteps", "required": True, "description": "Steps run for each item."},
    ],
    returns={"type": "object", "description": "The state after iteration."},
    mutates=["state.currentItem", "state.currentIndex"],
)
async def for_each(state, context):
    items = context.parameters.get("collection")
    steps = context.parameters.get("steps") or []
    if not isinstance(items, list):
        return state

    engine = context.runtime.get("engine")
    if engine is None and items and steps:
        raise MissingEngineReferenceError(
            "forEach requires runtime['engine'] to run nested steps", closure_name="forEach"
        )

    try:
        for index, item in enumerate(list(items)):
            state["currentItem"] = item
            state["currentIndex"] = index
            if steps:
                await engine.run_steps(steps, state, context.runtime)
    finally:
        state.pop("currentItem", None)
        state.pop("currentIndex", None)
    return state


BUILTIN_HANDLERS = [
    assign, respond, log, truthy, equals, greater_than, less_than,
    includes, length, for_each,
]


def create_builtin_closures():
    """Fresh list of the built-in ClosureDefinitions, in registration order."""
    return [handler._ruleflow_closure for handler in BUILTIN_HANDLERS]
