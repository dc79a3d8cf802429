"""Flow interpreter. Runs step sequences against one shared, mutable state dict.

Execution of a single flow:

    execute(flow_name, initial_state, runtime)
      → state = deep copy of initial_state, runtime = copy + {engine, flow}
      → run_steps(flow.steps, state, runtime)
          for each step, strictly in order:
            invoke:  all `when` conditions true? → resolve parameters
                     → handler(state, ClosureContext) → optional assign/merge
            branch:  first case whose condition holds runs its steps,
                     else `otherwise`, else nothing
      → ExecutionResult(state, last_result)

Closures recurse through ``runtime["engine"].run_steps(...)`` with the same
state and runtime; that is how ``forEach`` and flow-as-closure work.
"""

import asyncio
import contextvars
import copy
import inspect
import logging
import time
from typing import Any, Iterable, Optional

from ruleflow.callbacks.base import (
    EVENT_FLOW_COMPLETED, EVENT_FLOW_FAILED, EVENT_FLOW_STARTED,
    EVENT_STEP_ENTER, EVENT_STEP_ERROR, EVENT_STEP_EXIT,
)
from ruleflow.closures.builtin import create_builtin_closures
from ruleflow.core.paths import deep_merge, get_path, is_truthy, set_path
from ruleflow.core.registry import ClosureRegistry, FlowRegistry
from ruleflow.core.steps import parse_flow, parse_step
from ruleflow.core.templates import TemplateContext, resolve_dynamic_values
from ruleflow.exceptions import FlowValidationError, MissingEngineReferenceError
from ruleflow.types import (
    BranchStep, ClosureContext, ClosureDefinition, Condition, ExecutionResult,
    FlowDefinition, InvokeStep, RecordLevel,
)

logger = logging.getLogger(__name__)

# Per-request callbacks override instance callbacks (ContextVar keeps it task-local)
_request_callbacks: contextvars.ContextVar = contextvars.ContextVar("_ruleflow_callbacks", default=None)

# Marks "no step executed" so skipped steps never overwrite last_result
_UNSET = object()

_CALL_KEY = "$call"


class FlowEngine:
    """Registry of closures and flows plus the interpreter that runs them.

    Constructor arguments:
        - closures: extra ClosureDefinitions registered after the built-ins
        - flows: FlowDefinitions (or raw mappings) to register
        - callbacks: async or sync callables ``cb(event, data)`` receiving
          flow.* and step.* lifecycle events
        - builtins: register the built-in closures (assign, respond, ...)
        - record_level: default trimming for step events, overridable per run
          through ``runtime["recordLevel"]``
    """

    def __init__(
        self,
        closures: Optional[Iterable[ClosureDefinition]] = None,
        flows: Optional[Iterable[FlowDefinition | dict]] = None,
        callbacks: list = None,
        builtins: bool = True,
        record_level: RecordLevel = RecordLevel.FULL,
    ):
        self.closures = ClosureRegistry()
        self.flows = FlowRegistry()
        self.callbacks = callbacks or []
        self.record_level = RecordLevel(record_level)

        if builtins:
            self.register_closures(create_builtin_closures())
        if closures:
            self.register_closures(closures)
        if flows:
            self.register_flows(flows)

    # ── Registration ─────────────────────────────────────────────────────────

    def register_closure(self, definition: ClosureDefinition) -> None:
        self.closures.register(definition)

    def register_closures(self, definitions: Iterable[ClosureDefinition]) -> None:
        for definition in definitions:
            self.register_closure(definition)

    def register_flow(self, flow: FlowDefinition | dict) -> None:
        self.flows.register(parse_flow(flow))

    def register_flows(self, flows: Iterable[FlowDefinition | dict]) -> None:
        for flow in flows:
            self.register_flow(flow)

    def get_closure(self, name: str) -> Optional[ClosureDefinition]:
        return self.closures.get(name)

    def get_flow(self, name: str) -> Optional[FlowDefinition]:
        return self.flows.get(name)

    def list_closures(self) -> list[ClosureDefinition]:
        return self.closures.list_closures()

    def list_flows(self) -> list[FlowDefinition]:
        return self.flows.list_flows()

    # ── Execution ────────────────────────────────────────────────────────────

    async def execute(
        self,
        flow_name: str,
        initial_state: Optional[dict] = None,
        runtime: Optional[dict] = None,
        callbacks: list = None,
    ) -> ExecutionResult:
        """Run a registered flow against a fresh state.

        The caller's *initial_state* is deep-copied, so concurrent runs never
        share state. *runtime* is shallow-copied and augmented with ``engine``
        and ``flow``; the caller's dict is left untouched.

        This is a coroutine: cancel it with the usual asyncio primitives
        (``task.cancel()``, ``asyncio.wait_for``). The engine itself imposes
        no timeout.

        Raises:
            UnknownFlowError: if *flow_name* is not registered
            Exception: whatever a closure handler raised, unchanged
        """
        flow = self.flows.resolve(flow_name)

        state: dict = copy.deepcopy(initial_state) if initial_state is not None else {}
        run_runtime: dict = dict(runtime or {})
        if run_runtime.get("engine") is None:
            run_runtime["engine"] = self
        run_runtime["flow"] = flow.name

        token = _request_callbacks.set(callbacks) if callbacks is not None else None
        try:
            started = time.perf_counter()
            await self._fire_callbacks(EVENT_FLOW_STARTED, {"flow": flow.name})
            try:
                last = await self._run_sequence(flow.steps, state, run_runtime, None)
            except Exception as exc:
                await self._fire_callbacks(EVENT_FLOW_FAILED, {
                    "flow": flow.name,
                    "duration_ms": _elapsed_ms(started),
                    "error": str(exc),
                })
                raise
            await self._fire_callbacks(EVENT_FLOW_COMPLETED, {
                "flow": flow.name,
                "duration_ms": _elapsed_ms(started),
            })
        finally:
            if token is not None:
                _request_callbacks.reset(token)

        logger.debug("Flow %s completed", flow.name)
        return ExecutionResult(state=state, last_result=None if last is _UNSET else last)

    async def run_steps(
        self,
        steps: list,
        state: dict,
        runtime: dict,
        inherited_parameters: Optional[dict] = None,
    ) -> Any:
        """Run *steps* in order against *state*; return the last executed step's result.

        Steps may be typed models or raw mappings. Closures call this through
        ``runtime["engine"]`` to run nested step sequences.
        """
        result = await self._run_sequence(steps, state, runtime, inherited_parameters)
        return None if result is _UNSET else result

    async def evaluate_conditions(
        self,
        conditions: Condition | dict | list,
        state: dict,
        runtime: dict,
    ) -> bool:
        """True only if every condition (AND) is truthy after applying ``negate``."""
        if not isinstance(conditions, list):
            conditions = [conditions]
        for raw in conditions:
            condition = raw if isinstance(raw, Condition) else Condition.model_validate(raw)
            closure = self.closures.resolve(condition.closure)
            parameters = await self._prepare_parameters(closure, condition.parameters, state, runtime)
            result = await self._call(closure, state, ClosureContext(state, runtime, parameters))
            truthy = is_truthy(result)
            if condition.negate:
                truthy = not truthy
            if not truthy:
                return False
        return True

    # ── Internal: step dispatch ──────────────────────────────────────────────

    async def _run_sequence(self, steps, state, runtime, inherited_parameters) -> Any:
        if not isinstance(steps, (list, tuple)):
            raise FlowValidationError(
                f"Steps must be a list, got {type(steps).__name__}",
                violations=["steps: expected a list of steps"],
            )
        result: Any = _UNSET
        for raw in steps:
            step = parse_step(raw)
            if isinstance(step, BranchStep):
                outcome = await self._run_branch(step, state, runtime, inherited_parameters)
            else:
                if step.when and not await self.evaluate_conditions(step.when, state, runtime):
                    continue
                outcome = await self._invoke_step(step, state, runtime, inherited_parameters)
            if outcome is not _UNSET:
                result = outcome
        return result

    async def _run_branch(self, step: BranchStep, state, runtime, inherited_parameters) -> Any:
        for case in step.cases:
            if await self.evaluate_conditions(case.when, state, runtime):
                return await self._run_sequence(case.steps, state, runtime, inherited_parameters)
        if step.otherwise is not None:
            return await self._run_sequence(step.otherwise, state, runtime, inherited_parameters)
        return _UNSET

    async def _invoke_step(self, step: InvokeStep, state, runtime, inherited_parameters) -> Any:
        closure = self.closures.resolve(step.closure)

        seed = {**inherited_parameters, **step.parameters} if inherited_parameters else step.parameters
        parameters = await self._prepare_parameters(closure, seed, state, runtime)

        level = self._record_level(runtime)
        recording = bool(self._active_callbacks()) and level != RecordLevel.NONE
        started = time.perf_counter()

        if recording:
            await self._fire_callbacks(EVENT_STEP_ENTER, {
                "flow": runtime.get("flow"),
                "closure": closure.name,
                "timestamp": time.time(),
                "params": None if level == RecordLevel.TIMING else _snapshot(parameters),
                "state_before": _snapshot(state) if level in (RecordLevel.FULL, RecordLevel.STATE) else None,
            })

        try:
            result = await self._call(closure, state, ClosureContext(state, runtime, parameters))
        except Exception as exc:
            if recording:
                await self._fire_callbacks(EVENT_STEP_ERROR, {
                    "flow": runtime.get("flow"),
                    "closure": closure.name,
                    "timestamp": time.time(),
                    "duration_ms": _elapsed_ms(started),
                    "error": str(exc),
                })
            raise

        if step.assign:
            current = get_path(state, step.assign)
            if step.merge_result and isinstance(current, dict) and isinstance(result, dict):
                set_path(state, step.assign, deep_merge(current, result))
            else:
                set_path(state, step.assign, result)

        if recording:
            await self._fire_callbacks(EVENT_STEP_EXIT, {
                "flow": runtime.get("flow"),
                "closure": closure.name,
                "timestamp": time.time(),
                "duration_ms": _elapsed_ms(started),
                "output": None if level == RecordLevel.TIMING else _snapshot(result),
                "state_after": _snapshot(state) if level in (RecordLevel.FULL, RecordLevel.STATE) else None,
            })

        return result

    @staticmethod
    async def _call(closure: ClosureDefinition, state: dict, context: ClosureContext) -> Any:
        """Invoke a handler. Sync handlers run in a worker thread so they never block the loop."""
        if inspect.iscoroutinefunction(closure.handler):
            return await closure.handler(state, context)
        result = await asyncio.to_thread(closure.handler, state, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ── Internal: parameters ─────────────────────────────────────────────────

    async def _prepare_parameters(
        self,
        closure: ClosureDefinition,
        raw_parameters: Optional[dict],
        state: dict,
        runtime: dict,
    ) -> dict:
        """Resolve templates and ``$call`` directives, passing functional params through raw."""
        if not raw_parameters:
            return {}

        functional = closure.functional_parameter_names()
        working = {k: v for k, v in raw_parameters.items() if k not in functional}
        reserved = {k: v for k, v in raw_parameters.items() if k in functional}

        context = TemplateContext(state=state, runtime=runtime, parameters=working)
        resolved = resolve_dynamic_values(working, context)
        resolved = await self._resolve_call_directives(resolved, state, runtime)
        resolved.update(reserved)
        return resolved

    async def _resolve_call_directives(self, value: Any, state: dict, runtime: dict) -> Any:
        if isinstance(value, list):
            return [await self._resolve_call_directives(item, state, runtime) for item in value]
        if isinstance(value, dict):
            if len(value) == 1 and _CALL_KEY in value:
                return await self._execute_call(value[_CALL_KEY], state, runtime)
            return {
                key: await self._resolve_call_directives(val, state, runtime)
                for key, val in value.items()
            }
        return value

    async def _execute_call(self, ref: Any, state: dict, runtime: dict) -> Any:
        if ref is None:
            return None
        if isinstance(ref, list):
            return [await self._execute_single_call(entry, state, runtime) for entry in ref]
        return await self._execute_single_call(ref, state, runtime)

    async def _execute_single_call(self, ref: Any, state: dict, runtime: dict) -> Any:
        if not isinstance(ref, dict):
            raise FlowValidationError(f"$call expects a mapping, got {type(ref).__name__}")
        if ref.get("steps") is not None:
            engine = runtime.get("engine")
            if engine is None:
                raise MissingEngineReferenceError("Inline $call steps require runtime['engine']")
            return await engine.run_steps(ref["steps"], state, runtime)
        name = ref.get("name")
        if not name:
            raise FlowValidationError("$call requires either a name or a steps list")
        closure = self.closures.resolve(name)
        parameters = await self._prepare_parameters(closure, ref.get("parameters"), state, runtime)
        return await self._call(closure, state, ClosureContext(state, runtime, parameters))

    # ── Internal: callbacks ──────────────────────────────────────────────────

    def _active_callbacks(self) -> list:
        cbs = _request_callbacks.get()
        return self.callbacks if cbs is None else cbs

    def _record_level(self, runtime: dict) -> RecordLevel:
        raw = runtime.get("recordLevel") or runtime.get("record_level")
        if raw is None:
            return self.record_level
        try:
            return RecordLevel(raw)
        except ValueError:
            logger.warning("Unknown record level %r; using %s", raw, self.record_level.value)
            return self.record_level

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all active callbacks for a lifecycle event. Failures are logged, never raised."""
        for cb in self._active_callbacks():
            try:
                result = cb(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as cb_exc:
                logger.warning("Callback error on '%s': %s", event, cb_exc)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _snapshot(value: Any) -> Any:
    try:
        return copy.deepcopy(value)
    except Exception:
        return value
