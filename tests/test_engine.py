"""Tests for FlowEngine: invoke/branch steps, conditions, lastResult, templates, callbacks."""

import asyncio
import threading

import pytest

from ruleflow.callbacks import StepRecorder
from ruleflow.closures.builtin import for_each
from ruleflow.closures.config import build_closures
from ruleflow.closures.plugin import define_closure
from ruleflow.config.schema import FlowClosureConfig
from ruleflow.core.engine import FlowEngine
from ruleflow.exceptions import (
    ConfigurationError, DuplicateNameError, FlowValidationError,
    MissingEngineReferenceError, UnknownClosureError, UnknownFlowError,
)
from ruleflow.types import ClosureContext, FlowDefinition, InvokeStep, RecordLevel


# ── Helpers ──────────────────────────────────────────────────────────────────

def _make_engine(*steps, closures=None, name="main", **kwargs) -> FlowEngine:
    return FlowEngine(closures=closures, flows=[{"name": name, "steps": list(steps)}], **kwargs)


def _calls(definition):
    return definition.metadata["calls"]


def _make_event_log():
    events = []

    def cb(event, data):
        events.append((event, data))

    return events, cb


# ── Registration ─────────────────────────────────────────────────────────────

def test_builtins_registered_by_default(engine):
    """Every engine starts with the built-in closures."""
    names = {c.name for c in engine.list_closures()}
    assert {"assign", "respond", "log", "truthy", "equals", "greaterThan",
            "lessThan", "includes", "length", "forEach"} <= names


def test_builtins_can_be_disabled():
    assert FlowEngine(builtins=False).list_closures() == []


def test_duplicate_closure_name_raises(engine):
    """A second closure with a taken name is a configuration error."""
    dup = define_closure(lambda s, c: None, name="assign")
    with pytest.raises(DuplicateNameError) as exc_info:
        engine.register_closure(dup)
    assert isinstance(exc_info.value, ConfigurationError)
    assert exc_info.value.kind == "closure"


def test_distinct_closure_names_register(engine):
    engine.register_closures([
        define_closure(lambda s, c: 1, name="one"),
        define_closure(lambda s, c: 2, name="two"),
    ])
    assert engine.get_closure("one") is not None
    assert engine.get_closure("two") is not None


def test_duplicate_flow_name_raises(engine):
    engine.register_flow({"name": "f", "steps": []})
    with pytest.raises(DuplicateNameError):
        engine.register_flow({"name": "f", "steps": []})


def test_flow_definitions_are_frozen(engine):
    """Registered flows cannot be edited in place."""
    engine.register_flow({"name": "f", "steps": [{"closure": "assign", "value": 1}]})
    flow = engine.get_flow("f")
    assert isinstance(flow, FlowDefinition)
    with pytest.raises(Exception):
        flow.name = "other"


def test_invalid_step_raises_flow_validation_error(engine):
    with pytest.raises(FlowValidationError) as exc_info:
        engine.register_flow({"name": "bad", "steps": [{"closure": ""}]})
    assert exc_info.value.violations


def test_extra_step_keys_fold_into_parameters(engine):
    """``{closure, target, value}`` is shorthand for ``parameters: {target, value}``."""
    engine.register_flow({"name": "f", "steps": [{"closure": "assign", "target": "x", "value": 1}]})
    step = engine.get_flow("f").steps[0]
    assert isinstance(step, InvokeStep)
    assert step.parameters == {"target": "x", "value": 1}


# ── Invoke steps ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assign_from_request_template():
    """assign writes the resolved template value and it becomes lastResult."""
    engine = _make_engine(
        {"closure": "assign", "parameters": {"target": "order.total", "value": "${request.body.total}"}},
    )
    result = await engine.execute("main", {"request": {"body": {"total": 150}}})
    assert result.state["order"]["total"] == 150
    assert result.last_result == 150


@pytest.mark.asyncio
async def test_step_assign_stores_result_at_path():
    engine = _make_engine({"closure": "length", "parameters": {"value": [1, 2, 3]}, "assign": "counts.items"})
    result = await engine.execute("main", {})
    assert result.state == {"counts": {"items": 3}}


@pytest.mark.asyncio
async def test_merge_result_deep_merges_into_existing_mapping():
    engine = _make_engine({
        "closure": "assign",
        "parameters": {"value": {"customer": {"tier": "vip"}}},
        "assign": "order",
        "mergeResult": True,
    })
    result = await engine.execute("main", {"order": {"customer": {"name": "Ada"}, "total": 10}})
    assert result.state["order"] == {"customer": {"name": "Ada", "tier": "vip"}, "total": 10}


@pytest.mark.asyncio
async def test_execute_does_not_mutate_initial_state():
    """The caller's initial state is copied before the first step runs."""
    engine = _make_engine({"closure": "assign", "parameters": {"target": "order.total", "value": 1}})
    initial = {"order": {"total": 0}}
    result = await engine.execute("main", initial)
    assert initial == {"order": {"total": 0}}
    assert result.state == {"order": {"total": 1}}


@pytest.mark.asyncio
async def test_concurrent_executions_are_isolated():
    """Simultaneous runs of the same flow never share state."""
    async def slow_echo(state, context):
        await asyncio.sleep(0.01)
        return context.parameters["value"]

    engine = _make_engine(
        {"closure": "echo", "parameters": {"value": "${id}"}, "assign": "seen"},
        closures=[define_closure(slow_echo, name="echo", parameters=[{"name": "value"}])],
    )
    first, second = await asyncio.gather(engine.execute("main", {"id": 1}), engine.execute("main", {"id": 2}))
    assert first.state == {"id": 1, "seen": 1}
    assert second.state == {"id": 2, "seen": 2}


@pytest.mark.asyncio
async def test_runtime_carries_engine_and_flow_name():
    seen = {}

    def capture(state, context):
        seen.update(context.runtime)

    engine = _make_engine({"closure": "capture"}, closures=[define_closure(capture, name="capture")])
    caller_runtime = {"requestId": "r-1"}
    await engine.execute("main", {}, caller_runtime)
    assert seen["engine"] is engine
    assert seen["flow"] == "main"
    assert seen["requestId"] == "r-1"
    assert "engine" not in caller_runtime


@pytest.mark.asyncio
async def test_sync_handlers_run_off_the_event_loop_thread():
    """Blocking sync closures run in a worker thread; async ones stay on the loop."""
    threads = {}

    def blocking(state, context):
        threads["sync"] = threading.get_ident()
        return "done"

    async def nonblocking(state, context):
        threads["async"] = threading.get_ident()

    engine = _make_engine(
        {"closure": "blocking", "assign": "out"},
        {"closure": "nonblocking"},
        closures=[define_closure(blocking, name="blocking"), define_closure(nonblocking, name="nonblocking")],
    )
    result = await engine.execute("main", {})
    assert result.state == {"out": "done"}
    assert threads["async"] == threading.get_ident()
    assert threads["sync"] != threading.get_ident()


@pytest.mark.asyncio
async def test_unknown_flow_raises(engine):
    with pytest.raises(UnknownFlowError) as exc_info:
        await engine.execute("nope", {})
    assert exc_info.value.flow_name == "nope"


@pytest.mark.asyncio
async def test_unknown_closure_raises_at_run_time():
    engine = _make_engine({"closure": "missing"})
    with pytest.raises(UnknownClosureError):
        await engine.execute("main", {})


@pytest.mark.asyncio
async def test_handler_exception_propagates_unchanged():
    """A closure's exception aborts the flow and reaches the caller as-is."""
    def boom(state, context):
        raise ValueError("kaput")

    engine = _make_engine(
        {"closure": "boom"},
        {"closure": "assign", "parameters": {"target": "after", "value": True}},
        closures=[define_closure(boom, name="boom")],
    )
    with pytest.raises(ValueError, match="kaput"):
        await engine.execute("main", {})


# ── Conditions ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_when_false_skips_step_and_keeps_last_result():
    """A skipped step neither runs nor overwrites lastResult."""
    engine = _make_engine(
        {"closure": "assign", "parameters": {"value": "first"}},
        {
            "closure": "assign",
            "parameters": {"target": "skipped", "value": True},
            "when": {"closure": "truthy", "parameters": {"value": "${flag}"}},
        },
    )
    result = await engine.execute("main", {"flag": 0})
    assert "skipped" not in result.state
    assert result.last_result == "first"


@pytest.mark.asyncio
async def test_conditions_are_anded_and_short_circuit(recording_closure):
    """The first false condition stops evaluation of the rest."""
    engine = _make_engine(
        {
            "closure": "assign",
            "parameters": {"target": "ran", "value": True},
            "when": [
                {"closure": "truthy", "parameters": {"value": False}},
                {"closure": "record"},
            ],
        },
        closures=[recording_closure],
    )
    result = await engine.execute("main", {})
    assert "ran" not in result.state
    assert _calls(recording_closure) == []


@pytest.mark.asyncio
async def test_negated_condition():
    engine = _make_engine({
        "closure": "assign",
        "parameters": {"target": "anonymous", "value": True},
        "when": {"closure": "truthy", "parameters": {"value": "${user}"}, "negate": True},
    })
    result = await engine.execute("main", {})
    assert result.state["anonymous"] is True


@pytest.mark.asyncio
async def test_evaluate_conditions_accepts_raw_mappings(engine):
    assert await engine.evaluate_conditions(
        [{"closure": "equals", "parameters": {"left": "${a}", "right": 1}}], {"a": 1}, {"engine": engine},
    ) is True
    assert await engine.evaluate_conditions(
        {"closure": "lessThan", "parameters": {"left": 5, "right": 1}}, {}, {"engine": engine},
    ) is False


# ── Branch steps ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_checkout_large_order_is_queued_as_vip(checkout_flow):
    """Orders over 100 take the first case and respond 202."""
    engine = FlowEngine(flows=[checkout_flow])
    result = await engine.execute("checkout", {"request": {"body": {"total": 150}}})
    assert result.state["order"] == {"total": 150, "category": "vip"}
    assert result.state["response"] == {"status": 202, "body": {"status": "queued", "category": "vip"}}
    assert result.last_result == result.state["response"]


@pytest.mark.asyncio
async def test_checkout_small_order_takes_otherwise(checkout_flow):
    engine = FlowEngine(flows=[checkout_flow])
    result = await engine.execute("checkout", {"request": {"body": {"total": 40}}})
    assert result.state["response"] == {"status": 200, "body": {"status": "accepted"}}
    assert "category" not in result.state["order"]


@pytest.mark.asyncio
async def test_branch_first_matching_case_wins(recording_closure):
    """Later case conditions are not evaluated once a case matched."""
    engine = _make_engine(
        {
            "cases": [
                {"when": {"closure": "truthy", "parameters": {"value": True}},
                 "steps": [{"closure": "assign", "parameters": {"target": "picked", "value": "first"}}]},
                {"when": {"closure": "record"},
                 "steps": [{"closure": "assign", "parameters": {"target": "picked", "value": "second"}}]},
            ],
        },
        closures=[recording_closure],
    )
    result = await engine.execute("main", {})
    assert result.state["picked"] == "first"
    assert _calls(recording_closure) == []


@pytest.mark.asyncio
async def test_branch_without_match_or_otherwise_is_a_no_op():
    engine = _make_engine(
        {"closure": "assign", "parameters": {"value": "before"}},
        {"type": "branch", "cases": [
            {"when": {"closure": "truthy", "parameters": {"value": ""}},
             "steps": [{"closure": "assign", "parameters": {"value": "inside"}}]},
        ]},
    )
    result = await engine.execute("main", {})
    assert result.last_result == "before"


@pytest.mark.asyncio
async def test_nested_branch_last_result_comes_from_inner_step():
    engine = _make_engine({"type": "branch", "cases": [
        {"when": {"closure": "truthy", "parameters": {"value": 1}}, "steps": [
            {"type": "branch", "cases": [
                {"when": {"closure": "truthy", "parameters": {"value": 0}},
                 "steps": [{"closure": "assign", "parameters": {"value": "no"}}]},
            ], "otherwise": [{"closure": "assign", "parameters": {"value": "inner"}}]},
        ]},
    ]})
    result = await engine.execute("main", {})
    assert result.last_result == "inner"


# ── Functional parameters ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_for_each_runs_steps_per_item(recording_closure):
    """Nested steps are resolved per iteration, not when forEach is called."""
    engine = _make_engine(
        {"closure": "forEach", "parameters": {
            "collection": "${order.items}",
            "steps": [{"closure": "record", "parameters": {"sku": "${currentItem.sku}", "index": "${currentIndex}"}}],
        }},
        closures=[recording_closure],
    )
    result = await engine.execute("main", {"order": {"items": [{"sku": "A"}, {"sku": "B"}]}})
    assert [params for _, params in _calls(recording_closure)] == [
        {"sku": "A", "index": 0},
        {"sku": "B", "index": 1},
    ]
    assert "currentItem" not in result.state
    assert "currentIndex" not in result.state


@pytest.mark.asyncio
async def test_for_each_over_empty_list_clears_cursor(recording_closure):
    engine = _make_engine(
        {"closure": "forEach", "parameters": {"collection": [], "steps": [{"closure": "record"}]}},
        closures=[recording_closure],
    )
    result = await engine.execute("main", {"currentItem": "stale", "currentIndex": 4})
    assert _calls(recording_closure) == []
    assert "currentItem" not in result.state
    assert "currentIndex" not in result.state


@pytest.mark.asyncio
async def test_for_each_non_list_collection_is_ignored(recording_closure):
    engine = _make_engine(
        {"closure": "forEach", "parameters": {"collection": "${missing}", "steps": [{"closure": "record"}]}},
        closures=[recording_closure],
    )
    await engine.execute("main", {})
    assert _calls(recording_closure) == []


@pytest.mark.asyncio
async def test_for_each_cleans_cursor_when_a_step_fails():
    def fail_on_second(state, context):
        if state["currentIndex"] == 1:
            raise RuntimeError("second item")

    engine = FlowEngine(closures=[define_closure(fail_on_second, name="check")])
    state = {}
    with pytest.raises(RuntimeError):
        await engine.run_steps(
            [{"closure": "forEach", "parameters": {"collection": [1, 2], "steps": [{"closure": "check"}]}}],
            state, {"engine": engine},
        )
    assert state == {}


@pytest.mark.asyncio
async def test_for_each_without_engine_raises():
    """Recursion needs runtime['engine']."""
    state = {}
    context = ClosureContext(state, {}, {"collection": [1], "steps": [{"closure": "assign"}]})
    with pytest.raises(MissingEngineReferenceError):
        await for_each._ruleflow_closure.handler(state, context)


@pytest.mark.asyncio
async def test_flow_closure_inherits_caller_parameters():
    """Parameters given to a flow closure reach every step of its sub-flow."""
    closures = build_closures([FlowClosureConfig(name="greet", steps=[
        {"closure": "assign", "parameters": {"target": "greeting", "value": "hello ${params.who}"}},
        {"closure": "assign", "parameters": {"target": "shout", "value": "${params.who}!"}},
    ])])
    engine = _make_engine({"closure": "greet", "parameters": {"who": "${user.name}"}}, closures=closures)
    result = await engine.execute("main", {"user": {"name": "Ada"}})
    assert result.state["greeting"] == "hello Ada"
    assert result.state["shout"] == "Ada!"
    assert result.last_result == "Ada!"


@pytest.mark.asyncio
async def test_step_parameters_override_inherited_ones():
    closures = build_closures([FlowClosureConfig(name="setXY", steps=[
        {"closure": "assign", "parameters": {"target": "x"}},
        {"closure": "assign", "parameters": {"target": "y", "value": "inner"}},
    ])])
    engine = _make_engine({"closure": "setXY", "parameters": {"value": "outer"}}, closures=closures)
    result = await engine.execute("main", {})
    assert result.state["x"] == "outer"
    assert result.state["y"] == "inner"


# ── $call directives ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_call_directive_invokes_named_closure():
    engine = _make_engine({"closure": "assign", "parameters": {
        "target": "count",
        "value": {"$call": {"name": "length", "parameters": {"value": "${items}"}}},
    }})
    result = await engine.execute("main", {"items": ["a", "b", "c"]})
    assert result.state["count"] == 3


@pytest.mark.asyncio
async def test_call_directive_runs_inline_steps():
    engine = _make_engine({"closure": "assign", "parameters": {
        "target": "computed",
        "value": {"$call": {"steps": [{"closure": "assign", "parameters": {"value": 9}}]}},
    }})
    result = await engine.execute("main", {})
    assert result.state["computed"] == 9


@pytest.mark.asyncio
async def test_call_directive_list_returns_each_result():
    engine = _make_engine({"closure": "assign", "parameters": {
        "target": "both",
        "value": {"$call": [
            {"name": "equals", "parameters": {"left": 1, "right": 1}},
            {"name": "greaterThan", "parameters": {"left": 1, "right": 2}},
        ]},
    }})
    result = await engine.execute("main", {})
    assert result.state["both"] == [True, False]


@pytest.mark.asyncio
async def test_call_directive_without_name_or_steps_raises():
    engine = _make_engine({"closure": "assign", "parameters": {"value": {"$call": {"parameters": {}}}}})
    with pytest.raises(FlowValidationError):
        await engine.execute("main", {})


# ── Callbacks and record levels ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_step_events_at_full_level():
    recorder = StepRecorder()
    engine = _make_engine({"closure": "assign", "parameters": {"target": "x", "value": 1}}, callbacks=[recorder])
    await engine.execute("main", {})
    enter, exit_ = recorder.events
    assert enter["event"] == "step.enter"
    assert enter["params"] == {"target": "x", "value": 1}
    assert enter["state_before"] == {}
    assert exit_["event"] == "step.exit"
    assert exit_["output"] == 1
    assert exit_["state_after"] == {"x": 1}
    assert exit_["duration_ms"] >= 0


@pytest.mark.asyncio
async def test_timing_level_trims_payloads():
    recorder = StepRecorder()
    engine = _make_engine(
        {"closure": "assign", "parameters": {"target": "x", "value": 1}},
        callbacks=[recorder], record_level=RecordLevel.TIMING,
    )
    await engine.execute("main", {})
    assert all(e["state_before" if e["event"] == "step.enter" else "state_after"] is None for e in recorder.events)
    assert recorder.events[0]["params"] is None
    assert recorder.events[1]["output"] is None


@pytest.mark.asyncio
async def test_params_level_omits_state():
    recorder = StepRecorder()
    engine = _make_engine({"closure": "assign", "parameters": {"value": 2}}, record_level="params")
    await engine.execute("main", {}, callbacks=[recorder])
    assert recorder.events[0]["params"] == {"value": 2}
    assert recorder.events[0]["state_before"] is None
    assert recorder.events[1]["output"] == 2


@pytest.mark.asyncio
async def test_runtime_record_level_none_sends_no_step_events():
    events, cb = _make_event_log()
    engine = _make_engine({"closure": "assign", "parameters": {"value": 2}}, callbacks=[cb])
    await engine.execute("main", {}, {"recordLevel": "none"})
    assert [e for e, _ in events] == ["flow.started", "flow.completed"]


@pytest.mark.asyncio
async def test_per_request_callbacks_replace_instance_callbacks():
    instance_events, instance_cb = _make_event_log()
    request_events, request_cb = _make_event_log()
    engine = _make_engine({"closure": "assign", "parameters": {"value": 1}}, callbacks=[instance_cb])
    await engine.execute("main", {}, callbacks=[request_cb])
    assert instance_events == []
    assert [e for e, _ in request_events] == ["flow.started", "step.enter", "step.exit", "flow.completed"]


@pytest.mark.asyncio
async def test_failure_fires_step_error_and_flow_failed():
    def boom(state, context):
        raise KeyError("gone")

    events, cb = _make_event_log()
    engine = _make_engine({"closure": "boom"}, closures=[define_closure(boom, name="boom")], callbacks=[cb])
    with pytest.raises(KeyError):
        await engine.execute("main", {})
    names = [e for e, _ in events]
    assert names == ["flow.started", "step.enter", "step.error", "flow.failed"]
    assert events[2][1]["closure"] == "boom"
    assert "gone" in events[3][1]["error"]


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_the_flow():
    def broken(event, data):
        raise RuntimeError("observer down")

    engine = _make_engine({"closure": "assign", "parameters": {"target": "x", "value": 1}}, callbacks=[broken])
    result = await engine.execute("main", {})
    assert result.state == {"x": 1}


@pytest.mark.asyncio
async def test_nested_steps_are_recorded():
    """Steps run by forEach produce their own step events."""
    recorder = StepRecorder()
    engine = _make_engine(
        {"closure": "forEach", "parameters": {
            "collection": [1, 2],
            "steps": [{"closure": "assign", "parameters": {"target": "last", "value": "${currentItem}"}}],
        }},
        callbacks=[recorder],
    )
    await engine.execute("main", {})
    assert recorder.closures() == ["forEach", "assign", "assign"]
