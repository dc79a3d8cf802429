"""Tests for RunnerScheduler: durations, job validation, timers, JobState, and job events."""

import asyncio
import time
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time
from unittest.mock import AsyncMock

from ruleflow.closures.plugin import define_closure
from ruleflow.core.engine import FlowEngine
from ruleflow.exceptions import DuplicateNameError, SchedulerConfigError, SchedulerRunError
from ruleflow.triggers.event_bus import ANY_EVENT, EventBus
from ruleflow.triggers.scheduler import (
    RunnerScheduler, compute_next_run, create_scheduler_input, parse_duration,
)
from ruleflow.types import ExecutionResult, SchedulerJob, TriggerKind


# ── Helpers ──────────────────────────────────────────────────────────────────

def _make_scheduler(execute, event_sink=None, **job_fields) -> RunnerScheduler:
    """Scheduler with one job named ``j``; timers are not started."""
    fields = {"name": "j", "flow": "f", "interval": 60_000, **job_fields}
    return RunnerScheduler([SchedulerJob(**fields)], execute=execute, event_sink=event_sink)


def _make_event_log():
    events = []
    bus = EventBus()
    bus.subscribe(ANY_EVENT, lambda event, data: events.append((event, data)))
    return events, bus


async def _drain(scheduler: RunnerScheduler) -> None:
    if scheduler.in_flight:
        await asyncio.gather(*list(scheduler.in_flight), return_exceptions=True)


# ── parse_duration ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("value,expected", [
    (250, 250.0),
    (0, 0.0),
    ("250", 250.0),
    ("500ms", 500.0),
    ("10s", 10_000.0),
    ("5 minutes", 300_000.0),
    ("1.5h", 5_400_000.0),
    ("2d", 172_800_000.0),
    ("3 SECONDS", 3_000.0),
])
def test_parse_duration(value, expected):
    """Numbers are milliseconds; strings carry an optional unit."""
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", [True, -1, "10 fortnights", "soon", "-5s", ""])
def test_parse_duration_rejects_invalid(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_compute_next_run_is_strictly_after():
    after = datetime(2026, 1, 1, 12, 5, tzinfo=timezone.utc)
    assert compute_next_run("*/5 * * * *", after) == datetime(2026, 1, 1, 12, 10, tzinfo=timezone.utc)


# ── Job validation ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_disabled_jobs_only_yield_no_scheduler():
    """When every job is disabled no scheduler is created."""
    result = create_scheduler_input(
        [{"name": "off", "flow": "f", "interval": 10, "enabled": False}], execute=AsyncMock(),
    )
    assert result is None


@pytest.mark.asyncio
async def test_empty_job_list_yields_no_scheduler():
    assert create_scheduler_input([], execute=AsyncMock()) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("job", [
    {"name": "none", "flow": "f"},
    {"name": "two", "flow": "f", "interval": "1s", "cron": "* * * * *"},
    {"name": "badcron", "flow": "f", "cron": "every tuesday"},
    {"name": "zero", "flow": "f", "interval": 0},
    {"name": "unit", "flow": "f", "timeout": "3 fortnights"},
    {"name": "noflow", "interval": "1s"},
])
async def test_invalid_jobs_raise_scheduler_config_error(job):
    with pytest.raises(SchedulerConfigError) as exc_info:
        create_scheduler_input([job], execute=AsyncMock())
    assert exc_info.value.job_name == job["name"]


@pytest.mark.asyncio
async def test_duplicate_job_names_raise():
    jobs = [{"name": "tick", "flow": "a", "interval": "1s"}, {"name": "tick", "flow": "b", "interval": "2s"}]
    with pytest.raises(DuplicateNameError) as exc_info:
        create_scheduler_input(jobs, execute=AsyncMock())
    assert exc_info.value.kind == "job"


@pytest.mark.asyncio
async def test_job_names_fall_back_to_id_then_position():
    scheduler = create_scheduler_input(
        [{"id": "by-id", "flow": "a", "interval": "1h"}, {"flow": "b", "cron": "0 * * * *"}],
        execute=AsyncMock(),
    )
    try:
        assert list(scheduler.jobs) == ["by-id", "job-2"]
        assert scheduler.jobs["job-2"].trigger_kind == TriggerKind.CRON
        assert scheduler.running is True
    finally:
        scheduler.stop()


def test_scheduler_job_accepts_camel_case_initial_state():
    job = SchedulerJob.model_validate({"flow": "f", "timeout": 5, "initialState": {"a": 1}})
    assert job.initial_state == {"a": 1}
    assert job.trigger_kind == TriggerKind.TIMEOUT


# ── Timers ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_interval_runs_overlap_when_flow_is_slower_than_interval():
    """A 50ms flow on a 10ms interval still fires on every tick."""
    active = 0
    peak = 0

    async def slow_flow(flow, state, runtime):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.05)
        active -= 1
        return ExecutionResult(state=state)

    scheduler = create_scheduler_input([{"name": "tick", "flow": "slow", "interval": 10}], execute=slow_flow)
    await asyncio.sleep(0.12)
    scheduler.stop()
    await _drain(scheduler)

    assert scheduler.job_states["tick"].runs >= 2
    assert peak >= 2


@pytest.mark.asyncio
async def test_blocking_closure_does_not_stall_sibling_jobs():
    """A sync closure that blocks runs off the loop, so other timers keep firing."""

    def stall(state, context):
        time.sleep(0.3)
        return "stalled"

    engine = FlowEngine(
        closures=[define_closure(stall, name="stall")],
        flows=[
            {"name": "stuck", "steps": [{"closure": "stall"}]},
            {"name": "fast", "steps": [{"closure": "assign", "parameters": {"target": "ok", "value": True}}]},
        ],
    )
    scheduler = create_scheduler_input(
        [
            {"name": "stuck", "flow": "stuck", "timeout": 5},
            {"name": "tick", "flow": "fast", "interval": 10},
        ],
        execute=engine.execute,
    )
    await asyncio.sleep(0.33)
    scheduler.stop()
    await _drain(scheduler)

    assert scheduler.job_states["stuck"].last_result.last_result == "stalled"
    assert scheduler.job_states["tick"].runs >= 10


@pytest.mark.asyncio
async def test_overlapping_runs_last_completion_wins():
    """The run that finishes last sets last_result, even if it was triggered first."""
    delays = iter([0.05, 0.01])

    async def execute(flow, state, runtime):
        delay = next(delays)
        await asyncio.sleep(delay)
        return ExecutionResult(state=state, last_result=delay)

    scheduler = _make_scheduler(execute)
    first = scheduler.trigger("j")
    second = scheduler.trigger("j")

    await second
    assert scheduler.job_states["j"].last_result.last_result == 0.01
    await first

    state = scheduler.job_states["j"]
    assert state.runs == 2
    assert state.last_result.last_result == 0.05


@pytest.mark.asyncio
async def test_timeout_job_fires_once():
    execute = AsyncMock(return_value=ExecutionResult(state={}))
    scheduler = create_scheduler_input([{"name": "once", "flow": "f", "timeout": "10ms"}], execute=execute)
    await asyncio.sleep(0.08)
    await _drain(scheduler)
    scheduler.stop()

    assert execute.await_count == 1
    assert scheduler.job_states["once"].runs == 1


@pytest.mark.asyncio
async def test_stop_cancels_pending_timers():
    execute = AsyncMock(return_value=ExecutionResult(state={}))
    scheduler = create_scheduler_input([{"name": "tick", "flow": "f", "interval": 20}], execute=execute)
    scheduler.stop()
    await asyncio.sleep(0.06)

    assert scheduler.running is False
    assert execute.await_count == 0
    assert "tick" not in scheduler.job_states


# ── Runs and JobState ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_success_records_result():
    result = ExecutionResult(state={"done": True}, last_result=1)
    scheduler = _make_scheduler(AsyncMock(return_value=result))
    await scheduler.trigger("j")

    state = scheduler.job_states["j"]
    assert state.runs == 1
    assert state.last_result is result
    assert state.last_error is None


@pytest.mark.asyncio
async def test_failure_keeps_previous_result_and_wraps_error():
    """A failed run records SchedulerRunError but keeps the last good result."""
    good = ExecutionResult(state={"ok": True})
    boom = RuntimeError("db down")
    scheduler = _make_scheduler(AsyncMock(side_effect=[good, boom]))

    await scheduler.trigger("j")
    await scheduler.trigger("j")

    state = scheduler.job_states["j"]
    assert state.runs == 2
    assert state.last_result is good
    assert isinstance(state.last_error, SchedulerRunError)
    assert state.last_error.__cause__ is boom
    assert state.last_error.job_name == "j"
    assert state.last_error.flow == "f"


@pytest.mark.asyncio
async def test_success_after_failure_clears_error():
    scheduler = _make_scheduler(AsyncMock(side_effect=[ValueError("x"), ExecutionResult(state={})]))
    await scheduler.trigger("j")
    await scheduler.trigger("j")
    assert scheduler.job_states["j"].last_error is None


@pytest.mark.asyncio
async def test_each_run_gets_cloned_state_and_runtime():
    """Runs may mutate their state and runtime without touching the job definition."""
    seen = []

    async def mutate(flow, state, runtime):
        seen.append((state["counter"], runtime["tenant"]["id"]))
        state["counter"] += 1
        runtime["tenant"]["id"] = "changed"
        return ExecutionResult(state=state)

    scheduler = _make_scheduler(mutate, initial_state={"counter": 0}, runtime={"tenant": {"id": "t1"}})
    await scheduler.trigger("j")
    await scheduler.trigger("j")

    assert seen == [(0, "t1"), (0, "t1")]
    assert scheduler.jobs["j"].initial_state == {"counter": 0}
    assert scheduler.jobs["j"].runtime == {"tenant": {"id": "t1"}}


@pytest.mark.asyncio
async def test_runtime_carries_scheduler_metadata():
    execute = AsyncMock(return_value=ExecutionResult(state={}))
    scheduler = _make_scheduler(execute)

    with freeze_time("2026-03-01 09:00:00+00:00"):
        await scheduler.trigger("j")

    flow, state, runtime = execute.await_args.args
    assert flow == "f"
    assert state == {}
    assert runtime["scheduler"] == {"job": "j", "triggeredAt": "2026-03-01T09:00:00+00:00"}
    assert scheduler.job_states["j"].last_run == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_sync_execute_is_supported():
    scheduler = _make_scheduler(lambda flow, state, runtime: ExecutionResult(state={"sync": True}))
    await scheduler.trigger("j")
    assert scheduler.job_states["j"].last_result.state == {"sync": True}


def test_job_state_is_created_lazily():
    scheduler = _make_scheduler(AsyncMock())
    assert dict(scheduler.job_states) == {}
    first = scheduler.job_state("j")
    assert scheduler.job_state("j") is first
    assert first.runs == 0


# ── Events ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_job_events_on_success():
    events, bus = _make_event_log()
    scheduler = _make_scheduler(AsyncMock(return_value=ExecutionResult(state={})), event_sink=bus)
    await scheduler.trigger("j")

    assert [e for e, _ in events] == ["job:started", "job:completed"]
    assert events[0][1] == {"job": "j", "flow": "f"}
    assert events[1][1]["durationMs"] >= 0


@pytest.mark.asyncio
async def test_job_events_on_failure():
    events, bus = _make_event_log()
    scheduler = _make_scheduler(AsyncMock(side_effect=RuntimeError("nope")), event_sink=bus)
    await scheduler.trigger("j")

    assert [e for e, _ in events] == ["job:started", "job:failed"]
    assert events[1][1]["error"] == "nope"
    assert events[1][1]["flow"] == "f"


@pytest.mark.asyncio
async def test_broken_event_sink_does_not_fail_the_run():
    class BrokenSink:
        def emit(self, event, data):
            raise RuntimeError("sink down")

    scheduler = _make_scheduler(AsyncMock(return_value=ExecutionResult(state={})), event_sink=BrokenSink())
    await scheduler.trigger("j")
    assert scheduler.job_states["j"].last_error is None
