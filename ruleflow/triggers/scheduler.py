"""RunnerScheduler: asyncio timers that turn interval / cron / timeout jobs into flow runs.

Every job owns one timer task. Each fire spawns a separate execution task, so
a slow flow never delays the job's clock or any other job:

    timer(job) ──fire──▶ task: clone state/runtime → JobState.record_trigger
                                 → job:started → execute(flow, state, runtime)
                                 → job:completed | job:failed

Triggers of the same job may overlap when a run outlasts the interval. Nothing
serializes them: both runs update the same JobState and the run that finishes
last wins ``last_result`` / ``last_error``.
"""

import asyncio
import copy
import inspect
import logging
import re
import threading
import time
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union
from zoneinfo import ZoneInfo

from croniter import croniter
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from ruleflow.config import get_settings
from ruleflow.exceptions import DuplicateNameError, SchedulerConfigError, SchedulerRunError
from ruleflow.triggers.event_bus import (
    EVENT_JOB_COMPLETED, EVENT_JOB_FAILED, EVENT_JOB_STARTED, emit_event,
)
from ruleflow.triggers.inputs import InputPlugin, InputPluginResult
from ruleflow.types import JobState, SchedulerJob, TriggerKind

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[str, dict, dict], Awaitable[Any]]

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-z]*)\s*$", re.IGNORECASE)

_UNIT_MS = {
    "": 1,
    "ms": 1, "msec": 1, "msecs": 1, "millisecond": 1, "milliseconds": 1,
    "s": 1000, "sec": 1000, "secs": 1000, "second": 1000, "seconds": 1000,
    "m": 60_000, "min": 60_000, "mins": 60_000, "minute": 60_000, "minutes": 60_000,
    "h": 3_600_000, "hr": 3_600_000, "hrs": 3_600_000, "hour": 3_600_000, "hours": 3_600_000,
    "d": 86_400_000, "day": 86_400_000, "days": 86_400_000,
}


def parse_duration(value: Union[int, float, str]) -> float:
    """Return *value* in milliseconds.

    Numbers are milliseconds already; strings carry an optional unit:
    ``"250"``, ``"500ms"``, ``"10s"``, ``"5 minutes"``, ``"1h"``, ``"2d"``.

    Raises:
        ValueError: for booleans, negative numbers, or unrecognised strings
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    factor = _UNIT_MS.get(unit.lower())
    if factor is None:
        raise ValueError(f"Unknown duration unit {unit!r} in {value!r}")
    return float(amount) * factor


def compute_next_run(expression: str, after: datetime) -> datetime:
    """Next fire time of a cron *expression* strictly after *after* (tz-aware in, tz-aware out)."""
    return croniter(expression, after).get_next(datetime)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class RunnerScheduler:
    """Handle returned by create_scheduler_input().

    Attributes:
        jobs: the validated, enabled jobs, keyed by name
        job_states: live read-only view of name → JobState (entries appear on first trigger)
        in_flight: execution tasks that have not finished yet
    """

    def __init__(
        self,
        jobs: list[SchedulerJob],
        execute: ExecuteFn,
        logger: Any = None,
        event_sink: Any = None,
        cron_tz: str = "UTC",
    ) -> None:
        self.jobs: dict[str, SchedulerJob] = {job.name: job for job in jobs}
        self._execute = execute
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._event_sink = event_sink
        self._tz = ZoneInfo(cron_tz)

        self._states: dict[str, JobState] = {}
        self._states_lock = threading.Lock()
        self._timers: dict[str, asyncio.Task] = {}
        self.in_flight: set[asyncio.Task] = set()

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @property
    def job_states(self) -> Mapping[str, JobState]:
        return MappingProxyType(self._states)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._timers.values())

    def start(self) -> None:
        """Create one timer task per job. Must be called with a running event loop."""
        for name, job in self.jobs.items():
            if name in self._timers:
                continue
            self._timers[name] = asyncio.create_task(
                self._timer(job), name=f"ruleflow-scheduler-{name}"
            )
        self._logger.info("Scheduler started with %d jobs", len(self.jobs))

    def stop(self) -> None:
        """Cancel every job timer. Runs already in flight keep going."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
        self._logger.info("Scheduler stopped (%d runs still in flight)", len(self.in_flight))

    def job_state(self, name: str) -> JobState:
        """Return the JobState for *name*, creating it on first use."""
        with self._states_lock:
            state = self._states.get(name)
            if state is None:
                state = JobState()
                self._states[name] = state
            return state

    # ── Triggering ───────────────────────────────────────────────────────────

    def trigger(self, name: str) -> asyncio.Task:
        """Fire job *name* now, independent of its timer. Returns the execution task."""
        job = self.jobs[name]
        task = asyncio.create_task(self._run_job(job), name=f"ruleflow-job-{name}")
        self.in_flight.add(task)
        task.add_done_callback(self.in_flight.discard)
        return task

    async def _timer(self, job: SchedulerJob) -> None:
        kind = job.trigger_kind
        if kind == TriggerKind.TIMEOUT:
            await asyncio.sleep(parse_duration(job.timeout) / 1000)
            self.trigger(job.name)
        elif kind == TriggerKind.INTERVAL:
            period = parse_duration(job.interval) / 1000
            while True:
                await asyncio.sleep(period)
                self.trigger(job.name)
        else:
            base = datetime.now(self._tz)
            while True:
                next_run = compute_next_run(job.cron, base)
                delay = (next_run - datetime.now(self._tz)).total_seconds()
                if delay > 0:
                    await asyncio.sleep(delay)
                self.trigger(job.name)
                # never replay slots missed while the loop was blocked
                base = max(next_run, datetime.now(self._tz))

    async def _run_job(self, job: SchedulerJob) -> None:
        name = job.name
        state = copy.deepcopy(job.initial_state)
        runtime = copy.deepcopy(job.runtime)
        triggered_at = _now_utc()
        runtime["scheduler"] = {"job": name, "triggeredAt": triggered_at.isoformat()}

        job_state = self.job_state(name)
        job_state.record_trigger(triggered_at)
        self._logger.info("Scheduler job %r triggered flow %r", name, job.flow)
        await emit_event(self._event_sink, EVENT_JOB_STARTED, {"job": name, "flow": job.flow})

        started = time.perf_counter()
        try:
            result = self._execute(job.flow, state, runtime)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            error = SchedulerRunError(
                f"Scheduler job '{name}' failed running flow '{job.flow}': {exc}",
                job_name=name,
                flow=job.flow,
            )
            error.__cause__ = exc
            job_state.record_failure(error)
            self._logger.error("Scheduler job %r failed: %s", name, exc)
            await emit_event(self._event_sink, EVENT_JOB_FAILED, {
                "job": name,
                "flow": job.flow,
                "durationMs": _elapsed_ms(started),
                "error": str(exc),
            })
            return

        job_state.record_success(result)
        self._logger.info("Scheduler job %r completed successfully", name)
        await emit_event(self._event_sink, EVENT_JOB_COMPLETED, {
            "job": name,
            "flow": job.flow,
            "durationMs": _elapsed_ms(started),
        })


def _normalize_jobs(jobs: Iterable[Union[SchedulerJob, dict]]) -> list[SchedulerJob]:
    normalized: list[SchedulerJob] = []
    seen: set[str] = set()
    for index, raw in enumerate(jobs, start=1):
        if isinstance(raw, SchedulerJob):
            job = raw
        else:
            label = (raw.get("name") or raw.get("id")) if isinstance(raw, dict) else None
            try:
                job = SchedulerJob.model_validate(raw)
            except ValidationError as exc:
                raise SchedulerConfigError(
                    f"Invalid scheduler job {label or f'#{index}'}: {exc.errors()[0]['msg']}",
                    job_name=label or "",
                    details={"errors": exc.errors(include_url=False)},
                ) from exc

        if not job.enabled:
            continue
        name = job.name or job.id or f"job-{index}"
        if name in seen:
            raise DuplicateNameError(
                f"Scheduler job named '{name}' is declared twice", name=name, kind="job"
            )
        seen.add(name)
        _check_trigger(job, name)
        normalized.append(job.model_copy(update={"name": name}))
    return normalized


def _check_trigger(job: SchedulerJob, name: str) -> None:
    kind = job.trigger_kind
    if kind == TriggerKind.CRON:
        if not croniter.is_valid(job.cron):
            raise SchedulerConfigError(
                f"Scheduler job '{name}' has an invalid cron expression: {job.cron!r}", job_name=name
            )
        return
    raw = job.interval if kind == TriggerKind.INTERVAL else job.timeout
    try:
        millis = parse_duration(raw)
    except ValueError as exc:
        raise SchedulerConfigError(f"Scheduler job '{name}': {exc}", job_name=name) from exc
    if kind == TriggerKind.INTERVAL and millis <= 0:
        raise SchedulerConfigError(
            f"Scheduler job '{name}' needs a positive interval, got {raw!r}", job_name=name
        )


def create_scheduler_input(
    jobs: Iterable[Union[SchedulerJob, dict]],
    *,
    execute: ExecuteFn,
    logger: Any = None,
    event_sink: Any = None,
    cron_tz: Optional[str] = None,
) -> Optional[RunnerScheduler]:
    """Validate *jobs*, start their timers, and return the scheduler handle.

    Disabled jobs are dropped first; when none remain, no scheduler is created
    and ``None`` is returned. Must be called from a running event loop.

    Raises:
        SchedulerConfigError: a job declares no trigger, several, or an unparseable one
        DuplicateNameError: two enabled jobs share a name
    """
    normalized = _normalize_jobs(jobs)
    if not normalized:
        return None

    if cron_tz is None:
        cron_tz = get_settings().scheduler_cron_tz

    scheduler = RunnerScheduler(
        normalized, execute=execute, logger=logger, event_sink=event_sink, cron_tz=cron_tz,
    )
    scheduler.start()
    return scheduler


# ── Input plugin ─────────────────────────────────────────────────────────────


class SchedulerInputConfig(BaseModel):
    """``{type: scheduler, jobs: [...]}``; ``triggers`` is accepted as an alias for ``jobs``."""
    type: str = "scheduler"
    jobs: list[dict[str, Any]] = Field(min_length=1, validation_alias=AliasChoices("jobs", "triggers"))


def initialize_scheduler_input(config: SchedulerInputConfig, context) -> Optional[InputPluginResult]:
    scheduler = create_scheduler_input(
        config.jobs,
        execute=context.engine.execute,
        logger=context.logger,
        event_sink=context.event_sink,
    )
    if scheduler is None:
        return None
    return InputPluginResult(cleanup=scheduler.stop, services={"scheduler": scheduler})


SCHEDULER_INPUT = InputPlugin(
    type="scheduler",
    schema=SchedulerInputConfig,
    initialize=initialize_scheduler_input,
)
