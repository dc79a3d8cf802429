"""Base callback protocol for ruleflow lifecycle hooks.

The engine calls every callback as ``cb(event, data)`` at these points:

    flow.started    {flow}
    flow.completed  {flow, duration_ms}
    flow.failed     {flow, duration_ms, error}
    step.enter      {flow, closure, timestamp, params, state_before}
    step.exit       {flow, closure, timestamp, duration_ms, output, state_after}
    step.error      {flow, closure, timestamp, duration_ms, error}

Step payloads are trimmed by the run's record level (``none`` sends no step
events, ``timing`` leaves params/output/state as None, ...).

Usage:
    class MyCallback(BaseCallback):
        async def on_step_exit(self, data, **kw):
            print(data["closure"], data["duration_ms"])

    engine = FlowEngine(callbacks=[MyCallback()])
"""

from typing import Any, Protocol, runtime_checkable

EVENT_FLOW_STARTED = "flow.started"
EVENT_FLOW_COMPLETED = "flow.completed"
EVENT_FLOW_FAILED = "flow.failed"
EVENT_STEP_ENTER = "step.enter"
EVENT_STEP_EXIT = "step.exit"
EVENT_STEP_ERROR = "step.error"

_HOOKS = {
    EVENT_FLOW_STARTED: "on_flow_start",
    EVENT_FLOW_COMPLETED: "on_flow_complete",
    EVENT_FLOW_FAILED: "on_flow_error",
    EVENT_STEP_ENTER: "on_step_enter",
    EVENT_STEP_EXIT: "on_step_exit",
    EVENT_STEP_ERROR: "on_step_error",
}


@runtime_checkable
class FlowCallback(Protocol):
    """Protocol defining hooks for ruleflow lifecycle events.

    All methods are async; the engine awaits each registered callback in order.
    """

    async def on_flow_start(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called before the first step of a top-level execute()."""
        ...

    async def on_flow_complete(self, data: dict[str, Any], **kwargs: Any) -> None:
        ...

    async def on_flow_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called when execute() is about to re-raise a step's exception."""
        ...

    async def on_step_enter(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called after parameters are resolved, before the closure runs."""
        ...

    async def on_step_exit(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called after the closure returned and its result was assigned."""
        ...

    async def on_step_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        ...


class BaseCallback:
    """Concrete base with no-op hooks and ``__call__`` dispatch.

    Subclass this instead of implementing the Protocol directly; an instance
    can be passed straight to ``FlowEngine(callbacks=[...])``.
    """

    async def __call__(self, event: str, data: dict) -> None:
        hook = _HOOKS.get(event)
        if hook is not None:
            await getattr(self, hook)(data)

    async def on_flow_start(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_flow_complete(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_flow_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_step_enter(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_step_exit(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_step_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass


class StepRecorder(BaseCallback):
    """Keeps every step event of the runs it observes, in order.

    Useful for tracing a flow in tests or a debugger UI::

        recorder = StepRecorder()
        await engine.execute("checkout", state, callbacks=[recorder])
        [e["closure"] for e in recorder.events if e["event"] == "step.exit"]
    """

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def on_step_enter(self, data: dict[str, Any], **kwargs: Any) -> None:
        self.events.append({"event": EVENT_STEP_ENTER, **data})

    async def on_step_exit(self, data: dict[str, Any], **kwargs: Any) -> None:
        self.events.append({"event": EVENT_STEP_EXIT, **data})

    async def on_step_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        self.events.append({"event": EVENT_STEP_ERROR, **data})

    def closures(self) -> list[str]:
        """Names of closures that ran, one per step.enter event."""
        return [e["closure"] for e in self.events if e["event"] == EVENT_STEP_ENTER]

    def clear(self) -> None:
        self.events.clear()
