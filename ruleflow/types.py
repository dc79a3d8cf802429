"""All shared types, enums, and type aliases. Everything imports from here.

Models accept the camelCase field names used in YAML/JSON flow configuration
(``mergeResult``, ``initialState``, ...) and expose snake_case attributes.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import (
    BaseModel, ConfigDict, Discriminator, Field, PrivateAttr, Tag,
    field_validator, model_validator,
)


# ── Enums ──────────────────────────────────────────────────────────────

class RecordLevel(str, Enum):
    NONE = "none"       # no step events at all
    TIMING = "timing"   # durations only
    PARAMS = "params"   # + resolved parameters and outputs
    STATE = "state"     # + state snapshots before and after each step
    FULL = "full"       # everything

class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"
    FLOW_STEPS = "flowSteps"  # raw step sequence, never template-resolved

class TriggerKind(str, Enum):
    INTERVAL = "interval"
    CRON = "cron"
    TIMEOUT = "timeout"


# ── Flow shapes ────────────────────────────────────────────────────────

def _as_condition_list(value: Any) -> Any:
    if value is None or isinstance(value, list):
        return value
    return [value]


class Condition(BaseModel):
    """A closure call whose result gates a step or selects a branch case."""
    model_config = ConfigDict(extra="forbid")

    closure: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    negate: bool = False

    @field_validator("parameters", mode="before")
    @classmethod
    def default_parameters(cls, v):
        return v if v is not None else {}


_INVOKE_FIELDS = {"type", "closure", "parameters", "assign", "mergeResult", "merge_result", "when"}


class InvokeStep(BaseModel):
    """Call one closure, optionally gated by conditions and stored at a state path."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["invoke"] = "invoke"
    closure: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    assign: Optional[str] = None
    merge_result: bool = Field(default=False, alias="mergeResult")
    when: Optional[list[Condition]] = None

    @model_validator(mode="before")
    @classmethod
    def fold_extra_fields(cls, data):
        """Unknown top-level keys become parameters: ``{closure: x, value: 1}``."""
        if not isinstance(data, dict):
            return data
        if "cases" in data:
            raise ValueError('Invoke steps cannot include "cases"; use the branch step shape instead.')
        extra = {k: v for k, v in data.items() if k not in _INVOKE_FIELDS}
        if not extra:
            return data
        folded = {k: v for k, v in data.items() if k in _INVOKE_FIELDS}
        parameters = dict(folded.get("parameters") or {})
        parameters.update(extra)
        folded["parameters"] = parameters
        return folded

    @field_validator("parameters", mode="before")
    @classmethod
    def default_parameters(cls, v):
        return v if v is not None else {}

    @field_validator("when", mode="before")
    @classmethod
    def normalize_when(cls, v):
        return _as_condition_list(v)


class BranchCase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    when: list[Condition] = Field(min_length=1)
    steps: list["Step"] = Field(default_factory=list)

    @field_validator("when", mode="before")
    @classmethod
    def normalize_when(cls, v):
        return _as_condition_list(v)


class BranchStep(BaseModel):
    """If / else-if / else over conditions, sharing the caller's state."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["branch"] = "branch"
    cases: list[BranchCase] = Field(min_length=1)
    otherwise: Optional[list["Step"]] = None


def _step_kind(value: Any) -> str:
    if isinstance(value, dict):
        if value.get("type") == "branch" or "cases" in value:
            return "branch"
        return "invoke"
    return getattr(value, "type", "invoke")


Step = Annotated[
    Union[
        Annotated[InvokeStep, Tag("invoke")],
        Annotated[BranchStep, Tag("branch")],
    ],
    Discriminator(_step_kind),
]

BranchCase.model_rebuild()
BranchStep.model_rebuild()


class FlowDefinition(BaseModel):
    """Named, ordered step sequence. Immutable once registered."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: list[Step] = Field(default_factory=list)


# ── Closures ───────────────────────────────────────────────────────────

class ClosureParameter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: ParameterType = ParameterType.ANY
    description: Optional[str] = None
    required: bool = False
    skip_template_resolution: bool = Field(default=False, alias="skipTemplateResolution")


class ClosureSignature(BaseModel):
    """Declared parameters of a closure, used for validation and functional params."""
    model_config = ConfigDict(populate_by_name=True)

    description: Optional[str] = None
    parameters: list[ClosureParameter] = Field(default_factory=list)
    allow_additional_parameters: bool = Field(default=False, alias="allowAdditionalParameters")
    returns: Optional[dict[str, Any]] = None
    mutates: list[str] = Field(default_factory=list)


class ClosureDefinition(BaseModel):
    """Registration record for a closure: name + ``handler(state, context)``."""
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    name: str = Field(min_length=1)
    handler: Callable[..., Any]
    description: Optional[str] = None
    signature: Optional[ClosureSignature] = None
    functional_params: list[str] = Field(default_factory=list, alias="functionalParams")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def functional_parameter_names(self) -> set[str]:
        """Parameters passed through as raw step sequences instead of being resolved."""
        names = set(self.functional_params)
        if self.signature is not None:
            for p in self.signature.parameters:
                if p.type == ParameterType.FLOW_STEPS or p.skip_template_resolution:
                    names.add(p.name)
        return names


@dataclass
class ClosureContext:
    """Second argument of every closure handler."""
    state: dict[str, Any]
    runtime: dict[str, Any]
    parameters: dict[str, Any] = field(default_factory=dict)


# ── Execution ──────────────────────────────────────────────────────────

class ExecutionResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    state: dict[str, Any]
    last_result: Any = Field(default=None, alias="lastResult")


class JobState(BaseModel):
    """Per-job run history. Mutated in place by every trigger of the job."""
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    runs: int = 0
    last_run: Optional[datetime] = Field(default=None, alias="lastRun")
    last_result: Optional[ExecutionResult] = Field(default=None, alias="lastResult")
    last_error: Optional[Exception] = Field(default=None, alias="lastError")

    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    def record_trigger(self, at: datetime) -> None:
        with self._lock:
            self.runs += 1
            self.last_run = at

    def record_success(self, result: ExecutionResult) -> None:
        with self._lock:
            self.last_result = result
            self.last_error = None

    def record_failure(self, error: Exception) -> None:
        # last_result is intentionally kept from the previous successful run
        with self._lock:
            self.last_error = error


class SchedulerJob(BaseModel):
    """One scheduled trigger: run ``flow`` on an interval, a cron expression, or once after a delay."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    flow: str = Field(min_length=1)
    interval: Optional[Union[int, float, str]] = None
    cron: Optional[str] = None
    timeout: Optional[Union[int, float, str]] = None
    initial_state: dict[str, Any] = Field(default_factory=dict, alias="initialState")
    runtime: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    @model_validator(mode="after")
    def exactly_one_trigger(self):
        declared = [k for k in ("interval", "cron", "timeout") if getattr(self, k) is not None]
        if not declared:
            raise ValueError("Scheduler job requires one of interval, cron, or timeout")
        if len(declared) > 1:
            raise ValueError(f"Scheduler job declares more than one trigger: {', '.join(declared)}")
        return self

    @property
    def trigger_kind(self) -> TriggerKind:
        if self.interval is not None:
            return TriggerKind.INTERVAL
        if self.cron is not None:
            return TriggerKind.CRON
        return TriggerKind.TIMEOUT
