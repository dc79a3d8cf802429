"""ruleflow: pluggable rule/workflow engine.

Named flows of conditional steps run against a mutable state dict, calling
registered closures. Flows are triggered directly, by the scheduler, or once
at startup.
"""

from ruleflow.version import __version__
from ruleflow.types import (
    BranchStep, ClosureContext, ClosureDefinition, ClosureParameter, ClosureSignature,
    Condition, ExecutionResult, FlowDefinition, InvokeStep, JobState, RecordLevel, SchedulerJob,
)
from ruleflow.exceptions import (
    RuleflowError, ConfigurationError, DuplicateNameError, UnknownClosureError,
    UnknownFlowError, UnknownInputTypeError, MissingEngineReferenceError,
    SchedulerConfigError, FlowValidationError, RunnerValidationError,
    ClosureExecutionError, SchedulerRunError,
)
from ruleflow.core.engine import FlowEngine
from ruleflow.core.templates import TemplateContext, resolve_dynamic_values
from ruleflow.closures.plugin import closure
from ruleflow.triggers.scheduler import RunnerScheduler, create_scheduler_input
from ruleflow.runner import Runner, create_runner

__all__ = [
    "__version__",
    # Types
    "BranchStep", "ClosureContext", "ClosureDefinition", "ClosureParameter", "ClosureSignature",
    "Condition", "ExecutionResult", "FlowDefinition", "InvokeStep", "JobState", "RecordLevel",
    "SchedulerJob",
    # Exceptions
    "RuleflowError", "ConfigurationError", "DuplicateNameError", "UnknownClosureError",
    "UnknownFlowError", "UnknownInputTypeError", "MissingEngineReferenceError",
    "SchedulerConfigError", "FlowValidationError", "RunnerValidationError",
    "ClosureExecutionError", "SchedulerRunError",
    # Engine
    "FlowEngine", "TemplateContext", "resolve_dynamic_values", "closure",
    # Triggers / runner
    "RunnerScheduler", "create_scheduler_input", "Runner", "create_runner",
]
